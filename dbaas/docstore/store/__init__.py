"""
Storage core for DocStore.

- types: Snapshot, Operation, OperationHandle, QueryResult
- codec: Snapshot <-> storage record
- adapter: collection-namespaced partition keys over a KeyValueBackend
- oplog: positional operation log plus op id chain
- coordinator: optimistic-concurrency commits
- document_store: the caller-facing DocumentStore
"""

from . import codec
from .adapter import StoreAdapter
from .coordinator import CommitCoordinator
from .document_store import DocumentStore
from .oplog import OperationLog
from .types import Operation, OperationHandle, QueryResult, Snapshot

__all__ = [
    "DocumentStore",
    "Snapshot",
    "Operation",
    "OperationHandle",
    "QueryResult",
    "StoreAdapter",
    "OperationLog",
    "CommitCoordinator",
    "codec",
]
