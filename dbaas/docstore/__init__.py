"""
DocStore - Versioned document storage with Mongo-style queries.

This package implements the storage core consumed by a real-time
synchronization layer:
- Snapshots (the current state of each document) keyed by collection and id
- A per-document operation log addressable by version
- An optimistic-concurrency commit protocol over both
- A query pipeline that evaluates Mongo-style query objects

Architecture:
    ┌──────────────┐     ┌───────────────────┐
    │  Sync layer  │────▶│   DocumentStore   │
    └──────────────┘     └─────────┬─────────┘
                                   │
              ┌────────────────────┼────────────────────┐
              │                    │                    │
              ▼                    ▼                    ▼
      ┌───────────────┐    ┌──────────────┐    ┌────────────────┐
      │   Commit      │    │ Operation    │    │ Query          │
      │   Coordinator │───▶│ Log          │    │ Normalizer +   │
      └───────┬───────┘    └──────┬───────┘    │ Executor       │
              │ codec             │            └───────┬────────┘
              ▼                   ▼                    │ codec
      ┌─────────────────────────────────────────────────┴──┐
      │        StoreAdapter (collection-namespaced keys)   │
      └─────────────────────────┬──────────────────────────┘
                                ▼
      ┌────────────────────────────────────────────────────┐
      │   KeyValueBackend (memory / SQLite / S3)           │
      └────────────────────────────────────────────────────┘

Invariants:
    - A document's version equals the number of operations in its log
    - A commit only succeeds when snapshot.version == current version + 1
    - Deleted documents are tombstoned (type=None), never removed
    - Default queries never return tombstones

How to change safely:
    - Record layout changes must keep decoding records written earlier
    - New backends must implement the KeyValueBackend protocol
    - Query operators are evaluated by the engine; only routing lives here
"""

from ._version import __version__
from .config import StoreConfig
from .errors import DocStoreError, OperationLogError, QueryError, ValidationError
from .store import DocumentStore, Operation, QueryResult, Snapshot

__all__ = [
    "__version__",
    "DocumentStore",
    "StoreConfig",
    "Snapshot",
    "Operation",
    "QueryResult",
    "DocStoreError",
    "ValidationError",
    "QueryError",
    "OperationLogError",
]
