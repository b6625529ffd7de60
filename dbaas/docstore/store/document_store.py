"""
DocumentStore: the caller-facing API of DocStore.

The store exposes three APIs over one backend:
- Snapshot API: get_snapshot, bulk_get_snapshots
- Operation log API: commit, get_operations, get_operation_history
- Query API: query, query_doc, query_needs_poll_mode

Invariants:
    - All state lives in the backend; the store holds no document state
    - Every call either completes or raises; there is no retry here
    - Tombstones are returned by id but excluded from default queries

How to change safely:
    - Keep commit() the only write path for documents
    - Add query features in the query package, not here
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..backend.base import KeyValueBackend, create_backend
from ..config import QueryConfig, StoreConfig
from ..query.executor import QueryExecutor
from ..query.normalizer import (
    check_query,
    normalize_query,
    query_needs_poll_mode,
    scope_to_document,
)
from . import codec
from .adapter import StoreAdapter
from .coordinator import CommitCoordinator
from .oplog import OperationLog
from .types import Operation, QueryResult, Snapshot

logger = logging.getLogger(__name__)


class DocumentStore:
    """Versioned document store.

    Attributes:
        backend: Key-value backend holding all state
        adapter: Collection-namespaced view of the backend
        oplog: Operation log
        coordinator: Commit coordinator
        executor: Query executor

    Example:
        >>> store = DocumentStore(InMemoryBackend())
        >>> await store.connect()
        >>> await store.commit("notes", "a", Operation(1, {"create": {}}),
        ...                    Snapshot("a", 1, "text", "hi"))
        True
        >>> (await store.get_snapshot("notes", "a")).data
        'hi'
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        key_prefix: str = "docstore",
        query_config: QueryConfig | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Key-value backend (connected by connect())
            key_prefix: Store-wide partition key prefix
            query_config: Query permissions (JS / aggregate queries)
        """
        self.backend = backend
        self.query_config = query_config or QueryConfig()
        self.adapter = StoreAdapter(backend, prefix=key_prefix)
        self.oplog = OperationLog(self.adapter)
        self.coordinator = CommitCoordinator(self.adapter, self.oplog)
        self.executor = QueryExecutor()

    @classmethod
    def from_config(cls, config: StoreConfig) -> DocumentStore:
        """Build a store with the backend selected by configuration."""
        return cls(
            create_backend(config),
            key_prefix=config.key_prefix,
            query_config=config.query,
        )

    async def connect(self) -> None:
        await self.backend.connect()

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> DocumentStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Snapshot API

    async def get_snapshot(
        self,
        collection: str,
        doc_id: str,
        fields: Iterable[str] | None = None,
    ) -> Snapshot:
        """Get the current snapshot of a document.

        Args:
            collection: Collection name
            doc_id: Document id
            fields: Optional projection of top-level data fields

        Returns:
            The snapshot; version 0 with type None if never created,
            type None with version > 0 if deleted
        """
        record = await self.adapter.get_record(collection, doc_id)
        return codec.project(codec.decode(record, doc_id), fields)

    async def bulk_get_snapshots(
        self, requests: Mapping[str, Sequence[str]]
    ) -> dict[str, dict[str, Snapshot]]:
        """Fetch many snapshots at once.

        Args:
            requests: Collection name -> document ids

        Returns:
            Collection name -> {doc id: snapshot}. Documents that were never
            created are omitted; deleted documents are included.
        """
        results: dict[str, dict[str, Snapshot]] = {}
        for collection, doc_ids in requests.items():
            records = await asyncio.gather(
                *(self.adapter.get_record(collection, doc_id) for doc_id in doc_ids)
            )
            results[collection] = {
                doc_id: codec.decode(record, doc_id)
                for doc_id, record in zip(doc_ids, records)
                if record is not None
            }
        return results

    # Operation log API

    async def commit(
        self,
        collection: str,
        doc_id: str,
        operation: Operation,
        snapshot: Snapshot,
    ) -> bool:
        """Commit an operation and the snapshot it produces.

        Returns:
            True if committed, False if snapshot.version is stale

        Raises:
            ValidationError: If the operation or snapshot is malformed
            BackendError: If the backend fails
        """
        return await self.coordinator.commit(collection, doc_id, operation, snapshot)

    async def get_operations(
        self,
        collection: str,
        doc_id: str,
        from_version: int = 1,
        to_version: int | None = None,
    ) -> list[Operation]:
        """Get operations with from_version <= version < to_version.

        to_version None means through the current version.
        """
        return await self.oplog.read(collection, doc_id, from_version, to_version)

    async def get_current_version(self, collection: str, doc_id: str) -> int:
        return await self.oplog.current_version(collection, doc_id)

    async def get_operation_history(
        self,
        collection: str,
        doc_id: str,
        limit: int | None = None,
    ) -> list[Operation]:
        """Follow the operation chain back from the current snapshot, newest first."""
        record = await self.adapter.get_record(collection, doc_id)
        head = record.get(codec.OP_LINK_FIELD) if record else None
        return await self.oplog.history(collection, head, limit=limit)

    # Query API

    async def query(
        self,
        collection: str,
        query: Mapping[str, Any],
        fields: Iterable[str] | None = None,
    ) -> QueryResult:
        """Run a query against the live documents of a collection.

        Args:
            collection: Collection name
            query: Mongo-style query object
            fields: Optional projection of top-level data fields (find mode)

        Returns:
            QueryResult with snapshots (find) or extra (count / aggregate)

        Raises:
            QueryError: If the query is disallowed or malformed
        """
        normalized = normalize_query(query)
        check_query(
            normalized,
            allow_js_queries=self.query_config.allow_js_queries,
            allow_aggregate_queries=self.query_config.allow_aggregate_queries,
        )

        records = await self.adapter.list_records(collection)
        result = self.executor.execute(records, normalized)
        if fields:
            result.results = [codec.project(s, fields) for s in result.results]

        logger.debug(
            "Query executed",
            extra={
                "collection": collection,
                "candidates": len(records),
                "results": len(result.results),
            },
        )
        return result

    async def query_doc(
        self,
        collection: str,
        doc_id: str,
        query: Mapping[str, Any],
        fields: Iterable[str] | None = None,
    ) -> Snapshot | None:
        """Check whether one document matches a query.

        Returns:
            The document's snapshot if it matches, else None

        Raises:
            QueryError: If the query is disallowed or malformed
        """
        normalized = normalize_query(query)
        check_query(
            normalized,
            allow_js_queries=self.query_config.allow_js_queries,
            allow_aggregate_queries=True,
        )

        record = await self.adapter.get_record(collection, doc_id)
        if record is None:
            return None
        snapshot = self.executor.first([record], scope_to_document(normalized, doc_id))
        return codec.project(snapshot, fields) if snapshot is not None else None

    @staticmethod
    def query_needs_poll_mode(query: Mapping[str, Any]) -> bool:
        """Whether a live query has to be re-run in full on every change."""
        return query_needs_poll_mode(query)

    # Administration

    async def drop_collection(self, collection: str) -> None:
        """Remove every snapshot and operation of a collection."""
        await self.adapter.drop_collection(collection)

    async def drop_all(self) -> None:
        """Remove every collection under this store's prefix."""
        await self.adapter.drop_all()
