"""
Error types for DocStore.

This module defines the exceptions raised by the storage core:
- DocStoreError: Base exception
- ValidationError: Malformed operation or snapshot on commit
- QueryError: Disallowed or malformed query / aggregation pipeline
- OperationLogError: Positional operation log consistency violation

Backend I/O failures are raised by the backend package
(see backend/base.py) and are propagated unchanged.

A version mismatch on commit is not an error: commit() returns False.

Invariants:
    - All errors inherit from DocStoreError
    - Errors carry a stable code for programmatic handling
    - Validation errors are raised before any write
"""

from __future__ import annotations

from typing import Any


class DocStoreError(Exception):
    """Base exception for all DocStore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCSTORE_ERROR"
        self.details = details or {}


class ValidationError(DocStoreError):
    """Operation or snapshot failed validation.

    Raised when:
    - Operation version is not an integer
    - Operation version does not match the snapshot version
    - Snapshot id or version is malformed
    - Operation or snapshot is not JSON-serializable
    """

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        doc_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"collection": collection, "doc_id": doc_id},
        )
        self.collection = collection
        self.doc_id = doc_id


class QueryError(DocStoreError):
    """Query could not be evaluated.

    Raised when:
    - Query object or filter is not a mapping
    - A disallowed operator is used ($where, $mapReduce, $aggregate)
    - The query engine rejects the filter, cursor arguments or pipeline
    """

    def __init__(self, message: str, query: Any = None) -> None:
        super().__init__(message, code="QUERY_ERROR", details={"query": query})
        self.query = query


class OperationLogError(DocStoreError):
    """Positional operation log would be left with a gap."""

    def __init__(self, message: str, collection: str, doc_id: str, version: int) -> None:
        super().__init__(
            message,
            code="OPLOG_ERROR",
            details={"collection": collection, "doc_id": doc_id, "version": version},
        )
        self.collection = collection
        self.doc_id = doc_id
        self.version = version
