"""
Commit coordinator: optimistic-concurrency commits.

A commit succeeds only when the proposed snapshot is exactly one version
ahead of the stored operation log. Anything else is a concurrency
rejection: commit() returns False and writes nothing, and the caller is
expected to rebase and retry.

Per-document state machine (every transition is a successful commit):

    UNCREATED (v=0) -> LIVE (v=N) -> TOMBSTONED (type=None, v=N+1) -> LIVE (v=N+2)

Invariants:
    - The version check happens before any write
    - Validation happens before any write, including a check that the
      operation and snapshot records are JSON-serializable
    - The operation is appended before the snapshot is written
    - No lock is held across the check and the writes; commits for one
      document must be serialized upstream

How to change safely:
    - Keep the rejection path write-free
    - Test with a failing backend between the two writes
"""

from __future__ import annotations

import logging

from ..backend.base import BackendSerializationError, encode_record
from ..errors import ValidationError
from . import codec
from .adapter import StoreAdapter
from .oplog import OperationLog
from .types import Operation, Snapshot

logger = logging.getLogger(__name__)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class CommitCoordinator:
    """Validates versions and writes operation + snapshot for one commit.

    Example:
        >>> coordinator = CommitCoordinator(adapter, OperationLog(adapter))
        >>> await coordinator.commit("notes", "a", op, snapshot)
        True
    """

    def __init__(self, adapter: StoreAdapter, oplog: OperationLog) -> None:
        self.adapter = adapter
        self.oplog = oplog

    def _validate(
        self, collection: str, doc_id: str, operation: Operation, snapshot: Snapshot
    ) -> None:
        """Reject malformed commits.

        Raises:
            ValidationError: If the operation or snapshot is malformed
        """
        if not isinstance(doc_id, str) or not doc_id:
            raise ValidationError("Document id must be a non-empty string", collection, doc_id)
        if not _is_int(operation.version):
            raise ValidationError(
                f"Operation version must be an integer, got {operation.version!r}",
                collection,
                doc_id,
            )
        if operation.version != snapshot.version:
            raise ValidationError(
                f"Operation version {operation.version} does not match "
                f"snapshot version {snapshot.version}",
                collection,
                doc_id,
            )
        if snapshot.metadata is not None and not isinstance(snapshot.metadata, dict):
            raise ValidationError("Snapshot metadata must be a mapping", collection, doc_id)
        try:
            encode_record(operation.to_dict())
            encode_record(codec.encode(doc_id, snapshot))
        except BackendSerializationError as e:
            raise ValidationError(str(e), collection, doc_id) from e

    async def commit(
        self,
        collection: str,
        doc_id: str,
        operation: Operation,
        snapshot: Snapshot,
    ) -> bool:
        """Commit an operation and the snapshot it produces.

        Args:
            collection: Collection name
            doc_id: Document id
            operation: Operation producing snapshot.version
            snapshot: Document state after the operation

        Returns:
            True if committed, False if snapshot.version is not exactly
            one past the current version

        Raises:
            ValidationError: If the operation or snapshot is malformed
            BackendError: If the backend fails
        """
        current = await self.oplog.current_version(collection, doc_id)
        if not _is_int(snapshot.version) or snapshot.version != current + 1:
            logger.debug(
                "Commit rejected: version mismatch",
                extra={
                    "collection": collection,
                    "doc_id": doc_id,
                    "current_version": current,
                    "snapshot_version": snapshot.version,
                },
            )
            return False

        self._validate(collection, doc_id, operation, snapshot)

        stored = await self.adapter.get_record(collection, doc_id)
        prev_link = stored.get(codec.OP_LINK_FIELD) if stored else None

        handle = await self.oplog.append(collection, doc_id, operation, prev_link=prev_link)

        record = codec.encode(doc_id, snapshot, handle.op_id)
        try:
            await self.adapter.put_record(collection, doc_id, record)
        except Exception:
            logger.error(
                "Snapshot write failed after operation was logged",
                extra={
                    "collection": collection,
                    "doc_id": doc_id,
                    "version": snapshot.version,
                    "op_id": handle.op_id,
                },
                exc_info=True,
            )
            raise

        logger.debug(
            "Commit succeeded",
            extra={"collection": collection, "doc_id": doc_id, "version": snapshot.version},
        )
        return True
