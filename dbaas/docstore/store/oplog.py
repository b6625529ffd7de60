"""
Per-document operation log.

Two indices are kept over the same operations and updated together on
append:
- positional: slot = operation version, dense from 1 to the current version
- link index: op id -> {doc, v, prev}, a singly linked chain from the
  newest operation back to the first

Invariants:
    - current_version == number of stored operations
    - The operation in slot v moved the document from version v-1 to v
    - A slot is written once; re-delivery to a filled slot is a no-op
    - The positional slot is written before the link index entry

How to change safely:
    - Never infer one index from the other; both are authoritative
    - Test re-delivery and gap detection after any change to append()
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from ..errors import OperationLogError
from .adapter import StoreAdapter
from .types import Operation, OperationHandle

logger = logging.getLogger(__name__)


class OperationLog:
    """Append-only operation storage addressed by version.

    Example:
        >>> log = OperationLog(adapter)
        >>> handle = await log.append("notes", "a", Operation(version=1, payload={}))
        >>> await log.current_version("notes", "a")
        1
    """

    def __init__(self, adapter: StoreAdapter) -> None:
        self.adapter = adapter

    async def current_version(self, collection: str, doc_id: str) -> int:
        """Number of operations stored for a document (0 if none)."""
        return len(await self.adapter.list_op_versions(collection, doc_id))

    async def append(
        self,
        collection: str,
        doc_id: str,
        operation: Operation,
        prev_link: str | None = None,
    ) -> OperationHandle:
        """Store an operation at its version slot.

        Args:
            collection: Collection name
            doc_id: Document id
            operation: Operation to store; its version selects the slot
            prev_link: op id of the operation that produced the previous version

        Returns:
            Handle of the stored operation. If the slot was already filled,
            the handle of the operation already there.

        Raises:
            OperationLogError: If earlier slots are missing
        """
        version = operation.version

        existing = await self.adapter.get_op(collection, doc_id, version)
        if existing is not None:
            logger.debug(
                "Operation already stored, ignoring re-delivery",
                extra={"collection": collection, "doc_id": doc_id, "version": version},
            )
            return OperationHandle(
                op_id=existing.get("id"), version=version, prev_link=existing.get("prev")
            )

        current = await self.current_version(collection, doc_id)
        if version != current + 1:
            raise OperationLogError(
                f"Database missing parent version: cannot store version {version} "
                f"of {collection}/{doc_id} at version {current}",
                collection=collection,
                doc_id=doc_id,
                version=version,
            )

        op_id = uuid.uuid4().hex
        stored = Operation(
            version=version,
            payload=operation.payload,
            document_id=doc_id,
            op_id=op_id,
            prev_link=prev_link,
        )
        await self.adapter.put_op(collection, doc_id, version, stored.to_dict())
        await self.adapter.put_link(
            collection, op_id, {"doc": doc_id, "v": version, "prev": prev_link}
        )

        logger.debug(
            "Operation appended",
            extra={"collection": collection, "doc_id": doc_id, "version": version, "op_id": op_id},
        )
        return OperationHandle(op_id=op_id, version=version, prev_link=prev_link)

    async def read(
        self,
        collection: str,
        doc_id: str,
        from_version: int,
        to_version: int | None = None,
    ) -> list[Operation]:
        """Get operations with from_version <= version < to_version.

        Args:
            collection: Collection name
            doc_id: Document id
            from_version: First version to return
            to_version: Version to stop before; None means through the
                current version

        Returns:
            Operations in version order
        """
        versions = await self.adapter.list_op_versions(collection, doc_id)
        wanted = [
            v for v in versions
            if v >= from_version and (to_version is None or v < to_version)
        ]
        records = await asyncio.gather(
            *(self.adapter.get_op(collection, doc_id, v) for v in wanted)
        )
        return [Operation.from_dict(record) for record in records if record is not None]

    async def get_by_link(self, collection: str, op_id: str) -> Operation | None:
        """Resolve an op id through the link index."""
        link = await self.adapter.get_link(collection, op_id)
        if link is None:
            return None
        record = await self.adapter.get_op(collection, link["doc"], link["v"])
        return Operation.from_dict(record) if record is not None else None

    async def history(
        self,
        collection: str,
        head_link: str | None,
        limit: int | None = None,
    ) -> list[Operation]:
        """Walk the back-linked chain starting at head_link, newest first.

        Args:
            collection: Collection name
            head_link: op id to start from (usually the snapshot's op_link)
            limit: Maximum number of operations to return

        Returns:
            Operations from newest to oldest; stops at a broken link
        """
        ops: list[Operation] = []
        link = head_link
        while link is not None and (limit is None or len(ops) < limit):
            op = await self.get_by_link(collection, link)
            if op is None:
                logger.warning(
                    "Operation chain broken",
                    extra={"collection": collection, "op_id": link},
                )
                break
            ops.append(op)
            link = op.prev_link
        return ops
