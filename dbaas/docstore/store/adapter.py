"""
Backend store adapter: collection-namespaced access to a KeyValueBackend.

Partition layout (collection names and document ids are URL-quoted):

    <prefix>/<collection>/docs            snapshot records, item = doc id
    <prefix>/<collection>/ops/<doc id>    positional op log, item = version
    <prefix>/<collection>/links           op id index, item = op id

Version item keys are zero-padded so that lexical order is version order.

Invariants:
    - Snapshot, op-log and link partitions never share a key
    - Collections never share a partition, whatever their names
    - Nothing outside <prefix>/ is touched by drop_all()

How to change safely:
    - Changing the layout orphans data already stored under the old keys
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote, unquote

from ..backend.base import KeyValueBackend

logger = logging.getLogger(__name__)

DOCS_MARKER = "docs"
OPS_MARKER = "ops"
LINKS_MARKER = "links"

VERSION_KEY_WIDTH = 12


def _q(name: str) -> str:
    return quote(name, safe="")


def version_key(version: int) -> str:
    """Item key for a log slot."""
    return str(version).zfill(VERSION_KEY_WIDTH)


class StoreAdapter:
    """Thin façade over a KeyValueBackend.

    Attributes:
        backend: Underlying key-value backend
        prefix: Store-wide key prefix
    """

    def __init__(self, backend: KeyValueBackend, prefix: str = "docstore") -> None:
        self.backend = backend
        self.prefix = prefix

    # Partition keys

    def collection_prefix(self, collection: str) -> str:
        return f"{self.prefix}/{_q(collection)}/"

    def docs_partition(self, collection: str) -> str:
        return self.collection_prefix(collection) + DOCS_MARKER

    def ops_partition(self, collection: str, doc_id: str) -> str:
        return f"{self.collection_prefix(collection)}{OPS_MARKER}/{_q(doc_id)}"

    def links_partition(self, collection: str) -> str:
        return self.collection_prefix(collection) + LINKS_MARKER

    # Snapshot records

    async def get_record(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await self.backend.get(self.docs_partition(collection), _q(doc_id))

    async def put_record(self, collection: str, doc_id: str, record: dict[str, Any]) -> None:
        await self.backend.set(self.docs_partition(collection), _q(doc_id), record)

    async def list_document_ids(self, collection: str) -> list[str]:
        items = await self.backend.list_item_ids(self.docs_partition(collection))
        return [unquote(item) for item in items]

    async def list_records(self, collection: str) -> list[dict[str, Any]]:
        """Fetch every snapshot record of a collection.

        Records cleared between listing and fetching are skipped.
        """
        doc_ids = await self.list_document_ids(collection)
        records = await asyncio.gather(
            *(self.get_record(collection, doc_id) for doc_id in doc_ids)
        )
        return [record for record in records if record is not None]

    # Positional op log

    async def get_op(self, collection: str, doc_id: str, version: int) -> dict[str, Any] | None:
        return await self.backend.get(self.ops_partition(collection, doc_id), version_key(version))

    async def put_op(
        self, collection: str, doc_id: str, version: int, record: dict[str, Any]
    ) -> None:
        await self.backend.set(self.ops_partition(collection, doc_id), version_key(version), record)

    async def list_op_versions(self, collection: str, doc_id: str) -> list[int]:
        items = await self.backend.list_item_ids(self.ops_partition(collection, doc_id))
        return [int(item) for item in items]

    # Op id index

    async def get_link(self, collection: str, op_id: str) -> dict[str, Any] | None:
        return await self.backend.get(self.links_partition(collection), op_id)

    async def put_link(self, collection: str, op_id: str, record: dict[str, Any]) -> None:
        await self.backend.set(self.links_partition(collection), op_id, record)

    # Administration

    async def drop_collection(self, collection: str) -> None:
        await self.backend.clear(self.collection_prefix(collection))
        logger.info(f"Dropped collection: {collection}")

    async def drop_all(self) -> None:
        await self.backend.clear(f"{self.prefix}/")
        logger.info(f"Dropped all collections under prefix: {self.prefix}")
