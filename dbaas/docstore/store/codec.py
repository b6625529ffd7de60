"""
Document codec: Snapshot <-> flat storage record.

Records are what the query engine matches against, so user fields of
mapping data are written at the top level of the record. Bookkeeping lives
in reserved underscore fields:

    _id    document id
    _type  type name (None for tombstones and fresh documents)
    _v     version
    _m     metadata
    _o     id of the operation that produced this version
    _enc   "merged" (user fields at top level) or "boxed" (data under _data)
    _data  boxed data

Example records:
    {"title": "Hi", "_enc": "merged", "_id": "a", "_type": "json0", "_v": 3, "_m": None, "_o": "91ab"}
    {"_data": "hello", "_enc": "boxed", "_id": "b", "_type": "text", "_v": 1, "_m": None, "_o": "5f0c"}
    {"_id": "c", "_type": None, "_v": 4, "_m": None, "_o": "77d2"}

Invariants:
    - decode(encode(s.id, s, s.op_link)) == s, except that tombstones
      (type None) never carry data
    - Mapping data colliding with a reserved field name is boxed, not merged
    - Keys starting with "$" or holding a NUL are boxed too; the query
      engine cannot store them as top-level fields
    - A record without _enc is decoded by the presence of _data
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .types import Snapshot

ID_FIELD = "_id"
TYPE_FIELD = "_type"
VERSION_FIELD = "_v"
META_FIELD = "_m"
OP_LINK_FIELD = "_o"
DATA_FIELD = "_data"
ENCODING_FIELD = "_enc"

RESERVED_FIELDS = frozenset(
    {ID_FIELD, TYPE_FIELD, VERSION_FIELD, META_FIELD, OP_LINK_FIELD, DATA_FIELD, ENCODING_FIELD}
)

MERGED = "merged"
BOXED = "boxed"


def _can_merge(data: Any) -> bool:
    return isinstance(data, Mapping) and all(
        isinstance(key, str)
        and key not in RESERVED_FIELDS
        and not key.startswith("$")
        and "\0" not in key
        for key in data
    )


def encode(doc_id: str, snapshot: Snapshot, op_link: str | None = None) -> dict[str, Any]:
    """Build the storage record for a snapshot.

    Args:
        doc_id: Document id
        snapshot: Snapshot to encode
        op_link: Identifier of the operation that produced this version

    Returns:
        A new record; snapshot data is shallow-copied, never aliased
    """
    if snapshot.type is None:
        record: dict[str, Any] = {}
    elif _can_merge(snapshot.data):
        record = dict(snapshot.data)
        record[ENCODING_FIELD] = MERGED
    else:
        record = {DATA_FIELD: snapshot.data, ENCODING_FIELD: BOXED}

    record[ID_FIELD] = doc_id
    record[TYPE_FIELD] = snapshot.type
    record[VERSION_FIELD] = snapshot.version
    record[META_FIELD] = snapshot.metadata
    record[OP_LINK_FIELD] = op_link
    return record


def decode(record: Mapping[str, Any] | None, doc_id: str | None = None) -> Snapshot:
    """Rebuild a snapshot from a storage record.

    Args:
        record: Stored record, or None if the document was never written
        doc_id: Id to use when record is None

    Returns:
        The decoded snapshot; a version-0 snapshot for a missing record
    """
    if record is None:
        return Snapshot(id=doc_id, version=0)

    snapshot = Snapshot(
        id=record.get(ID_FIELD, doc_id),
        version=record.get(VERSION_FIELD, 0),
        type=record.get(TYPE_FIELD),
        metadata=record.get(META_FIELD),
        op_link=record.get(OP_LINK_FIELD),
    )
    if snapshot.type is None:
        return snapshot

    encoding = record.get(ENCODING_FIELD)
    if encoding == BOXED or (encoding is None and DATA_FIELD in record):
        snapshot.data = record.get(DATA_FIELD)
    else:
        snapshot.data = {k: v for k, v in record.items() if k not in RESERVED_FIELDS}
    return snapshot


def project(snapshot: Snapshot, fields: Iterable[str] | None) -> Snapshot:
    """Apply a read-time field projection to a decoded snapshot.

    Only top-level keys of mapping data are filtered. Version, type,
    metadata and op link are always kept. Non-mapping data is returned as-is.
    """
    if not fields or not isinstance(snapshot.data, Mapping):
        return snapshot
    wanted = set(fields)
    return Snapshot(
        id=snapshot.id,
        version=snapshot.version,
        type=snapshot.type,
        data={k: v for k, v in snapshot.data.items() if k in wanted},
        metadata=snapshot.metadata,
        op_link=snapshot.op_link,
    )
