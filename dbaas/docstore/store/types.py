"""
Data model for DocStore.

Snapshot:
    The authoritative state of one document at one version. Version 0
    means the document was never created; type None with version > 0 is a
    tombstone (soft-deleted, retained so versions continue on recreation).

Operation:
    One committed mutation. Its version is the version it produces, which
    is also its slot in the per-document log. The payload is opaque here;
    the synchronization layer interprets it.

Invariants:
    - Snapshot.version >= 0
    - Operation.version >= 1 once stored
    - op_id / prev_link are assigned by the operation log, never by callers
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError


@dataclass
class Snapshot:
    """Versioned point-in-time document state.

    Attributes:
        id: Document id, unique within a collection
        version: Number of operations committed so far
        type: Data type/handler name, None for fresh or deleted documents
        data: Payload (mapping, scalar or sequence), None when absent
        metadata: Side-channel mapping, never matched by queries
        op_link: Identifier of the operation that produced this version
    """

    id: str
    version: int
    type: str | None = None
    data: Any = None
    metadata: dict[str, Any] | None = None
    op_link: str | None = None

    @property
    def is_tombstone(self) -> bool:
        """Whether the document existed and has been deleted."""
        return self.type is None and self.version > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "v": self.version,
            "type": self.type,
            "data": self.data,
            "m": self.metadata,
            "op_link": self.op_link,
        }


@dataclass
class Operation:
    """A single committed mutation.

    Attributes:
        version: Version this operation produces (its log slot)
        payload: Opaque mutation description
        document_id: Owning document id
        op_id: Process-unique identifier, assigned on append
        prev_link: op_id of the operation that produced the previous version

    Example:
        {"v": 3, "op": [{"p": ["title"], "od": "a", "oi": "b"}], "doc": "a",
         "id": "5f0c...", "prev": "91ab..."}
    """

    version: Any
    payload: Any = None
    document_id: str | None = None
    op_id: str | None = None
    prev_link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored record shape."""
        return {
            "v": self.version,
            "op": self.payload,
            "doc": self.document_id,
            "id": self.op_id,
            "prev": self.prev_link,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        """Create from the stored record shape.

        Raises:
            ValidationError: If the version field is missing
        """
        if "v" not in data:
            raise ValidationError("Operation is missing its version field 'v'")
        return cls(
            version=data["v"],
            payload=data.get("op"),
            document_id=data.get("doc"),
            op_id=data.get("id"),
            prev_link=data.get("prev"),
        )


@dataclass(frozen=True)
class OperationHandle:
    """Reference to a stored operation.

    Attributes:
        op_id: Identifier of the stored operation
        version: Log slot of the stored operation
        prev_link: Identifier of the previous operation in the chain
    """

    op_id: str
    version: int
    prev_link: str | None = None


@dataclass
class QueryResult:
    """Result of a query.

    Attributes:
        results: Matching snapshots (find mode), empty otherwise
        extra: Count or aggregation output, None in find mode
    """

    results: list[Snapshot] = field(default_factory=list)
    extra: Any = None
