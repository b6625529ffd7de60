"""
Base protocol and errors for the key-value backend abstraction.

This module defines the KeyValueBackend protocol that all backends must
implement, along with the common error types and record (de)serialization
helpers shared by the persistent backends.

A backend is a generic async store of JSON-compatible records addressed by
(partition, item). It knows nothing about documents, versions or queries;
StoreAdapter composes the partition keys.

Invariants:
    - get() of a missing item returns None, never raises
    - set() is atomic for a single (partition, item)
    - list_item_ids() returns item ids sorted ascending
    - Records are copied on the way in and out; callers never share state

How to change safely:
    - Protocol changes require updating all implementations
    - Keep record values JSON-compatible so every backend can hold them
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base exception for backend operations."""
    pass


class BackendConnectionError(BackendError):
    """Backend is not connected or unreachable."""
    pass


class BackendSerializationError(BackendError):
    """Failed to serialize/deserialize a stored record."""
    pass


def encode_record(record: dict[str, Any]) -> str:
    """Serialize a record to JSON text.

    Raises:
        BackendSerializationError: If the record is not JSON-compatible
    """
    try:
        return json.dumps(record, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise BackendSerializationError(f"Record is not JSON-serializable: {e}")


def decode_record(raw: str | bytes) -> dict[str, Any]:
    """Parse a stored record.

    Raises:
        BackendSerializationError: If the stored value is not a JSON object
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        record = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BackendSerializationError(f"Failed to parse stored record: {e}")
    if not isinstance(record, dict):
        raise BackendSerializationError("Stored record is not a JSON object")
    return record


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for key-value backends.

    Records live in partitions. A partition is created implicitly by the
    first set() into it and is never listed on its own; callers address
    partitions by key.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.set("docstore/docs", "a", {"_id": "a"})
        >>> await backend.get("docstore/docs", "a")
        {'_id': 'a'}
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Must be called before any other operations.

        Raises:
            BackendConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def get(self, partition: str, item: str) -> dict[str, Any] | None:
        """Fetch one record.

        Args:
            partition: Partition key
            item: Item key within the partition

        Returns:
            A copy of the stored record, or None if absent

        Raises:
            BackendConnectionError: If not connected
            BackendError: For other read failures
        """
        ...

    @abstractmethod
    async def set(self, partition: str, item: str, record: dict[str, Any]) -> None:
        """Store one record, replacing any existing value.

        Raises:
            BackendConnectionError: If not connected
            BackendSerializationError: If the record cannot be stored
            BackendError: For other write failures
        """
        ...

    @abstractmethod
    async def list_item_ids(self, partition: str) -> list[str]:
        """List item keys of a partition in ascending order.

        Returns an empty list for a partition that was never written.
        """
        ...

    @abstractmethod
    async def clear(self, prefix: str | None = None) -> None:
        """Remove records.

        Args:
            prefix: If given, remove only partitions whose key starts with
                this prefix. If None, remove everything.
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_backend(config: "StoreConfig") -> KeyValueBackend:
    """Factory function to create a backend from configuration.

    Args:
        config: Store configuration

    Returns:
        Appropriate KeyValueBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import BackendKind
    from .memory import InMemoryBackend
    from .s3 import S3Backend
    from .sqlite import SqliteBackend

    if config.backend == BackendKind.MEMORY:
        return InMemoryBackend()
    elif config.backend == BackendKind.SQLITE:
        return SqliteBackend(config.sqlite)
    elif config.backend == BackendKind.S3:
        return S3Backend(config.s3)
    else:
        raise ValueError(f"Unsupported backend: {config.backend}")
