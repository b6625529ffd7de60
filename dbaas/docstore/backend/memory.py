"""
In-memory key-value backend.

This module provides a process-local backend for:
- Unit tests
- Integration tests
- Local development without external dependencies

Invariants:
    - All data is lost on process exit
    - Records are deep-copied on set() and get()
    - set() rejects records that are not JSON-serializable, like the
      persistent backends
    - Safe to use from multiple coroutines

How to change safely:
    - Keep interface compatible with KeyValueBackend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from .base import BackendConnectionError, encode_record

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """In-memory implementation of KeyValueBackend.

    Thread safety:
        Uses an asyncio lock around every access. Safe to use from
        multiple coroutines.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.set("p", "k", {"x": 1})
        >>> await backend.list_item_ids("p")
        ['k']
    """

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, dict[str, Any]]] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._pending_failure: Exception | None = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._partitions.clear()
        logger.debug("InMemoryBackend closed")

    def _check(self) -> None:
        if not self._connected:
            raise BackendConnectionError("Not connected")
        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise failure

    async def get(self, partition: str, item: str) -> dict[str, Any] | None:
        async with self._lock:
            self._check()
            record = self._partitions.get(partition, {}).get(item)
            return copy.deepcopy(record) if record is not None else None

    async def set(self, partition: str, item: str, record: dict[str, Any]) -> None:
        encode_record(record)
        async with self._lock:
            self._check()
            self._partitions.setdefault(partition, {})[item] = copy.deepcopy(record)

    async def list_item_ids(self, partition: str) -> list[str]:
        async with self._lock:
            self._check()
            return sorted(self._partitions.get(partition, {}))

    async def clear(self, prefix: str | None = None) -> None:
        async with self._lock:
            self._check()
            if prefix is None:
                self._partitions.clear()
                return
            for key in [k for k in self._partitions if k.startswith(prefix)]:
                del self._partitions[key]
        logger.debug("InMemoryBackend cleared", extra={"prefix": prefix})

    # Testing helpers

    def partition_count(self) -> int:
        """Number of non-empty partitions (testing helper)."""
        return len(self._partitions)

    def item_count(self, partition: str) -> int:
        """Number of records in a partition (testing helper)."""
        return len(self._partitions.get(partition, {}))

    def fail_next(self, exception: Exception) -> None:
        """Make the next backend call raise this exception (testing helper)."""
        self._pending_failure = exception
