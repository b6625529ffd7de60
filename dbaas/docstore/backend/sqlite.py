"""
SQLite key-value backend for DocStore.

Stores every record as JSON text in a single table:

    kv:
        - partition TEXT
        - item TEXT
        - value TEXT (JSON object)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (partition, item)

Invariants:
    - One SQLite file per store
    - Each set() is a single-statement upsert (atomic per item)
    - Values are always JSON objects

How to change safely:
    - Schema migrations must be backward compatible
    - Keep the primary key order; list_item_ids() relies on it
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .base import BackendConnectionError, BackendError, decode_record, encode_record

if TYPE_CHECKING:
    from ..config import SqliteConfig

logger = logging.getLogger(__name__)


class SqliteBackend:
    """SQLite implementation of KeyValueBackend.

    Thread safety:
        Each operation opens its own connection. An asyncio lock
        serializes operations issued from this process.

    Example:
        >>> backend = SqliteBackend(SqliteConfig(path="/tmp/docs.db"))
        >>> await backend.connect()
        >>> await backend.set("docstore/notes/docs", "a", {"_id": "a"})
    """

    SCHEMA_VERSION = 1

    def __init__(self, config: SqliteConfig) -> None:
        """Initialize the backend.

        Args:
            config: SQLite configuration
        """
        self.db_path = Path(config.path)
        self.wal_mode = config.wal_mode
        self.busy_timeout_ms = config.busy_timeout_ms
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database file.

        Raises:
            BackendConnectionError: If not connected
            BackendError: If SQLite fails
        """
        if not self._connected:
            raise BackendConnectionError("Not connected")

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise BackendConnectionError(f"Failed to open {self.db_path}: {e}")

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise BackendError(f"SQLite operation failed: {e}")
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS kv (
                partition TEXT NOT NULL,
                item TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (partition, item)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connected = True
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info(f"SQLite backend ready: {self.db_path}")

    async def close(self) -> None:
        self._connected = False
        logger.debug("SqliteBackend closed")

    async def get(self, partition: str, item: str) -> dict[str, Any] | None:
        async with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv WHERE partition = ? AND item = ?",
                    (partition, item),
                ).fetchone()
        return decode_record(row[0]) if row else None

    async def set(self, partition: str, item: str, record: dict[str, Any]) -> None:
        value = encode_record(record)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kv (partition, item, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (partition, item)
                    DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (partition, item, value, int(time.time() * 1000)),
                )

    async def list_item_ids(self, partition: str) -> list[str]:
        async with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT item FROM kv WHERE partition = ? ORDER BY item",
                    (partition,),
                ).fetchall()
        return [row[0] for row in rows]

    async def clear(self, prefix: str | None = None) -> None:
        async with self._lock:
            with self._get_connection() as conn:
                if prefix is None:
                    conn.execute("DELETE FROM kv")
                else:
                    # substr avoids LIKE wildcard escaping in user-supplied names
                    conn.execute(
                        "DELETE FROM kv WHERE substr(partition, 1, ?) = ?",
                        (len(prefix), prefix),
                    )
        logger.debug("SqliteBackend cleared", extra={"prefix": prefix})
