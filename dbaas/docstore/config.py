"""
Configuration management for DocStore.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages
    - JavaScript and aggregate queries are disabled unless explicitly allowed

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class BackendKind(Enum):
    """Supported key-value backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    S3 = "s3"


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite backend configuration.

    Attributes:
        path: Database file path
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    path: str = "docstore.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "docstore.db"),
            wal_mode=_env_flag("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 backend configuration.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO / LocalStack)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "docstore"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "docstore"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class QueryConfig:
    """Query permission configuration.

    Attributes:
        allow_js_queries: Allow $where filters and $mapReduce
        allow_aggregate_queries: Allow $aggregate pipelines
    """

    allow_js_queries: bool = False
    allow_aggregate_queries: bool = False

    @classmethod
    def from_env(cls) -> QueryConfig:
        """Load configuration from environment variables."""
        allow_all = _env_flag("ALLOW_ALL_QUERIES")
        return cls(
            allow_js_queries=allow_all or _env_flag("ALLOW_JS_QUERIES"),
            allow_aggregate_queries=allow_all or _env_flag("ALLOW_AGGREGATE_QUERIES"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class StoreConfig:
    """Complete store configuration.

    Attributes:
        backend: Which key-value backend to use
        key_prefix: Store-wide prefix for every partition key
        sqlite: SQLite configuration (if backend is SQLITE)
        s3: S3 configuration (if backend is S3)
        query: Query permission configuration
        observability: Logging configuration
    """

    backend: BackendKind = BackendKind.MEMORY
    key_prefix: str = "docstore"
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    s3: S3Config = field(default_factory=S3Config)
    query: QueryConfig = field(default_factory=QueryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load complete configuration from environment variables.

        Returns:
            StoreConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("DOCSTORE_BACKEND", "memory").lower()
        try:
            backend = BackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid DOCSTORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite, s3"
            )

        config = cls(
            backend=backend,
            key_prefix=os.getenv("DOCSTORE_KEY_PREFIX", "docstore"),
            sqlite=SqliteConfig.from_env(),
            s3=S3Config.from_env(),
            query=QueryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.key_prefix or "/" in self.key_prefix:
            raise ValueError("DOCSTORE_KEY_PREFIX must be non-empty and must not contain '/'")

        if self.backend == BackendKind.SQLITE and not self.sqlite.path:
            raise ValueError("SQLITE_PATH is required when DOCSTORE_BACKEND=sqlite")
        if self.backend == BackendKind.S3 and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when DOCSTORE_BACKEND=s3")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"Invalid LOG_FORMAT '{self.observability.log_format}'")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Store configuration loaded",
            extra={
                "backend": self.backend.value,
                "key_prefix": self.key_prefix,
                "sqlite_path": self.sqlite.path if self.backend == BackendKind.SQLITE else None,
                "s3_bucket": self.s3.bucket if self.backend == BackendKind.S3 else None,
                "allow_js_queries": self.query.allow_js_queries,
                "allow_aggregate_queries": self.query.allow_aggregate_queries,
                "log_level": self.observability.log_level,
            },
        )
