"""
Key-value backend abstraction for DocStore.

This module provides a pluggable backend interface supporting:
- In-memory (for testing and local development)
- SQLite (single-node persistence)
- S3 (object storage, via aiobotocore)

Backends store opaque JSON records by (partition, item). Document,
version and query semantics live above this layer.

Invariants:
    - Not-found is None, never an error
    - Single-item writes are atomic
    - Failures surface as BackendError subclasses

How to change safely:
    - New backends must implement KeyValueBackend protocol
    - Run the backend contract tests against every implementation
"""

from .base import (
    BackendConnectionError,
    BackendError,
    BackendSerializationError,
    KeyValueBackend,
    create_backend,
)
from .memory import InMemoryBackend
from .s3 import S3Backend
from .sqlite import SqliteBackend

__all__ = [
    # Protocol and errors
    "KeyValueBackend",
    "BackendError",
    "BackendConnectionError",
    "BackendSerializationError",
    # Factory
    "create_backend",
    # Implementations
    "InMemoryBackend",
    "SqliteBackend",
    "S3Backend",
]
