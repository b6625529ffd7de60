"""
DocStore Test Suite.

This package contains:
- unit/: Unit tests (no external services; S3 uses a fake client)
- integration/: DocumentStore flows against in-memory and SQLite backends
"""
