"""
Query pipeline for DocStore.

- normalizer: splits a caller query object into filter, meta-operators and
  cursor directives, and injects the deletion guard
- executor: evaluates the normalized query (count / aggregate / find)
"""

from .executor import QueryExecutor, sort_spec
from .normalizer import (
    CURSOR_OPERATORS,
    META_OPERATORS,
    CursorOp,
    NormalizedQuery,
    check_query,
    normalize_query,
    query_needs_poll_mode,
    scope_to_document,
)

__all__ = [
    "QueryExecutor",
    "sort_spec",
    "NormalizedQuery",
    "CursorOp",
    "META_OPERATORS",
    "CURSOR_OPERATORS",
    "normalize_query",
    "check_query",
    "query_needs_poll_mode",
    "scope_to_document",
]
