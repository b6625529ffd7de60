"""
Query normalizer: caller query object -> NormalizedQuery.

A caller query mixes three kinds of top-level keys:
- filter fields: anything that is not an operator below
- meta-operators: $comment, $explain, $hint, $maxScan, $max, $min,
  $returnKey, $showDiskLoc, $snapshot, $count (passed through)
- cursor operators: $limit, $skip, $orderby (-> limit, skip, sort)

plus $aggregate, which carries an aggregation pipeline. A query that
already carries its filter under $query is treated as pre-boxed.

Example:
    >>> q = normalize_query({"score": {"$gt": 4}, "$orderby": {"score": -1}, "$limit": 1})
    >>> q.filter
    {'score': {'$gt': 4}, '_type': {'$ne': None}}
    >>> q.cursor
    [(<CursorOp.SORT: 'sort'>, {'score': -1}), (<CursorOp.LIMIT: 'limit'>, 1)]

Invariants:
    - The caller's query object is never mutated
    - Tombstones are excluded unless the filter constrains _type itself
    - Cursor directives keep input order here; the executor fixes the
      application order
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import QueryError
from ..store.codec import ID_FIELD, TYPE_FIELD

QUERY_KEY = "$query"
AGGREGATE_KEY = "$aggregate"
COUNT_KEY = "$count"
WHERE_KEY = "$where"
MAP_REDUCE_KEY = "$mapReduce"

META_OPERATORS = frozenset({
    "$comment",
    "$explain",
    "$hint",
    "$maxScan",
    "$max",
    "$min",
    "$orderby",
    "$returnKey",
    "$showDiskLoc",
    "$snapshot",
    COUNT_KEY,
})

POLL_MODE_KEYS = ("$orderby", "$limit", "$skip", COUNT_KEY)

_LOGICAL_OPERATORS = ("$and", "$or", "$nor")


class CursorOp(Enum):
    """Post-filter cursor directives."""

    SORT = "sort"
    SKIP = "skip"
    LIMIT = "limit"


CURSOR_OPERATORS = {
    "$limit": CursorOp.LIMIT,
    "$skip": CursorOp.SKIP,
    "$orderby": CursorOp.SORT,
}


@dataclass
class NormalizedQuery:
    """Canonical form of a query object.

    Attributes:
        filter: Predicate evaluated against storage records
        meta: Meta-operators and unrecognized pre-boxed keys, untouched
        cursor: (directive, argument) pairs in input order
        count: Whether count mode was requested
        aggregate: Aggregation pipeline, or None
    """

    filter: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    cursor: list[tuple[CursorOp, Any]] = field(default_factory=list)
    count: bool = False
    aggregate: list[Any] | None = None

    def cursor_arg(self, op: CursorOp) -> Any:
        """Argument of the last occurrence of a directive, or None."""
        value = None
        for directive, arg in self.cursor:
            if directive is op:
                value = arg
        return value


def _classify(query: NormalizedQuery, key: str, value: Any) -> None:
    if key in CURSOR_OPERATORS:
        query.cursor.append((CURSOR_OPERATORS[key], value))
    elif key == AGGREGATE_KEY:
        query.aggregate = list(value) if isinstance(value, (list, tuple)) else [value]
    else:
        query.meta[key] = value


def normalize_query(query: Mapping[str, Any]) -> NormalizedQuery:
    """Split a caller query into filter, meta-operators and cursor directives.

    Args:
        query: Caller query object

    Returns:
        NormalizedQuery with the deletion guard applied

    Raises:
        QueryError: If the query or its filter is not a mapping, or a
            logical operator does not hold a list of clauses
    """
    if not isinstance(query, Mapping):
        raise QueryError(f"Query must be a mapping, got {type(query).__name__}", query)

    normalized = NormalizedQuery()

    if QUERY_KEY in query:
        boxed = query[QUERY_KEY]
        if not isinstance(boxed, Mapping):
            raise QueryError(f"{QUERY_KEY} must be a mapping", query)
        normalized.filter = dict(boxed)
        for key, value in query.items():
            if key != QUERY_KEY:
                _classify(normalized, key, value)
    else:
        for key, value in query.items():
            if key in META_OPERATORS or key in CURSOR_OPERATORS or key == AGGREGATE_KEY:
                _classify(normalized, key, value)
            else:
                normalized.filter[key] = value

    _check_logical(normalized.filter, query)
    normalized.count = bool(normalized.meta.get(COUNT_KEY))

    # Deleted documents keep their record so that versions continue if they
    # are recreated; their type is None.
    if TYPE_FIELD not in normalized.filter:
        normalized.filter[TYPE_FIELD] = {"$ne": None}

    return normalized


def _logical_clauses(clause: Mapping[str, Any]) -> list[Any]:
    return [
        sub
        for op in _LOGICAL_OPERATORS
        if isinstance(clause.get(op), (list, tuple))
        for sub in clause[op]
    ]


def _check_logical(clause: Any, query: Any) -> None:
    if not isinstance(clause, Mapping):
        return
    for op in _LOGICAL_OPERATORS:
        if op in clause and not isinstance(clause[op], (list, tuple)):
            raise QueryError(f"{op} must be a list of clauses", query)
    for sub in _logical_clauses(clause):
        if not isinstance(sub, Mapping):
            raise QueryError(f"Logical operator clauses must be mappings, got {sub!r}", query)
        _check_logical(sub, query)


def _uses_where(clause: Any) -> bool:
    if isinstance(clause, Mapping):
        if WHERE_KEY in clause:
            return True
        return any(_uses_where(sub) for sub in _logical_clauses(clause))
    return False


def check_query(
    normalized: NormalizedQuery,
    allow_js_queries: bool = False,
    allow_aggregate_queries: bool = False,
) -> None:
    """Reject operators the store is not configured to run.

    Raises:
        QueryError: For $where / $mapReduce without JS queries allowed, or
            $aggregate without aggregate queries allowed
    """
    if not allow_js_queries:
        if _uses_where(normalized.filter):
            raise QueryError("Illegal $where query", normalized.filter)
        if MAP_REDUCE_KEY in normalized.meta or MAP_REDUCE_KEY in normalized.filter:
            raise QueryError("Illegal $mapReduce query", normalized.meta)
    if normalized.aggregate is not None and not allow_aggregate_queries:
        raise QueryError("Illegal $aggregate query", normalized.aggregate)


def query_needs_poll_mode(query: Mapping[str, Any]) -> bool:
    """Whether a live query must be re-run in full instead of per document."""
    return any(key in query for key in POLL_MODE_KEYS)


def scope_to_document(normalized: NormalizedQuery, doc_id: str) -> NormalizedQuery:
    """Return a copy of the query restricted to one document id."""
    scoped = dict(normalized.filter)
    if ID_FIELD in scoped:
        existing = scoped.pop(ID_FIELD)
        scoped["$and"] = list(scoped.get("$and", [])) + [{ID_FIELD: doc_id}, {ID_FIELD: existing}]
    else:
        scoped[ID_FIELD] = doc_id
    return NormalizedQuery(
        filter=scoped,
        meta=dict(normalized.meta),
        cursor=list(normalized.cursor),
        count=normalized.count,
        aggregate=normalized.aggregate,
    )
