"""
Query executor: evaluates a NormalizedQuery against storage records.

Predicate and pipeline evaluation is delegated to mongomock, an in-memory
implementation of the MongoDB query language. Candidate records are loaded
into a throwaway mongomock collection per execution.

Modes (mutually exclusive):
- count:     cardinality of the filtered set in `extra`, no cursor directives
- aggregate: pipeline output over the raw records in `extra`; the filter,
             deletion guard and cursor directives are ignored
- find:      filter, then sort, skip, limit (always in that order), then
             decode each record to a Snapshot

Invariants:
    - count and aggregate modes never return results
    - Engine errors, including records the engine refuses to load, surface
      as QueryError before any result is returned
    - Candidate records are never mutated
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

import mongomock

from ..errors import QueryError
from ..store import codec
from ..store.types import QueryResult, Snapshot
from .normalizer import CursorOp, NormalizedQuery

logger = logging.getLogger(__name__)

_ENGINE_ERRORS = (mongomock.PyMongoError, NotImplementedError, TypeError, ValueError)


def sort_spec(arg: Any) -> list[tuple[str, int]]:
    """Convert an $orderby argument to a list of (field, direction) pairs.

    Accepts a mapping ({"score": -1}), a field name, or a sequence of
    pairs / field names.

    Raises:
        QueryError: For any other shape
    """
    if isinstance(arg, Mapping):
        return list(arg.items())
    if isinstance(arg, str):
        return [(arg, 1)]
    if isinstance(arg, Sequence):
        spec = []
        for item in arg:
            if isinstance(item, str):
                spec.append((item, 1))
            elif isinstance(item, Sequence) and len(item) == 2:
                spec.append((item[0], item[1]))
            else:
                raise QueryError(f"Invalid $orderby entry: {item!r}", arg)
        return spec
    raise QueryError(f"Invalid $orderby argument: {arg!r}", arg)


class QueryExecutor:
    """Runs normalized queries over a candidate record set.

    Example:
        >>> executor = QueryExecutor()
        >>> result = executor.execute(records, normalize_query({"$count": True}))
        >>> result.extra
        3
    """

    def __init__(self, database_name: str = "docstore") -> None:
        self.database_name = database_name
        self._client = mongomock.MongoClient()

    def _scratch_collection(self) -> Any:
        return self._client[self.database_name][f"q_{uuid.uuid4().hex}"]

    @staticmethod
    def _load(collection: Any, records: Sequence[Mapping[str, Any]]) -> None:
        if records:
            collection.insert_many([dict(record) for record in records])

    def execute(
        self, records: Sequence[Mapping[str, Any]], query: NormalizedQuery
    ) -> QueryResult:
        """Evaluate a query.

        Args:
            records: Candidate storage records
            query: Normalized query

        Returns:
            QueryResult with results (find mode) or extra (count/aggregate)

        Raises:
            QueryError: If the query is malformed or rejected by the engine
        """
        if query.count and query.aggregate is not None:
            raise QueryError("$count and $aggregate cannot be combined", query.meta)

        collection = self._scratch_collection()
        try:
            self._load(collection, records)
            if query.count:
                return QueryResult(results=[], extra=collection.count_documents(query.filter))
            if query.aggregate is not None:
                return QueryResult(results=[], extra=list(collection.aggregate(query.aggregate)))
            return QueryResult(results=self._find(collection, query))
        except _ENGINE_ERRORS as e:
            logger.debug(f"Query rejected by engine: {e}")
            raise QueryError(f"Query failed: {e}", query.filter) from e
        finally:
            collection.drop()

    def first(
        self, records: Sequence[Mapping[str, Any]], query: NormalizedQuery
    ) -> Snapshot | None:
        """Return the first snapshot matching the filter, or None.

        Cursor directives, count and aggregate are ignored.

        Raises:
            QueryError: If the filter is rejected by the engine
        """
        collection = self._scratch_collection()
        try:
            self._load(collection, records)
            doc = collection.find_one(query.filter)
        except _ENGINE_ERRORS as e:
            raise QueryError(f"Query failed: {e}", query.filter) from e
        finally:
            collection.drop()
        return codec.decode(doc) if doc is not None else None

    def _find(self, collection: Any, query: NormalizedQuery) -> list[Snapshot]:
        cursor = collection.find(query.filter)

        sort = query.cursor_arg(CursorOp.SORT)
        if sort is not None:
            cursor = cursor.sort(sort_spec(sort))
        skip = query.cursor_arg(CursorOp.SKIP)
        if skip is not None:
            cursor = cursor.skip(skip)
        limit = query.cursor_arg(CursorOp.LIMIT)
        if limit is not None:
            cursor = cursor.limit(limit)

        return [codec.decode(doc) for doc in cursor]
