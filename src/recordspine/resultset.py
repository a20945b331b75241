"""Lazy result sets.

A :class:`ResultSet` walks a read cursor page by page.  Each page holds up
to ``batch_size`` rows; when a page is pulled its records are decoded, their
one-to-one relationships are cut out of the joined row, and each
one-to-many include is loaded with one child query for the whole page.

Manifesto:
    - **Pull, don't slurp:** rows are fetched a page at a time, so a large
      result never sits in memory in full
    - **Release early:** the cursor closes itself when exhausted; ``close()``
      is idempotent and safe after exhaustion
    - **Honest records:** every record knows whether it can be written
      back, as decided by its query

Examples:
    >>> with store.find(store.query().where(p.gt("age", 18))) as rs:
    ...     while rs.advance():
    ...         print(rs.current().name)

    >>> adults = store.find(store.query().where(p.gt("age", 18))).all()

Tags:
    resultset, cursor, lazy, iteration, recordspine
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator
from typing import Any

from recordspine.compiler import SelectPlan
from recordspine.errors import NoRowsError, ResultSetClosedError, StopForEach
from recordspine.loader import RelationshipLoader, build_record
from recordspine.query import Include
from recordspine.settings import DEFAULT_BATCH_SIZE


class ResultSet:
    """Forward-only cursor over the records of one query.

    Not thread-safe.  ``current()`` returns the same record object until the
    next ``advance()``.
    """

    def __init__(
        self,
        cursor: Any,
        plan: SelectPlan,
        loader: RelationshipLoader,
        *,
        writable: bool = True,
        includes: tuple[Include, ...] = (),
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._cursor = cursor
        self._plan = plan
        self._loader = loader
        self._writable = writable
        self._includes = includes
        self._batch_size = batch_size
        self._buffer: deque[Any] = deque()
        self._current: Any = None
        self._closed = False
        self._drained = False

    # -- Cursor protocol ---------------------------------------------------

    def advance(self) -> bool:
        """Move to the next record; returns False (and closes) when there is none."""
        if self._closed:
            raise ResultSetClosedError("Result set is closed")
        if not self._buffer and not self._drained:
            self._fill()
        if not self._buffer:
            self.close()
            return False
        self._current = self._buffer.popleft()
        return True

    def current(self) -> Any:
        if self._closed:
            raise ResultSetClosedError("Result set is closed")
        if self._current is None:
            raise ResultSetClosedError("advance() has not been called")
        return self._current

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._current = None
        self._buffer.clear()
        self._cursor.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _fill(self) -> None:
        rows = self._cursor.fetchmany(self._batch_size)
        if len(rows) < self._batch_size:
            self._drained = True
        if not rows:
            return

        dialect = self._loader.dialect
        page = []
        for row in rows:
            record = build_record(self._plan.main, row, dialect, writable=self._writable)
            for rel, selection in self._plan.joined:
                self._loader.hydrate_joined(record, row, rel, selection)
            page.append(record)

        model = self._plan.main.model
        for include in self._includes:
            if include.relationship.is_many:
                self._loader.load_many(page, model, include)
        self._buffer.extend(page)

    # -- Conveniences ------------------------------------------------------

    def __iter__(self) -> Iterator[Any]:
        while self.advance():
            yield self._current

    def __enter__(self) -> ResultSet:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def all(self) -> list[Any]:
        """Drain the remaining records into a list."""
        if self._closed:
            raise ResultSetClosedError("Result set is closed")
        return list(self)

    def one(self) -> Any:
        """Return the next record and close, or raise NoRowsError."""
        try:
            if not self.advance():
                raise NoRowsError("Query matched no rows")
            return self._current
        finally:
            self.close()

    def for_each(self, fn: Callable[[Any], Any]) -> int:
        """Call ``fn`` for every remaining record; returns how many were visited.

        ``fn`` may raise :class:`StopForEach` to stop early.
        """
        visited = 0
        try:
            for record in self:
                visited += 1
                try:
                    fn(record)
                except StopForEach:
                    break
        finally:
            self.close()
        return visited


__all__ = [
    "ResultSet",
]
