"""
Immutable query values.

A :class:`Query` describes what to read for one model: a predicate, a
projection, an ordering, pagination, and which relationships to load.
Every builder method returns a new Query and leaves the receiver as it
was, so a query can be shared, extended and copied freely.

Manifesto:
    - **Values, not builders:** ``q.where(...)`` never changes ``q``
    - **Writability is derived:** a query knows whether the records it
      produces are safe to write back in full
    - **Fail at build time:** unknown fields or relationships raise
      :class:`~recordspine.errors.QueryError` when the query is built,
      not when it runs

Architecture:
    ::

        Query(model)
          .where(pred)            predicate, AND-combined on repeat
          .select(*fields)        Projection(INCLUDE, ...)   ─┐ mutually
          .select_not(*fields)    Projection(EXCLUDE, ...)   ─┘ exclusive
          .order(*orders)         tuple[Order]
          .limit(n) / .offset(n)
          .include(rel, where=)   tuple[Include]
          .batch_size(n)

        is_writable = full projection AND no filtered include

Examples:
    >>> q = Query(schema.model("User")).where(p.gt("age", 18)).order(p.desc("age"))
    >>> partial = q.select("name")
    >>> q.is_writable, partial.is_writable
    (True, False)

Tags:
    query, builder, immutable, projection, recordspine
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from recordspine.errors import QueryError
from recordspine.predicate import Order, Predicate, and_
from recordspine.schema import FieldDescriptor, ModelDescriptor, RelationshipDescriptor


class ProjectionMode(str, Enum):
    ALL = "all"
    INCLUDE = "include"
    EXCLUDE = "exclude"


@dataclass(frozen=True)
class Projection:
    mode: ProjectionMode = ProjectionMode.ALL
    columns: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Include:
    """Eager-load directive for one relationship."""

    relationship: RelationshipDescriptor
    where: Predicate | None = None
    order: tuple[Order, ...] = ()

    @property
    def filtered(self) -> bool:
        return self.where is not None


def _as_order(value: Order | str) -> Order:
    if isinstance(value, Order):
        return value
    if isinstance(value, str):
        return Order(value)
    raise QueryError(f"Cannot order by {value!r}")


@dataclass(frozen=True)
class Query:
    model: ModelDescriptor
    predicate: Predicate | None = None
    projection: Projection = field(default_factory=Projection)
    ordering: tuple[Order, ...] = ()
    limit_value: int | None = None
    offset_value: int | None = None
    includes: tuple[Include, ...] = ()
    batch_size_value: int | None = None

    # -- Filtering ---------------------------------------------------------

    def where(self, predicate: Predicate) -> Query:
        """Add a predicate; repeated calls are AND-combined."""
        if not isinstance(predicate, Predicate):
            raise QueryError(f"where() expects a Predicate, got {type(predicate).__name__}")
        return replace(self, predicate=and_(self.predicate, predicate))

    # -- Ordering and pagination -------------------------------------------

    def order(self, *orders: Order | str) -> Query:
        return replace(self, ordering=self.ordering + tuple(_as_order(o) for o in orders))

    def limit(self, n: int) -> Query:
        if n < 0:
            raise QueryError(f"limit must be >= 0, got {n}")
        return replace(self, limit_value=n)

    def offset(self, n: int) -> Query:
        if n < 0:
            raise QueryError(f"offset must be >= 0, got {n}")
        return replace(self, offset_value=n)

    def batch_size(self, n: int) -> Query:
        if n < 1:
            raise QueryError(f"batch size must be >= 1, got {n}")
        return replace(self, batch_size_value=n)

    # -- Projection --------------------------------------------------------

    def _resolve(self, names: tuple[str, ...]) -> frozenset[str]:
        columns = set()
        for name in names:
            found = self.model.find_field(name)
            if found is None:
                raise QueryError(f"Model {self.model.name!r} has no field {name!r}")
            columns.add(found.column)
        return frozenset(columns)

    def select(self, *fields: str) -> Query:
        """Fetch only the given fields (plus the primary key)."""
        if self.projection.mode is ProjectionMode.EXCLUDE:
            raise QueryError("select() cannot be combined with select_not()")
        columns = self.projection.columns | self._resolve(fields)
        return replace(self, projection=Projection(ProjectionMode.INCLUDE, columns))

    def select_not(self, *fields: str) -> Query:
        """Fetch every field except the given ones (the primary key is always fetched)."""
        if self.projection.mode is ProjectionMode.INCLUDE:
            raise QueryError("select_not() cannot be combined with select()")
        columns = self.projection.columns | self._resolve(fields)
        return replace(self, projection=Projection(ProjectionMode.EXCLUDE, columns))

    def selected_columns(self) -> tuple[FieldDescriptor, ...]:
        """Columns the query reads, in model order."""
        pk = self.model.pk.column
        mode, chosen = self.projection.mode, self.projection.columns
        if mode is ProjectionMode.INCLUDE:
            return tuple(c for c in self.model.columns if c.column in chosen or c.column == pk)
        if mode is ProjectionMode.EXCLUDE:
            return tuple(c for c in self.model.columns if c.column not in chosen or c.column == pk)
        return self.model.columns

    # -- Relationships -----------------------------------------------------

    def include(
        self,
        relationship: str,
        where: Predicate | None = None,
        order: tuple[Order | str, ...] = (),
    ) -> Query:
        """Eager-load a relationship, optionally filtered.

        A filter means the loaded set can no longer be proven complete, so
        the parent records come back non-writable.
        """
        rel = next((r for r in self.model.relationships if r.name == relationship), None)
        if rel is None:
            raise QueryError(f"Model {self.model.name!r} has no relationship {relationship!r}")
        directive = Include(rel, where, tuple(_as_order(o) for o in order))
        kept = tuple(i for i in self.includes if i.relationship.name != relationship)
        return replace(self, includes=kept + (directive,))

    # -- Introspection -----------------------------------------------------

    @property
    def is_writable(self) -> bool:
        """Whether records read by this query can be written back."""
        partial = len(self.selected_columns()) < len(self.model.columns)
        filtered = any(i.filtered for i in self.includes)
        return not (partial or filtered)

    @property
    def joined_includes(self) -> tuple[Include, ...]:
        return tuple(i for i in self.includes if not i.relationship.is_many)

    @property
    def batched_includes(self) -> tuple[Include, ...]:
        return tuple(i for i in self.includes if i.relationship.is_many)

    def get_limit(self) -> int | None:
        return self.limit_value

    def get_offset(self) -> int | None:
        return self.offset_value

    def get_batch_size(self) -> int | None:
        return self.batch_size_value

    def copy(self) -> Query:
        """Independent clone; all state is immutable so a shallow replace suffices."""
        return replace(self)

    def __repr__(self) -> str:
        parts: list[Any] = [self.model.name]
        if self.predicate is not None:
            parts.append(f"where={self.predicate!r}")
        if self.includes:
            parts.append(f"include={[i.relationship.name for i in self.includes]}")
        return f"Query({', '.join(str(p) for p in parts)})"


__all__ = [
    "Query",
    "Include",
    "Projection",
    "ProjectionMode",
]
