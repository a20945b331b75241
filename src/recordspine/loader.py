"""Row hydration and relationship loading.

Two algorithms, chosen by relationship kind:

* **one-to-one** relationships are joined into the parent query, so
  :meth:`RelationshipLoader.hydrate_joined` only has to cut the target's
  slice out of the parent row.  A NULL joined key leaves the slot empty.
* **one-to-many** relationships are loaded per page of parents by
  :meth:`RelationshipLoader.load_many`: one child query with
  ``fk IN (<parent keys>)``, then an in-memory merge keyed by foreign key.
  A page of N parents always costs one query, whatever the fan-out.

Tags:
    loader, relationships, batching, hydration, recordspine
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from recordspine.compiler import Selection, SQLCompiler
from recordspine.dialect import Dialect
from recordspine.executor import Executor
from recordspine.logging import get_logger
from recordspine.model import state_of
from recordspine.query import Include
from recordspine.schema import ModelDescriptor, RelationshipDescriptor, is_empty_identifier

logger = get_logger(__name__)


def populate(record: Any, selection: Selection, row: Sequence[Any], dialect: Dialect) -> None:
    """Copy the selected columns of ``row`` into ``record``."""
    i = selection.start
    for column in selection.columns:
        record.set_value(column, dialect.decode(column, row[i]))
        i += 1
    for column in selection.virtual:
        record.set_virtual(column.column, dialect.decode(column, row[i]))
        i += 1


def build_record(selection: Selection, row: Sequence[Any], dialect: Dialect, *, writable: bool = True) -> Any:
    """Create a persisted record of ``selection.model`` from one row."""
    record = selection.model.new_record()
    populate(record, selection, row, dialect)
    state = state_of(record)
    state.persisted = True
    state.writable = writable
    return record


class RelationshipLoader:
    """Fills relationship slots for the records a result set produces."""

    def __init__(self, executor: Executor, compiler: SQLCompiler) -> None:
        self.executor = executor
        self.compiler = compiler

    @property
    def dialect(self) -> Dialect:
        return self.compiler.dialect

    def hydrate_joined(self, record: Any, row: Sequence[Any], rel: RelationshipDescriptor, selection: Selection) -> None:
        if row[selection.pk_index] is None:
            record.set_relationship(rel, None)
            return
        record.set_relationship(rel, build_record(selection, row, self.dialect))

    def _key(self, model: ModelDescriptor, value: Any) -> Any:
        # Compare keys in stored form; a driver may hand back str for a UUID.
        return self.dialect.encode(model.pk, value)

    def load_many(self, parents: Sequence[Any], model: ModelDescriptor, include: Include) -> int:
        """Load one one-to-many relationship for a page of parents.

        Returns the number of child queries issued (0 or 1).
        """
        rel = include.relationship
        slots: dict[Any, list[Any]] = {}
        keys: list[Any] = []
        for parent in parents:
            pk = parent.get_primary_key(model.pk)
            if is_empty_identifier(pk):
                continue
            key = self._key(model, pk)
            if key not in slots:
                slots[key] = []
                keys.append(pk)

        if keys:
            plan = self.compiler.select_children(include, keys, model)
            fk_index = _column_index(plan.main, rel.foreign_key)
            cursor = self.executor.query(plan.statement)
            try:
                rows = cursor.fetchall()
            finally:
                cursor.close()
            for row in rows:
                bucket = slots.get(self._key(model, row[fk_index]))
                if bucket is not None:
                    bucket.append(build_record(plan.main, row, self.dialect))
            logger.debug(
                "loader.batch",
                relationship=f"{model.name}.{rel.name}",
                parents=len(parents),
                children=len(rows),
            )

        for parent in parents:
            pk = parent.get_primary_key(model.pk)
            found = [] if is_empty_identifier(pk) else slots[self._key(model, pk)]
            parent.set_relationship(rel, list(found))
        return 1 if keys else 0


def _column_index(selection: Selection, column: str) -> int:
    for i, c in enumerate(selection.columns + selection.virtual):
        if c.column == column:
            return selection.start + i
    raise KeyError(column)


__all__ = [
    "RelationshipLoader",
    "build_record",
    "populate",
]
