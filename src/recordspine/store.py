"""
Per-model persistence facade.

A :class:`Store` binds one ModelDescriptor to an :class:`~recordspine.executor.Executor`
and is the only entry point application code needs: it reads through
queries and result sets, and it writes records while driving lifecycle
hooks, relationship saves and transactions.

Manifesto:
    - **Hooks by capability:** a record takes part in a lifecycle step only
      if it defines the hook method; nothing has to be registered
    - **Transactions when they matter:** a single statement runs on its
      own; an ``after_*`` hook or a related record promotes the whole
      operation into one transaction so it can be rolled back as a unit
    - **No cascades:** relationships are saved one level deep and never
      deleted implicitly; ``remove`` is the explicit way to delete children

Architecture:
    ::

        save(record) ──► persisted? ──yes──► update ──► True
                              │
                              no ──► insert ──► False

        insert / update (one transaction if promoted):
          before_save → before_insert|before_update
          → FORWARD related saved (owner fk filled in)
          → INSERT | UPDATE
          → INVERSE related saved (their fk = owner key)
          → after_insert|after_update → after_save

        any error → rollback → in-memory state restored → error raised

Examples:
    >>> users = Store(schema, "User", Executor(SqliteConnection(":memory:")))
    >>> user = User(name="ann", posts=[Post(title="hi")])
    >>> users.save(user)      # one transaction, two INSERTs
    False
    >>> users.save(user)
    True
    >>> users.find_one(users.query().where(p.eq("name", "ann"))).posts
    []

Tags:
    store, persistence, hooks, transactions, relationships, recordspine
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from recordspine import predicate as p
from recordspine.compiler import SQLCompiler
from recordspine.errors import (
    AlreadyPersistedError,
    HookError,
    NoRowsError,
    NotPersistedError,
    NotWritableError,
    PreconditionError,
    QueryError,
    RecordSpineError,
)
from recordspine.executor import Executor
from recordspine.loader import RelationshipLoader, populate
from recordspine.logging import get_logger
from recordspine.model import has_after_hooks, state_of
from recordspine.query import Query
from recordspine.resultset import ResultSet
from recordspine.schema import (
    Direction,
    FieldDescriptor,
    ModelDescriptor,
    RelationshipDescriptor,
    Schema,
    is_empty_identifier,
)
from recordspine.settings import get_settings

logger = get_logger(__name__)

T = TypeVar("T")


def _related_records(record: Any, rel: RelationshipDescriptor) -> list[Any]:
    value = record.get_relationship(rel)
    if value is None:
        return []
    if rel.is_many:
        return [v for v in value if v is not None]
    return [value]


class Store:
    """Reads and writes records of one model.

    Parameters:
        schema: The linked schema all models come from.
        model: Model name, record type or descriptor.
        executor: Statement executor; stores for other models created via
                  :meth:`for_model` share it (and its transaction).
        batch_size: Default one-to-many batch size for queries that set
                    none.  Falls back to ``RECORDSPINE_DEFAULT_BATCH_SIZE``.
    """

    def __init__(
        self,
        schema: Schema,
        model: str | type | ModelDescriptor,
        executor: Executor,
        *,
        batch_size: int | None = None,
    ) -> None:
        self.schema = schema
        self.model = schema.model(model)
        self.executor = executor
        self.compiler = SQLCompiler(executor.dialect)
        self.loader = RelationshipLoader(executor, self.compiler)
        self.batch_size = batch_size or get_settings().default_batch_size

    def for_model(self, model: str | type | ModelDescriptor) -> Store:
        """A store for another model sharing this store's executor."""
        return Store(self.schema, model, self.executor, batch_size=self.batch_size)

    def __repr__(self) -> str:
        return f"Store({self.model.name!r}, {self.executor!r})"

    # =========================================================================
    # Reads
    # =========================================================================

    def query(self) -> Query:
        """A new, unconstrained query for this store's model."""
        return Query(self.model)

    def _check(self, query: Query | None) -> Query:
        if query is None:
            return self.query()
        if query.model is not self.model:
            raise QueryError(
                f"Query for {query.model.name!r} run against the {self.model.name!r} store"
            )
        return query

    def find(self, query: Query | None = None) -> ResultSet:
        """Run ``query`` and return a lazy result set."""
        query = self._check(query)
        plan = self.compiler.select(query)
        cursor = self.executor.query(plan.statement)
        return ResultSet(
            cursor,
            plan,
            self.loader,
            writable=query.is_writable,
            includes=query.includes,
            batch_size=query.get_batch_size() or self.batch_size,
        )

    def find_one(self, query: Query | None = None) -> Any:
        """First record matching ``query``; raises NoRowsError when none does."""
        query = self._check(query)
        try:
            return self.find(query.limit(1)).one()
        except NoRowsError as e:
            raise e.with_context(model=self.model.name, table=self.model.table, operation="find_one")

    def find_all(self, query: Query | None = None) -> list[Any]:
        return self.find(query).all()

    def get(self, key: Any) -> Any:
        """Record with primary key ``key``; raises NoRowsError when absent."""
        return self.find_one(self.query().where(p.eq(self.model.pk.name, key)))

    def count(self, query: Query | None = None) -> int:
        """Number of rows matching ``query``; includes and paging are ignored."""
        query = self._check(query)
        cursor = self.executor.query(self.compiler.count(query))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        return int(row[0]) if row is not None else 0

    def reload(self, record: Any) -> None:
        """Re-read every column of ``record`` from the database.

        Local changes are discarded, the record becomes writable again and
        its relationship slots are left alone.
        """
        key = self._persisted_key(record, "reload")
        query = self.query().where(p.eq(self.model.pk.name, key)).limit(1)
        plan = self.compiler.select(query)
        cursor = self.executor.query(plan.statement)
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NoRowsError(f"{self.model.name} {key!r} no longer exists").with_context(
                model=self.model.name, table=self.model.table, operation="reload"
            )
        populate(record, plan.main, row, self.executor.dialect)
        state_of(record).writable = True

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, record: Any) -> None:
        """Insert ``record`` and its related records."""
        self._check_insert(record)
        self._promote(record, "insert", lambda: self._insert(record, cascade=True))

    def update(self, record: Any, *fields: str) -> int:
        """Write ``record`` (or only ``fields``) and return the affected-row count.

        A count of 0 means no row had the record's key; that is not an error.
        """
        self._check_update(record)
        columns = self._columns_for(fields)
        return self._promote(record, "update", lambda: self._update(record, columns, cascade=True))

    def save(self, record: Any) -> bool:
        """Insert or update; returns True when it updated."""
        if state_of(record).persisted:
            self.update(record)
            return True
        self.insert(record)
        return False

    def delete(self, record: Any) -> int:
        """Delete ``record``'s row.  Related rows are not touched."""
        self._persisted_key(record, "delete")
        return self._promote(record, "delete", lambda: self._delete(record))

    def transaction(self, callback: Callable[[Store], T]) -> T:
        """Run ``callback(store)`` in a transaction.

        Inside an already open transaction the callback joins it, and a
        failure rolls back the outer transaction as a whole.
        """
        with self.executor.transaction():
            return callback(self)

    def remove(self, record: Any, relationship: str, *related: Any) -> int:
        """Delete related rows of an INVERSE relationship.

        With no ``related`` records every row related to ``record`` is
        deleted.  Returns the number of rows deleted.
        """
        rel = next((r for r in self.model.relationships if r.name == relationship), None)
        if rel is None:
            raise QueryError(f"Model {self.model.name!r} has no relationship {relationship!r}")
        if rel.direction is Direction.FORWARD:
            raise QueryError(
                f"{self.model.name}.{rel.name} holds its key on {self.model.table!r}; "
                "delete the target record instead"
            )
        key = self._persisted_key(record, "remove")
        target = rel.target_model

        condition = p.eq(rel.foreign_key, key)
        if related:
            keys = [r.get_primary_key(target.pk) for r in related]
            if any(is_empty_identifier(k) for k in keys):
                raise PreconditionError(f"Cannot remove {target.name} records without a primary key")
            condition = p.and_(condition, p.in_(target.pk.name, keys))

        count = self.executor.execute(self.compiler.delete(target, condition))
        logger.debug("store.remove", model=self.model.name, relationship=rel.name, rows=count)

        current = _related_records(record, rel)
        if count == 0:
            return 0
        if related:
            gone = {self.executor.dialect.encode(target.pk, k) for k in keys}
            removed = list(related) + [
                r for r in current if self.executor.dialect.encode(target.pk, r.get_primary_key(target.pk)) in gone
            ]
        else:
            removed = current
        for child in removed:
            state_of(child).persisted = False
        kept = [r for r in current if not any(r is x for x in removed)]
        if rel.is_many:
            record.set_relationship(rel, kept)
        elif not kept:
            record.set_relationship(rel, None)
        return count

    # =========================================================================
    # Internals
    # =========================================================================

    def _error_context(self, error: RecordSpineError, operation: str) -> None:
        if error.context.model is None:
            error.with_context(model=self.model.name, table=self.model.table)
        if error.context.operation is None:
            error.with_context(operation=operation)

    def _needs_transaction(self, record: Any) -> bool:
        if has_after_hooks(record):
            return True
        return any(_related_records(record, rel) for rel in self.model.relationships)

    def _promote(self, record: Any, operation: str, fn: Callable[[], T]) -> T:
        try:
            if not self._needs_transaction(record):
                return fn()
            if not self.executor.in_transaction:
                logger.debug("store.transaction_promoted", model=self.model.name, operation=operation)
            # Inside an open transaction the block is reused; a failure marks it rollback-only.
            with self.executor.transaction():
                return fn()
        except RecordSpineError as e:
            self._error_context(e, operation)
            raise

    def _hook(self, record: Any, name: str) -> None:
        fn = getattr(record, name, None)
        if not callable(fn):
            return
        try:
            fn()
        except RecordSpineError:
            raise
        except Exception as e:
            raise HookError(
                f"{self.model.name}.{name} failed: {e}", hook=name, cause=e
            ).with_context(model=self.model.name, operation=name) from e

    def _key(self, record: Any) -> Any:
        return record.get_primary_key(self.model.pk)

    def _persisted_key(self, record: Any, operation: str) -> Any:
        key = self._key(record)
        if is_empty_identifier(key):
            raise PreconditionError(f"{self.model.name} has no primary key").with_context(
                model=self.model.name, operation=operation
            )
        if not state_of(record).persisted:
            raise NotPersistedError(f"{self.model.name} {key!r} was never saved").with_context(
                model=self.model.name, operation=operation
            )
        return key

    def _check_insert(self, record: Any) -> None:
        if state_of(record).persisted:
            raise AlreadyPersistedError(f"{self.model.name} is already persisted").with_context(
                model=self.model.name, operation="insert"
            )
        if not self.model.primary_key.auto_increment and is_empty_identifier(self._key(record)):
            raise PreconditionError(f"{self.model.name} needs a primary key before insert").with_context(
                model=self.model.name, operation="insert"
            )

    def _check_update(self, record: Any) -> None:
        self._persisted_key(record, "update")
        if not state_of(record).writable:
            raise NotWritableError(
                f"{self.model.name} was loaded partially; reload it before writing"
            ).with_context(model=self.model.name, operation="update")

    def _columns_for(self, fields: Sequence[str]) -> list[FieldDescriptor] | None:
        if not fields:
            return None
        columns = []
        for name in fields:
            found = self.model.find_field(name) or self.model.virtual_column(name)
            if found is None:
                raise QueryError(f"Model {self.model.name!r} has no field {name!r}")
            columns.append(found)
        return columns

    def _set_column(self, record: Any, model: ModelDescriptor, column: str, value: Any) -> None:
        found = model.find_field(column)
        if found is not None:
            previous = record.get_value(found)
            record.set_value(found, value)
            self.executor.on_rollback(lambda: record.set_value(found, previous))
        else:
            previous = record.get_virtual(column)
            record.set_virtual(column, value)
            self.executor.on_rollback(lambda: record.set_virtual(column, previous))

    def _row_values(self, record: Any, columns: Sequence[FieldDescriptor], skip_pk: bool) -> list[tuple[FieldDescriptor, Any]]:
        pk = self.model.pk.column
        values = [(c, record.get_value(c)) for c in columns if not (skip_pk and c.column == pk)]
        return values

    def _virtual_values(self, record: Any, names: set[str] | None = None) -> list[tuple[FieldDescriptor, Any]]:
        values = []
        for column in self.model.virtual_columns:
            if names is not None and column.column not in names:
                continue
            value = record.get_virtual(column.column)
            if value is not None or names is not None:
                values.append((column, value))
        return values

    # -- relationship saves --------------------------------------------------

    def _save_shallow(self, record: Any) -> None:
        if state_of(record).persisted:
            self._check_update(record)
            self._update(record, None, cascade=False)
        else:
            self._check_insert(record)
            self._insert(record, cascade=False)

    def _save_forward(self, record: Any) -> None:
        for rel in self.model.relationships:
            if rel.direction is not Direction.FORWARD:
                continue
            for target in _related_records(record, rel):
                self.for_model(rel.target_model)._save_shallow(target)
                self._set_column(record, self.model, rel.foreign_key, target.get_primary_key(rel.target_model.pk))

    def _save_inverse(self, record: Any) -> None:
        key = self._key(record)
        for rel in self.model.relationships:
            if rel.direction is not Direction.INVERSE:
                continue
            related = _related_records(record, rel)
            if not related:
                continue
            store = self.for_model(rel.target_model)
            for child in related:
                self._set_column(child, rel.target_model, rel.foreign_key, key)
                store._save_shallow(child)

    # -- statements ----------------------------------------------------------

    def _insert(self, record: Any, *, cascade: bool) -> None:
        model, executor = self.model, self.executor
        self._hook(record, "before_save")
        self._hook(record, "before_insert")
        if cascade:
            self._save_forward(record)

        pk = model.pk
        original_key = self._key(record)
        generated = model.primary_key.auto_increment and is_empty_identifier(original_key)
        values = self._row_values(record, model.columns, skip_pk=generated) + self._virtual_values(record)
        returning = pk.column if generated and executor.dialect.supports_returning else None

        new_key = executor.insert(self.compiler.insert(model, values, returning), returning=returning is not None)
        if generated:
            record.set_primary_key(pk, executor.dialect.decode(pk, new_key))
            executor.on_rollback(lambda: record.set_primary_key(pk, original_key))

        state = state_of(record)
        state.persisted = True
        state.writable = True
        executor.on_rollback(lambda: setattr(state, "persisted", False))
        logger.debug("store.insert", model=model.name, key=self._key(record))

        if cascade:
            self._save_inverse(record)
        self._hook(record, "after_insert")
        self._hook(record, "after_save")

    def _update(self, record: Any, columns: list[FieldDescriptor] | None, *, cascade: bool) -> int:
        model = self.model
        self._hook(record, "before_save")
        self._hook(record, "before_update")
        if cascade:
            self._save_forward(record)

        key = self._key(record)
        if columns is None:
            values = self._row_values(record, model.columns, skip_pk=True) + self._virtual_values(record)
        else:
            mapped = [c for c in columns if model.find_field(c.column) is not None]
            virtual = {c.column for c in columns if model.find_field(c.column) is None}
            values = self._row_values(record, mapped, skip_pk=True)
            if virtual:
                values += self._virtual_values(record, virtual)
        if not values:
            # Nothing to write besides the key; still report whether the row exists.
            values = [(model.pk, key)]

        count = self.executor.execute(self.compiler.update(model, values, key))
        logger.debug("store.update", model=model.name, key=key, rows=count)

        if cascade:
            self._save_inverse(record)
        self._hook(record, "after_update")
        self._hook(record, "after_save")
        return count

    def _delete(self, record: Any) -> int:
        model, executor = self.model, self.executor
        self._hook(record, "before_delete")
        key = self._key(record)
        count = executor.execute(self.compiler.delete(model, p.eq(model.pk.name, key)))
        state = state_of(record)
        state.persisted = False
        executor.on_rollback(lambda: setattr(state, "persisted", True))
        logger.debug("store.delete", model=model.name, key=key, rows=count)
        self._hook(record, "after_delete")
        return count


__all__ = [
    "Store",
]
