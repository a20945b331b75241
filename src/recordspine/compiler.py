"""Render predicates and queries into parameterized statements.

The compiler is the only place where SQL text is assembled.  It walks a
:class:`~recordspine.query.Query` or predicate tree and produces a
:class:`Statement` (SQL text plus the ordered parameter tuple), asking the
:class:`~recordspine.dialect.Dialect` for every backend-specific fragment.

Column references in predicates are attribute names or column names of the
query's model (or one of its virtual foreign-key columns).  They are
qualified with the table, or with the join alias for predicates attached to
a one-to-one include.

SELECT layout (decoded positionally by the result set)::

    SELECT <main columns> <main virtual fks>
           <rel1 columns aliased __rel1__col> ...
    FROM "users"
    LEFT JOIN "profiles" AS "__profile" ON "__profile"."user_id" = "users"."id" [AND <include filter>]
    WHERE ... ORDER BY ... LIMIT ... OFFSET ...
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from recordspine.dialect import Dialect
from recordspine.errors import QueryError
from recordspine.predicate import And, Condition, Not, Operator, Or, Order, Predicate
from recordspine.query import Include, Query
from recordspine.schema import Direction, FieldDescriptor, FieldKind, ModelDescriptor, RelationshipDescriptor

_COMPARISONS = {
    Operator.EQ: "=",
    Operator.NEQ: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


@dataclass(frozen=True)
class Statement:
    sql: str
    params: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


@dataclass(frozen=True)
class Selection:
    """The slice of a result row that belongs to one model."""

    model: ModelDescriptor
    columns: tuple[FieldDescriptor, ...]
    virtual: tuple[FieldDescriptor, ...]
    start: int

    @property
    def width(self) -> int:
        return len(self.columns) + len(self.virtual)

    @property
    def pk_index(self) -> int:
        pk = self.model.pk.column
        for i, c in enumerate(self.columns):
            if c.column == pk:
                return self.start + i
        raise QueryError(f"Primary key of {self.model.name!r} is not selected")


@dataclass(frozen=True)
class SelectPlan:
    statement: Statement
    main: Selection
    joined: tuple[tuple[RelationshipDescriptor, Selection], ...] = ()


class _Params:
    """Collects bound parameters while a statement is rendered."""

    def __init__(self, dialect: Dialect) -> None:
        self._dialect = dialect
        self.values: list[Any] = []

    def bind(self, value: Any) -> str:
        ph = self._dialect.placeholder(len(self.values))
        self.values.append(value)
        return ph


def join_alias(rel: RelationshipDescriptor) -> str:
    return f"__{rel.name}"


class SQLCompiler:
    """Statement factory for one dialect.

    Example::

        compiler = SQLCompiler(SQLiteDialect())
        plan = compiler.select(Query(user_model).where(p.eq("name", "ann")))
        plan.statement.sql
        # 'SELECT "users"."id", "users"."name" FROM "users" WHERE "users"."name" = ?'
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect

    # -- Predicates --------------------------------------------------------

    def _column(self, model: ModelDescriptor, qualifier: str, name: str) -> tuple[str, FieldDescriptor]:
        found = model.find_field(name) or model.virtual_column(name)
        if found is None:
            raise QueryError(f"Model {model.name!r} has no column {name!r}")
        q = self.dialect.quote
        return f"{q(qualifier)}.{q(found.column)}", found

    def _value(self, field: FieldDescriptor, value: Any, params: _Params) -> str:
        ph = params.bind(self.dialect.encode(field, value))
        return self.dialect.value_placeholder(field, ph)

    def predicate(
        self,
        pred: Predicate,
        model: ModelDescriptor,
        params: _Params,
        qualifier: str | None = None,
    ) -> str:
        """Render a predicate tree against ``model`` into SQL."""
        qualifier = qualifier or model.table
        if isinstance(pred, And):
            return "(" + " AND ".join(self.predicate(c, model, params, qualifier) for c in pred.children) + ")"
        if isinstance(pred, Or):
            return "(" + " OR ".join(self.predicate(c, model, params, qualifier) for c in pred.children) + ")"
        if isinstance(pred, Not):
            return f"NOT ({self.predicate(pred.child, model, params, qualifier)})"
        if isinstance(pred, Condition):
            return self._condition(pred, model, params, qualifier)
        raise QueryError(f"Unsupported predicate node {type(pred).__name__}")

    def _condition(self, cond: Condition, model: ModelDescriptor, params: _Params, qualifier: str) -> str:
        column, field = self._column(model, qualifier, cond.column)
        op, value, d = cond.operator, cond.value, self.dialect

        if op in _COMPARISONS:
            if value is None and op in (Operator.EQ, Operator.NEQ):
                return f"{column} IS {'NOT ' if op is Operator.NEQ else ''}NULL"
            return f"{column} {_COMPARISONS[op]} {self._value(field, value, params)}"

        match op:
            case Operator.IS_NULL:
                return f"{column} IS NULL"
            case Operator.IS_NOT_NULL:
                return f"{column} IS NOT NULL"
            case Operator.LIKE:
                return f"{column} LIKE {params.bind(value)}"
            case Operator.ILIKE:
                return d.ilike(column, params.bind(value))
            case Operator.IN | Operator.NOT_IN:
                if not value:
                    return "1 = 0" if op is Operator.IN else "1 = 1"
                items = ", ".join(self._value(field, v, params) for v in value)
                return f"{column} {'IN' if op is Operator.IN else 'NOT IN'} ({items})"

        if op.name.startswith("JSON") and field.kind is not FieldKind.JSON:
            raise QueryError(f"JSON operator {op.value} used on non-JSON column {cond.column!r}")
        if op.name.startswith("ARRAY") and field.kind is not FieldKind.ARRAY:
            raise QueryError(f"Array operator {op.value} used on non-array column {cond.column!r}")

        match op:
            case Operator.JSON_CONTAINS:
                return d.json_contains(column, value, params.bind)
            case Operator.JSON_CONTAINS_ANY_KEY:
                return d.json_contains_keys(column, value, params.bind, any_key=True)
            case Operator.JSON_CONTAINS_ALL_KEYS:
                return d.json_contains_keys(column, value, params.bind, any_key=False)
            case Operator.JSON_HAS_PATH:
                return d.json_has_path(column, value, params.bind)
            case Operator.ARRAY_CONTAINS:
                return d.array_contains(column, value, params.bind, any_value=False)
            case Operator.ARRAY_OVERLAP:
                return d.array_contains(column, value, params.bind, any_value=True)
        raise QueryError(f"Unsupported operator {op!r}")

    def where(self, pred: Predicate, model: ModelDescriptor) -> Statement:
        """Render a bare predicate (useful for logging and tests)."""
        params = _Params(self.dialect)
        return Statement(self.predicate(pred, model, params), tuple(params.values))

    def _order_by(self, orders: Sequence[Order], model: ModelDescriptor, qualifier: str | None = None) -> str:
        rendered = []
        for order in orders:
            column, _ = self._column(model, qualifier or model.table, order.column)
            rendered.append(f"{column} {'DESC' if order.descending else 'ASC'}")
        return ", ".join(rendered)

    # -- SELECT ------------------------------------------------------------

    def _select_list(self, qualifier: str, selection: Selection, prefix: str = "") -> list[str]:
        q = self.dialect.quote
        names = [c.column for c in selection.columns + selection.virtual]
        if prefix:
            return [f"{q(qualifier)}.{q(n)} AS {q(prefix + n)}" for n in names]
        return [f"{q(qualifier)}.{q(n)}" for n in names]

    def _join(self, include: Include, model: ModelDescriptor, params: _Params) -> str:
        rel = include.relationship
        target = rel.target_model
        q = self.dialect.quote
        alias = join_alias(rel)
        if rel.direction is Direction.FORWARD:
            on = f"{q(alias)}.{q(target.pk.column)} = {q(model.table)}.{q(rel.foreign_key)}"
        else:
            on = f"{q(alias)}.{q(rel.foreign_key)} = {q(model.table)}.{q(model.pk.column)}"
        if include.where is not None:
            on += " AND " + self.predicate(include.where, target, params, alias)
        return f" LEFT JOIN {q(target.table)} AS {q(alias)} ON {on}"

    def select(self, query: Query) -> SelectPlan:
        """Compile a query, with one-to-one includes joined in."""
        model = query.model
        params = _Params(self.dialect)
        q = self.dialect.quote

        main = Selection(model, query.selected_columns(), model.virtual_columns, 0)
        select_list = self._select_list(model.table, main)
        offset = main.width

        joined: list[tuple[RelationshipDescriptor, Selection]] = []
        joins: list[str] = []
        for include in query.joined_includes:
            rel = include.relationship
            target = rel.target_model
            sel = Selection(target, target.columns, target.virtual_columns, offset)
            select_list += self._select_list(join_alias(rel), sel, prefix=f"{join_alias(rel)}__")
            offset += sel.width
            joined.append((rel, sel))
            joins.append(self._join(include, model, params))

        sql = f"SELECT {', '.join(select_list)} FROM {q(model.table)}" + "".join(joins)
        if query.predicate is not None:
            sql += " WHERE " + self.predicate(query.predicate, model, params)
        if query.ordering:
            sql += " ORDER BY " + self._order_by(query.ordering, model)

        limit = params.bind(query.limit_value) if query.limit_value is not None else None
        offset_ph = params.bind(query.offset_value) if query.offset_value is not None else None
        paging = self.dialect.limit_offset(limit, offset_ph)
        if paging:
            sql += " " + paging

        return SelectPlan(Statement(sql, tuple(params.values)), main, tuple(joined))

    def select_children(
        self,
        include: Include,
        parent_keys: Sequence[Any],
        parent: ModelDescriptor,
    ) -> SelectPlan:
        """Compile the batch query for a one-to-many include."""
        rel = include.relationship
        target = rel.target_model
        params = _Params(self.dialect)
        q = self.dialect.quote

        main = Selection(target, target.columns, target.virtual_columns, 0)
        keys = ", ".join(params.bind(self.dialect.encode(parent.pk, k)) for k in parent_keys)

        sql = f"SELECT {', '.join(self._select_list(target.table, main))} FROM {q(target.table)}"
        clauses = [f"{q(target.table)}.{q(rel.foreign_key)} IN ({keys})"]
        if include.where is not None:
            clauses.append(self.predicate(include.where, target, params))
        sql += " WHERE " + " AND ".join(clauses)
        if include.order:
            sql += " ORDER BY " + self._order_by(include.order, target)
        return SelectPlan(Statement(sql, tuple(params.values)), main)

    def count(self, query: Query) -> Statement:
        model = query.model
        params = _Params(self.dialect)
        sql = f"SELECT COUNT(*) FROM {self.dialect.quote(model.table)}"
        if query.predicate is not None:
            sql += " WHERE " + self.predicate(query.predicate, model, params)
        return Statement(sql, tuple(params.values))

    # -- Writes ------------------------------------------------------------

    def insert(
        self,
        model: ModelDescriptor,
        values: Sequence[tuple[FieldDescriptor, Any]],
        returning: str | None = None,
    ) -> Statement:
        q = self.dialect.quote
        params = _Params(self.dialect)
        names = [q(column.column) for column, _ in values]
        phs = [self._value(column, value, params) for column, value in values]
        if names:
            sql = f"INSERT INTO {q(model.table)} ({', '.join(names)}) VALUES ({', '.join(phs)})"
        else:
            sql = f"INSERT INTO {q(model.table)} DEFAULT VALUES"
        if returning is not None:
            sql += f" RETURNING {q(returning)}"
        return Statement(sql, tuple(params.values))

    def update(
        self,
        model: ModelDescriptor,
        values: Sequence[tuple[FieldDescriptor, Any]],
        key: Any,
    ) -> Statement:
        q = self.dialect.quote
        params = _Params(self.dialect)
        sets = [f"{q(column.column)} = {self._value(column, value, params)}" for column, value in values]
        pk = model.pk
        where = f"{q(pk.column)} = {self._value(pk, key, params)}"
        return Statement(f"UPDATE {q(model.table)} SET {', '.join(sets)} WHERE {where}", tuple(params.values))

    def delete(self, model: ModelDescriptor, pred: Predicate) -> Statement:
        params = _Params(self.dialect)
        where = self.predicate(pred, model, params)
        return Statement(f"DELETE FROM {self.dialect.quote(model.table)} WHERE {where}", tuple(params.values))


__all__ = [
    "Statement",
    "Selection",
    "SelectPlan",
    "SQLCompiler",
    "join_alias",
]
