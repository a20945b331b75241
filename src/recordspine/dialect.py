"""SQL dialect abstraction.

A ``Dialect`` produces the backend-specific SQL fragments the compiler
needs (placeholders, quoting, pagination, JSON and array operators) and
converts Python values to and from their stored form.  The compiler never
spells backend syntax itself.

Architecture::

    SQLCompiler ──► Dialect.placeholder(i)        ?          :p0
                    Dialect.quote("user")         "user"     "user"
                    Dialect.json_contains_any_key json_type  jsonb_exists_any
                    Dialect.array_contains        json_each  @>
                    Dialect.encode / decode       JSON text  native jsonb / arrays
                         │                          │           │
                         ▼                          ▼           ▼
                                              SQLiteDialect  PostgreSQLDialect

SQLite has no array type, so ARRAY fields are stored as JSON text there and
array operators go through ``json_each``.  PostgreSQL statements are run
through SQLAlchemy ``text()``, hence the named ``:pN`` placeholders.

Examples:
    >>> from recordspine.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.placeholder(0), d.quote("order")
    ('?', '"order"')
    >>> get_dialect("postgresql").placeholder(2)
    ':p2'

Tags:
    dialect, sql, json, arrays, portability, recordspine
"""

from __future__ import annotations

import datetime
import json
import uuid
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from recordspine.errors import ConfigError, QueryError
from recordspine.schema import FieldDescriptor, FieldKind

Bind = Callable[[Any], str]
"""Adds one parameter to the statement being built and returns its placeholder."""


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Fragment methods take already-rendered column expressions and a
    :data:`Bind` callable, so every literal ends up as a bound parameter.
    """

    @property
    def name(self) -> str: ...

    @property
    def supports_returning(self) -> bool:
        """Whether INSERT ... RETURNING is used for generated keys."""
        ...

    def placeholder(self, index: int) -> str: ...

    def placeholders(self, count: int) -> str: ...

    def quote(self, identifier: str) -> str: ...

    def limit_offset(self, limit: str | None, offset: str | None) -> str: ...

    def value_placeholder(self, column: FieldDescriptor, placeholder: str) -> str:
        """Wrap a placeholder when the column needs a cast (e.g. jsonb)."""
        ...

    def ilike(self, column: str, pattern: str) -> str: ...

    def json_contains(self, column: str, document: Any, bind: Bind) -> str: ...

    def json_contains_keys(self, column: str, keys: Sequence[str], bind: Bind, *, any_key: bool) -> str: ...

    def json_has_path(self, column: str, path: Sequence[str | int], bind: Bind) -> str: ...

    def array_contains(self, column: str, values: Sequence[Any], bind: Bind, *, any_value: bool) -> str: ...

    def encode(self, column: FieldDescriptor, value: Any) -> Any: ...

    def decode(self, column: FieldDescriptor, raw: Any) -> Any: ...


class BaseDialect:
    """Fragments that are the same on every supported backend."""

    name = "base"
    supports_returning = False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int, start: int = 0) -> str:
        return ", ".join(self.placeholder(start + i) for i in range(count))

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def limit_offset(self, limit: str | None, offset: str | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {limit}")
        if offset is not None:
            parts.append(f"OFFSET {offset}")
        return " ".join(parts)

    def value_placeholder(self, column: FieldDescriptor, placeholder: str) -> str:  # noqa: ARG002
        return placeholder

    def ilike(self, column: str, pattern: str) -> str:
        return f"{column} ILIKE {pattern}"

    def encode(self, column: FieldDescriptor, value: Any) -> Any:
        if value is None:
            return None
        if column.kind is FieldKind.JSON:
            return json.dumps(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    def decode(self, column: FieldDescriptor, raw: Any) -> Any:
        if raw is None:
            return None
        if column.kind is FieldKind.JSON and isinstance(raw, (str, bytes)):
            return json.loads(raw)
        if column.python_type is uuid.UUID and not isinstance(raw, uuid.UUID):
            return uuid.UUID(str(raw))
        return raw

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _sqlite_path(path: Sequence[str | int]) -> str:
    """Render a key/index path as a SQLite JSON path (``$."a"[0]``)."""
    out = ["$"]
    for step in path:
        if isinstance(step, int) and not isinstance(step, bool):
            out.append(f"[{step}]")
        else:
            key = str(step)
            if '"' in key:
                raise QueryError(f"JSON key {key!r} cannot contain double quotes")
            out.append(f'."{key}"')
    return "".join(out)


class SQLiteDialect(BaseDialect):
    """SQLite: ``?`` placeholders, JSON1 functions, arrays stored as JSON text."""

    name = "sqlite"

    def limit_offset(self, limit: str | None, offset: str | None) -> str:
        # SQLite only accepts OFFSET after a LIMIT clause.
        if offset is not None and limit is None:
            limit = "-1"
        return super().limit_offset(limit, offset)

    def ilike(self, column: str, pattern: str) -> str:
        return f"{column} LIKE {pattern}"

    # -- JSON ------------------------------------------------------------

    def json_contains(self, column: str, document: Any, bind: Bind) -> str:
        clauses: list[str] = []
        self._containment(column, (), document, bind, clauses, 0)
        return "(" + " AND ".join(clauses) + ")"

    def _containment(
        self,
        target: str,
        path: tuple[str | int, ...],
        expected: Any,
        bind: Bind,
        clauses: list[str],
        depth: int,
    ) -> None:
        """Append the conditions under which ``target`` at ``path`` contains ``expected``.

        ``target`` is a column or, inside an array element match, the
        ``value`` of a ``json_each`` row; nested aliases are numbered by depth.
        """
        json_path = _sqlite_path(path)
        if isinstance(expected, dict):
            clauses.append(f"json_type({target}, {bind(json_path)}) = 'object'")
            for key, value in expected.items():
                self._containment(target, path + (str(key),), value, bind, clauses, depth)
        elif isinstance(expected, (list, tuple)):
            clauses.append(f"json_type({target}, {bind(json_path)}) = 'array'")
            alias = f"je{depth}"
            for item in expected:
                source = f"json_each({target}, {bind(json_path)}) AS {alias}"
                if isinstance(item, (dict, list, tuple)):
                    inner: list[str] = []
                    self._containment(f"{alias}.value", (), item, bind, inner, depth + 1)
                    kind = "object" if isinstance(item, dict) else "array"
                    # Only parse element values of the right type; plain strings are not JSON text.
                    match = f"CASE WHEN {alias}.type = '{kind}' THEN (" + " AND ".join(inner) + ") ELSE 0 END"
                elif item is None:
                    match = f"{alias}.type = 'null'"
                else:
                    match = f"{alias}.value = {bind(item)}"
                clauses.append(f"EXISTS (SELECT 1 FROM {source} WHERE {match})")
        elif expected is None:
            clauses.append(f"json_type({target}, {bind(json_path)}) = 'null'")
        else:
            clauses.append(f"json_extract({target}, {bind(json_path)}) = {bind(expected)}")

    def json_contains_keys(self, column: str, keys: Sequence[str], bind: Bind, *, any_key: bool) -> str:
        if not keys:
            return "1 = 0" if any_key else "1 = 1"
        joiner = " OR " if any_key else " AND "
        tests = [f"json_type({column}, {bind(_sqlite_path((k,)))}) IS NOT NULL" for k in keys]
        return "(" + joiner.join(tests) + ")"

    def json_has_path(self, column: str, path: Sequence[str | int], bind: Bind) -> str:
        return f"json_type({column}, {bind(_sqlite_path(path))}) IS NOT NULL"

    # -- Arrays ------------------------------------------------------------

    def array_contains(self, column: str, values: Sequence[Any], bind: Bind, *, any_value: bool) -> str:
        if not values:
            return "1 = 0" if any_value else "1 = 1"
        joiner = " OR " if any_value else " AND "
        tests = [
            f"EXISTS (SELECT 1 FROM json_each({column}) AS je WHERE je.value = {bind(v)})"
            for v in values
        ]
        return "(" + joiner.join(tests) + ")"

    # -- Values ------------------------------------------------------------

    def encode(self, column: FieldDescriptor, value: Any) -> Any:
        if value is None:
            return None
        if column.kind is FieldKind.ARRAY:
            return json.dumps(list(value))
        if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
            return value.isoformat()
        return super().encode(column, value)

    def decode(self, column: FieldDescriptor, raw: Any) -> Any:
        if raw is None:
            return None
        if column.kind is FieldKind.ARRAY and isinstance(raw, (str, bytes)):
            return json.loads(raw)
        kind = column.python_type
        if kind is bool:
            return bool(raw)
        if kind is datetime.datetime and isinstance(raw, str):
            return datetime.datetime.fromisoformat(raw)
        if kind is datetime.date and isinstance(raw, str):
            return datetime.date.fromisoformat(raw)
        return super().decode(column, raw)


class PostgreSQLDialect(BaseDialect):
    """PostgreSQL through SQLAlchemy: ``:pN`` placeholders, jsonb and native arrays."""

    name = "postgresql"
    supports_returning = True

    def placeholder(self, index: int) -> str:
        return f":p{index}"

    def value_placeholder(self, column: FieldDescriptor, placeholder: str) -> str:
        if column.kind is FieldKind.JSON:
            return f"CAST({placeholder} AS jsonb)"
        return placeholder

    def json_contains(self, column: str, document: Any, bind: Bind) -> str:
        return f"{column} @> CAST({bind(json.dumps(document))} AS jsonb)"

    def json_contains_keys(self, column: str, keys: Sequence[str], bind: Bind, *, any_key: bool) -> str:
        func = "jsonb_exists_any" if any_key else "jsonb_exists_all"
        return f"{func}({column}, {bind(list(keys))})"

    def json_has_path(self, column: str, path: Sequence[str | int], bind: Bind) -> str:
        return f"({column} #> {bind([str(step) for step in path])}) IS NOT NULL"

    def array_contains(self, column: str, values: Sequence[Any], bind: Bind, *, any_value: bool) -> str:
        op = "&&" if any_value else "@>"
        return f"{column} {op} {bind(list(values))}"

    def encode(self, column: FieldDescriptor, value: Any) -> Any:
        if value is None:
            return None
        if column.kind is FieldKind.ARRAY:
            return list(value)
        return super().encode(column, value)


# =========================================================================
# Registry / Factory
# =========================================================================

_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ConfigError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ConfigError(
            f"Unknown dialect '{db_type}'. Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party drivers, test doubles)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Bind",
    "Dialect",
    "BaseDialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
]
