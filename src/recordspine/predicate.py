"""Composable predicate and ordering expressions.

Predicates are immutable trees.  Leaves are :class:`Condition` nodes
(column, operator, value); inner nodes are :class:`And`, :class:`Or` and
:class:`Not`.  Nothing here touches a database: the
:class:`~recordspine.compiler.SQLCompiler` renders a tree into SQL text
with placeholders for every literal.

Examples:
    >>> from recordspine import predicate as p
    >>> adults = p.gte("age", 18) & ~p.is_null("email")
    >>> tagged = p.json_contains_any_key("meta", ["vip", "beta"])
    >>> query_filter = adults | tagged

    Column helpers read the same way:

    >>> from recordspine.predicate import col
    >>> col("name").like("A%") & col("age").in_([30, 40])

JSON operators are structural: ``json_contains_any_key`` is true when the
document stored in the column exposes at least one of the given top-level
keys, whatever else the document holds.

Tags:
    predicate, expression-tree, query, recordspine
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    NOT_IN = "not_in"
    JSON_CONTAINS = "json_contains"
    JSON_CONTAINS_ANY_KEY = "json_contains_any_key"
    JSON_CONTAINS_ALL_KEYS = "json_contains_all_keys"
    JSON_HAS_PATH = "json_has_path"
    ARRAY_CONTAINS = "array_contains"
    ARRAY_OVERLAP = "array_overlap"


class Predicate:
    """Base of every predicate node; supports ``&``, ``|`` and ``~``."""

    __slots__ = ()

    def __and__(self, other: Predicate) -> Predicate:
        return and_(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return or_(self, other)

    def __invert__(self) -> Predicate:
        return not_(self)


@dataclass(frozen=True)
class Condition(Predicate):
    column: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class And(Predicate):
    children: tuple[Predicate, ...]


@dataclass(frozen=True)
class Or(Predicate):
    children: tuple[Predicate, ...]


@dataclass(frozen=True)
class Not(Predicate):
    child: Predicate


# =============================================================================
# Combinators
# =============================================================================


def _combine(kind: type[And] | type[Or], predicates: Iterable[Predicate | None]) -> Predicate | None:
    flat: list[Predicate] = []
    for pred in predicates:
        if pred is None:
            continue
        if not isinstance(pred, Predicate):
            raise TypeError(f"Expected a Predicate, got {type(pred).__name__}")
        if isinstance(pred, kind):
            flat.extend(pred.children)
        else:
            flat.append(pred)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return kind(tuple(flat))


def and_(*predicates: Predicate | None) -> Predicate | None:
    """AND the given predicates; ``None`` entries are skipped."""
    return _combine(And, predicates)


def or_(*predicates: Predicate | None) -> Predicate | None:
    """OR the given predicates; ``None`` entries are skipped."""
    return _combine(Or, predicates)


def not_(predicate: Predicate) -> Predicate:
    if isinstance(predicate, Not):
        return predicate.child
    return Not(predicate)


# =============================================================================
# Leaf constructors
# =============================================================================


def eq(column: str, value: Any) -> Condition:
    return Condition(column, Operator.EQ, value)


def neq(column: str, value: Any) -> Condition:
    return Condition(column, Operator.NEQ, value)


def gt(column: str, value: Any) -> Condition:
    return Condition(column, Operator.GT, value)


def gte(column: str, value: Any) -> Condition:
    return Condition(column, Operator.GTE, value)


def lt(column: str, value: Any) -> Condition:
    return Condition(column, Operator.LT, value)


def lte(column: str, value: Any) -> Condition:
    return Condition(column, Operator.LTE, value)


def is_null(column: str) -> Condition:
    return Condition(column, Operator.IS_NULL)


def is_not_null(column: str) -> Condition:
    return Condition(column, Operator.IS_NOT_NULL)


def like(column: str, pattern: str) -> Condition:
    return Condition(column, Operator.LIKE, pattern)


def ilike(column: str, pattern: str) -> Condition:
    """Case-insensitive LIKE."""
    return Condition(column, Operator.ILIKE, pattern)


def in_(column: str, values: Iterable[Any]) -> Condition:
    return Condition(column, Operator.IN, tuple(values))


def not_in(column: str, values: Iterable[Any]) -> Condition:
    return Condition(column, Operator.NOT_IN, tuple(values))


def json_contains(column: str, document: Any) -> Condition:
    """True when the stored document structurally contains ``document``."""
    return Condition(column, Operator.JSON_CONTAINS, document)


def json_contains_any_key(column: str, keys: Iterable[str]) -> Condition:
    return Condition(column, Operator.JSON_CONTAINS_ANY_KEY, tuple(keys))


def json_contains_all_keys(column: str, keys: Iterable[str]) -> Condition:
    return Condition(column, Operator.JSON_CONTAINS_ALL_KEYS, tuple(keys))


def json_has_path(column: str, path: Sequence[str | int]) -> Condition:
    """True when the document has a value at ``path`` (keys and array indexes)."""
    return Condition(column, Operator.JSON_HAS_PATH, tuple(path))


def array_contains(column: str, values: Iterable[Any]) -> Condition:
    """True when the array column holds every one of ``values``."""
    return Condition(column, Operator.ARRAY_CONTAINS, tuple(values))


def array_overlap(column: str, values: Iterable[Any]) -> Condition:
    """True when the array column holds at least one of ``values``."""
    return Condition(column, Operator.ARRAY_OVERLAP, tuple(values))


# =============================================================================
# Ordering
# =============================================================================


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


def asc(column: str) -> Order:
    return Order(column)


def desc(column: str) -> Order:
    return Order(column, descending=True)


# =============================================================================
# Column helper
# =============================================================================


@dataclass(frozen=True)
class col:
    """Fluent builder bound to one column name."""

    name: str

    def eq(self, value: Any) -> Condition:
        return eq(self.name, value)

    def neq(self, value: Any) -> Condition:
        return neq(self.name, value)

    def gt(self, value: Any) -> Condition:
        return gt(self.name, value)

    def gte(self, value: Any) -> Condition:
        return gte(self.name, value)

    def lt(self, value: Any) -> Condition:
        return lt(self.name, value)

    def lte(self, value: Any) -> Condition:
        return lte(self.name, value)

    def is_null(self) -> Condition:
        return is_null(self.name)

    def is_not_null(self) -> Condition:
        return is_not_null(self.name)

    def like(self, pattern: str) -> Condition:
        return like(self.name, pattern)

    def ilike(self, pattern: str) -> Condition:
        return ilike(self.name, pattern)

    def in_(self, values: Iterable[Any]) -> Condition:
        return in_(self.name, values)

    def not_in(self, values: Iterable[Any]) -> Condition:
        return not_in(self.name, values)

    def asc(self) -> Order:
        return asc(self.name)

    def desc(self) -> Order:
        return desc(self.name)


__all__ = [
    "Operator",
    "Predicate",
    "Condition",
    "And",
    "Or",
    "Not",
    "and_",
    "or_",
    "not_",
    "eq",
    "neq",
    "gt",
    "gte",
    "lt",
    "lte",
    "is_null",
    "is_not_null",
    "like",
    "ilike",
    "in_",
    "not_in",
    "json_contains",
    "json_contains_any_key",
    "json_contains_all_keys",
    "json_has_path",
    "array_contains",
    "array_overlap",
    "Order",
    "asc",
    "desc",
    "col",
]
