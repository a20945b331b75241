"""Schema metadata: the read-only description of every mapped model.

A :class:`Schema` is built once, from descriptors that are either generated
or written by hand, and then injected into every :class:`~recordspine.store.Store`.
Nothing in the engine mutates it afterwards.

Architecture::

    Schema
    └── ModelDescriptor "User" (table "users", record_type User)
        ├── FieldDescriptor id     SCALAR
        ├── FieldDescriptor tags   ARRAY
        ├── FieldDescriptor meta   JSON
        ├── FieldDescriptor stamps INLINE ── created_at, updated_at
        ├── PrimaryKeyDescriptor id (auto_increment)
        └── RelationshipDescriptor posts ONE_TO_MANY INVERSE → "Post" (fk user_id)

Linking resolves relationship targets, flattens inline fields into
``columns`` and records the foreign-key columns that no field maps to
(*virtual columns*).  Linking also validates the metadata and raises
:class:`~recordspine.errors.SchemaError` on any inconsistency.

Tags:
    schema, metadata, descriptors, recordspine
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from recordspine.errors import SchemaError

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    """Convert ``CamelCase``/``camelCase`` names to ``snake_case``.

    >>> to_snake_case("UserProfile")
    'user_profile'
    >>> to_snake_case("HTTPStatus")
    'http_status'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def is_empty_identifier(value: Any) -> bool:
    """True when a primary key value counts as unset."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, str)):
        return not value
    if isinstance(value, uuid.UUID):
        return value.int == 0
    return False


class FieldKind(str, Enum):
    """Closed classification of how a field is stored and decoded."""

    SCALAR = "scalar"
    ARRAY = "array"
    JSON = "json"
    INLINE = "inline"


class RelationshipKind(str, Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"


class Direction(str, Enum):
    """Which table holds the foreign key.

    FORWARD: the owner's table, referencing the target's primary key.
    INVERSE: the target's table, referencing the owner's primary key.
    """

    FORWARD = "forward"
    INVERSE = "inverse"


@dataclass(frozen=True)
class FieldDescriptor:
    """One mapped field.

    ``path`` is the attribute path from the record to the value.  It is
    ``(name,)`` for top-level fields and ``(inline_name, name)`` for fields
    flattened out of an INLINE field.
    """

    name: str
    kind: FieldKind = FieldKind.SCALAR
    column: str = ""
    nullable: bool = False
    python_type: type | None = None
    fields: tuple[FieldDescriptor, ...] = ()
    path: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", to_snake_case(self.name))
        if not self.path:
            object.__setattr__(self, "path", (self.name,))
        if self.kind is FieldKind.INLINE and not self.fields:
            raise SchemaError(f"Inline field {self.name!r} declares no fields")
        if self.kind is not FieldKind.INLINE and self.fields:
            raise SchemaError(f"Only inline fields may declare fields, got {self.name!r}")


@dataclass(frozen=True)
class PrimaryKeyDescriptor:
    field: str
    auto_increment: bool = False


@dataclass(frozen=True)
class RelationshipDescriptor:
    """A relationship slot on the owning model.

    ``target`` names the related model.  :class:`Schema` resolves it to the
    ModelDescriptor available as :attr:`target_model`.
    """

    name: str
    kind: RelationshipKind
    target: str
    direction: Direction = Direction.INVERSE
    foreign_key: str = ""
    target_model: ModelDescriptor = field(init=False, repr=False, compare=False, default=None)  # type: ignore[assignment]

    @property
    def is_many(self) -> bool:
        return self.kind is RelationshipKind.ONE_TO_MANY


@dataclass(frozen=True)
class ModelDescriptor:
    """Static description of one mapped record type."""

    name: str
    table: str
    record_type: Callable[[], Any]
    fields: tuple[FieldDescriptor, ...]
    primary_key: PrimaryKeyDescriptor
    relationships: tuple[RelationshipDescriptor, ...] = ()

    # Derived by Schema linking
    columns: tuple[FieldDescriptor, ...] = field(init=False, repr=False, compare=False, default=())
    virtual_columns: tuple[FieldDescriptor, ...] = field(init=False, repr=False, compare=False, default=())

    @property
    def foreign_keys(self) -> tuple[str, ...]:
        """Names of the virtual foreign-key columns on this table."""
        return tuple(v.column for v in self.virtual_columns)

    def virtual_column(self, name: str) -> FieldDescriptor | None:
        for v in self.virtual_columns:
            if v.column == name:
                return v
        return None

    @property
    def pk(self) -> FieldDescriptor:
        """The field that holds the primary key."""
        return self.field(self.primary_key.field)

    def field(self, name: str) -> FieldDescriptor:
        """Look up a column-backed field by attribute name or column name."""
        for col in self.columns:
            if col.name == name or col.column == name:
                return col
        raise SchemaError(f"Model {self.name!r} has no field {name!r}")

    def find_field(self, name: str) -> FieldDescriptor | None:
        for col in self.columns:
            if col.name == name or col.column == name:
                return col
        return None

    def relationship(self, name: str) -> RelationshipDescriptor:
        for rel in self.relationships:
            if rel.name == name:
                return rel
        raise SchemaError(f"Model {self.name!r} has no relationship {name!r}")

    def has_column(self, column: str) -> bool:
        return self.find_field(column) is not None or column in self.foreign_keys

    def new_record(self) -> Any:
        """Build an empty record of this model's type."""
        return self.record_type()


def _flatten(fields: Iterable[FieldDescriptor], prefix: tuple[str, ...] = ()) -> list[FieldDescriptor]:
    out: list[FieldDescriptor] = []
    for f in fields:
        path = prefix + (f.name,)
        if f.kind is FieldKind.INLINE:
            out.extend(_flatten(f.fields, path))
        else:
            out.append(replace(f, path=path))
    return out


class Schema:
    """The linked, validated set of ModelDescriptors.

    Example::

        schema = Schema([user_model, post_model])
        schema.model("User").relationship("posts").target_model.table
        # 'posts'
    """

    def __init__(self, models: Iterable[ModelDescriptor]):
        self._models: dict[str, ModelDescriptor] = {}
        self._by_type: dict[Any, ModelDescriptor] = {}
        for model in models:
            if model.name in self._models:
                raise SchemaError(f"Duplicate model {model.name!r}")
            self._models[model.name] = model
            self._by_type[model.record_type] = model
        self._link()

    def __iter__(self):
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, key: object) -> bool:
        return key in self._models or key in self._by_type

    def model(self, key: str | type | ModelDescriptor) -> ModelDescriptor:
        """Look up a model by name, record type, or descriptor."""
        if isinstance(key, ModelDescriptor):
            key = key.name
        if isinstance(key, str):
            found = self._models.get(key)
        else:
            found = self._by_type.get(key)
        if found is None:
            raise SchemaError(f"Unknown model {key!r}")
        return found

    # -- Linking -----------------------------------------------------------

    def _link(self) -> None:
        for model in self._models.values():
            columns = _flatten(model.fields)
            seen: set[str] = set()
            for col in columns:
                if col.column in seen:
                    raise SchemaError(f"Duplicate column {col.column!r} in table {model.table!r}")
                seen.add(col.column)
            object.__setattr__(model, "columns", tuple(columns))

            if model.find_field(model.primary_key.field) is None:
                raise SchemaError(
                    f"Primary key {model.primary_key.field!r} is not a field of {model.name!r}"
                )

        virtual: dict[str, list[FieldDescriptor]] = {name: [] for name in self._models}
        owned: dict[str, set[str]] = {name: set() for name in self._models}

        for model in self._models.values():
            names: set[str] = set()
            for rel in model.relationships:
                if rel.name in names:
                    raise SchemaError(f"Duplicate relationship {rel.name!r} on {model.name!r}")
                names.add(rel.name)

                target = self._models.get(rel.target)
                if target is None:
                    raise SchemaError(
                        f"Relationship {model.name}.{rel.name} targets unknown model {rel.target!r}"
                    )
                if rel.direction is Direction.FORWARD and rel.is_many:
                    raise SchemaError(
                        f"Relationship {model.name}.{rel.name}: one-to-many must be INVERSE"
                    )

                if rel.direction is Direction.FORWARD:
                    fk = rel.foreign_key or f"{to_snake_case(target.name)}_id"
                    holder, referenced = model, target
                else:
                    fk = rel.foreign_key or f"{to_snake_case(model.name)}_id"
                    holder, referenced = target, model

                if fk in owned[holder.name]:
                    raise SchemaError(
                        f"Foreign key {fk!r} is used by more than one relationship on {holder.table!r}"
                    )
                owned[holder.name].add(fk)
                if holder.find_field(fk) is None:
                    # Typed like the key it references so values encode the same way.
                    ref = referenced.pk
                    virtual[holder.name].append(
                        FieldDescriptor(fk, column=fk, nullable=True, python_type=ref.python_type)
                    )

                object.__setattr__(rel, "foreign_key", fk)
                object.__setattr__(rel, "target_model", target)

        for name, fks in virtual.items():
            object.__setattr__(self._models[name], "virtual_columns", tuple(fks))


__all__ = [
    "FieldKind",
    "RelationshipKind",
    "Direction",
    "FieldDescriptor",
    "PrimaryKeyDescriptor",
    "RelationshipDescriptor",
    "ModelDescriptor",
    "Schema",
    "to_snake_case",
    "is_empty_identifier",
]
