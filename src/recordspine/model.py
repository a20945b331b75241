"""Record base class and per-record persistence state.

:class:`Model` implements the :class:`~recordspine.protocols.Record`
capability by plain attribute access, so application types only need to
subclass it (dataclasses work too) and be constructible without arguments::

    @dataclass
    class User(Model):
        id: int = 0
        name: str = ""
        posts: list[Post] = field(default_factory=list)

The engine keeps its bookkeeping in a :class:`RecordState` stored on the
instance under ``__recordspine_state__``.  It is created lazily, so
dataclass ``__init__`` methods never have to call ``super().__init__()``.

Lifecycle hooks are *not* defined on ``Model``: the Store checks for each
hook by name, and the mere presence of an ``after_*`` method promotes
writes into a transaction.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any

from recordspine.schema import FieldDescriptor, FieldKind, RelationshipDescriptor

_STATE_ATTR = "__recordspine_state__"

BEFORE_HOOKS = ("before_save", "before_insert", "before_update", "before_delete")
AFTER_HOOKS = ("after_insert", "after_update", "after_save", "after_delete")
HOOKS = BEFORE_HOOKS + AFTER_HOOKS


@dataclass
class RecordState:
    """Engine-managed state of one record instance."""

    persisted: bool = False
    writable: bool = True
    virtual: dict[str, Any] = field(default_factory=dict)


def state_of(record: Any) -> RecordState:
    """Return (creating on first use) the state attached to ``record``."""
    state = record.__dict__.get(_STATE_ATTR)
    if state is None:
        state = RecordState()
        record.__dict__[_STATE_ATTR] = state
    return state


def has_hook(record: Any, name: str) -> bool:
    """Capability check for one lifecycle hook."""
    return callable(getattr(record, name, None))


def has_after_hooks(record: Any) -> bool:
    return any(has_hook(record, name) for name in AFTER_HOOKS)


class Model:
    """Attribute-backed implementation of the Record capability."""

    # -- Primary key -------------------------------------------------------

    def get_primary_key(self, pk: FieldDescriptor) -> Any:
        return self.get_value(pk)

    def set_primary_key(self, pk: FieldDescriptor, value: Any) -> None:
        self.set_value(pk, value)

    # -- Columns -----------------------------------------------------------

    def get_value(self, column: FieldDescriptor) -> Any:
        value: Any = self
        for attr in column.path:
            value = getattr(value, attr)
        return value

    def set_value(self, column: FieldDescriptor, value: Any) -> None:
        target: Any = self
        for attr in column.path[:-1]:
            target = getattr(target, attr)
        setattr(target, column.path[-1], value)

    # -- Virtual (unmapped foreign key) columns ----------------------------

    def get_virtual(self, column: str) -> Any:
        return state_of(self).virtual.get(column)

    def set_virtual(self, column: str, value: Any) -> None:
        state_of(self).virtual[column] = value

    # -- Relationship slots ------------------------------------------------

    def get_relationship(self, rel: RelationshipDescriptor) -> Any:
        return getattr(self, rel.name, None)

    def set_relationship(self, rel: RelationshipDescriptor, value: Any) -> None:
        setattr(self, rel.name, value)

    # -- State -------------------------------------------------------------

    def is_persisted(self) -> bool:
        return state_of(self).persisted

    def is_writable(self) -> bool:
        return state_of(self).writable


# =============================================================================
# Timestamps
# =============================================================================


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Timestamps:
    """Creation/update timestamps, embedded inline in the owning table."""

    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    def touch(self) -> None:
        now = _utcnow()
        if self.created_at is None:
            self.created_at = now
        self.updated_at = now


TIMESTAMP_FIELDS = (
    FieldDescriptor("created_at", python_type=datetime.datetime, nullable=True),
    FieldDescriptor("updated_at", python_type=datetime.datetime, nullable=True),
)


def timestamps_field(name: str = "timestamps") -> FieldDescriptor:
    """INLINE field descriptor for a :class:`Timestamps` attribute."""
    return FieldDescriptor(name, kind=FieldKind.INLINE, fields=TIMESTAMP_FIELDS)


class TimestampedModel(Model):
    """Model whose ``timestamps`` attribute is refreshed before every save."""

    timestamps: Timestamps

    def before_save(self) -> None:
        self.timestamps.touch()


__all__ = [
    "Model",
    "RecordState",
    "state_of",
    "has_hook",
    "has_after_hooks",
    "HOOKS",
    "BEFORE_HOOKS",
    "AFTER_HOOKS",
    "Timestamps",
    "TimestampedModel",
    "timestamps_field",
]
