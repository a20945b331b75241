"""
Structural protocols at the engine's boundaries.

Manifesto:
    The engine depends on shapes, not drivers.  Anything that looks like a
    DB-API connection can execute statements; anything that implements the
    record methods can be persisted.

Architecture:
    ::

        protocols.py
        ├── Cursor      : what Connection.execute() returns
        ├── Connection  : sync statement execution + transaction control
        └── Record      : the per-type capability the Store drives

    Implementations:
        Connection → adapters.sqlite.SqliteConnection,
                     adapters.sqlalchemy.SAConnectionBridge
        Record     → model.Model (attribute access), or hand-written classes

Tags:
    protocol, connection, cursor, record, recordspine
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from recordspine.schema import FieldDescriptor, RelationshipDescriptor


@runtime_checkable
class Cursor(Protocol):
    """DB-API 2.0 subset the engine reads results through."""

    @property
    def description(self) -> Any: ...

    @property
    def rowcount(self) -> int: ...

    @property
    def lastrowid(self) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchmany(self, size: int = ...) -> list: ...

    def fetchall(self) -> list: ...

    def close(self) -> None: ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface.

    ``execute`` must return a fresh cursor per call: the result set keeps a
    parent cursor open while the relationship loader runs child queries on
    the same connection.

    Examples:
        >>> cursor = conn.execute("SELECT id FROM users WHERE id = ?", (1,))
        >>> cursor.fetchone()
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute one statement and return its cursor."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from the last statement."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from the last statement."""
        ...

    def begin(self) -> None:
        """Open an explicit transaction."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


@runtime_checkable
class Record(Protocol):
    """Capability every persisted application type implements.

    Hooks (``before_insert`` ... ``after_delete``) are optional and looked
    up by name, so they are not part of this protocol.
    """

    def get_primary_key(self, pk: FieldDescriptor) -> Any: ...

    def set_primary_key(self, pk: FieldDescriptor, value: Any) -> None: ...

    def get_value(self, column: FieldDescriptor) -> Any: ...

    def set_value(self, column: FieldDescriptor, value: Any) -> None: ...

    def get_virtual(self, column: str) -> Any: ...

    def set_virtual(self, column: str, value: Any) -> None: ...

    def get_relationship(self, rel: RelationshipDescriptor) -> Any: ...

    def set_relationship(self, rel: RelationshipDescriptor, value: Any) -> None: ...


__all__ = [
    "Cursor",
    "Connection",
    "Record",
]
