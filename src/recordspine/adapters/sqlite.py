"""SQLite connection adapter.

Wraps :class:`sqlite3.Connection` to satisfy the
:class:`~recordspine.protocols.Connection` protocol.

The connection runs in autocommit mode (``isolation_level=None``), so a
statement outside :meth:`SqliteConnection.begin` is committed on its own,
and :meth:`begin` issues an explicit ``BEGIN`` that lasts until
:meth:`commit` or :meth:`rollback`.

Every :meth:`execute` returns a new cursor, so a result set can keep
iterating its cursor while the relationship loader runs child queries on
the same connection.

Usage::

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
    conn.begin()
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.commit()
"""

from __future__ import annotations

import sqlite3
from typing import Any

from recordspine.errors import DatabaseConnectionError


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol."""

    def __init__(self, path: str = ":memory:", *, timeout: float = 5.0) -> None:
        uri = path.startswith("file:")
        try:
            raw = sqlite3.connect(
                path,
                timeout=timeout,
                check_same_thread=False,
                isolation_level=None,
                uri=uri,
            )
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Failed to connect to SQLite: {e}", cause=e) from e
        raw.execute("PRAGMA foreign_keys = ON")
        self._conn = raw
        self._last: sqlite3.Cursor | None = None

    @classmethod
    def from_connection(cls, raw: sqlite3.Connection) -> SqliteConnection:
        """Wrap an already open ``sqlite3.Connection``."""
        adapter = cls.__new__(cls)
        adapter._conn = raw
        adapter._last = None
        return adapter

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self._last = self._conn.execute(sql, params)
        return self._last

    def fetchone(self) -> Any:
        return self._last.fetchone() if self._last is not None else None

    def fetchall(self) -> list:
        return self._last.fetchall() if self._last is not None else []

    def begin(self) -> None:
        self._conn.execute("BEGIN")

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


__all__ = [
    "SqliteConnection",
]
