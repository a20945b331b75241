"""SQLAlchemy engine factory and Connection bridge.

``SAConnectionBridge`` wraps a SQLAlchemy ``Session`` so the engine can run
its statements through any SQLAlchemy 2.0 engine, PostgreSQL in
production.  Statements arrive either with named ``:pN`` placeholders
(:class:`~recordspine.dialect.PostgreSQLDialect`) or with ``?`` qmarks
(:class:`~recordspine.dialect.SQLiteDialect`); qmarks are rewritten to
``:pN`` before being handed to ``text()``.

This module provides:

* ``create_engine_for``  -- SA engine from a URL with sane defaults.
* ``SAConnectionBridge`` -- Session → ``recordspine.protocols.Connection``.

Tags:
    recordspine, sqlalchemy, session, engine, bridge, connection
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine, Result
from sqlalchemy.orm import Session


def create_engine_for(
    url: str,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, SQLAlchemy logs all SQL.
    pool_size, max_overflow:
        Connection pool parameters (ignored for SQLite).
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


def _rewrite_qmarks(sql: str) -> str:
    """Turn positional ``?`` placeholders into ``:p0, :p1, ...``."""
    rewritten, idx = [], 0
    for ch in sql:
        if ch == "?":
            rewritten.append(f":p{idx}")
            idx += 1
        else:
            rewritten.append(ch)
    return "".join(rewritten)


class _ResultCursor:
    """DB-API style view over one SQLAlchemy ``Result``."""

    def __init__(self, result: Result) -> None:
        self._result = result

    @property
    def description(self) -> list[tuple[Any, ...]] | None:
        if not self._result.returns_rows:
            return None
        return [(k, None, None, None, None, None, None) for k in self._result.keys()]

    @property
    def rowcount(self) -> int:
        return self._result.rowcount  # type: ignore[attr-defined]

    @property
    def lastrowid(self) -> Any:
        return getattr(self._result, "lastrowid", None)

    def fetchone(self) -> tuple[Any, ...] | None:
        row = self._result.fetchone()
        return tuple(row) if row is not None else None

    def fetchmany(self, size: int = 1) -> list[tuple[Any, ...]]:
        return [tuple(r) for r in self._result.fetchmany(size)]

    def fetchall(self) -> list[tuple[Any, ...]]:
        return [tuple(r) for r in self._result.fetchall()]

    def close(self) -> None:
        self._result.close()


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like ``recordspine.protocols.Connection``.

    The session autobegins on first use.  Outside :meth:`begin` the
    executor commits after each write; :meth:`begin` first commits whatever
    implicit read transaction is open, then starts an explicit one.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._last: _ResultCursor | None = None

    # --- execute ---

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> _ResultCursor:
        if parameters:
            if "?" in sql:
                sql = _rewrite_qmarks(sql)
            mapping = {f"p{i}": v for i, v in enumerate(parameters)}
            result = self._session.execute(text(sql), mapping)
        else:
            result = self._session.execute(text(sql))
        self._last = _ResultCursor(result)
        return self._last

    # --- fetch ---

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._last.fetchone() if self._last is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        return self._last.fetchall() if self._last is not None else []

    # --- transaction ---

    def begin(self) -> None:
        if self._session.in_transaction():
            self._session.commit()
        self._session.begin()

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def close(self) -> None:
        self._session.close()

    # --- properties ---

    @property
    def session(self) -> Session:
        """Access the underlying SA session."""
        return self._session


__all__ = [
    "create_engine_for",
    "SAConnectionBridge",
]
