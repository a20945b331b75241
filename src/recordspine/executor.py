"""Statement execution and transaction control.

Provides :class:`Executor`, the engine-facing execution capability.  It
pairs a :class:`~recordspine.protocols.Connection` with a
:class:`~recordspine.dialect.Dialect` so the Store, result sets and the
relationship loader never touch a driver directly.

Architecture::

    ┌──────────────────────────────────────────────────────────────┐
    │                          Executor                            │
    │                                                              │
    │   conn: Connection         ← protocols.Connection            │
    │   dialect: Dialect         ← dialect.SQLiteDialect default   │
    │                                                              │
    │   query(stmt)              → cursor                          │
    │   execute(stmt)            → affected rows                   │
    │   insert(stmt, returning)  → generated key                   │
    │   transaction()            → context manager, reentrant      │
    │   mark_rollback_only(err)  → outer block can only roll back  │
    │   on_rollback(fn)          → undo callback for memory state  │
    └──────────────────────────────────────────────────────────────┘

Outside a transaction every write is committed straight away.  Inside
one, nothing is committed until the outermost :meth:`Executor.transaction`
block exits.  A nested block reuses the open transaction.

Tags:
    executor, transaction, connection, statement, recordspine
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from recordspine.adapters.sqlite import SqliteConnection
from recordspine.compiler import Statement
from recordspine.dialect import Dialect, SQLiteDialect
from recordspine.errors import ExecutionError, RecordSpineError, TransactionError
from recordspine.logging import get_logger
from recordspine.protocols import Connection

logger = get_logger(__name__)


class Executor:
    """Runs compiled statements on one connection.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.  A raw
              ``sqlite3.Connection`` is wrapped in :class:`SqliteConnection`.
        dialect: SQL dialect.  Defaults to :class:`SQLiteDialect`.
        echo: Log every statement at INFO instead of DEBUG.
    """

    def __init__(self, conn: Connection | sqlite3.Connection, dialect: Dialect | None = None, *, echo: bool = False) -> None:
        if isinstance(conn, sqlite3.Connection):
            conn = SqliteConnection.from_connection(conn)
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.echo = echo
        self._depth = 0
        self._undo: list[Callable[[], None]] = []
        self._failed: BaseException | None = None

    # -- Statements --------------------------------------------------------

    def _run(self, stmt: Statement) -> Any:
        log = logger.info if self.echo else logger.debug
        log("sql.execute", sql=stmt.sql, params=len(stmt.params))
        try:
            return self.conn.execute(stmt.sql, stmt.params)
        except RecordSpineError:
            raise
        except Exception as e:
            raise ExecutionError(f"Statement failed: {e}", cause=e).with_context(statement=stmt.sql) from e

    def _autocommit(self) -> None:
        if self._depth:
            return
        try:
            self.conn.commit()
        except Exception as e:
            raise TransactionError(f"Commit failed: {e}", cause=e) from e

    def query(self, stmt: Statement) -> Any:
        """Run a read and return its open cursor."""
        return self._run(stmt)

    def execute(self, stmt: Statement) -> int:
        """Run a write and return the number of affected rows."""
        cursor = self._run(stmt)
        count = cursor.rowcount
        self._autocommit()
        return count if count is not None and count >= 0 else 0

    def insert(self, stmt: Statement, returning: bool = False) -> Any:
        """Run an INSERT and return the generated key, if any.

        With ``returning`` the statement ends in ``RETURNING <pk>`` and the
        key is read from the result row; otherwise the driver's
        ``lastrowid`` is used.
        """
        cursor = self._run(stmt)
        if returning:
            row = cursor.fetchone()
            key = row[0] if row is not None else None
        else:
            key = cursor.lastrowid
        self._autocommit()
        return key

    # -- Transactions ------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def begin(self) -> None:
        if self._depth == 0:
            logger.debug("transaction.begin")
            try:
                self.conn.begin()
            except Exception as e:
                raise ExecutionError(f"Could not begin transaction: {e}", cause=e) from e
            self._undo = []
            self._failed = None
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth:
            return
        if self._failed is not None:
            failed = self._failed
            self._depth = 1
            self.rollback(failed)
            raise TransactionError(
                f"Transaction rolled back: a nested block failed with {failed!r}", cause=failed
            )
        try:
            self.conn.commit()
        except Exception as e:
            logger.error("transaction.commit_failed", error=str(e))
            self._restore()
            try:
                self.conn.rollback()
            except Exception as rb:
                raise TransactionError(f"Rollback after failed commit failed: {rb}", cause=rb, original=e) from rb
            raise TransactionError(f"Commit failed: {e}", cause=e) from e
        self._undo = []
        logger.debug("transaction.commit")

    def rollback(self, original: BaseException | None = None) -> None:
        """Roll back the whole transaction, however deeply nested."""
        if self._depth == 0:
            return
        self._depth = 0
        self._failed = None
        self._restore()
        try:
            self.conn.rollback()
        except Exception as e:
            logger.error("transaction.rollback_failed", error=str(e), original=repr(original))
            raise TransactionError(f"Rollback failed: {e}", cause=e, original=original) from e
        logger.debug("transaction.rollback")

    def on_rollback(self, fn: Callable[[], None]) -> None:
        """Register an undo step for in-memory state changed in this transaction."""
        if self._depth:
            self._undo.append(fn)

    def _restore(self) -> None:
        undo, self._undo = self._undo, []
        for fn in reversed(undo):
            fn()

    @property
    def rollback_only(self) -> bool:
        """True once a nested block has failed; the outer block can only roll back."""
        return self._failed is not None

    def mark_rollback_only(self, error: BaseException) -> None:
        if self._depth and self._failed is None:
            logger.debug("transaction.rollback_only", error=repr(error))
            self._failed = error

    @contextmanager
    def transaction(self) -> Iterator[Executor]:
        """Transaction context manager; reuses an already open transaction.

        An exception leaving a reused block marks the transaction
        rollback-only, so the outermost block rolls back even when the
        caller catches the exception in between.
        """
        if self._depth:
            try:
                yield self
            except BaseException as e:
                self.mark_rollback_only(e)
                raise
            return
        self.begin()
        try:
            yield self
        except BaseException as e:
            self.rollback(e)
            raise
        self.commit()

    def __repr__(self) -> str:
        return f"Executor({self.conn!r}, {self.dialect!r})"


__all__ = [
    "Executor",
]
