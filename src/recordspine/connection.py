"""Connection factory: create connections and executors from URL strings.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/app.db`` or ``/tmp/app.db``         SQLite file
``postgresql``      ``postgresql://user:pw@host:port/db``        PostgreSQL
``postgres``        ``postgres://user:pw@host:port/db``          PostgreSQL
==================  ==========================================  ============

Usage
-----
::

    from recordspine.connection import create_connection, create_executor

    conn, info = create_connection("sqlite:///app.db")
    print(info)
    # ConnectionInfo(backend='sqlite', persistent=True, path='/srv/app.db')

    # Executor with the matching dialect, URL from RECORDSPINE_DATABASE_URL
    executor = create_executor()

Tables are never created here; the schema must already exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from recordspine.adapters.sqlite import SqliteConnection
from recordspine.dialect import get_dialect
from recordspine.errors import DatabaseConnectionError
from recordspine.executor import Executor
from recordspine.logging import get_logger
from recordspine.settings import get_settings

logger = get_logger(__name__)


# ── ConnectionInfo ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a database connection."""

    backend: str
    """Backend identifier: ``"sqlite"`` or ``"postgresql"``."""

    persistent: bool
    """Whether data survives process exit."""

    url: str
    """The original URL or path used to create the connection."""

    resolved_path: str | None = None
    """For file-based SQLite, the resolved absolute path."""

    def __repr__(self) -> str:
        parts = [f"backend={self.backend!r}", f"persistent={self.persistent}"]
        if self.resolved_path:
            parts.append(f"path={self.resolved_path!r}")
        else:
            parts.append(f"url={self.url!r}")
        return f"ConnectionInfo({', '.join(parts)})"

    @property
    def is_sqlite(self) -> bool:
        return self.backend == "sqlite"

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgresql"


# ── Backends ─────────────────────────────────────────────────────────────


def _create_sqlite_memory() -> tuple[Any, ConnectionInfo]:
    conn = SqliteConnection(":memory:")
    return conn, ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")


def _create_sqlite_file(path_str: str) -> tuple[Any, ConnectionInfo]:
    path = Path(path_str)
    path.parent.mkdir(parents=True, exist_ok=True)
    resolved = str(path.resolve())
    conn = SqliteConnection(resolved)
    return conn, ConnectionInfo(backend="sqlite", persistent=True, url=path_str, resolved_path=resolved)


def _create_postgresql(url: str, *, echo: bool = False) -> tuple[Any, ConnectionInfo]:
    """PostgreSQL through a SQLAlchemy session bridge."""
    from sqlalchemy.orm import Session

    from recordspine.adapters.sqlalchemy import SAConnectionBridge, create_engine_for

    try:
        engine = create_engine_for(url, echo=echo)
        session = Session(bind=engine)
    except Exception as e:
        raise DatabaseConnectionError(f"Cannot connect to PostgreSQL: {e}", cause=e) from e
    return SAConnectionBridge(session), ConnectionInfo(backend="postgresql", persistent=True, url=url)


# ── URL parsing ──────────────────────────────────────────────────────────


def normalize_database_url(url: str) -> str:
    """Rewrite the legacy ``postgres`` scheme to the ``postgresql`` name SQLAlchemy loads.

    Examples:
        >>> normalize_database_url("postgres://localhost/db")
        'postgresql://localhost/db'

        >>> normalize_database_url("postgres+psycopg://localhost/db")
        'postgresql+psycopg://localhost/db'
    """
    if url.startswith(("postgres://", "postgres+")):
        url = "postgresql" + url[len("postgres"):]
    return url


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into ``(scheme, target)``.

    ``scheme`` is one of ``"memory"``, ``"sqlite"``, ``"postgresql"``,
    ``"file"``.
    """
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if db.startswith(("postgresql://", "postgres://", "postgresql+", "postgres+")):
        return "postgresql", normalize_database_url(db)

    return "file", db


# ── Factories ────────────────────────────────────────────────────────────


def create_connection(db: str | None = None, *, echo: bool = False) -> tuple[Any, ConnectionInfo]:
    """Create a connection from a URL, path, or keyword.

    Returns:
        ``(conn, info)``: the connection satisfies the
        :class:`~recordspine.protocols.Connection` protocol and ``info``
        describes the backend.
    """
    scheme, target = _parse_url(db)
    if scheme == "memory":
        conn, info = _create_sqlite_memory()
    elif scheme in ("sqlite", "file"):
        conn, info = _create_sqlite_file(target)
    else:
        conn, info = _create_postgresql(target, echo=echo)
    logger.debug("connection.created", backend=info.backend, persistent=info.persistent)
    return conn, info


def create_executor(db: str | None = None) -> Executor:
    """Executor for ``db`` (default: ``RECORDSPINE_DATABASE_URL``) with the right dialect."""
    settings = get_settings()
    conn, info = create_connection(db or settings.database_url)
    return Executor(conn, get_dialect(info.backend), echo=settings.echo_sql)


__all__ = [
    "ConnectionInfo",
    "create_connection",
    "create_executor",
    "normalize_database_url",
]
