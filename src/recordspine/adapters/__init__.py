"""Connection adapters satisfying :class:`recordspine.protocols.Connection`.

sqlite       SqliteConnection (standard library ``sqlite3``)
sqlalchemy   SAConnectionBridge over a SQLAlchemy 2.0 ``Session`` (PostgreSQL)

Tags:
    recordspine, adapters, connection
"""

from recordspine.adapters.sqlite import SqliteConnection

__all__ = [
    "SqliteConnection",
]
