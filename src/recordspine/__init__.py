"""recordspine -- typed data mapping for relational stores.

Manifesto:
    Application types are described once (fields, primary key,
    relationships) and the engine does the rest: composable predicates,
    immutable queries, lazy result sets that know whether their records can
    be written back, batched relationship loading, and a Store that drives
    lifecycle hooks and opens transactions only when a write needs one.

Architecture::

    Layer 1 -- Metadata & Errors
        errors.py       RecordSpineError hierarchy (category, context, cause)
        schema.py       ModelDescriptor / FieldDescriptor / Schema linking
        model.py        Model base class, RecordState, Timestamps
        protocols.py    Connection, Cursor, Record protocols

    Layer 2 -- Query Model
        predicate.py    Condition / And / Or / Not, Order
        query.py        Immutable Query, Projection, Include

    Layer 3 -- SQL
        dialect.py      SQLite / PostgreSQL fragments and value codecs
        compiler.py     Query -> Statement (SQL + params)
        executor.py     Statement execution, nested transactions
        adapters/       sqlite3 and SQLAlchemy connections
        connection.py   create_connection / create_executor from URLs

    Layer 4 -- Runtime
        resultset.py    Lazy, paged ResultSet
        loader.py       One-to-one hydration, batched one-to-many loading
        store.py        Store: reads, writes, hooks, transactions

    Ambient
        settings.py     RecordSpineSettings (RECORDSPINE_* env vars)
        logging.py      structlog configuration

Examples:
    >>> from recordspine import Executor, Schema, Store, predicate as p
    >>> store = Store(schema, "User", Executor(conn))
    >>> for user in store.find(store.query().where(p.gt("age", 18)).include("posts")):
    ...     print(user.name, len(user.posts))
"""

from recordspine import predicate
from recordspine.connection import ConnectionInfo, create_connection, create_executor
from recordspine.dialect import PostgreSQLDialect, SQLiteDialect, get_dialect
from recordspine.errors import (
    AlreadyPersistedError,
    ConfigError,
    ExecutionError,
    HookError,
    NoRowsError,
    NotPersistedError,
    NotWritableError,
    PreconditionError,
    QueryError,
    RecordSpineError,
    ResultSetClosedError,
    SchemaError,
    StopForEach,
    TransactionError,
)
from recordspine.executor import Executor
from recordspine.model import Model, Timestamps, TimestampedModel, timestamps_field
from recordspine.query import Query
from recordspine.resultset import ResultSet
from recordspine.schema import (
    Direction,
    FieldDescriptor,
    FieldKind,
    ModelDescriptor,
    PrimaryKeyDescriptor,
    RelationshipDescriptor,
    RelationshipKind,
    Schema,
)
from recordspine.store import Store

__version__ = "0.1.0"

__all__ = [
    "predicate",
    # schema
    "Schema",
    "ModelDescriptor",
    "FieldDescriptor",
    "FieldKind",
    "PrimaryKeyDescriptor",
    "RelationshipDescriptor",
    "RelationshipKind",
    "Direction",
    # records
    "Model",
    "Timestamps",
    "TimestampedModel",
    "timestamps_field",
    # runtime
    "Query",
    "ResultSet",
    "Store",
    "Executor",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "ConnectionInfo",
    "create_connection",
    "create_executor",
    # errors
    "RecordSpineError",
    "PreconditionError",
    "AlreadyPersistedError",
    "NotPersistedError",
    "NotWritableError",
    "ResultSetClosedError",
    "NoRowsError",
    "QueryError",
    "ExecutionError",
    "HookError",
    "TransactionError",
    "SchemaError",
    "ConfigError",
    "StopForEach",
]
