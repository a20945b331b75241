"""
Test support for recordspine tests.

Example record types, the schema that maps them onto the DDL below, and a
connection that records every statement so tests can count queries and
transactions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from recordspine.adapters.sqlite import SqliteConnection
from recordspine.model import Model, Timestamps, TimestampedModel, timestamps_field
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

DDL = """
CREATE TABLE addresses (
    id TEXT PRIMARY KEY,
    city TEXT NOT NULL
);
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT,
    age INTEGER,
    active INTEGER NOT NULL DEFAULT 1,
    tags TEXT,
    settings TEXT,
    created_at TEXT,
    updated_at TEXT,
    address_id TEXT REFERENCES addresses(id)
);
CREATE TABLE posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(id),
    title TEXT NOT NULL,
    score INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(id),
    bio TEXT
);
"""


# =============================================================================
# Record types
# =============================================================================


@dataclass
class Address(Model):
    id: str = ""
    city: str = ""


@dataclass
class Post(Model):
    id: int = 0
    user_id: int = 0
    title: str = ""
    score: int = 0


@dataclass
class Profile(Model):
    id: int = 0
    bio: str | None = None


@dataclass
class User(TimestampedModel):
    id: int = 0
    name: str = ""
    email: str | None = None
    age: int | None = None
    active: bool = True
    tags: list[str] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    timestamps: Timestamps = field(default_factory=Timestamps)
    posts: list[Post] = field(default_factory=list)
    profile: Profile | None = None
    address: Address | None = None


def build_models() -> list[ModelDescriptor]:
    """Fresh descriptors; linking a Schema annotates them in place."""
    address = ModelDescriptor(
        name="Address",
        table="addresses",
        record_type=Address,
        fields=(FieldDescriptor("id", python_type=str), FieldDescriptor("city", python_type=str)),
        primary_key=PrimaryKeyDescriptor("id"),
    )
    post = ModelDescriptor(
        name="Post",
        table="posts",
        record_type=Post,
        fields=(
            FieldDescriptor("id", python_type=int),
            FieldDescriptor("user_id", python_type=int, nullable=True),
            FieldDescriptor("title", python_type=str),
            FieldDescriptor("score", python_type=int),
        ),
        primary_key=PrimaryKeyDescriptor("id", auto_increment=True),
    )
    profile = ModelDescriptor(
        name="Profile",
        table="profiles",
        record_type=Profile,
        fields=(FieldDescriptor("id", python_type=int), FieldDescriptor("bio", nullable=True)),
        primary_key=PrimaryKeyDescriptor("id", auto_increment=True),
    )
    user = ModelDescriptor(
        name="User",
        table="users",
        record_type=User,
        fields=(
            FieldDescriptor("id", python_type=int),
            FieldDescriptor("name", python_type=str),
            FieldDescriptor("email", nullable=True),
            FieldDescriptor("age", python_type=int, nullable=True),
            FieldDescriptor("active", python_type=bool),
            FieldDescriptor("tags", kind=FieldKind.ARRAY),
            FieldDescriptor("settings", kind=FieldKind.JSON),
            timestamps_field(),
        ),
        primary_key=PrimaryKeyDescriptor("id", auto_increment=True),
        relationships=(
            RelationshipDescriptor("posts", RelationshipKind.ONE_TO_MANY, "Post"),
            RelationshipDescriptor("profile", RelationshipKind.ONE_TO_ONE, "Profile"),
            RelationshipDescriptor(
                "address", RelationshipKind.ONE_TO_ONE, "Address", direction=Direction.FORWARD
            ),
        ),
    )
    return [user, post, profile, address]


# =============================================================================
# Recording connection
# =============================================================================


class RecordingConnection(SqliteConnection):
    """SqliteConnection that keeps every statement it runs."""

    def __init__(self, path: str = ":memory:") -> None:
        super().__init__(path)
        self.statements: list[str] = []
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self.statements.append(sql)
        return super().execute(sql, params)

    def begin(self) -> None:
        self.begins += 1
        super().begin()

    def commit(self) -> None:
        if self.in_transaction:
            self.commits += 1
        super().commit()

    def rollback(self) -> None:
        self.rollbacks += 1
        super().rollback()

    def count(self, verb: str) -> int:
        """Statements starting with ``verb`` (``SELECT``, ``INSERT`` ...)."""
        return sum(1 for s in self.statements if s.lstrip().upper().startswith(verb))

    def reset(self) -> None:
        self.statements.clear()
        self.begins = self.commits = self.rollbacks = 0


def build_schema() -> Schema:
    return Schema(build_models())
