"""
Shared pytest fixtures for recordspine tests.

This module provides:
- An in-memory SQLite database with the example tables
- A recording connection and an Executor over it
- Stores for the example models, sharing one executor

Usage:
    def test_something(users, conn):
        users.insert(User(name="ann"))
        assert conn.count("INSERT") == 1
"""

from __future__ import annotations

import datetime
from collections.abc import Iterator

import pytest

from recordspine.dialect import SQLiteDialect
from recordspine.executor import Executor
from recordspine.schema import Schema
from recordspine.settings import get_settings
from recordspine.store import Store
from tests._support import DDL, Address, RecordingConnection, build_schema


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Settings are cached per process; start every test from the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def conn() -> Iterator[RecordingConnection]:
    c = RecordingConnection()
    c.raw.executescript(DDL)
    c.reset()
    yield c
    c.close()


@pytest.fixture
def executor(conn: RecordingConnection) -> Executor:
    return Executor(conn, SQLiteDialect())


@pytest.fixture
def schema() -> Schema:
    return build_schema()


@pytest.fixture
def users(schema: Schema, executor: Executor) -> Store:
    return Store(schema, "User", executor)


@pytest.fixture
def posts(schema: Schema, executor: Executor) -> Store:
    return Store(schema, "Post", executor)


@pytest.fixture
def profiles(schema: Schema, executor: Executor) -> Store:
    return Store(schema, "Profile", executor)


@pytest.fixture
def addresses(schema: Schema, executor: Executor) -> Store:
    return Store(schema, Address, executor)


@pytest.fixture
def fixed_now(monkeypatch: pytest.MonkeyPatch) -> datetime.datetime:
    """Freeze the clock used by Timestamps.touch()."""
    now = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
    monkeypatch.setattr("recordspine.model._utcnow", lambda: now)
    return now
