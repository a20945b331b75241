"""Environment-driven settings for recordspine.

``RecordSpineSettings`` holds the handful of knobs the engine reads at
construction time: where the database is, the default one-to-many batch
size, and logging behaviour.  Values come from ``RECORDSPINE_*`` environment
variables or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["RECORDSPINE_DEFAULT_BATCH_SIZE"] = "200"
    >>> RecordSpineSettings().default_batch_size
    200

Tags:
    settings, configuration, pydantic, environment, recordspine
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BATCH_SIZE = 50


class RecordSpineSettings(BaseSettings):
    """Settings shared by every Store and Executor in a process.

    Fields
    ──────
    database_url        : ``memory``, ``sqlite:///path``, a file path, or ``postgresql://...``
    default_batch_size  : Parents per one-to-many batch when a query sets none
    echo_sql            : Log every statement at INFO instead of DEBUG
    log_level           : structlog level
    log_json            : Force JSON (True) or console (False) output; None auto-detects
    """

    model_config = SettingsConfigDict(
        env_prefix="RECORDSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "memory"
    default_batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)

    echo_sql: bool = False
    log_level: str = "INFO"
    log_json: bool | None = None


@lru_cache(maxsize=1)
def get_settings() -> RecordSpineSettings:
    """Return the process-wide settings instance."""
    return RecordSpineSettings()


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "RecordSpineSettings",
    "get_settings",
]
