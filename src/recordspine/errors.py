"""
Structured error types for recordspine.

Every failure the engine reports is a :class:`RecordSpineError`.  Each error
carries a category for routing, a retry hint, an :class:`ErrorContext` with
the model/table/statement involved, and the chained driver or hook exception
that caused it.

Manifesto:
    - **Typed kinds:** callers branch on the class, never on message text
    - **No hidden retries:** ``retryable`` is a hint for the caller; the
      engine itself never retries a statement
    - **Keep the cause:** driver and hook exceptions are chained, not lost
    - **Loggable:** ``to_dict()`` feeds structlog directly

Architecture:
    ::

        RecordSpineError (category, retryable, context, cause)
        ├── PreconditionError          VALIDATION
        │   └── AlreadyPersistedError
        ├── NotPersistedError          STATE
        ├── NotWritableError           STATE
        ├── ResultSetClosedError       STATE
        ├── NoRowsError                QUERY
        ├── QueryError                 QUERY
        ├── ExecutionError             DATABASE
        │   └── DatabaseConnectionError   (retryable)
        ├── HookError                  HOOK
        ├── TransactionError           TRANSACTION
        ├── SchemaError                CONFIG
        └── ConfigError                CONFIG

Examples:
    >>> err = NotWritableError("partial record").with_context(model="User")
    >>> err.category
    <ErrorCategory.STATE: 'STATE'>
    >>> err.to_dict()["context"]
    {'model': 'User'}

Tags:
    error-handling, exception-hierarchy, recordspine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and log routing."""

    DATABASE = "DATABASE"         # driver, connectivity, constraint violation
    QUERY = "QUERY"               # bad query construction, missing rows
    VALIDATION = "VALIDATION"     # write preconditions
    STATE = "STATE"               # record or cursor in the wrong state
    HOOK = "HOOK"                 # lifecycle hook failures
    TRANSACTION = "TRANSACTION"   # commit / rollback failures
    CONFIG = "CONFIG"             # schema metadata, settings, URLs
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        model: Name of the ModelDescriptor involved
        table: Table name involved
        operation: Store operation (``insert``, ``update``, ``find`` ...)
        statement: SQL text of the failing statement, if any
        metadata: Additional key-value pairs
    """

    model: str | None = None
    table: str | None = None
    operation: str | None = None
    statement: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary of the fields that are set."""
        result = {}
        for key in ("model", "table", "operation", "statement"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RecordSpineError(Exception):
    """
    Base exception for all recordspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Examples:
        >>> try:
        ...     raise OSError("disk gone")
        ... except OSError as e:
        ...     err = ExecutionError("write failed", cause=e)
        >>> err.cause
        OSError('disk gone')
        >>> err.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RecordSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NoRowsError("no user").with_context(model="User", table="users")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# WRITE PRECONDITIONS AND RECORD STATE
# =============================================================================


class PreconditionError(RecordSpineError):
    """A write was attempted without the primary key it requires."""

    default_category = ErrorCategory.VALIDATION


class AlreadyPersistedError(PreconditionError):
    """Insert was called on a record that already has a row."""


class NotPersistedError(RecordSpineError):
    """Update, delete or reload on a record that was never saved."""

    default_category = ErrorCategory.STATE


class NotWritableError(RecordSpineError):
    """
    Write attempted on a record whose in-memory state is not known-complete.

    Records come back non-writable from a query that selected a strict
    subset of columns, or that included a relationship through a filter.
    ``Store.reload`` makes them writable again.
    """

    default_category = ErrorCategory.STATE


class ResultSetClosedError(RecordSpineError):
    """Read from a result set that is exhausted or closed."""

    default_category = ErrorCategory.STATE


# =============================================================================
# QUERY ERRORS
# =============================================================================


class NoRowsError(RecordSpineError):
    """A single-record lookup matched no rows."""

    default_category = ErrorCategory.QUERY


class QueryError(RecordSpineError):
    """A query or statement could not be built from the given arguments."""

    default_category = ErrorCategory.QUERY


# =============================================================================
# EXECUTION, HOOK AND TRANSACTION ERRORS
# =============================================================================


class ExecutionError(RecordSpineError):
    """The execution capability reported a failure."""

    default_category = ErrorCategory.DATABASE


class DatabaseConnectionError(ExecutionError):
    """The database could not be reached."""

    default_retryable = True


class HookError(RecordSpineError):
    """A lifecycle hook failed."""

    default_category = ErrorCategory.HOOK

    def __init__(self, message: str, *, hook: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.hook = hook

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["hook"] = self.hook
        return result


class TransactionError(RecordSpineError):
    """
    Commit or rollback failed.

    ``cause`` is the commit/rollback failure itself.  When the transaction
    was being rolled back because of an earlier error, that error is kept
    in ``original`` so both stay visible to the caller.
    """

    default_category = ErrorCategory.TRANSACTION

    def __init__(
        self,
        message: str,
        *,
        original: BaseException | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.original = original

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.original is not None:
            result["original"] = repr(self.original)
        return result


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class SchemaError(RecordSpineError):
    """Schema metadata is inconsistent."""

    default_category = ErrorCategory.CONFIG


class ConfigError(RecordSpineError):
    """Invalid configuration (unknown dialect, malformed URL)."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# CONTROL FLOW
# =============================================================================


class StopForEach(Exception):
    """Raise from a ``ResultSet.for_each`` callback to stop iterating."""


def is_retryable(error: BaseException) -> bool:
    """Check if an error carries a retry hint."""
    if isinstance(error, RecordSpineError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RecordSpineError",
    "PreconditionError",
    "AlreadyPersistedError",
    "NotPersistedError",
    "NotWritableError",
    "ResultSetClosedError",
    "NoRowsError",
    "QueryError",
    "ExecutionError",
    "DatabaseConnectionError",
    "HookError",
    "TransactionError",
    "SchemaError",
    "ConfigError",
    "StopForEach",
    "is_retryable",
]
