"""
Structured error types for txoutbox.

Every failure the outbox can surface to a caller is a subclass of
:class:`OutboxError`.  Each error carries:

- **Category:** what kind of failure it is (database, concurrency, ...)
- **Retryable:** whether repeating the operation may succeed
- **Context:** the entry, request id, migration version or dialect involved
- **Cause:** the underlying driver or handler exception

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                         OutboxError                           │
        │        (category, retryable, context, cause)                  │
        ├──────────────────────────────────────────────────────────────┤
        │  DuplicateRequestError     OptimisticLockError                │
        │  (DUPLICATE)               (CONCURRENCY, retryable)           │
        │                                                               │
        │  PersistenceError          MigrationError                     │
        │  (DATABASE, retryable)     (MIGRATION, fatal at startup)      │
        │                                                               │
        │  InvocationError           NoTransactionActiveError           │
        │  (INVOCATION, retryable)   (TRANSACTION)                      │
        │     │                                                         │
        │  HandlerNotFoundError      ConfigError                        │
        │  EntryBlockedError         InvalidConfigError                 │
        └──────────────────────────────────────────────────────────────┘

Propagation:
    - Submission failures (duplicate request, persistence) are raised to the
      caller so the enclosing business transaction can decide to abort.
    - Item failures during a flush are converted into outbox state
      transitions and never escape the batch.
    - Migration failures are fatal and abort ``TransactionOutbox.initialize``.

Examples:
    >>> err = DuplicateRequestError("Request already scheduled")
    >>> err.with_context(unique_request_id="order-42").context.unique_request_id
    'order-42'
    >>> err.retryable
    False

Tags:
    error-handling, exception-hierarchy, outbox, retry-logic
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    DATABASE = "DATABASE"
    CONCURRENCY = "CONCURRENCY"
    DUPLICATE = "DUPLICATE"
    MIGRATION = "MIGRATION"
    INVOCATION = "INVOCATION"
    TRANSACTION = "TRANSACTION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an :class:`OutboxError`.

    Only fields that were set are emitted by :meth:`to_dict`, so the
    dictionary can be passed straight into a structured log call.
    """

    entry_id: str | None = None
    unique_request_id: str | None = None
    migration_version: int | None = None
    dialect: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entry_id", "unique_request_id", "migration_version", "dialect"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class OutboxError(Exception):
    """
    Base exception for all txoutbox errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain; both can be overridden per instance.
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
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> OutboxError:
        """
        Add context to this error (fluent API).

        Usage:
            raise OptimisticLockError("Entry changed").with_context(entry_id=entry.id)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PERSISTENCE
# =============================================================================


class PersistenceError(OutboxError):
    """The underlying store failed for reasons unrelated to locking.

    Typically connectivity, timeouts or a missing table.  The original
    driver exception is available as ``cause``.
    """

    default_category = ErrorCategory.DATABASE
    default_retryable = True


class DuplicateRequestError(OutboxError):
    """An entry with the same unique request id is already stored.

    Recoverable: the caller decides whether to ignore the resubmission or
    surface it.  Nothing was inserted.
    """

    default_category = ErrorCategory.DUPLICATE
    default_retryable = False


class OptimisticLockError(OutboxError):
    """An update matched no row at the expected version.

    Another worker changed the entry first.  The caller must re-read the
    entry before retrying, or abandon it.
    """

    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True


# =============================================================================
# MIGRATION
# =============================================================================


class MigrationError(OutboxError):
    """Schema evolution aborted.  Fatal at startup."""

    default_category = ErrorCategory.MIGRATION
    default_retryable = False


# =============================================================================
# INVOCATION
# =============================================================================


class InvocationError(OutboxError):
    """The stored business payload failed to execute."""

    default_category = ErrorCategory.INVOCATION
    default_retryable = True


class HandlerNotFoundError(InvocationError):
    """No handler is registered for an invocation target."""

    def __init__(self, target: str):
        super().__init__(f"No handler registered for '{target}'")
        self.target = target


class EntryBlockedError(InvocationError):
    """An entry exhausted its attempts and was blocked."""

    default_retryable = False


# =============================================================================
# TRANSACTIONS / CONFIG
# =============================================================================


class NoTransactionActiveError(OutboxError):
    """An operation that must join the caller's transaction found none."""

    default_category = ErrorCategory.TRANSACTION
    default_retryable = False


class ConfigError(OutboxError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        msg = message or f"Invalid value for {key}: {value!r}"
        super().__init__(msg)
        self.key = key
        self.value = value


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, OutboxError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, OutboxError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.DATABASE
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "OutboxError",
    "PersistenceError",
    "DuplicateRequestError",
    "OptimisticLockError",
    "MigrationError",
    "InvocationError",
    "HandlerNotFoundError",
    "EntryBlockedError",
    "NoTransactionActiveError",
    "ConfigError",
    "InvalidConfigError",
    "is_retryable",
    "categorize_error",
]
