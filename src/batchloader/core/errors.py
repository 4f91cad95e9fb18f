"""
Structured error types for the batch loader.

Provides a small hierarchy of typed errors with metadata for retry decisions,
error categorization and logging. Every failure the loader surfaces to a
caller is a ``LoaderError`` subclass carrying:

- **Category:** What kind of error (usage, query, backend, ...)
- **Retryable:** Whether re-loading and re-running may succeed
- **Context:** Source id, batch descriptor, item key and batch size
- **Cause:** Chained underlying exception (driver error, timeout, ...)

Manifesto:
    - **Typed Error Hierarchy:** Programmer errors and backend errors are
      different types, so callers can catch exactly what they handle
    - **Explicit Retry Semantics:** ``FetchFailedError`` is retryable,
      ``InvalidQueryError`` never is
    - **Batch-local failures:** One error instance is attached to every key
      of the batch that failed, siblings are unaffected
    - **Error Chaining:** The original backend exception is kept as cause

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                        LoaderError                          │
        │          (category, retryable, context, cause)              │
        ├─────────────────────────────────────────────────────────────┤
        │                                                             │
        │  NotLoadedError       SourceNotFoundError   (USAGE)         │
        │                                                             │
        │  InvalidQueryError                          (QUERY)         │
        │                                                             │
        │  FetchFailedError                           (BACKEND)       │
        │       │                                                     │
        │  FetchTimeoutError                                          │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = FetchFailedError("connection reset")
    >>> error.retryable
    True
    >>> error.with_context(source_id="db", batch_size=3).context.batch_size
    3

    >>> InvalidQueryError("unknown column 'nope'").retryable
    False

Guardrails:
    ❌ DON'T: Raise bare exceptions from a Source for bad descriptor options
    ✅ DO: Raise InvalidQueryError so the whole batch fails up front

    ❌ DON'T: Swallow the backend exception when wrapping it
    ✅ DO: Pass it as cause= so tracebacks keep the root cause

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    batchloader

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        USAGE: Caller bug (get before run, unknown source id)
        QUERY: Descriptor options the source cannot execute
        BACKEND: Backend round trip raised or timed out
        CONFIG: Invalid loader settings
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    USAGE = "USAGE"               # get before run, unregistered source
    QUERY = "QUERY"               # unknown column, bad limit
    BACKEND = "BACKEND"           # driver error, timeout
    CONFIG = "CONFIG"             # invalid settings
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a loader error.

    Only non-None fields are serialized by ``to_dict()``; anything that does
    not have a dedicated field goes into ``metadata``.

    Attributes:
        source_id: Registered id of the source the batch belonged to
        descriptor: ``repr`` of the BatchDescriptor
        item_key: Item key for single-key errors (``get``)
        batch_size: Number of keys in the failed batch
        metadata: Additional key-value pairs
    """

    source_id: str | None = None
    descriptor: str | None = None
    item_key: str | None = None
    batch_size: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["source_id", "descriptor", "item_key", "batch_size"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LoaderError(Exception):
    """
    Base exception for all batch loader errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only pass a message (and usually a cause).

    Examples:
        >>> error = LoaderError("unexpected state")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["error_type"]
        'LoaderError'
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

    def with_context(self, **kwargs: Any) -> LoaderError:
        """
        Add context to this error (fluent API).

        Usage:
            raise FetchFailedError("boom").with_context(source_id="db")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def __copy__(self) -> LoaderError:
        """Shallow copy with its own context and no traceback.

        Taken before adding context to, or raising, an error that is cached.
        """
        clone = self.__class__.__new__(self.__class__, *self.args)
        clone.__dict__.update(self.__dict__)
        clone.args = self.args
        clone.context = replace(self.context, metadata=dict(self.context.metadata))
        clone.__cause__ = self.__cause__
        return clone

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
# USAGE ERRORS (programmer errors, never retryable)
# =============================================================================


class NotLoadedError(LoaderError):
    """Item was never loaded, or ``run`` has not happened since it was."""

    default_category = ErrorCategory.USAGE


class SourceNotFoundError(LoaderError):
    """Source id is not registered on the loader."""

    default_category = ErrorCategory.USAGE

    def __init__(self, source_id: str, message: str | None = None):
        self.source_id = source_id
        super().__init__(
            message or f"Source not found: {source_id!r}",
            context=ErrorContext(source_id=source_id),
        )


# =============================================================================
# QUERY ERRORS
# =============================================================================


class InvalidQueryError(LoaderError):
    """
    Descriptor options are unusable by the source.

    Raised before any I/O (unknown order-by column, negative limit, composite
    join condition). Fails the whole batch and is never retried.
    """

    default_category = ErrorCategory.QUERY


# =============================================================================
# BACKEND ERRORS
# =============================================================================


class FetchFailedError(LoaderError):
    """
    Backend round trip failed.

    Attached to every key of the failed batch. Retryable in the sense that
    the caller may ``load`` the keys again and ``run``; the loader never
    retries on its own.
    """

    default_category = ErrorCategory.BACKEND
    default_retryable = True


class FetchTimeoutError(FetchFailedError):
    """Batch did not complete within the run timeout."""

    def __init__(self, timeout: float, message: str | None = None, **kwargs: Any):
        self.timeout = timeout
        super().__init__(message or f"Batch timed out after {timeout}s", **kwargs)


class ConfigError(LoaderError):
    """Loader or source configuration is invalid."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, LoaderError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, LoaderError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return ErrorCategory.BACKEND
    if isinstance(error, (KeyError, LookupError)):
        return ErrorCategory.QUERY
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LoaderError",
    "NotLoadedError",
    "SourceNotFoundError",
    "InvalidQueryError",
    "FetchFailedError",
    "FetchTimeoutError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
