"""
Result envelope for per-key fetch outcomes.

Every cached entry in the loader is either ``Ok(value)`` or ``Err(error)``.
A failed batch does not leave holes in the cache: each of its keys gets the
same ``Err`` so ``get`` can tell "fetched and failed" apart from "never
fetched". The ``tuples`` get policy hands these envelopes straight to the
caller.

Manifesto:
    - **Explicit over Implicit:** Failures are values in the cache, not
      exceptions lost in a worker thread
    - **Batch-friendly:** One bad batch never aborts its siblings;
      ``partition_results`` summarizes a run
    - **Immutability:** Frozen dataclasses, safe to share across loaders

Architecture:
    ::

        ┌───────────────────────────────────────────────┐
        │                  Result[T]                    │
        ├─────────────────┬─────────────────────────────┤
        │     Ok[T]       │     Err[T]                  │
        │ • value: T      │ • error: Exception          │
        │ • map()         │ • map_err()                 │
        │ • unwrap()      │ • unwrap() raises error     │
        │ • unwrap_or()   │ • unwrap_or() -> default    │
        └─────────────────┴─────────────────────────────┘

Examples:
    >>> Ok([1, 2]).map(len).unwrap()
    2
    >>> Err(ValueError("boom")).unwrap_or([])
    []
    >>> match Ok(3):
    ...     case Ok(value):
    ...         print(value)
    3

Tags:
    result-pattern, error-handling, batchloader

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from batchloader.core.errors import LoaderError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def unwrap_or_else(self, f: Callable[[Exception], T]) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``unwrap()`` re-raises the wrapped error, which is how the default
    ``raise_on_error`` get policy surfaces batch failures.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def unwrap_or_else(self, f: Callable[[Exception], T]) -> T:
        return f(self.error)

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Transform the error."""
        return Err(f(self.error))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, LoaderError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def partition_results(
    results: list[Result[T]],
) -> tuple[list[T], list[Exception]]:
    """
    Partition results into successes and failures.

    >>> values, errors = partition_results([Ok(1), Err(ValueError("a")), Ok(2)])
    >>> values
    [1, 2]
    >>> len(errors)
    1
    """
    values = []
    errors = []
    for result in results:
        match result:
            case Ok(value):
                values.append(value)
            case Err(error):
                errors.append(error)
    return values, errors


__all__ = [
    "Ok",
    "Err",
    "Result",
    "partition_results",
]
