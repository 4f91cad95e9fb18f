"""
Ambient primitives shared by every batchloader module.

Modules
-------
errors      LoaderError hierarchy (NotLoaded, SourceNotFound, InvalidQuery,
            FetchFailed, FetchTimeout) with category/retryable/context
logging     structlog configuration and ``get_logger``
result      Ok/Err envelopes stored in the loader cache
settings    ``LoaderSettings`` (pydantic-settings) and ``GetPolicy``
orm         SQLAlchemy engine and session factories
"""

from batchloader.core.errors import (
    ErrorCategory,
    ErrorContext,
    FetchFailedError,
    FetchTimeoutError,
    InvalidQueryError,
    LoaderError,
    NotLoadedError,
    SourceNotFoundError,
)
from batchloader.core.logging import configure_logging, get_logger
from batchloader.core.result import Err, Ok, Result
from batchloader.core.settings import GetPolicy, LoaderSettings

__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LoaderError",
    "NotLoadedError",
    "SourceNotFoundError",
    "InvalidQueryError",
    "FetchFailedError",
    "FetchTimeoutError",
    "configure_logging",
    "get_logger",
    "Ok",
    "Err",
    "Result",
    "GetPolicy",
    "LoaderSettings",
]
