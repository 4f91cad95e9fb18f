"""Loader settings.

``LoaderSettings`` is the explicit configuration object handed to
``Loader.new``.  Nothing in the package reads process-wide state: two
loaders built from two settings objects never influence each other.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at construction
    - **Environment-driven:** ``BATCHLOADER_*`` env vars and ``.env`` files
    - **Sensible defaults:** Works out of the box for tests and scripts

Examples:
    >>> from batchloader.core.settings import GetPolicy, LoaderSettings
    >>> settings = LoaderSettings(max_concurrency=2, get_policy=GetPolicy.TUPLES)
    >>> settings.timeout_seconds
    15.0

Tags:
    settings, configuration, pydantic, environment, batchloader

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GetPolicy(str, Enum):
    """How ``Loader.get`` reports a key whose batch failed.

    RAISE_ON_ERROR        : raise the stored ``LoaderError``
    RETURN_NONE_ON_ERROR  : return ``None`` instead
    TUPLES                : return ``Ok(value)`` / ``Err(error)`` envelopes
    """

    RAISE_ON_ERROR = "raise_on_error"
    RETURN_NONE_ON_ERROR = "return_none_on_error"
    TUPLES = "tuples"


class LoaderSettings(BaseSettings):
    """Settings for one loader.

    Fields
    ──────
    max_concurrency : Max batches fetched in parallel during one ``run``
    timeout_seconds : Max wall time ``run`` waits for its batches
    get_policy      : Error reporting policy for ``get``
    log_level       : Structlog log level used by ``configure_logging``
    database_url    : Optional URL for ``create_loader_engine``
    """

    model_config = SettingsConfigDict(
        env_prefix="BATCHLOADER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Scheduling ───────────────────────────────────────────────
    max_concurrency: int = Field(default=8, ge=1)
    timeout_seconds: float = Field(default=15.0, gt=0)

    # ── Retrieval ────────────────────────────────────────────────
    get_policy: GetPolicy = GetPolicy.RAISE_ON_ERROR

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"

    # ── Backend ──────────────────────────────────────────────────
    database_url: str | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return level
