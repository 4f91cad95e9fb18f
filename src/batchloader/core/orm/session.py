"""SQLAlchemy engine factory and batch-scoped sessions.

The relational source opens one session per batch and closes it as soon as
the rows are partitioned.  Entities handed back to callers therefore live
past their session; ``LoaderSession`` disables ``expire_on_commit`` so their
loaded column attributes stay readable once detached.

This module provides:

* ``create_loader_engine``    -- Create a SA engine from a URL.
* ``LoaderSession``           -- Session subclass with ``expire_on_commit=False``.
* ``loader_session_factory``  -- ``sessionmaker`` producing ``LoaderSession``.

Tags:
    batchloader, orm, sqlalchemy, session, engine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, make_url
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session, sessionmaker

from batchloader.core.errors import ConfigError
from batchloader.core.settings import LoaderSettings

DEFAULT_URL = "sqlite:///batchloader.db"


def create_loader_engine(
    url: str | None = None,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///...``, ``postgresql://...``).  Defaults to
        ``LoaderSettings().database_url``, then a local SQLite file.
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).  Size the pool to at
        least ``LoaderSettings.max_concurrency`` so parallel batches do not
        queue on checkout.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.

    Raises
    ------
    ConfigError
        The URL cannot be parsed.
    """
    if url is None:
        url = LoaderSettings().database_url or DEFAULT_URL
    try:
        backend = make_url(url).get_backend_name()
    except ArgumentError as exc:
        raise ConfigError(f"Invalid database URL: {url!r}", cause=exc) from exc

    if backend == "sqlite":
        # batches run on worker threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})

        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class LoaderSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def loader_session_factory(engine: Engine) -> sessionmaker[LoaderSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``LoaderSession`` instances."""
    return sessionmaker(bind=engine, class_=LoaderSession, expire_on_commit=False)
