"""
Shared pytest fixtures for batchloader tests.

This module provides:
- A file-backed SQLite database with the blog models from ``_support.models``
- A loader with one ``RelationalSource`` registered as ``"db"``
- A ``RoundTripCounter`` observer to assert on backend round trips

Usage:
    def test_something(loader, db, counter):
        user = add(db, User(username="ann"))
        loader = loader.load("db", association("posts"), user).run()
        assert counter.total == 1
"""

import sys
from pathlib import Path

import pytest
import structlog
from sqlalchemy import select

# Ensure batchloader package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from batchloader import Loader, LoaderSettings, RelationalSource, RoundTripCounter
from batchloader.core.orm import create_loader_engine, loader_session_factory
from tests._support.models import Base, Post


def not_deleted(entity, options):
    """Query hook hiding soft-deleted posts."""
    stmt = select(entity)
    if entity is Post:
        stmt = stmt.where(Post.deleted_at.is_(None))
    return stmt


def add(session, *objects):
    """Insert ``objects`` and return them (a single object when given one)."""
    session.add_all(objects)
    session.commit()
    return objects[0] if len(objects) == 1 else list(objects)


def ids(rows):
    return [row.id for row in rows]


@pytest.fixture(autouse=True)
def _clean_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def engine(tmp_path):
    """SQLite engine on a temp file; batches run on worker threads."""
    eng = create_loader_engine(f"sqlite:///{tmp_path / 'loader.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def sessions(engine):
    return loader_session_factory(engine)


@pytest.fixture
def db(sessions):
    """Session for arranging test data."""
    with sessions() as session:
        yield session


@pytest.fixture
def counter():
    return RoundTripCounter()


@pytest.fixture
def settings():
    return LoaderSettings(max_concurrency=4, timeout_seconds=10)


@pytest.fixture
def loader(sessions, counter, settings):
    source = RelationalSource(sessions, query=not_deleted)
    return Loader.new(settings, observers=[counter]).add_source("db", source)
