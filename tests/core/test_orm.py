"""Tests for the SQLAlchemy session helpers."""

import pytest
from sqlalchemy import text

from batchloader.core.errors import ConfigError
from batchloader.core.orm import LoaderSession, create_loader_engine, loader_session_factory
from tests._support.models import Base, User


class TestEngine:
    def test_sqlite_pragmas(self, tmp_path):
        engine = create_loader_engine(f"sqlite:///{tmp_path / 'x.db'}")
        try:
            with engine.connect() as conn:
                assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
                assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        finally:
            engine.dispose()


class TestSession:
    def test_attributes_survive_commit_and_close(self, engine):
        factory = loader_session_factory(engine)
        with factory() as session:
            assert isinstance(session, LoaderSession)
            assert session.expire_on_commit is False
            user = User(username="ann")
            session.add(user)
            session.commit()
        assert user.username == "ann"
        assert user.id is not None

    def test_schema_created(self, engine):
        assert "posts" in Base.metadata.tables
        with engine.connect() as conn:
            assert conn.execute(text("SELECT count(*) FROM users")).scalar() == 0

    def test_url_from_settings(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BATCHLOADER_DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
        engine = create_loader_engine()
        try:
            assert engine.url.database == str(tmp_path / "env.db")
        finally:
            engine.dispose()

    def test_invalid_url(self):
        with pytest.raises(ConfigError, match="Invalid database URL"):
            create_loader_engine("not a url")
