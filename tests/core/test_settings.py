"""Tests for batchloader.core.settings."""

import pytest
from pydantic import ValidationError

from batchloader.core.settings import GetPolicy, LoaderSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("MAX_CONCURRENCY", "TIMEOUT_SECONDS", "GET_POLICY", "LOG_LEVEL", "DATABASE_URL"):
        monkeypatch.delenv(f"BATCHLOADER_{name}", raising=False)


class TestLoaderSettings:
    def test_defaults(self):
        settings = LoaderSettings()
        assert settings.max_concurrency == 8
        assert settings.timeout_seconds == 15.0
        assert settings.get_policy is GetPolicy.RAISE_ON_ERROR
        assert settings.log_level == "INFO"
        assert settings.database_url is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BATCHLOADER_MAX_CONCURRENCY", "2")
        monkeypatch.setenv("BATCHLOADER_GET_POLICY", "tuples")
        monkeypatch.setenv("BATCHLOADER_LOG_LEVEL", "debug")
        settings = LoaderSettings()
        assert settings.max_concurrency == 2
        assert settings.get_policy is GetPolicy.TUPLES
        assert settings.log_level == "DEBUG"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("BATCHLOADER_TIMEOUT_SECONDS=2.5\n")
        assert LoaderSettings().timeout_seconds == 2.5

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_concurrency": 0},
            {"timeout_seconds": 0},
            {"get_policy": "explode"},
            {"log_level": "chatty"},
        ],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValidationError):
            LoaderSettings(**kwargs)

    def test_frozen(self):
        settings = LoaderSettings()
        with pytest.raises(ValidationError):
            settings.max_concurrency = 3
