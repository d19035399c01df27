"""
Tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError
from sqlalchemy.engine import URL

from webhook_relay.config import Settings, get_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)


class TestSettingsDefaults:

    def test_queue_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.queue_name == "webhook"
        assert settings.visibility_timeout_seconds == 300
        assert settings.max_receive_count == 5
        assert settings.receive_batch_size == 10
        assert settings.max_payload_bytes == 256 * 1024
        assert settings.environment == "development"
        assert settings.queue_backend == "database"

    def test_database_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.database_url is None
        assert settings.database_driver == "postgresql+asyncpg"
        assert settings.database_port == 5432


class TestSettingsFromEnvironment:

    def test_memory_queue_backend(self, clean_env, monkeypatch):
        monkeypatch.setenv("QUEUE_BACKEND", "memory")

        assert Settings(_env_file=None).queue_backend == "memory"

    def test_unknown_queue_backend_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("QUEUE_BACKEND", "redis")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_env_override(self, clean_env, monkeypatch):
        monkeypatch.setenv("MAX_RECEIVE_COUNT", "3")
        monkeypatch.setenv("VISIBILITY_TIMEOUT_SECONDS", "45")
        monkeypatch.setenv("DATABASE_HOST", "db.internal")

        settings = Settings(_env_file=None)

        assert settings.max_receive_count == 3
        assert settings.visibility_timeout_seconds == 45
        assert settings.database_host == "db.internal"

    @pytest.mark.parametrize("name,value", [
        ("MAX_RECEIVE_COUNT", "0"),
        ("VISIBILITY_TIMEOUT_SECONDS", "0"),
        ("RECEIVE_BATCH_SIZE", "11"),
        ("LOG_LEVEL", "TRACE"),
    ])
    def test_invalid_values_rejected(self, clean_env, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_unknown_variables_ignored(self, clean_env, monkeypatch):
        monkeypatch.setenv("SOME_UNRELATED_SETTING", "x")

        Settings(_env_file=None)


class TestSqlalchemyUrl:

    def test_database_url_wins(self):
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///relay.db", database_host="ignored")

        assert settings.sqlalchemy_url() == "sqlite+aiosqlite:///relay.db"

    def test_assembled_from_parameters(self):
        settings = Settings(
            _env_file=None,
            database_url=None,
            database_user="relay",
            database_password="pw",
            database_host="db",
            database_port=5433,
            database_name="hooks",
        )

        url = settings.sqlalchemy_url()

        assert isinstance(url, URL)
        assert url.render_as_string(hide_password=False) == "postgresql+asyncpg://relay:pw@db:5433/hooks"

    def test_empty_password_omitted(self):
        settings = Settings(_env_file=None, database_url=None, database_password="")

        assert settings.sqlalchemy_url().password is None


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
