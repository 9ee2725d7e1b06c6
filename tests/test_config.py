"""
Tests for application settings
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from hookrelay.core.config import Settings
from hookrelay.core.redis_client import redacted_url


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestDatabaseUrl:
    @pytest.mark.unit
    @pytest.mark.parametrize("url", [
        "postgres://u:p@db:5432/hookrelay",
        "postgresql://u:p@db:5432/hookrelay",
    ])
    def test_converted_to_asyncpg(self, url):
        assert _settings(DATABASE_URL=url).DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/hookrelay"

    @pytest.mark.unit
    def test_other_drivers_untouched(self):
        url = "sqlite+aiosqlite:///./hookrelay.db"
        assert _settings(DATABASE_URL=url).DATABASE_URL == url


class TestRetryValidation:
    @pytest.mark.unit
    def test_defaults(self):
        settings = _settings()
        assert settings.WEBHOOK_MAX_RETRIES == 3
        assert settings.WEBHOOK_RETRY_BASE_SECONDS == 60.0
        assert settings.WEBHOOK_RETRY_BACKOFF_MULTIPLIER == 2.0

    @pytest.mark.unit
    @pytest.mark.parametrize("overrides", [
        {"WEBHOOK_MAX_RETRIES": 0},
        {"WEBHOOK_RETRY_BACKOFF_MULTIPLIER": 1.0},
        {"WEBHOOK_RETRY_BASE_SECONDS": 0},
        {"WEBHOOK_TIMEOUT_SECONDS": -1},
        {"RETRY_BATCH_SIZE": 0},
        {"LEDGER_RETENTION_DAYS": 0},
        {"CACHE_TTL_EVENT_SECONDS": 0},
    ])
    def test_rejected(self, overrides):
        with pytest.raises(PydanticValidationError):
            _settings(**overrides)


class TestDerivedValues:
    @pytest.mark.unit
    def test_allowed_event_types(self):
        settings = _settings(ALLOWED_EVENT_TYPES=" job.created, job.updated ,,")
        assert settings.allowed_event_types == {"job.created", "job.updated"}

    @pytest.mark.unit
    def test_allowed_event_types_empty(self):
        assert _settings().allowed_event_types == set()

    @pytest.mark.unit
    def test_user_agent(self):
        assert _settings(APP_NAME="Relay", APP_VERSION="2.1").user_agent == "Relay/2.1"


class TestRedisUrlRedaction:
    @pytest.mark.unit
    def test_password_hidden(self):
        assert redacted_url("redis://:hunter2@cache:6379/0") == "redis://:****@cache:6379/0"

    @pytest.mark.unit
    def test_without_password_unchanged(self):
        assert redacted_url("redis://localhost:6379/0") == "redis://localhost:6379/0"
