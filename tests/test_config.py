"""Tests for environment settings and database URL handling."""

import pytest

from config import Settings, DEFAULT_EMERGENCY_PROTOCOLS, DEFAULT_DISPLAY_TARGETS
from database import normalize_database_url


class TestSettings:

    def test_database_url_is_required(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(RuntimeError):
            Settings.from_env()

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/warroom")
        for name in ("ESCALATION_API_TOKEN", "CHANNEL_TIMEOUT_SECONDS",
                     "VISUAL_DISPLAY_TARGETS", "EMERGENCY_PROTOCOLS", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.api_token is None
        assert settings.channel_timeout_seconds == 5.0
        assert settings.visual_display_targets == DEFAULT_DISPLAY_TARGETS
        assert settings.emergency_protocols == DEFAULT_EMERGENCY_PROTOCOLS
        assert settings.log_level == "INFO"

    def test_lists_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/warroom")
        monkeypatch.setenv("ESCALATION_API_TOKEN", "secret")
        monkeypatch.setenv("CHANNEL_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("EMERGENCY_PROTOCOLS", "notify_emergency_services, deploy_emergency_staff,")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.api_token == "secret"
        assert settings.channel_timeout_seconds == 2.5
        assert settings.emergency_protocols == ["notify_emergency_services", "deploy_emergency_staff"]
        assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("url,expected", [
    ("postgres://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ("postgresql://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ("postgresql+asyncpg://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
])
def test_normalize_database_url(url, expected):
    assert normalize_database_url(url) == expected
