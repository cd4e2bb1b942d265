"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from authlab.config import Settings, get_settings, reset_settings_cache


class TestJwtSecret:
    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            Settings(jwt_secret="too-short")

    def test_missing_secret_is_generated(self):
        first = Settings(jwt_secret=None)
        second = Settings()
        assert len(first.jwt_secret) >= 32
        assert first.jwt_secret != second.jwt_secret


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TOKEN_VALIDITY_MINUTES", "5")
        monkeypatch.setenv("ENABLE_CHAOS", "true")
        monkeypatch.setenv("ACTUATOR_ROLES", "ACTUATOR_ADMIN, OPS")

        settings = Settings.from_env()

        assert settings.token_validity_minutes == 5
        assert settings.enable_chaos is True
        assert settings.management_role_list == ["ACTUATOR_ADMIN", "OPS"]

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ENABLE_CHAOS", raising=False)
        monkeypatch.delenv("TOKEN_VALIDITY_MINUTES", raising=False)

        settings = Settings.from_env()

        assert settings.token_validity_minutes == 60
        assert settings.enable_chaos is False
        assert settings.management_username == "actuator"

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("BUILD_SHA", raising=False)
        (tmp_path / ".env").write_text("BUILD_SHA=abc123\n")

        assert Settings.from_env().build_sha == "abc123"

    def test_environment_wins_over_dotenv(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("BUILD_SHA", "from-env")
        (tmp_path / ".env").write_text("BUILD_SHA=from-file\n")

        assert Settings.from_env().build_sha == "from-env"

    def test_invalid_validity_rejected(self, monkeypatch):
        monkeypatch.setenv("TOKEN_VALIDITY_MINUTES", "0")
        with pytest.raises(ValidationError):
            Settings.from_env()


class TestSettingsCache:
    def test_cached_until_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("BUILD_SHA", "changed")
        reset_settings_cache()
        assert get_settings().build_sha == "changed"
        reset_settings_cache()
