"""
Unit tests for Configuration module.

Covers defaults, validators and computed properties of the settings.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from app.core.config import (
    ConfigValidator,
    EnvironmentEnum,
    LogFormatEnum,
    LogLevelEnum,
    Settings,
    get_config_summary,
    settings,
)


def make_settings(**kwargs):
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, **kwargs)


class TestSettings:
    """Test cases for Settings configuration."""

    def test_default_settings(self):
        test_settings = make_settings()

        assert test_settings.app_name == "Chat Relay API"
        assert test_settings.environment == EnvironmentEnum.development
        assert test_settings.algorithm == "HS256"
        assert test_settings.ollama_host == "http://localhost:11434"
        assert test_settings.ollama_default_model == "llama2"
        assert test_settings.ollama_request_timeout == 120
        assert test_settings.default_max_tokens == 10000
        assert test_settings.quota_reset_hour == 0
        assert test_settings.quota_reset_minute == 0
        assert test_settings.port == 3000
        assert test_settings.log_level == LogLevelEnum.INFO
        assert test_settings.log_format == LogFormatEnum.simple
        assert test_settings.admin_password is None
        assert test_settings.has_admin_access is False

    def test_environment_shortcuts(self):
        assert make_settings(environment="dev").environment == EnvironmentEnum.development
        assert make_settings(environment="PROD").environment == EnvironmentEnum.production
        assert make_settings(environment="testing").is_testing

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            make_settings(environment="moon")

    def test_ollama_host_trailing_slash_stripped(self):
        assert make_settings(ollama_host="http://gpu-box:11434/").ollama_host == "http://gpu-box:11434"

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(ollama_request_timeout=0)

    @pytest.mark.parametrize("field,value", [("quota_reset_hour", 24), ("quota_reset_minute", 60)])
    def test_reset_time_ranges(self, field, value):
        with pytest.raises(ValidationError):
            make_settings(**{field: value})

    def test_allowed_origins_list(self):
        test_settings = make_settings(allowed_origins=" http://a.test , ,http://b.test")

        assert test_settings.allowed_origins_list == ["http://a.test", "http://b.test"]

    def test_sqlite_gets_test_database_url(self):
        test_settings = make_settings(database_url="sqlite+aiosqlite:///./relay.db")

        assert test_settings.test_database_url == "sqlite+aiosqlite:///./test.db"

    def test_secret_key_generated(self):
        assert make_settings().secret_key != make_settings().secret_key


class TestConfigValidator:
    def test_production_requires_admin_password(self):
        with patch("app.core.config.settings", make_settings(environment="production")):
            with pytest.raises(ValueError, match="ADMIN_PASSWORD"):
                ConfigValidator.validate_required_settings()

    def test_valid_production(self):
        prod = make_settings(environment="production", admin_password="s3cret")
        with patch("app.core.config.settings", prod):
            ConfigValidator.validate_required_settings()

    def test_config_summary(self):
        summary = get_config_summary()

        assert summary["app_name"] == settings.app_name
        assert summary["features"]["ollama_host"] == settings.ollama_host
        assert summary["quota_reset"] == (
            f"{settings.quota_reset_hour:02d}:{settings.quota_reset_minute:02d} UTC"
        )
