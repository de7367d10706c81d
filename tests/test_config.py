"""Unit tests for hookrelay configuration."""

import logging
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hookrelay.config import RetrySettings, Settings


class TestRetrySettings:
    """Tests for RetrySettings model."""

    def test_defaults(self):
        """Defaults follow one second base, five minute cap, ten percent jitter."""
        retry = RetrySettings()
        assert retry.base_delay_seconds == 1.0
        assert retry.max_delay_seconds == 300.0
        assert retry.jitter_factor == 0.1
        assert retry.retry_on_429 is True

    def test_jitter_bounds(self):
        """Jitter factor must be between 0 and 1."""
        with pytest.raises(ValidationError):
            RetrySettings(jitter_factor=1.5)
        with pytest.raises(ValidationError):
            RetrySettings(jitter_factor=-0.1)

    def test_max_below_base_rejected(self):
        """The cap cannot be smaller than the first delay."""
        with pytest.raises(ValidationError, match="max_delay_seconds"):
            RetrySettings(base_delay_seconds=10, max_delay_seconds=5)


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Default settings should be reasonable."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.max_concurrent_deliveries == 4
        assert settings.drain_timeout_seconds == 30.0
        assert settings.default_timeout_ms == 30000
        assert settings.default_retry_attempts == 3
        assert settings.circuit_breaker_enabled is True
        assert isinstance(settings.retry, RetrySettings)

    def test_concurrency_bounds(self):
        """The worker pool needs at least one worker."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_deliveries=0)

    def test_webhook_default_bounds(self):
        """Defaults obey the same limits as webhook validation."""
        with pytest.raises(ValidationError):
            Settings(default_timeout_ms=300001)
        with pytest.raises(ValidationError):
            Settings(default_retry_attempts=11)

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        assert Settings(log_format="json").log_format == "json"
        assert Settings(log_format="text").log_format == "text"
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_env_prefix(self):
        """Settings should use HOOKRELAY_ prefix for environment variables."""
        with patch.dict(os.environ, {"HOOKRELAY_MAX_CONCURRENT_DELIVERIES": "8"}):
            settings = Settings(_env_file=None)
            assert settings.max_concurrent_deliveries == 8

    def test_env_nested_retry(self):
        """Nested retry settings use a double underscore."""
        env = {
            "HOOKRELAY_RETRY__MAX_DELAY_SECONDS": "60",
            "HOOKRELAY_RETRY__RETRY_ON_429": "false",
        }
        with patch.dict(os.environ, env):
            settings = Settings(_env_file=None)
            assert settings.retry.max_delay_seconds == 60.0
            assert settings.retry.retry_on_429 is False
            assert settings.retry.base_delay_seconds == 1.0

    def test_production_zero_drain_warns(self, caplog):
        """A zero drain timeout in production is allowed but logged."""
        with caplog.at_level(logging.WARNING, logger="hookrelay.config"):
            settings = Settings(env="production", drain_timeout_seconds=0, _env_file=None)

        assert settings.drain_timeout_seconds == 0
        assert "drain_timeout_seconds is 0 in production" in caplog.text
