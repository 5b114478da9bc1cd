"""Unit tests for EventRelay configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from eventrelay.config import DeliveryDefaults, InboundDefaults, Settings
from eventrelay.exceptions import ConfigurationError


class TestDeliveryDefaults:
    """Tests for outbound defaults."""

    def test_defaults(self):
        defaults = DeliveryDefaults()
        assert defaults.timeout_ms == 10_000
        assert defaults.max_attempts == 3
        assert defaults.initial_delay_ms == 1_000
        assert defaults.backoff_multiplier == 2.0
        assert defaults.max_delay_ms == 3_600_000
        assert defaults.response_body_limit == 1000
        assert defaults.auto_disable_after_failures == 0

    def test_bounds(self):
        with pytest.raises(ValidationError):
            DeliveryDefaults(timeout_ms=50)
        with pytest.raises(ValidationError):
            DeliveryDefaults(max_attempts=0)
        with pytest.raises(ValidationError):
            DeliveryDefaults(max_concurrent=0)


class TestInboundDefaults:
    def test_defaults(self):
        defaults = InboundDefaults()
        assert defaults.signing_secret is None
        assert defaults.signature_tolerance_seconds == 300
        assert defaults.max_attempts == 5
        assert defaults.max_delay_ms == 300_000
        assert defaults.process_inline is True


class TestSettings:
    """Tests for Settings configuration."""

    def test_default_settings(self):
        settings = Settings(_env_file=None)
        assert settings.env == "development"
        assert settings.storage_backend == "sql"
        assert settings.database_url.startswith("sqlite+aiosqlite://")
        assert settings.poll_interval_seconds == 1.0
        assert settings.log_format == "json"

    def test_env_prefix(self):
        """Settings should read EVENTRELAY_ variables."""
        with patch.dict(
            os.environ,
            {"EVENTRELAY_STORAGE_BACKEND": "memory", "EVENTRELAY_LOG_LEVEL": "DEBUG"},
        ):
            settings = Settings(_env_file=None)
        assert settings.storage_backend == "memory"
        assert settings.log_level == "DEBUG"

    def test_nested_env_delimiter(self):
        """Nested groups are set with a double underscore."""
        with patch.dict(
            os.environ,
            {
                "EVENTRELAY_DELIVERY__MAX_ATTEMPTS": "7",
                "EVENTRELAY_INBOUND__SIGNING_SECRET": "whsec_env",
            },
        ):
            settings = Settings(_env_file=None)
        assert settings.delivery.max_attempts == 7
        assert settings.inbound.signing_secret == "whsec_env"

    def test_invalid_backend(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, storage_backend="redis")

    def test_production_requires_inbound_secret(self):
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None, env="production")

    def test_production_with_secret(self):
        settings = Settings(
            _env_file=None, env="production", inbound={"signing_secret": "whsec_prod"}
        )
        assert settings.inbound.signing_secret == "whsec_prod"
