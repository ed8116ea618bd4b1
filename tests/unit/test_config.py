"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when nothing is configured
- Values are read from environment variables
- Credential properties reflect which exchanges are usable
- Validation catches invalid configurations

Run with:
    pytest tests/unit/test_config.py -v
"""

from unittest.mock import patch

import pytest

from core.config import Settings, settings, validate_configuration


class TestConfigurationDefaults:
    """Test default values of a fresh Settings instance"""

    def test_session_defaults(self):
        """Verify WebSocket session defaults"""
        config = Settings(_env_file=None)

        assert config.ws_session_lifetime == 23 * 3600 + 50 * 60
        assert config.ws_heartbeat == 20.0
        assert config.ws_connect_timeout == 10.0
        assert config.ws_reconnect_delay == 1.0
        assert config.ws_max_reconnect_delay == 30.0
        assert config.ws_max_reconnect_attempts == 10

    def test_client_defaults(self):
        """Verify client behaviour defaults"""
        config = Settings(_env_file=None)

        assert config.connect_retry_attempts == 3
        assert config.connect_retry_delay == 3.0
        assert config.order_timeout == 5.0
        assert config.event_queue_size == 1000
        assert config.use_testnet is False

    def test_lifetime_is_under_a_day(self):
        """Verify the session is recycled before a 24h exchange-side expiry"""
        assert Settings(_env_file=None).ws_session_lifetime < 24 * 3600


class TestEnvironmentVariables:
    """Test loading from the environment"""

    def test_values_read_from_environment(self, monkeypatch):
        """Verify env vars override defaults case-insensitively and are converted"""
        monkeypatch.setenv("WS_SESSION_LIFETIME", "600")
        monkeypatch.setenv("use_testnet", "true")
        monkeypatch.setenv("ORDER_TIMEOUT", "2.5")

        config = Settings(_env_file=None)

        assert config.ws_session_lifetime == 600.0
        assert config.use_testnet is True
        assert config.order_timeout == 2.5


class TestCredentialProperties:
    """Test the has_*_credentials properties"""

    def test_no_credentials_by_default(self):
        """Verify every exchange is unconfigured without credentials"""
        config = Settings(_env_file=None)

        assert config.has_binance_credentials is False
        assert config.has_bybit_credentials is False
        assert config.has_okx_credentials is False

    def test_partial_credentials_do_not_count(self):
        """Verify an API key alone does not enable an exchange"""
        config = Settings(_env_file=None, binance_api_key="key", okx_api_key="key", okx_secret_key="secret")

        assert config.has_binance_credentials is False
        assert config.has_okx_credentials is False

    def test_complete_credentials(self):
        """Verify complete credentials enable the exchange"""
        config = Settings(_env_file=None, bybit_api_key="key", bybit_api_secret="secret")

        assert config.has_bybit_credentials is True


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        """Verify validation passes with the loaded configuration"""
        try:
            validate_configuration()
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    def test_invalid_log_level(self):
        """Verify an unknown log level is rejected"""
        with patch.object(settings, "log_level", "VERBOSE"):
            with pytest.raises(ValueError, match="LOG_LEVEL"):
                validate_configuration()

    def test_non_positive_lifetime(self):
        """Verify a zero session lifetime is rejected"""
        with patch.object(settings, "ws_session_lifetime", 0):
            with pytest.raises(ValueError, match="WS_SESSION_LIFETIME"):
                validate_configuration()

    def test_backoff_cap_below_base(self):
        """Verify the max reconnect delay may not be below the base delay"""
        with patch.object(settings, "ws_max_reconnect_delay", 0.5), \
             patch.object(settings, "ws_reconnect_delay", 2.0):
            with pytest.raises(ValueError, match="backoff"):
                validate_configuration()

    def test_zero_attempts(self):
        """Verify at least one reconnect attempt is required"""
        with patch.object(settings, "ws_max_reconnect_attempts", 0):
            with pytest.raises(ValueError, match="at least 1"):
                validate_configuration()

    def test_non_positive_order_timeout(self):
        """Verify a zero order timeout is rejected"""
        with patch.object(settings, "order_timeout", 0):
            with pytest.raises(ValueError, match="ORDER_TIMEOUT"):
                validate_configuration()
