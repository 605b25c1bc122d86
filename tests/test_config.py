"""Tests for configuration loading."""

import os
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from power_controller.config import (
    DEFAULT_HOSTS_FILE,
    AuthType,
    BackendAuthConfig,
    Config,
    ConfigurationError,
    max_call_duration_seconds,
    status_read_budget_seconds,
)

ENDPOINT = "http://ironic.example.com:6385"


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(ironic_endpoint=ENDPOINT)

        assert config.ironic_endpoint == ENDPOINT
        assert config.inspector_endpoint is None
        assert config.auth.auth_type == AuthType.NOAUTH
        assert config.hosts_file == Path(DEFAULT_HOSTS_FILE)
        assert config.power_requeue_delay == timedelta(seconds=10)
        assert config.dry_run is False

    def test_missing_endpoint(self) -> None:
        """Test that missing endpoint raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint="")

        assert "IRONIC_ENDPOINT" in str(exc_info.value)

    def test_invalid_endpoint(self) -> None:
        """Test that a non-http endpoint raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint="ftp://ironic")

        assert "IRONIC_ENDPOINT" in str(exc_info.value)

    def test_invalid_inspector_endpoint(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, inspector_endpoint="inspector:5050")

        assert "IRONIC_INSPECTOR_ENDPOINT" in str(exc_info.value)

    def test_invalid_api_version(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, api_version="latest")

        assert "IRONIC_API_VERSION" in str(exc_info.value)

    def test_invalid_reconcile_interval(self) -> None:
        """Test that out-of-range reconcile interval raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, reconcile_interval_seconds=5)  # Too low

        assert "RECONCILE_INTERVAL" in str(exc_info.value)

    def test_invalid_requeue_delay(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, power_requeue_delay_seconds=0)

        assert "POWER_REQUEUE_DELAY" in str(exc_info.value)

    def test_call_timeout_shorter_than_request(self) -> None:
        """Test that a call cannot time out before its first request."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, request_timeout_seconds=60, call_timeout_seconds=30)

        assert "CALL_TIMEOUT" in str(exc_info.value)

    def test_call_timeout_must_cover_status_retries(self) -> None:
        """Test that the call timeout covers retried reads and both commands."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, request_timeout_seconds=30, call_timeout_seconds=90)

        assert "CALL_TIMEOUT must be at least 363 seconds" in str(exc_info.value)

    def test_worst_case_call_duration(self) -> None:
        # 4 attempts of connect + read, 1s + 2s back-off, then two commands
        assert status_read_budget_seconds(10) == 83.0
        assert max_call_duration_seconds(10) == 123.0

    def test_default_timeouts_are_consistent(self) -> None:
        config = Config(ironic_endpoint=ENDPOINT)

        assert config.call_timeout_seconds >= max_call_duration_seconds(
            config.request_timeout_seconds
        )

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ironic_endpoint=ENDPOINT, max_concurrent_hosts=0)

        assert "MAX_CONCURRENT_HOSTS" in str(exc_info.value)

    def test_errors_are_aggregated(self) -> None:
        """Test that every problem is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                ironic_endpoint="",
                reconcile_interval_seconds=1,
                soft_power_off_timeout_seconds=0,
            )

        message = str(exc_info.value)
        assert "IRONIC_ENDPOINT" in message
        assert "RECONCILE_INTERVAL" in message
        assert "SOFT_POWER_OFF_TIMEOUT" in message

    def test_http_basic_requires_username_and_file(self) -> None:
        """Test that basic auth needs both a username and a password file."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                ironic_endpoint=ENDPOINT,
                auth=BackendAuthConfig(auth_type=AuthType.HTTP_BASIC),
            )

        assert "IRONIC_USERNAME" in str(exc_info.value)
        assert "IRONIC_PASSWORD_FILE" in str(exc_info.value)

    def test_http_basic_password_file_must_exist(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                ironic_endpoint=ENDPOINT,
                auth=BackendAuthConfig(
                    auth_type=AuthType.HTTP_BASIC,
                    username="admin",
                    password_file=tmp_path / "missing",
                ),
            )

        assert "does not exist" in str(exc_info.value)

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment."""
        password_file = tmp_path / "password"
        password_file.write_text("secret")
        hosts_file = tmp_path / "hosts.yaml"

        env = {
            "IRONIC_ENDPOINT": ENDPOINT,
            "IRONIC_INSPECTOR_ENDPOINT": "http://inspector.example.com:5050",
            "IRONIC_AUTH_TYPE": "http_basic",
            "IRONIC_USERNAME": "admin",
            "IRONIC_PASSWORD_FILE": str(password_file),
            "IRONIC_API_VERSION": "1.46",
            "HOSTS_FILE": str(hosts_file),
            "RECONCILE_INTERVAL": "120",
            "POWER_REQUEUE_DELAY": "20",
            "SOFT_POWER_OFF_TIMEOUT": "300",
            "MAX_CONCURRENT_HOSTS": "4",
            "DRY_RUN": "true",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.inspector_endpoint == "http://inspector.example.com:5050"
        assert config.auth.auth_type == AuthType.HTTP_BASIC
        assert config.auth.username == "admin"
        assert config.auth.password_file == password_file
        assert config.api_version == "1.46"
        assert config.hosts_file == hosts_file
        assert config.reconcile_interval_seconds == 120
        assert config.power_requeue_delay == timedelta(seconds=20)
        assert config.soft_power_off_timeout_seconds == 300
        assert config.max_concurrent_hosts == 4
        assert config.dry_run is True

    def test_from_env_defaults(self) -> None:
        with patch.dict(os.environ, {"IRONIC_ENDPOINT": ENDPOINT}, clear=True):
            config = Config.from_env()

        assert config.auth.auth_type == AuthType.NOAUTH
        assert config.inspector_endpoint is None
        assert config.dry_run is False

    def test_from_env_invalid_integer(self) -> None:
        env = {"IRONIC_ENDPOINT": ENDPOINT, "RECONCILE_INTERVAL": "often"}

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "RECONCILE_INTERVAL must be an integer" in str(exc_info.value)

    def test_from_env_invalid_auth_type(self) -> None:
        env = {"IRONIC_ENDPOINT": ENDPOINT, "IRONIC_AUTH_TYPE": "keystone"}

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "IRONIC_AUTH_TYPE" in str(exc_info.value)
