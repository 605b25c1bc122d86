"""Configuration management with validation.

All settings are validated at load time so a misconfigured controller fails
at startup instead of on its first backend call.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path


class AuthType(str, Enum):
    """Supported backend authentication schemes."""

    NOAUTH = "noauth"
    HTTP_BASIC = "http_basic"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 60
MIN_RECONCILE_INTERVAL_SECONDS = 10
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_POWER_REQUEUE_DELAY_SECONDS = 10
MIN_POWER_REQUEUE_DELAY_SECONDS = 1
MAX_POWER_REQUEUE_DELAY_SECONDS = 300

DEFAULT_DIRTY_RECHECK_SECONDS = 1

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10
MAX_REQUEST_TIMEOUT_SECONDS = 300
DEFAULT_CALL_TIMEOUT_SECONDS = 150

# Transport retries for idempotent status reads; power commands are never retried
STATUS_READ_RETRIES = 3
RETRY_BACKOFF_FACTOR = 0.5
# Power commands one call may send: soft power off plus the hard fallback
MAX_POWER_COMMANDS_PER_CALL = 2

DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS = 180

DEFAULT_API_VERSION = "1.81"
DEFAULT_HOSTS_FILE = "/etc/bmpower/hosts.yaml"

MAX_CONCURRENT_HOSTS = 50
MAX_HOSTS_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max inventory file
MAX_CREDENTIAL_FILE_SIZE_BYTES = 4096

# Input validation patterns
VALID_ENDPOINT_PATTERN = r"^https?://[^\s/$.?#][^\s]*$"
VALID_API_VERSION_PATTERN = r"^1\.[0-9]{1,3}$"


def status_read_budget_seconds(request_timeout_seconds: int) -> float:
    """Worst-case wall time of one status read, retries and back-off included.

    Each attempt may spend ``request_timeout_seconds`` connecting and again
    reading. azure-core sleeps ``factor * 2**(n - 1)`` before the n-th retry,
    starting from the second one.
    """
    attempts = STATUS_READ_RETRIES + 1
    backoff = sum(RETRY_BACKOFF_FACTOR * 2 ** (n - 1) for n in range(2, STATUS_READ_RETRIES + 1))
    return attempts * 2 * request_timeout_seconds + backoff


def max_call_duration_seconds(request_timeout_seconds: int) -> float:
    """Worst-case wall time of one power call: a status read plus its commands."""
    commands = MAX_POWER_COMMANDS_PER_CALL * 2 * request_timeout_seconds
    return status_read_budget_seconds(request_timeout_seconds) + commands


@dataclass(frozen=True)
class BackendAuthConfig:
    """Authentication settings for the backend and inspection services.

    Passwords are never taken from the environment. With HTTP basic auth the
    password is read from ``password_file`` when a client is built.
    """

    auth_type: AuthType = AuthType.NOAUTH
    username: str | None = None
    password_file: Path | None = None

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty when valid)."""
        errors: list[str] = []
        if self.auth_type == AuthType.HTTP_BASIC:
            if not self.username:
                errors.append("IRONIC_USERNAME is required when auth type is http_basic")
            if self.password_file is None:
                errors.append("IRONIC_PASSWORD_FILE is required when auth type is http_basic")
            elif not self.password_file.is_file():
                errors.append(f"Password file does not exist: {self.password_file}")
        return errors


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    ironic_endpoint: str

    # Optional inspection service
    inspector_endpoint: str | None = None

    auth: BackendAuthConfig = field(default_factory=BackendAuthConfig)
    api_version: str = DEFAULT_API_VERSION

    # Paths
    hosts_file: Path = field(default_factory=lambda: Path(DEFAULT_HOSTS_FILE))

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    power_requeue_delay_seconds: int = DEFAULT_POWER_REQUEUE_DELAY_SECONDS
    dirty_recheck_seconds: int = DEFAULT_DIRTY_RECHECK_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    call_timeout_seconds: int = DEFAULT_CALL_TIMEOUT_SECONDS
    soft_power_off_timeout_seconds: int = DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS

    # Behavior
    max_concurrent_hosts: int = 10
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.ironic_endpoint:
            errors.append("IRONIC_ENDPOINT is required")
        elif not re.match(VALID_ENDPOINT_PATTERN, self.ironic_endpoint):
            errors.append(f"IRONIC_ENDPOINT must be an http(s) URL: {self.ironic_endpoint}")

        if self.inspector_endpoint and not re.match(
            VALID_ENDPOINT_PATTERN, self.inspector_endpoint
        ):
            errors.append(
                f"IRONIC_INSPECTOR_ENDPOINT must be an http(s) URL: {self.inspector_endpoint}"
            )

        if not re.match(VALID_API_VERSION_PATTERN, self.api_version):
            errors.append(f"IRONIC_API_VERSION must look like 1.NN: {self.api_version}")

        errors.extend(self.auth.validate())

        # Timing validation
        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not (
            MIN_POWER_REQUEUE_DELAY_SECONDS
            <= self.power_requeue_delay_seconds
            <= MAX_POWER_REQUEUE_DELAY_SECONDS
        ):
            errors.append(
                f"POWER_REQUEUE_DELAY must be between {MIN_POWER_REQUEUE_DELAY_SECONDS} "
                f"and {MAX_POWER_REQUEUE_DELAY_SECONDS} seconds"
            )

        if self.dirty_recheck_seconds < 0:
            errors.append("DIRTY_RECHECK_INTERVAL cannot be negative")

        if not (1 <= self.request_timeout_seconds <= MAX_REQUEST_TIMEOUT_SECONDS):
            errors.append(
                f"REQUEST_TIMEOUT must be between 1 and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        # The transport must give up before the reconcile loop stops waiting for a call
        required = math.ceil(max_call_duration_seconds(self.request_timeout_seconds))
        if self.call_timeout_seconds < required:
            errors.append(
                f"CALL_TIMEOUT must be at least {required} seconds when REQUEST_TIMEOUT is "
                f"{self.request_timeout_seconds} seconds"
            )

        if self.soft_power_off_timeout_seconds < 1:
            errors.append("SOFT_POWER_OFF_TIMEOUT must be at least 1 second")

        if not (1 <= self.max_concurrent_hosts <= MAX_CONCURRENT_HOSTS):
            errors.append(f"MAX_CONCURRENT_HOSTS must be between 1 and {MAX_CONCURRENT_HOSTS}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def power_requeue_delay(self) -> timedelta:
        return timedelta(seconds=self.power_requeue_delay_seconds)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            IRONIC_ENDPOINT: Base URL of the bare-metal backend (required)
            IRONIC_INSPECTOR_ENDPOINT: Base URL of the inspection service
            IRONIC_AUTH_TYPE: One of noauth, http_basic (default: noauth)
            IRONIC_USERNAME: Username for http_basic
            IRONIC_PASSWORD_FILE: File holding the password for http_basic
            IRONIC_API_VERSION: Microversion header value (default: 1.81)
            HOSTS_FILE: Path to YAML host inventory (default: /etc/bmpower/hosts.yaml)
            RECONCILE_INTERVAL: Seconds between checks of a converged host (default: 60)
            POWER_REQUEUE_DELAY: Back-off while a transition is blocked (default: 10)
            DIRTY_RECHECK_INTERVAL: Re-check delay for a changing host (default: 1)
            REQUEST_TIMEOUT: Connect and read timeout per HTTP attempt (default: 10)
            CALL_TIMEOUT: Upper bound for one power call in seconds (default: 150)
            SOFT_POWER_OFF_TIMEOUT: Timeout passed with soft power off (default: 180)
            MAX_CONCURRENT_HOSTS: Hosts reconciled in parallel (default: 10)
            DRY_RUN: If "true", decide but never send power commands (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_auth_type(value: str | None) -> AuthType:
            if not value:
                return AuthType.NOAUTH
            try:
                return AuthType(value)
            except ValueError as e:
                valid = [a.value for a in AuthType]
                raise ConfigurationError(f"IRONIC_AUTH_TYPE must be one of {valid}: {value}") from e

        password_file = os.environ.get("IRONIC_PASSWORD_FILE")

        return cls(
            ironic_endpoint=os.environ.get("IRONIC_ENDPOINT", ""),
            inspector_endpoint=os.environ.get("IRONIC_INSPECTOR_ENDPOINT") or None,
            auth=BackendAuthConfig(
                auth_type=get_auth_type(os.environ.get("IRONIC_AUTH_TYPE")),
                username=os.environ.get("IRONIC_USERNAME"),
                password_file=Path(password_file) if password_file else None,
            ),
            api_version=os.environ.get("IRONIC_API_VERSION", DEFAULT_API_VERSION),
            hosts_file=Path(os.environ.get("HOSTS_FILE", DEFAULT_HOSTS_FILE)),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            power_requeue_delay_seconds=get_int(
                "POWER_REQUEUE_DELAY", DEFAULT_POWER_REQUEUE_DELAY_SECONDS
            ),
            dirty_recheck_seconds=get_int("DIRTY_RECHECK_INTERVAL", DEFAULT_DIRTY_RECHECK_SECONDS),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            call_timeout_seconds=get_int("CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT_SECONDS),
            soft_power_off_timeout_seconds=get_int(
                "SOFT_POWER_OFF_TIMEOUT", DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS
            ),
            max_concurrent_hosts=get_int("MAX_CONCURRENT_HOSTS", 10),
            dry_run=get_bool("DRY_RUN", False),
        )
