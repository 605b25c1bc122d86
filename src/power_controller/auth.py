"""Backend authentication.

SECURITY INVARIANTS:
1. Backend passwords must never be present in the environment
2. Passwords are read from a mounted file at client construction time
3. Credentials are attached per request by an azure-core pipeline policy
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Any

from azure.core.pipeline import PipelineRequest
from azure.core.pipeline.policies import SansIOHTTPPolicy

from .config import MAX_CREDENTIAL_FILE_SIZE_BYTES, AuthType, BackendAuthConfig

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "IRONIC_PASSWORD",
    "IRONIC_INSPECTOR_PASSWORD",
    "OS_PASSWORD",
)


class CredentialLeakError(Exception):
    """Raised when a backend password is found in the environment.

    This is a fatal error that prevents controller startup.
    """

    pass


def enforce_file_based_credentials() -> None:
    """Ensure no backend password is passed through the environment.

    Raises:
        CredentialLeakError: If any forbidden credential variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Credential found in environment",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise CredentialLeakError(
                f"{env_var} is set. Mount the password as a file and point "
                f"IRONIC_PASSWORD_FILE at it instead."
            )


def read_password_file(auth: BackendAuthConfig) -> str:
    """Read the backend password from its file.

    Raises:
        CredentialLeakError: If the file is missing, oversized or empty.
    """
    if auth.password_file is None:
        raise CredentialLeakError("No password file configured")

    try:
        size = auth.password_file.stat().st_size
    except OSError as e:
        raise CredentialLeakError(f"Cannot stat password file {auth.password_file}: {e}") from e

    if size > MAX_CREDENTIAL_FILE_SIZE_BYTES:
        raise CredentialLeakError(f"Password file is too large: {auth.password_file}")

    try:
        password = auth.password_file.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialLeakError(f"Cannot read password file {auth.password_file}: {e}") from e
    if not password:
        raise CredentialLeakError(f"Password file is empty: {auth.password_file}")
    return password


class BasicAuthPolicy(SansIOHTTPPolicy):
    """Attach an HTTP basic Authorization header to every request."""

    def __init__(self, username: str, password: str) -> None:
        super().__init__()
        token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        self._header = f"Basic {token}"

    def on_request(self, request: PipelineRequest[Any]) -> None:
        request.http_request.headers["Authorization"] = self._header


def build_auth_policy(auth: BackendAuthConfig) -> SansIOHTTPPolicy | None:
    """Build the pipeline policy for the configured auth type.

    Returns:
        A policy for http_basic, None for noauth.

    Raises:
        CredentialLeakError: If credentials are leaked or unreadable.
    """
    enforce_file_based_credentials()

    if auth.auth_type == AuthType.NOAUTH:
        logger.info("Backend authentication disabled", extra={"auth_type": auth.auth_type.value})
        return None

    password = read_password_file(auth)
    logger.info(
        "Using HTTP basic authentication",
        extra={"auth_type": auth.auth_type.value, "username": auth.username},
    )
    # SAFETY: username is validated non-empty in BackendAuthConfig.validate()
    return BasicAuthPolicy(auth.username or "", password)
