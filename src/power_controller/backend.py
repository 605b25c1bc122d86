"""Backend clients for the bare-metal and inspection services.

The clients speak the Ironic-style REST API through an azure-core
PipelineClient. Every transport failure is translated into the controller's
own error hierarchy at this boundary, so the power logic never sees raw
azure-core exceptions.

STATUS READS: GET /v1/nodes/{id}
POWER CHANGES: PUT /v1/nodes/{id}/states/power  {"target": "...", "timeout": N}
    202 Accepted -> transition is pending on the backend
    409 Conflict -> node is locked by another operation
INTROSPECTION: GET /v1/introspection/{id}

Power change requests are never retried by the transport. A retried PUT
could issue a second command for the same transition.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from azure.core import PipelineClient
from azure.core.exceptions import AzureError, ServiceRequestError, ServiceResponseError
from azure.core.pipeline.policies import HeadersPolicy, RetryPolicy, UserAgentPolicy
from azure.core.rest import HttpRequest, HttpResponse
from pydantic import ValidationError

from .auth import build_auth_policy
from .config import (
    RETRY_BACKOFF_FACTOR,
    STATUS_READ_RETRIES,
    Config,
    status_read_budget_seconds,
)
from .errors import BackendUnavailableError, HostNotFoundError
from .models import HostPowerStatus, Introspection, NodeStatus
from .states import PowerTarget, SetPowerResult

logger = logging.getLogger(__name__)

USER_AGENT = "bmpower"
API_VERSION_HEADER = "X-OpenStack-Ironic-API-Version"

ACCEPTED_STATUS_CODES = frozenset({200, 202, 204})
CONFLICT_STATUS_CODE = 409
BAD_REQUEST_STATUS_CODE = 400
NOT_FOUND_STATUS_CODE = 404


class BackendClient(Protocol):
    """Operations the power logic needs from the bare-metal backend."""

    def get_status(self, host_id: str) -> HostPowerStatus:
        """Read current power, target power and provisioning activity.

        Raises:
            HostNotFoundError: If the backend has no such host.
            BackendUnavailableError: On transport, auth or payload failures.
        """
        ...

    def set_power(
        self, host_id: str, target: PowerTarget, timeout_seconds: int | None = None
    ) -> SetPowerResult:
        """Request a power change.

        Raises:
            BackendUnavailableError: On any failure other than accepted/conflict.
        """
        ...


def _build_pipeline_client(
    endpoint: str, config: Config, extra_headers: dict[str, str] | None = None
) -> PipelineClient:
    """Create a PipelineClient with headers, retry and auth policies."""
    headers = {"Accept": "application/json"}
    if extra_headers:
        headers.update(extra_headers)

    policies: list[Any] = [
        HeadersPolicy(headers),
        UserAgentPolicy(user_agent=USER_AGENT),
        RetryPolicy(
            retry_total=STATUS_READ_RETRIES,
            retry_backoff_factor=RETRY_BACKOFF_FACTOR,
            timeout=status_read_budget_seconds(config.request_timeout_seconds),
        ),
    ]
    auth_policy = build_auth_policy(config.auth)
    if auth_policy is not None:
        policies.append(auth_policy)

    return PipelineClient(base_url=endpoint.rstrip("/"), policies=policies)


def _read_json(response: HttpResponse, what: str) -> dict[str, Any]:
    """Decode a JSON object body or raise BackendUnavailableError."""
    try:
        body = response.json()
    except ValueError as e:
        raise BackendUnavailableError(
            f"Malformed {what} response: {e}", status_code=response.status_code
        ) from e
    if not isinstance(body, dict):
        raise BackendUnavailableError(
            f"Malformed {what} response: expected a JSON object",
            status_code=response.status_code,
        )
    return body


class _RestClient:
    """Shared request handling for the backend REST services."""

    def __init__(self, pipeline_client: Any, request_timeout_seconds: int) -> None:
        self._client = pipeline_client
        self._timeout = request_timeout_seconds

    def _send(self, request: HttpRequest, **kwargs: Any) -> HttpResponse:
        """Send a request with bounded connect/read timeouts.

        Raises:
            BackendUnavailableError: If the request could not complete.
        """
        try:
            return self._client.send_request(
                request,
                connection_timeout=self._timeout,
                read_timeout=self._timeout,
                **kwargs,
            )
        except ServiceRequestError as e:
            raise BackendUnavailableError(f"Cannot reach backend: {e}") from e
        except ServiceResponseError as e:
            raise BackendUnavailableError(f"No response from backend: {e}") from e
        except AzureError as e:
            raise BackendUnavailableError(f"Backend request failed: {e}") from e

    def close(self) -> None:
        self._client.close()


class IronicClient(_RestClient):
    """BackendClient implementation for an Ironic-style bare-metal API."""

    def __init__(self, config: Config, pipeline_client: Any | None = None) -> None:
        """Initialize the client.

        Args:
            config: Validated controller configuration.
            pipeline_client: Pre-built client exposing ``send_request``.
                Built from ``config`` when omitted.
        """
        if pipeline_client is None:
            pipeline_client = _build_pipeline_client(
                config.ironic_endpoint,
                config,
                extra_headers={API_VERSION_HEADER: config.api_version},
            )
        super().__init__(pipeline_client, config.request_timeout_seconds)

    def get_node(self, host_id: str) -> NodeStatus:
        """Fetch the full node record for ``host_id``."""
        response = self._send(HttpRequest("GET", f"/v1/nodes/{host_id}"))

        if response.status_code == NOT_FOUND_STATUS_CODE:
            raise HostNotFoundError(host_id)
        if response.status_code != 200:
            raise BackendUnavailableError(
                f"Failed to read node {host_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        body = _read_json(response, "node")
        try:
            return NodeStatus.model_validate(body)
        except ValidationError as e:
            raise BackendUnavailableError(
                f"Invalid node payload for {host_id}: {e.error_count()} errors",
                status_code=response.status_code,
            ) from e

    def get_status(self, host_id: str) -> HostPowerStatus:
        node = self.get_node(host_id)
        if node.maintenance:
            logger.info(
                "Node is in maintenance mode",
                extra={"host_id": host_id, "last_error": node.last_error},
            )
        return node.to_power_status()

    def set_power(
        self, host_id: str, target: PowerTarget, timeout_seconds: int | None = None
    ) -> SetPowerResult:
        body: dict[str, Any] = {"target": target.value}
        if timeout_seconds is not None:
            body["timeout"] = timeout_seconds

        request = HttpRequest("PUT", f"/v1/nodes/{host_id}/states/power", json=body)
        response = self._send(request, retry_total=0)
        status_code = response.status_code

        if status_code in ACCEPTED_STATUS_CODES:
            return SetPowerResult.ACCEPTED
        if status_code == CONFLICT_STATUS_CODE:
            return SetPowerResult.CONFLICT
        if status_code == BAD_REQUEST_STATUS_CODE and target.is_soft:
            return SetPowerResult.UNSUPPORTED
        if status_code == NOT_FOUND_STATUS_CODE:
            raise HostNotFoundError(host_id)

        raise BackendUnavailableError(
            f"Power change to '{target.value}' failed for {host_id}: HTTP {status_code}",
            status_code=status_code,
        )


class InspectorClient(_RestClient):
    """Client for the hardware inspection service."""

    def __init__(self, config: Config, pipeline_client: Any | None = None) -> None:
        if pipeline_client is None:
            if not config.inspector_endpoint:
                raise ValueError("inspector_endpoint is not configured")
            pipeline_client = _build_pipeline_client(config.inspector_endpoint, config)
        super().__init__(pipeline_client, config.request_timeout_seconds)

    def get_introspection(self, host_id: str) -> Introspection:
        """Fetch the introspection status for ``host_id``.

        Raises:
            HostNotFoundError: If no introspection exists for the host.
            BackendUnavailableError: On any other failure.
        """
        response = self._send(HttpRequest("GET", f"/v1/introspection/{host_id}"))

        if response.status_code == NOT_FOUND_STATUS_CODE:
            raise HostNotFoundError(host_id)
        if response.status_code != 200:
            raise BackendUnavailableError(
                f"Failed to read introspection for {host_id}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        body = _read_json(response, "introspection")
        body.setdefault("uuid", host_id)
        try:
            return Introspection.model_validate(body)
        except ValidationError as e:
            raise BackendUnavailableError(
                f"Invalid introspection payload for {host_id}: {e.error_count()} errors",
                status_code=response.status_code,
            ) from e
