"""Pydantic models for backend payloads and the host inventory.

These models provide:
1. Type-safe parsing of backend JSON responses
2. Validation of the YAML host inventory at the boundary (fail fast, fail loudly)
3. A clean conversion to the HostPowerStatus the decision engine consumes
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

from .states import DesiredPowerState, PowerOffMode, PowerState, TargetPowerState

# Host names follow Kubernetes object naming (RFC 1123 label)
VALID_HOST_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"
MAX_HOST_NAME_LENGTH = 63
MAX_HOSTS_PER_INVENTORY = 1000


# =============================================================================
# Decision Input
# =============================================================================


@dataclass(frozen=True)
class HostPowerStatus:
    """Live power status of a host, read fresh for every call."""

    current_power_state: PowerState = PowerState.UNKNOWN
    target_power_state: TargetPowerState = TargetPowerState.NONE
    # Raw target provision state; any non-empty value means provisioning is active
    provisioning_activity: str = ""

    @property
    def has_provisioning_activity(self) -> bool:
        return bool(self.provisioning_activity)


# =============================================================================
# Backend Payloads
# =============================================================================


class NodeStatus(BaseModel):
    """Node record returned by the bare-metal backend."""

    model_config = {"extra": "ignore"}

    uuid: str
    power_state: str | None = None
    target_power_state: str | None = None
    provision_state: str | None = None
    target_provision_state: str | None = None
    maintenance: bool = False
    last_error: str | None = None

    def to_power_status(self) -> HostPowerStatus:
        """Summarize the node into the fields the decision engine needs."""
        return HostPowerStatus(
            current_power_state=PowerState.from_backend(self.power_state),
            target_power_state=TargetPowerState.from_backend(self.target_power_state),
            provisioning_activity=self.target_provision_state or "",
        )


class Introspection(BaseModel):
    """Introspection status returned by the inspection service."""

    model_config = {"extra": "ignore"}

    uuid: str
    finished: bool = False
    state: str | None = None
    error: str | None = None


# =============================================================================
# Host Inventory
# =============================================================================


class HostSpec(BaseModel):
    """Desired power state for a single host."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=MAX_HOST_NAME_LENGTH)]
    # Backend node UUID used to address the host
    id: Annotated[str, Field(min_length=1, max_length=64)]
    online: bool = True
    power_off_mode: PowerOffMode = Field(PowerOffMode.HARD, alias="powerOffMode")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_HOST_NAME_PATTERN, v):
            raise ValueError(f"name must match pattern {VALID_HOST_NAME_PATTERN}")
        return v

    @property
    def desired_power_state(self) -> DesiredPowerState:
        return DesiredPowerState.ON if self.online else DesiredPowerState.OFF


class HostInventory(BaseModel):
    """Set of hosts managed by one controller instance."""

    model_config = {"extra": "ignore"}

    hosts: list[HostSpec] = Field(default_factory=list, max_length=MAX_HOSTS_PER_INVENTORY)

    @field_validator("hosts")
    @classmethod
    def validate_unique(cls, v: list[HostSpec]) -> list[HostSpec]:
        names = [h.name for h in v]
        ids = [h.id for h in v]
        duplicate_names = sorted({n for n in names if names.count(n) > 1})
        if duplicate_names:
            raise ValueError(f"duplicate host names: {duplicate_names}")
        duplicate_ids = sorted({i for i in ids if ids.count(i) > 1})
        if duplicate_ids:
            raise ValueError(f"duplicate host ids: {duplicate_ids}")
        return v

    def get(self, name: str) -> HostSpec | None:
        for host in self.hosts:
            if host.name == name:
                return host
        return None
