"""Power and provisioning states as reported by the bare-metal backend.

The backend reports states as free-form strings (``"power on"``,
``"soft power off"``, ``None``). This module maps them onto small closed
enums so the decision engine never compares raw strings.
"""

from __future__ import annotations

from enum import Enum


class DesiredPowerState(str, Enum):
    """Power state requested by the caller."""

    ON = "power on"
    OFF = "power off"


class PowerState(str, Enum):
    """Observed power state of a host."""

    ON = "power on"
    OFF = "power off"
    UNKNOWN = "unknown"

    @classmethod
    def from_backend(cls, value: str | None) -> PowerState:
        """Map a backend power state string, treating anything unexpected as UNKNOWN."""
        if value == cls.ON.value:
            return cls.ON
        if value == cls.OFF.value:
            return cls.OFF
        return cls.UNKNOWN

    def matches(self, desired: DesiredPowerState) -> bool:
        return self.value == desired.value


class TargetPowerState(str, Enum):
    """Power transition already registered with the backend, if any."""

    ON = "power on"
    OFF = "power off"
    NONE = "none"

    @classmethod
    def from_backend(cls, value: str | None) -> TargetPowerState:
        """Map a backend target power state.

        Soft and reboot variants map to the state they converge to.
        """
        if not value:
            return cls.NONE
        return _TARGET_ALIASES.get(value, cls.NONE)

    def matches(self, desired: DesiredPowerState) -> bool:
        return self.value == desired.value


_TARGET_ALIASES: dict[str, TargetPowerState] = {
    "power on": TargetPowerState.ON,
    "rebooting": TargetPowerState.ON,
    "soft rebooting": TargetPowerState.ON,
    "power off": TargetPowerState.OFF,
    "soft power off": TargetPowerState.OFF,
}


class PowerTarget(str, Enum):
    """Power command values accepted by the backend states endpoint."""

    POWER_ON = "power on"
    POWER_OFF = "power off"
    SOFT_POWER_OFF = "soft power off"

    @property
    def is_soft(self) -> bool:
        return self is PowerTarget.SOFT_POWER_OFF


class PowerOffMode(str, Enum):
    """How a host should be powered off."""

    HARD = "hard"
    SOFT = "soft"


class SetPowerResult(str, Enum):
    """Classified response to a power change request."""

    ACCEPTED = "accepted"  # Request acknowledged, transition pending
    CONFLICT = "conflict"  # Host locked by a competing operation
    UNSUPPORTED = "unsupported"  # Soft power off rejected by the driver
