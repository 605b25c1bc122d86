"""Power decision engine.

Pure function of (desired power state, observed host status) to one of four
actions. Rules are evaluated in a fixed priority order and the first match
wins:

1. CONVERGED           current power state equals desired
2. WAIT_IN_FLIGHT      backend already has a transition toward desired
3. DEFER_PROVISIONING  host has provisioning activity
4. ISSUE               send a power change command

Rule 2 is checked before rule 3, so an in-flight transition toward the
desired state is waited on even while provisioning is active. An UNKNOWN
current power state never satisfies rule 1.

The engine keeps no memory between calls. Everything it knows about
in-flight work comes from the backend's target power and provisioning fields.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from enum import Enum

from .models import HostPowerStatus
from .outcome import POWER_REQUEUE_DELAY, Outcome, operation_complete, operation_continuing
from .states import DesiredPowerState


class PowerAction(str, Enum):
    """Decision for a single power reconciliation call."""

    CONVERGED = "converged"
    WAIT_IN_FLIGHT = "wait_in_flight"
    DEFER_PROVISIONING = "defer_provisioning"
    ISSUE = "issue"


Rule = Callable[[DesiredPowerState, HostPowerStatus], bool]


def _is_converged(desired: DesiredPowerState, status: HostPowerStatus) -> bool:
    return status.current_power_state.matches(desired)


def _is_in_flight(desired: DesiredPowerState, status: HostPowerStatus) -> bool:
    return status.target_power_state.matches(desired)


def _is_provisioning(_desired: DesiredPowerState, status: HostPowerStatus) -> bool:
    return status.has_provisioning_activity


# Priority order of the decision rules; ISSUE applies when none match
DECISION_RULES: tuple[tuple[PowerAction, Rule], ...] = (
    (PowerAction.CONVERGED, _is_converged),
    (PowerAction.WAIT_IN_FLIGHT, _is_in_flight),
    (PowerAction.DEFER_PROVISIONING, _is_provisioning),
)


def decide(desired: DesiredPowerState, status: HostPowerStatus) -> PowerAction:
    """Choose the action for ``desired`` given the observed ``status``.

    Args:
        desired: Power state the caller wants.
        status: Host status read from the backend for this call.

    Returns:
        The first matching PowerAction, or ISSUE.
    """
    for action, rule in DECISION_RULES:
        if rule(desired, status):
            return action
    return PowerAction.ISSUE


def outcome_for(action: PowerAction, delay: timedelta = POWER_REQUEUE_DELAY) -> Outcome:
    """Build the outcome for an action that does not send a command.

    Raises:
        ValueError: For ISSUE, whose outcome depends on the backend response.
    """
    match action:
        case PowerAction.CONVERGED:
            return operation_complete()
        case PowerAction.WAIT_IN_FLIGHT | PowerAction.DEFER_PROVISIONING:
            return operation_continuing(delay)
        case _:
            raise ValueError(f"No fixed outcome for action: {action.value}")
