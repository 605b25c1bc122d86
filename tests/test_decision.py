"""Tests for the power decision engine."""

from __future__ import annotations

import itertools
from datetime import timedelta

import pytest

from power_controller.decision import DECISION_RULES, PowerAction, decide, outcome_for
from power_controller.models import HostPowerStatus
from power_controller.states import DesiredPowerState, PowerState, TargetPowerState

PROVISIONING_VALUES = ("", "active", "deleted")


def expected_action(desired: DesiredPowerState, status: HostPowerStatus) -> PowerAction:
    if status.current_power_state.value == desired.value:
        return PowerAction.CONVERGED
    if status.target_power_state.value == desired.value:
        return PowerAction.WAIT_IN_FLIGHT
    if status.provisioning_activity:
        return PowerAction.DEFER_PROVISIONING
    return PowerAction.ISSUE


class TestDecide:
    """Tests for decide()."""

    def test_rule_priority_order(self) -> None:
        """Test that rules are evaluated converged, in-flight, provisioning."""
        assert [action for action, _ in DECISION_RULES] == [
            PowerAction.CONVERGED,
            PowerAction.WAIT_IN_FLIGHT,
            PowerAction.DEFER_PROVISIONING,
        ]

    @pytest.mark.parametrize(
        ("desired", "current", "target", "provisioning"),
        list(
            itertools.product(
                DesiredPowerState, PowerState, TargetPowerState, PROVISIONING_VALUES
            )
        ),
    )
    def test_every_combination(
        self,
        desired: DesiredPowerState,
        current: PowerState,
        target: TargetPowerState,
        provisioning: str,
    ) -> None:
        """Test the first matching rule wins for every input combination."""
        status = HostPowerStatus(current, target, provisioning)
        assert decide(desired, status) == expected_action(desired, status)

    def test_converged_beats_provisioning(self) -> None:
        """Test that a converged host is left alone during provisioning."""
        status = HostPowerStatus(PowerState.OFF, TargetPowerState.NONE, "deleted")
        assert decide(DesiredPowerState.OFF, status) == PowerAction.CONVERGED

    def test_in_flight_beats_provisioning(self) -> None:
        """Test that a matching transition is waited on during provisioning."""
        status = HostPowerStatus(PowerState.OFF, TargetPowerState.ON, "active")
        assert decide(DesiredPowerState.ON, status) == PowerAction.WAIT_IN_FLIGHT

    def test_opposite_transition_is_not_in_flight(self) -> None:
        """Test that a transition away from desired does not count."""
        status = HostPowerStatus(PowerState.ON, TargetPowerState.ON, "")
        assert decide(DesiredPowerState.OFF, status) == PowerAction.ISSUE

    def test_unknown_is_never_converged(self) -> None:
        """Test that UNKNOWN power state always needs a decision past rule 1."""
        status = HostPowerStatus()
        assert decide(DesiredPowerState.ON, status) == PowerAction.ISSUE
        assert decide(DesiredPowerState.OFF, status) == PowerAction.ISSUE


class TestOutcomeFor:
    """Tests for outcome_for()."""

    def test_converged(self) -> None:
        outcome = outcome_for(PowerAction.CONVERGED)
        assert outcome.dirty is False
        assert outcome.requeue_after == timedelta(0)
        assert outcome.error is None

    @pytest.mark.parametrize(
        "action", [PowerAction.WAIT_IN_FLIGHT, PowerAction.DEFER_PROVISIONING]
    )
    def test_waiting_actions(self, action: PowerAction) -> None:
        """Test that waiting actions back off without an error."""
        outcome = outcome_for(action)
        assert outcome.dirty is True
        assert outcome.requeue_after == timedelta(seconds=10)
        assert outcome.error is None

    def test_custom_delay(self) -> None:
        outcome = outcome_for(PowerAction.WAIT_IN_FLIGHT, timedelta(seconds=30))
        assert outcome.requeue_after == timedelta(seconds=30)

    def test_issue_has_no_fixed_outcome(self) -> None:
        """Test that ISSUE must go through the command issuer."""
        with pytest.raises(ValueError, match="issue"):
            outcome_for(PowerAction.ISSUE)
