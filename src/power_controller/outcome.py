"""Outcome of a single power reconciliation call.

The reconcile loop reads ``dirty`` to decide whether the host is still
changing and ``requeue_after`` to decide when to call again. An outcome is
built fresh per call and never retained.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

# Back-off used while a transition is in flight or the host is blocked
POWER_REQUEUE_DELAY = timedelta(seconds=10)

NO_DELAY = timedelta(0)


@dataclass(frozen=True)
class Outcome:
    """Result handed back to the reconcile loop."""

    dirty: bool = False
    requeue_after: timedelta = field(default=NO_DELAY)
    error: Exception | None = None

    @property
    def converged(self) -> bool:
        return not self.dirty and self.error is None


def operation_complete() -> Outcome:
    """Observed state already matches desired state."""
    return Outcome(dirty=False, requeue_after=NO_DELAY)


def operation_continuing(delay: timedelta) -> Outcome:
    """Work is still in progress; check again after ``delay``."""
    return Outcome(dirty=True, requeue_after=delay)


def retry_after_delay(delay: timedelta, error: Exception) -> Outcome:
    """Blocked by recoverable contention; surface ``error`` and back off."""
    return Outcome(dirty=True, requeue_after=delay, error=error)


def transient_error(error: Exception) -> Outcome:
    """Call failed; the caller's own retry cadence applies."""
    return Outcome(dirty=True, requeue_after=NO_DELAY, error=error)
