"""Power on/off entry points and the command issuer.

``PowerManager.power_on`` and ``PowerManager.power_off`` read the host status,
run the decision engine and, only when the engine says ISSUE, send exactly
one power change command. Each call is synchronous and keeps no state.

CONFLICT POLICY:
A 409 from the backend means another operation holds the host lock. Both
directions back off for the requeue delay, but only power-on reports the
conflict as an error. Power-off treats a locked host as routine. Callers may
rely on this difference, so it is kept as an explicit table
(SURFACE_LOCK_CONFLICT) and can be changed there if the policy is revisited.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

from .backend import BackendClient
from .config import DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS, Config
from .decision import PowerAction, decide, outcome_for
from .errors import BackendUnavailableError, HostLockedError
from .outcome import (
    NO_DELAY,
    POWER_REQUEUE_DELAY,
    Outcome,
    operation_continuing,
    retry_after_delay,
    transient_error,
)
from .states import DesiredPowerState, PowerOffMode, PowerTarget, SetPowerResult

logger = logging.getLogger(__name__)

# Event sink: publisher(reason, message)
Publisher = Callable[[str, str], None]

# Whether a lock conflict is surfaced as an error, per direction
SURFACE_LOCK_CONFLICT: dict[DesiredPowerState, bool] = {
    DesiredPowerState.ON: True,
    DesiredPowerState.OFF: False,
}

# Event reasons
REASON_POWER_ON = "PowerOn"
REASON_POWER_OFF = "PowerOff"
REASON_HOST_LOCKED = "HostLocked"
REASON_POWER_CHANGE_FAILED = "PowerChangeFailed"


def command_target(
    desired: DesiredPowerState, mode: PowerOffMode = PowerOffMode.HARD
) -> PowerTarget:
    """Map a desired state and power-off mode to the backend command."""
    if desired == DesiredPowerState.ON:
        return PowerTarget.POWER_ON
    if mode == PowerOffMode.SOFT:
        return PowerTarget.SOFT_POWER_OFF
    return PowerTarget.POWER_OFF


def _publish(publisher: Publisher | None, reason: str, message: str) -> None:
    """Send an event to the publisher. Publisher failures never affect the outcome."""
    if publisher is None:
        return
    try:
        publisher(reason, message)
    except Exception:
        logger.exception("Event publisher failed", extra={"reason": reason})


def issue_command(
    client: BackendClient,
    host_id: str,
    desired: DesiredPowerState,
    *,
    mode: PowerOffMode = PowerOffMode.HARD,
    requeue_delay: timedelta = POWER_REQUEUE_DELAY,
    soft_power_off_timeout_seconds: int = DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS,
    publisher: Publisher | None = None,
) -> Outcome:
    """Send a power change command and classify the backend response.

    Args:
        client: Backend client addressed by ``host_id``.
        host_id: Backend node id.
        desired: Power state to request.
        mode: Power-off mode; ignored for power-on.
        requeue_delay: Back-off reported on conflicts.
        soft_power_off_timeout_seconds: Timeout sent with a soft power off.
        publisher: Optional event sink.

    Returns:
        Outcome for the reconcile loop:
        - accepted: dirty, no delay, no error
        - conflict: dirty, requeue_delay, HostLockedError for power-on only
        - other failure: dirty, no delay, BackendUnavailableError
    """
    target = command_target(desired, mode)
    log_extra = {"host_id": host_id, "target": target.value}

    logger.info("Changing power state", extra=log_extra)

    try:
        timeout = soft_power_off_timeout_seconds if target.is_soft else None
        result = client.set_power(host_id, target, timeout)

        if result == SetPowerResult.UNSUPPORTED and target.is_soft:
            logger.warning(
                "Soft power off not supported, falling back to hard power off",
                extra=log_extra,
            )
            target = PowerTarget.POWER_OFF
            log_extra["target"] = target.value
            result = client.set_power(host_id, target, None)
    except BackendUnavailableError as e:
        logger.warning(
            "Power change failed",
            extra={**log_extra, "error": str(e), "status_code": e.status_code},
        )
        _publish(publisher, REASON_POWER_CHANGE_FAILED, f"Failed to request {target.value}: {e}")
        return transient_error(e)

    match result:
        case SetPowerResult.ACCEPTED:
            logger.info("Power change accepted", extra=log_extra)
            reason = REASON_POWER_ON if desired == DesiredPowerState.ON else REASON_POWER_OFF
            _publish(publisher, reason, f"Requested {target.value}")
            return operation_continuing(NO_DELAY)

        case SetPowerResult.CONFLICT:
            error = HostLockedError(host_id)
            logger.info(
                "Host is locked, trying again after delay",
                extra={**log_extra, "delay_seconds": requeue_delay.total_seconds()},
            )
            _publish(publisher, REASON_HOST_LOCKED, str(error))
            if SURFACE_LOCK_CONFLICT[desired]:
                return retry_after_delay(requeue_delay, error)
            return operation_continuing(requeue_delay)

        case _:
            error = BackendUnavailableError(
                f"Unexpected response '{result.value}' to {target.value} for {host_id}"
            )
            logger.warning("Power change failed", extra={**log_extra, "error": str(error)})
            _publish(publisher, REASON_POWER_CHANGE_FAILED, str(error))
            return transient_error(error)


class PowerManager:
    """Power reconciliation entry points for the reconcile loop.

    A single host must not have two calls in flight at once. The caller
    serializes calls per host; different hosts may run in parallel.
    """

    def __init__(
        self,
        client: BackendClient,
        publisher: Publisher | None = None,
        requeue_delay: timedelta = POWER_REQUEUE_DELAY,
        soft_power_off_timeout_seconds: int = DEFAULT_SOFT_POWER_OFF_TIMEOUT_SECONDS,
        dry_run: bool = False,
    ) -> None:
        self._client = client
        self._publisher = publisher
        self._requeue_delay = requeue_delay
        self._soft_power_off_timeout_seconds = soft_power_off_timeout_seconds
        self._dry_run = dry_run

    @classmethod
    def from_config(
        cls, client: BackendClient, config: Config, publisher: Publisher | None = None
    ) -> PowerManager:
        return cls(
            client,
            publisher=publisher,
            requeue_delay=config.power_requeue_delay,
            soft_power_off_timeout_seconds=config.soft_power_off_timeout_seconds,
            dry_run=config.dry_run,
        )

    def power_on(self, host_id: str) -> Outcome:
        """Ensure the host is powered on."""
        return self.ensure_power(host_id, DesiredPowerState.ON)

    def power_off(self, host_id: str, mode: PowerOffMode = PowerOffMode.HARD) -> Outcome:
        """Ensure the host is powered off, softly if ``mode`` is SOFT."""
        return self.ensure_power(host_id, DesiredPowerState.OFF, mode)

    def ensure_power(
        self,
        host_id: str,
        desired: DesiredPowerState,
        mode: PowerOffMode = PowerOffMode.HARD,
    ) -> Outcome:
        """Drive ``host_id`` toward ``desired`` with at most one command.

        Status read failures are returned as error outcomes, never raised.
        """
        log_extra = {"host_id": host_id, "desired": desired.value}
        logger.debug("Ensuring host power state", extra=log_extra)

        try:
            status = self._client.get_status(host_id)
        except BackendUnavailableError as e:
            logger.warning(
                "Failed to read host status",
                extra={**log_extra, "error": str(e), "status_code": e.status_code},
            )
            return transient_error(e)

        action = decide(desired, status)
        log_extra.update(
            {
                "action": action.value,
                "power_state": status.current_power_state.value,
                "target_power_state": status.target_power_state.value,
                "provisioning_activity": status.provisioning_activity or None,
            }
        )

        match action:
            case PowerAction.CONVERGED:
                logger.debug("Host power state converged", extra=log_extra)
            case PowerAction.WAIT_IN_FLIGHT:
                logger.info("Waiting for power status to change", extra=log_extra)
            case PowerAction.DEFER_PROVISIONING:
                logger.info(
                    "Host in state that does not allow power change, trying again after delay",
                    extra=log_extra,
                )
            case PowerAction.ISSUE:
                if self._dry_run:
                    logger.info("Dry-run mode, power command not sent", extra=log_extra)
                    return operation_continuing(self._requeue_delay)
                return issue_command(
                    self._client,
                    host_id,
                    desired,
                    mode=mode,
                    requeue_delay=self._requeue_delay,
                    soft_power_off_timeout_seconds=self._soft_power_off_timeout_seconds,
                    publisher=self._publisher,
                )

        return outcome_for(action, self._requeue_delay)
