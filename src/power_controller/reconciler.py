"""Reconcile loop driving hosts toward their desired power state.

Each host in the inventory gets its own asyncio task. A task calls the power
manager, waits for the delay the outcome asks for, and repeats. A
semaphore bounds how many hosts are processed in parallel.

SCHEDULING:
- requeue_after > 0         wait requeue_after (transition blocked or in flight)
- error, requeue_after == 0 exponential back-off, capped at the reconcile interval
- dirty, requeue_after == 0 re-check after dirty_recheck_seconds
- converged                 re-check after reconcile_interval_seconds

SECURITY: Every power call is bounded by call_timeout_seconds. A call that
times out is reported as a backend failure, but its worker thread cannot be
stopped. Until that thread returns, later calls for the same host are skipped
and requeued, so a host never has two power calls in flight. The transport
timeouts keep a call well inside call_timeout_seconds.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .config import Config
from .errors import BackendUnavailableError
from .models import HostInventory, HostSpec
from .outcome import Outcome, operation_continuing, transient_error
from .power import PowerManager
from .states import DesiredPowerState

logger = logging.getLogger(__name__)

RETRY_BACKOFF_BASE_SECONDS = 5
MAX_BACKOFF_EXPONENT = 10


@dataclass
class HostReconcileResult:
    """Result of one power call for one host."""

    host: str
    host_id: str
    desired: DesiredPowerState
    outcome: Outcome
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class Reconciler:
    """Runs the power reconcile loop for every host in an inventory."""

    def __init__(
        self,
        config: Config,
        inventory: HostInventory,
        power_manager: PowerManager,
        call_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Validated controller configuration.
            inventory: Hosts and their desired power state.
            power_manager: Entry points for power on/off.
            call_timeout_seconds: Overrides config.call_timeout_seconds.
        """
        self._config = config
        self._inventory = inventory
        self._power = power_manager
        self._semaphore = asyncio.Semaphore(config.max_concurrent_hosts)
        self._shutdown_event = asyncio.Event()
        self._consecutive_failures: dict[str, int] = {}
        self._in_flight: dict[str, asyncio.Future[Outcome]] = {}
        self._call_timeout = (
            call_timeout_seconds
            if call_timeout_seconds is not None
            else config.call_timeout_seconds
        )

    def call_in_flight(self, host: str) -> bool:
        """Check whether a power call for ``host`` is still running."""
        future = self._in_flight.get(host)
        return future is not None and not future.done()

    def consecutive_failures(self, host: str) -> int:
        return self._consecutive_failures.get(host, 0)

    async def run(self) -> None:
        """Reconcile all hosts until shutdown is requested."""
        logger.info(
            "Starting reconciler",
            extra={
                "host_count": len(self._inventory.hosts),
                "interval_seconds": self._config.reconcile_interval_seconds,
                "max_concurrent_hosts": self._config.max_concurrent_hosts,
                "dry_run": self._config.dry_run,
            },
        )

        tasks = [
            asyncio.create_task(self._host_loop(host), name=f"host-{host.name}")
            for host in self._inventory.hosts
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def reconcile_all(self) -> list[HostReconcileResult]:
        """Run a single pass over every host."""
        return list(
            await asyncio.gather(*(self.reconcile_host(host) for host in self._inventory.hosts))
        )

    async def reconcile_host(self, host: HostSpec) -> HostReconcileResult:
        """Run one bounded power call for ``host``.

        While an earlier call for the host is still running on its worker
        thread, no new call is started and the host is requeued.

        Returns:
            HostReconcileResult with the call's outcome.
        """
        desired = host.desired_power_state
        result = HostReconcileResult(
            host=host.name,
            host_id=host.id,
            desired=desired,
            outcome=Outcome(),
        )

        call = functools.partial(self._power.ensure_power, host.id, desired, host.power_off_mode)
        loop = asyncio.get_event_loop()

        async with self._semaphore:
            if self.call_in_flight(host.name):
                logger.warning(
                    "Previous power call still running, skipping",
                    extra={"host": host.name, "host_id": host.id},
                )
                result.outcome = operation_continuing(self._config.power_requeue_delay)
                result.end_time = datetime.now(UTC)
                return result

            future = loop.run_in_executor(None, call)
            self._in_flight[host.name] = future
            future.add_done_callback(functools.partial(self._call_finished, host))
            try:
                # shield keeps the future pending until the worker thread returns
                result.outcome = await asyncio.wait_for(
                    asyncio.shield(future), timeout=self._call_timeout
                )
            except TimeoutError:
                logger.error(
                    "Power call timed out",
                    extra={
                        "host": host.name,
                        "host_id": host.id,
                        "timeout_seconds": self._call_timeout,
                    },
                )
                result.outcome = transient_error(
                    BackendUnavailableError(
                        f"Power call for {host.id} timed out after {self._call_timeout}s"
                    )
                )

        result.end_time = datetime.now(UTC)

        if result.outcome.error is not None:
            self._consecutive_failures[host.name] = self.consecutive_failures(host.name) + 1
        else:
            self._consecutive_failures.pop(host.name, None)

        self._log_result(result)
        return result

    def _call_finished(self, host: HostSpec, future: asyncio.Future[Outcome]) -> None:
        if self._in_flight.get(host.name) is future:
            del self._in_flight[host.name]
        if future.cancelled():
            return
        extra = {"host": host.name, "host_id": host.id}
        error = future.exception()
        if error is not None:
            # Consumes the exception when the awaiting side has already timed out
            logger.debug("Power call finished with error", extra={**extra, "error": str(error)})
        else:
            logger.debug("Power call finished", extra=extra)

    def next_delay(self, host: str, outcome: Outcome) -> float:
        """Seconds to wait before the next call for ``host``."""
        if outcome.requeue_after.total_seconds() > 0:
            return outcome.requeue_after.total_seconds()

        if outcome.error is not None:
            failures = max(self.consecutive_failures(host), 1)
            exponent = min(failures - 1, MAX_BACKOFF_EXPONENT)
            backoff = RETRY_BACKOFF_BASE_SECONDS * (2**exponent)
            return float(min(backoff, self._config.reconcile_interval_seconds))

        if outcome.dirty:
            return float(self._config.dirty_recheck_seconds)

        return float(self._config.reconcile_interval_seconds)

    async def _host_loop(self, host: HostSpec) -> None:
        while not self._shutdown_event.is_set():
            try:
                result = await self.reconcile_host(host)
            except Exception:
                logger.exception(
                    "Unexpected error during power reconciliation",
                    extra={"host": host.name, "host_id": host.id},
                )
                delay = float(self._config.reconcile_interval_seconds)
            else:
                delay = self.next_delay(host.name, result.outcome)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
            except TimeoutError:
                # Normal timeout, continue to next cycle
                pass

    def _log_result(self, result: HostReconcileResult) -> None:
        """Log a host result with structured data."""
        outcome = result.outcome
        extra: dict[str, Any] = {
            "host": result.host,
            "host_id": result.host_id,
            "desired": result.desired.value,
            "dirty": outcome.dirty,
            "requeue_after_seconds": outcome.requeue_after.total_seconds(),
            "duration_seconds": result.duration_seconds,
        }

        if outcome.error is not None:
            extra["error"] = str(outcome.error)
            extra["error_type"] = type(outcome.error).__name__
            extra["consecutive_failures"] = self.consecutive_failures(result.host)
            logger.warning("Power reconciliation error", extra=extra)
        elif outcome.dirty:
            logger.info("Power reconciliation in progress", extra=extra)
        else:
            logger.debug("Power reconciliation result", extra=extra)
