"""Main entry point for the bare-metal power controller.

Loads configuration and the host inventory, then runs the reconcile loop
until SIGTERM or SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TextIO

from .auth import CredentialLeakError
from .backend import IronicClient
from .config import Config, ConfigurationError
from .power import PowerManager
from .reconciler import Reconciler
from .spec_loader import SpecLoadError, load_inventory

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO, stream: TextIO | None = None) -> None:
    """Configure structured logging with JSON output (stdout by default).

    Calling it again replaces the JSON handler installed by an earlier call.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP stack
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_event(reason: str, message: str) -> None:
    """Publisher that records power events in the log stream."""
    logging.getLogger("power_controller.events").info(
        "Power event: %s", message, extra={"event_reason": reason}
    )


async def run_controller(config: Config, logger: logging.Logger, once: bool = False) -> int:
    """Build the controller from ``config`` and run it.

    Args:
        config: Validated configuration.
        logger: Logger instance.
        once: Run a single pass over all hosts instead of looping.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        inventory = load_inventory(config.hosts_file)
    except SpecLoadError as e:
        logger.error(
            "Failed to load host inventory",
            extra={"error": str(e), "hosts_file": str(config.hosts_file)},
        )
        return 1

    try:
        client = IronicClient(config)
    except CredentialLeakError as e:
        logger.critical("Credential error, refusing to start", extra={"error": str(e)})
        return 2

    power_manager = PowerManager.from_config(client, config, publisher=log_event)
    reconciler = Reconciler(config, inventory, power_manager)

    try:
        if once:
            results = await reconciler.reconcile_all()
            failed = [r.host for r in results if r.outcome.error is not None]
            return 1 if failed else 0

        loop = asyncio.get_event_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            reconciler.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

        await reconciler.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1
    finally:
        client.close()

    logger.info("Controller stopped")
    return 0


async def main() -> int:
    """Run the controller with configuration from the environment."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2

    logger.info(
        "Starting bare-metal power controller",
        extra={
            "ironic_endpoint": config.ironic_endpoint,
            "hosts_file": str(config.hosts_file),
            "auth_type": config.auth.auth_type.value,
        },
    )
    return await run_controller(config, logger)


def run() -> None:
    """Entry point for the controller process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
