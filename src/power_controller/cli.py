"""Bare-metal power CLI (bmpower).

Usage:
    bmpower status HOST_ID        # Show power and provisioning status
    bmpower power-on HOST_ID      # Ensure a host is powered on
    bmpower power-off HOST_ID     # Ensure a host is powered off
    bmpower run                   # Run the reconcile loop over HOSTS_FILE
    bmpower run --once            # Single pass over HOSTS_FILE

Configuration is read from the same environment variables as the controller
process (see Config.from_env).
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from .auth import CredentialLeakError
from .backend import InspectorClient, IronicClient
from .config import Config, ConfigurationError
from .errors import BackendUnavailableError
from .main import log_event, run_controller, setup_logging
from .outcome import Outcome
from .power import PowerManager
from .states import PowerOffMode

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2


def load_config() -> Config:
    """Load configuration or exit with EXIT_CONFIG_ERROR."""
    try:
        return Config.from_env()
    except ConfigurationError as e:
        click.secho(str(e), fg="red", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from e


def build_client(config: Config) -> IronicClient:
    """Build the backend client or exit with EXIT_CONFIG_ERROR."""
    try:
        return IronicClient(config)
    except CredentialLeakError as e:
        click.secho(str(e), fg="red", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR) from e


def report_outcome(host_id: str, outcome: Outcome) -> int:
    """Print an outcome and return the matching exit code."""
    if outcome.converged:
        state = "converged"
    elif outcome.error is not None:
        state = "error"
    else:
        state = "in progress"

    click.echo(f"{host_id}: {state}")
    click.echo(f"  dirty:         {outcome.dirty}")
    click.echo(f"  requeue after: {outcome.requeue_after.total_seconds():g}s")
    if outcome.error is not None:
        click.secho(f"  error:         {outcome.error}", fg="red")
        return EXIT_ERROR
    return EXIT_OK


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="bmpower")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Bare-metal power controller CLI (bmpower).

    \b
    Quick Start:
        export IRONIC_ENDPOINT=http://ironic:6385
        bmpower status <node-uuid>
        bmpower power-on <node-uuid>
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING, stream=sys.stderr)


@cli.command()
@click.argument("host_id")
def status(host_id: str) -> None:
    """Show the power and provisioning status of HOST_ID."""
    config = load_config()
    client = build_client(config)

    try:
        host_status = client.get_status(host_id)
    except BackendUnavailableError as e:
        raise click.ClickException(str(e)) from e
    finally:
        client.close()

    click.echo(f"{host_id}:")
    click.echo(f"  power state:           {host_status.current_power_state.value}")
    click.echo(f"  target power state:    {host_status.target_power_state.value}")
    click.echo(f"  provisioning activity: {host_status.provisioning_activity or 'none'}")

    if config.inspector_endpoint:
        inspector = InspectorClient(config)
        try:
            introspection = inspector.get_introspection(host_id)
            state = "finished" if introspection.finished else "running"
            click.echo(f"  introspection:         {state}")
        except BackendUnavailableError as e:
            click.echo(f"  introspection:         unavailable ({e})")
        finally:
            inspector.close()


@cli.command("power-on")
@click.argument("host_id")
def power_on(host_id: str) -> None:
    """Ensure HOST_ID is powered on."""
    config = load_config()
    client = build_client(config)
    try:
        outcome = PowerManager.from_config(client, config, publisher=log_event).power_on(host_id)
    finally:
        client.close()
    raise SystemExit(report_outcome(host_id, outcome))


@cli.command("power-off")
@click.argument("host_id")
@click.option("--soft", is_flag=True, help="Request a soft (ACPI) power off")
def power_off(host_id: str, soft: bool) -> None:
    """Ensure HOST_ID is powered off."""
    config = load_config()
    client = build_client(config)
    mode = PowerOffMode.SOFT if soft else PowerOffMode.HARD
    try:
        outcome = PowerManager.from_config(client, config, publisher=log_event).power_off(
            host_id, mode
        )
    finally:
        client.close()
    raise SystemExit(report_outcome(host_id, outcome))


@cli.command()
@click.option("--once", is_flag=True, help="Run a single pass over all hosts and exit")
def run(once: bool) -> None:
    """Reconcile every host in HOSTS_FILE toward its desired power state."""
    config = load_config()
    logger = logging.getLogger("power_controller")
    raise SystemExit(asyncio.run(run_controller(config, logger, once=once)))


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
