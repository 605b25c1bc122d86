"""Backend mock context for CLI and entry point tests.

Provides a context manager that patches the HTTP clients with fakes.
"""

from __future__ import annotations

from typing import Any
from unittest import mock

from .fake import FakeBackend


class MockBackendContext:
    """Context manager that swaps IronicClient and InspectorClient for fakes.

    Patches:
    - power_controller.cli.IronicClient → returns ``backend``
    - power_controller.main.IronicClient → returns ``backend``
    - power_controller.cli.InspectorClient → returns ``inspector`` (a Mock)

    Usage:
        with MockBackendContext() as ctx:
            ctx.backend.add_host("H1", node_status("power on"))
            result = CliRunner().invoke(cli, ["power-on", "H1"])
            assert ctx.backend.set_power_calls == []
    """

    def __init__(self, backend: FakeBackend | None = None) -> None:
        self.backend = backend or FakeBackend()
        self.inspector = mock.Mock()
        self._patches: list[Any] = []

    def __enter__(self) -> MockBackendContext:
        """Enter the mock context, applying patches."""
        self._patches = [
            mock.patch("power_controller.cli.IronicClient", return_value=self.backend),
            mock.patch("power_controller.main.IronicClient", return_value=self.backend),
            mock.patch("power_controller.cli.InspectorClient", return_value=self.inspector),
        ]
        for patch in self._patches:
            patch.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the mock context, removing patches."""
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()
