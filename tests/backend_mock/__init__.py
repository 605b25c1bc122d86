"""Backend fakes for testing the power controller.

This package provides in-memory stand-ins for the bare-metal backend that
record every call and return scripted responses, so the power logic can be
tested without a running backend.

Key Features:
- FakeBackend: BackendClient with per-host status and scripted set_power results
- FakePipelineClient: stand-in for azure-core's PipelineClient that records
  requests and replays scripted HTTP responses
- MockBackendContext: patches the HTTP clients used by the CLI and entry point

Usage:
    from backend_mock import FakeBackend, node_status

    backend = FakeBackend()
    backend.add_host("H1", node_status("power off", "power off"))
    backend.script_set_power(SetPowerResult.CONFLICT)

    outcome = PowerManager(backend).power_on("H1")
    assert len(backend.set_power_calls) == 1
"""

from .context import MockBackendContext
from .fake import FakeBackend, SetPowerCall, node_status
from .http import FakeHttpResponse, FakePipelineClient

__all__ = [
    "FakeBackend",
    "FakeHttpResponse",
    "FakePipelineClient",
    "MockBackendContext",
    "SetPowerCall",
    "node_status",
]
