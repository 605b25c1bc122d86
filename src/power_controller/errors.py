"""Error taxonomy for the power controller.

Transport exceptions raised by azure-core are translated into these types at
the backend client boundary, so callers only need to handle one hierarchy.
"""

from __future__ import annotations


class PowerControllerError(Exception):
    """Base class for all power controller errors."""

    pass


class HostLockedError(PowerControllerError):
    """Raised when the backend reports the host is held by another operation.

    This is expected, recoverable contention. Callers should wait and retry.
    """

    def __init__(self, host_id: str, message: str | None = None) -> None:
        self.host_id = host_id
        super().__init__(message or f"Host {host_id} is locked by another operation")


class BackendUnavailableError(PowerControllerError):
    """Raised on connectivity, authentication or malformed-response failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class HostNotFoundError(BackendUnavailableError):
    """Raised when the backend has no node for the requested host id."""

    def __init__(self, host_id: str) -> None:
        self.host_id = host_id
        super().__init__(f"Host {host_id} not found", status_code=404)
