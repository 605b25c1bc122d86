"""Host inventory loading with validation.

SECURITY: File reads enforce a size limit before parsing. Input validation
is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_HOSTS_FILE_SIZE_BYTES
from .models import HostInventory

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when inventory loading or validation fails."""

    pass


def load_inventory(hosts_file: Path) -> HostInventory:
    """Load and validate the host inventory from YAML.

    Accepts either a flat document (``hosts: [...]``) or a Kubernetes-style
    wrapper with ``apiVersion``, ``kind`` and ``spec``.

    Args:
        hosts_file: Path to the inventory file.

    Returns:
        Validated inventory.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not hosts_file.exists():
        raise SpecLoadError(f"Hosts file not found: {hosts_file}")

    try:
        file_size = hosts_file.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat hosts file {hosts_file}: {e}") from e

    if file_size > MAX_HOSTS_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Hosts file exceeds maximum size of {MAX_HOSTS_FILE_SIZE_BYTES} bytes: {hosts_file}"
        )

    try:
        content = hosts_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecLoadError(f"Failed to read hosts file {hosts_file}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {hosts_file}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Hosts file must contain a YAML mapping: {hosts_file}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {hosts_file}")
    else:
        spec_data = raw_data

    try:
        inventory = HostInventory.model_validate(spec_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {hosts_file}:\n{error_list}") from e

    logger.info("Loaded %d hosts from %s", len(inventory.hosts), hosts_file)
    return inventory
