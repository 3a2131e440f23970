"""Rules file loading with validation.

File operations enforce a size limit and all content is validated with
pydantic before any entry reaches AWS.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_RULES_FILE_SIZE_BYTES
from .models import AllowListSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when rules file loading or validation fails."""

    pass


def load_entries(path: Path) -> AllowListSpec:
    """Load and validate a rules file.

    Two layouts are accepted, a flat mapping:

        entries:
          - cidr: 203.0.113.0/24
            description: office

    or a Kubernetes-style wrapper with the same content under `spec`.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Rules file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat rules file {path}: {e}") from e

    if file_size > MAX_RULES_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Rules file exceeds maximum size of {MAX_RULES_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read rules file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Rules file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
    else:
        spec_data = raw_data

    try:
        spec = AllowListSpec.model_validate(spec_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded %d entries from %s", len(spec.entries), path)
    return spec
