"""YAML configuration loading and validation.

Loads scribeguard.yaml files, validates them against the pydantic schema,
and returns a structured config object. Errors are always actionable.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from scribeguard.config.schema import ScribeguardConfig
from scribeguard.errors import ConfigValidationError

CONFIG_VERSION = "1.0"


def default_config() -> ScribeguardConfig:
    """Return the built-in defaults (no file needed)."""
    return ScribeguardConfig(version=CONFIG_VERSION)


def load_config(path: Path) -> ScribeguardConfig:
    """Load and validate a scribeguard configuration from a YAML file.

    Args:
        path: Path to the scribeguard.yaml file.

    Returns:
        A validated ScribeguardConfig model.

    Raises:
        ConfigValidationError: If the file is missing, the YAML is malformed,
            or it fails schema validation.
    """
    if not path.exists():
        raise ConfigValidationError(
            path=path,
            details=[{"type": "file_not_found"}],
            message=(
                f"Config file not found at {path}. "
                f"Omit --config to run with the defaults."
            ),
        )

    raw_text = path.read_text(encoding="utf-8")

    try:
        raw_data = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise ConfigValidationError(
            path=path,
            details=[{"type": "yaml_parse_error", "msg": str(e)}],
            message=f"Failed to parse YAML in {path}: {e}",
        ) from e

    if raw_data is None:
        raise ConfigValidationError(
            path=path,
            details=[{"type": "empty_file"}],
            message=f"Config file {path} is empty. It must contain at least a 'version' field.",
        )

    if not isinstance(raw_data, dict):
        raise ConfigValidationError(
            path=path,
            details=[{"type": "not_a_mapping", "got": type(raw_data).__name__}],
            message=(
                f"Config file {path} must contain a YAML mapping (key-value pairs) "
                f"at the top level, got {type(raw_data).__name__}."
            ),
        )

    try:
        return ScribeguardConfig.model_validate(raw_data)
    except ValidationError as e:
        error_details = e.errors()
        error_lines = []
        for err in error_details:
            loc = " → ".join(str(part) for part in err["loc"])
            error_lines.append(f"  - {loc}: {err['msg']}")

        summary = "\n".join(error_lines)
        raise ConfigValidationError(
            path=path,
            details=[dict(err) for err in error_details],
            message=f"Config validation failed for {path}:\n{summary}",
        ) from e
