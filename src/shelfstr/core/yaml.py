"""YAML configuration loading.

Uses ``yaml.safe_load`` so configuration files can only produce standard
YAML types. Consumed by
[ClientConfig.from_yaml()][shelfstr.relay.configs.ClientConfig.from_yaml]
and the CLI.

Examples:
    ```python
    from shelfstr.core.yaml import load_yaml

    config = load_yaml("config/client.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        The parsed mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the YAML is invalid or its top level is not
            a mapping.

    Warning:
        The structure is not validated here; pass the result to a Pydantic
        model such as [ClientConfig][shelfstr.relay.configs.ClientConfig].
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} must contain a mapping, got {type(data).__name__}"
        )
    return data
