"""Configuration loading and validation."""

from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from vaultkeeper.config.schema import VaultkeeperConfig
from vaultkeeper.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".vaultkeeper" / "vaultkeeper.yaml"


def load_config(path: Optional[Path] = None) -> VaultkeeperConfig:
    """Load and validate vaultkeeper configuration from a YAML file.

    Args:
        path: Path to config file. If None, tries the default location.
              If the file doesn't exist, returns the default config.

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If the config file exists but is invalid
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH

    if not path.exists():
        return VaultkeeperConfig()

    try:
        with open(path, "r") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config from {path}: {e}") from e

    if config_data is None:
        return VaultkeeperConfig()

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")

    try:
        return VaultkeeperConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def apply_overrides(config: VaultkeeperConfig, overrides: dict[str, dict[str, Any]]) -> VaultkeeperConfig:
    """Return a copy of ``config`` with per-section overrides applied.

    ``None`` values are ignored so unset CLI options keep the file's values.

    Args:
        config: Base configuration
        overrides: Mapping of section name to field updates,
            e.g. ``{"cluster": {"threshold": 2}}``

    Returns:
        New validated configuration

    Raises:
        ConfigurationError: If the merged configuration is invalid
    """
    data = config.model_dump()
    for section, fields in overrides.items():
        if section not in data:
            raise ConfigurationError(f"Unknown configuration section: {section}")
        data[section].update({k: v for k, v in fields.items() if v is not None})

    try:
        return VaultkeeperConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def save_config(config: VaultkeeperConfig, path: Optional[Union[str, Path]] = None) -> None:
    """Save configuration to a YAML file.

    Args:
        config: Configuration object to save
        path: Destination path. If None, uses the default location.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    elif isinstance(path, str):
        path = Path(path)

    path.parent.mkdir(parents=True, exist_ok=True)

    # Secrets stay out of files written by the tool
    config_dict = config.model_dump(exclude={"vault": {"token"}, "smtp": {"password"}})

    with open(path, "w") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
