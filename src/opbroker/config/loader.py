"""Configuration loader for the secret broker.

This module provides functions to load and validate the broker configuration
from a YAML file.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from opbroker.errors import ConfigError

from .models import BrokerConfigModel

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "onepassword"


def find_config_file() -> Path | None:
    """Locate the configuration file.

    Looks for:
    1. OPBROKER_CONFIG environment variable
    2. ~/.opbroker/config.yaml
    3. ./config.yaml
    """
    env_path = os.environ.get("OPBROKER_CONFIG")
    if env_path:
        return Path(env_path)

    candidates = [Path.home() / ".opbroker" / "config.yaml", Path.cwd() / "config.yaml"]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Path | None = None, section: str = DEFAULT_SECTION
) -> BrokerConfigModel:
    """Load broker configuration from a YAML file.

    Args:
        config_path: Optional path to the YAML file. Located with
            :func:`find_config_file` when omitted.
        section: Top-level key holding the broker settings

    Returns:
        Validated BrokerConfigModel

    Raises:
        ConfigError: If no file is found, it cannot be parsed, or the section
            is missing or invalid
    """
    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            raise ConfigError(
                "No broker config file found (set OPBROKER_CONFIG or create ~/.opbroker/config.yaml)"
            )

    if not config_path.exists():
        raise ConfigError(f"Broker config file not found at {config_path}")

    logger.debug(f"Loading broker config from: {config_path}")

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to parse YAML config file {config_path}: {e}") from e

    if not isinstance(raw_config, dict) or section not in raw_config:
        raise ConfigError(f"Missing '{section}' section in {config_path}")

    return build_config(raw_config[section] or {})


def build_config(data: dict[str, Any]) -> BrokerConfigModel:
    """Validate a configuration mapping."""
    try:
        return BrokerConfigModel.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid broker config: {e}") from e
