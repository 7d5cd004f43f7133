"""Configuration loading and saving."""

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from relaybot.config.schema import Config
from relaybot.errors import ConfigError


def get_data_dir() -> Path:
    """Get the RelayBot data directory (~/.relaybot), creating it if needed."""
    path = Path.home() / ".relaybot"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_data_dir() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from a JSON file, merged with environment overrides.

    A missing or unreadable file falls back to defaults.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.

    Raises:
        ConfigError: If the file parses but fails validation.
    """
    path = config_path or get_config_path()
    data: dict[str, Any] = {}

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read config from {path}: {e}")
            logger.warning("Using default configuration.")
            data = {}

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.

    Returns:
        The path written.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(), indent=2), encoding="utf-8")
    return path
