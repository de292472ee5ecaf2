"""
Reads and writes the driver configuration file (JSON).

The file location defaults to $ESPER_TRIGGERBOX_CONFIG, then to
triggerbox.json in the working directory.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import AppConfig


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ESPER_TRIGGERBOX_CONFIG"
DEFAULT_CONFIG_FILE = "triggerbox.json"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def default_config_path() -> Path:
    return Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)


def _describe_validation_error(config_path: Path, error: ValidationError) -> str:
    lines = [f"Configuration validation failed for {config_path}:"]
    for item in error.errors():
        location = " -> ".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"  - {location}: {item['msg']}")
    return "\n".join(lines)


def load_config(path: Optional[str] = None, create_missing: bool = True) -> AppConfig:
    """
    Load the driver configuration.

    Top-level keys starting with "_" are treated as comments and ignored.
    A missing file yields the defaults; with create_missing the defaults
    are also written out so they can be edited.

    Args:
        path: Config file path. Defaults to default_config_path().
        create_missing: Write a default config file when none exists.

    Returns:
        Validated AppConfig instance.

    Raises:
        ConfigurationError: If the file is unreadable, not JSON, or fails validation.
    """
    config_path = Path(path) if path is not None else default_config_path()

    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        config = AppConfig()
        if create_missing:
            try:
                save_config(config, str(config_path))
            except ConfigurationError as e:
                logger.warning(f"Could not write default config: {e}")
        return config

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"{config_path} must contain a JSON object")

    sections = {key: value for key, value in raw.items() if not key.startswith("_")}
    try:
        config = AppConfig(**sections)
    except ValidationError as e:
        raise ConfigurationError(_describe_validation_error(config_path, e)) from e

    logger.debug(f"Configuration loaded from {config_path}")
    return config


def save_config(config: AppConfig, path: Optional[str] = None) -> None:
    """
    Write config as indented JSON, preceded by a "_comment" key.

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    config_path = Path(path) if path is not None else default_config_path()
    document = {"_comment": "ESPER trigger box driver configuration", **config.model_dump()}

    try:
        config_path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to write {config_path}: {e}") from e

    logger.info(f"Configuration saved to {config_path}")
