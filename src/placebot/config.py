"""
Configuration loading shared by the server and agent entry points.

Precedence: built-in defaults < YAML file < environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def load_config(
    config_path: str | Path | None,
    defaults: dict[str, Any],
    env_mappings: dict[str, str],
) -> dict[str, Any]:
    """Load configuration from file and environment.

    Args:
        config_path: Optional YAML file; missing or unreadable files are skipped
        defaults: Built-in values, also used to coerce env var types
        env_mappings: Environment variable name -> config key

    Returns:
        Merged configuration dict
    """
    config = dict(defaults)

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    file_config = yaml.safe_load(f) or {}
                config.update(file_config)
            except Exception as e:
                logger.warning(f"Failed to load config {path}: {e}")

    for env_key, config_key in env_mappings.items():
        value = os.environ.get(env_key)
        if value:
            config[config_key] = _coerce(value, defaults.get(config_key))

    return config


def _coerce(value: str, default: Any) -> Any:
    """Convert an env var string to the type of its default."""
    if isinstance(default, bool):
        return value.lower() in ("1", "true", "yes")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for a service entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger().setLevel(level)
