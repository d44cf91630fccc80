"""
config.py

Run-time settings merged from defaults, a YAML file and the environment.

Priority, lowest to highest: built-in defaults < config file < environment
variables < command-line arguments (applied by :mod:`pcd_tool.cli`).

Example ``~/.pcd_tool.yaml``::

    workers: 4
    log_level: DEBUG
    progress: false
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PCD_TOOL_CONFIG"
CONFIG_FILE_NAME = ".pcd_tool.yaml"

_KNOWN_KEYS = ("workers", "log_level", "progress")


def default_config() -> Dict[str, Any]:
    return {
        "workers": os.cpu_count() or 1,
        "log_level": "INFO",
        "progress": True,
    }


def find_config_file(path: Optional[str | os.PathLike] = None) -> Optional[Path]:
    """Return the config file to read, or None.

    An explicit *path* is returned as is; otherwise ``$PCD_TOOL_CONFIG``,
    ``~/.pcd_tool.yaml`` and ``./.pcd_tool.yaml`` are tried in that order.
    """
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    for candidate in (Path.home() / CONFIG_FILE_NAME, Path(CONFIG_FILE_NAME)):
        if candidate.is_file():
            return candidate
    return None


def _read_config_file(config_file: Path) -> Dict[str, Any]:
    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring config file %s: %s", config_file, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a mapping, got %s", config_file, type(data).__name__)
        return {}
    return {key: value for key, value in data.items() if key in _KNOWN_KEYS}


def load_config(path: Optional[str | os.PathLike] = None) -> Dict[str, Any]:
    """Load the configuration dictionary.

    Args:
        path: Optional explicit config file.

    Returns:
        dict with keys ``workers`` (int), ``log_level`` (str) and
        ``progress`` (bool).
    """
    config = default_config()

    config_file = find_config_file(path)
    if config_file is not None:
        config.update(_read_config_file(config_file))

    workers = os.environ.get("PCD_TOOL_WORKERS")
    if workers:
        config["workers"] = workers
    config["log_level"] = os.environ.get("PCD_TOOL_LOG_LEVEL", config["log_level"])

    try:
        config["workers"] = int(config["workers"])
        if config["workers"] < 1:
            raise ValueError("must be at least 1")
    except (TypeError, ValueError) as e:
        logger.warning("Invalid workers setting %r (%s); using the default", config["workers"], e)
        config["workers"] = default_config()["workers"]
    config["log_level"] = str(config["log_level"]).upper()
    config["progress"] = bool(config["progress"])
    return config
