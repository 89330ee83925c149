"""Configuration utilities for the fieldsync CLI.

This module provides shared configuration functions used across CLI commands.
The config directory defaults to ``~/.fieldsync`` and can be moved with the
``FIELDSYNC_HOME`` environment variable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from fieldsync.core.config import SyncConfig


def get_config_dir() -> Path:
    """Get the configuration directory for fieldsync.

    Returns:
        Path to $FIELDSYNC_HOME, or ~/.fieldsync.
    """
    home = os.environ.get("FIELDSYNC_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".fieldsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_queue_db_path() -> Path:
    """Get the queue database path (configured or default queue.db)."""
    config = load_config()
    if config.get("queue_db"):
        return Path(config["queue_db"]).expanduser()
    return get_config_dir() / "queue.db"


def load_sync_config() -> SyncConfig:
    """Engine tunables from the ``sync`` section of the config file.

    Raises:
        ValueError: If a configured value is invalid.
    """
    section = load_config().get("sync") or {}
    return SyncConfig.from_dict(section)
