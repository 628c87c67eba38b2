"""Configuration utilities for davsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from davsync.core.chunking import generate_device_id
from davsync.core.config import SyncConfig

CONFIG_DIR_ENV = "DAVSYNC_CONFIG_DIR"
PASSWORD_ENV = "DAVSYNC_PASSWORD"


def get_config_dir() -> Path:
    """Get the configuration directory for davsync.

    Returns:
        Path from $DAVSYNC_CONFIG_DIR, or ~/.davsync.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".davsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local chunk database."""
    return get_config_dir() / "state.db"


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


def is_configured() -> bool:
    """Check if a WebDAV server has been configured."""
    return bool(load_config().get("webdav", {}).get("url"))


def get_device_id() -> str:
    """Get this installation's device id, generating it on first use."""
    config = load_config()
    device_id = config.get("deviceId")
    if not device_id:
        device_id = generate_device_id()
        config["deviceId"] = device_id
        save_config(config)
    return str(device_id)


def build_sync_config() -> SyncConfig:
    """Build the sync configuration from the config file.

    $DAVSYNC_PASSWORD, when set, replaces the stored password.

    Raises:
        KeyError: If no server is configured.
    """
    config = load_config()
    password = os.environ.get(PASSWORD_ENV)
    if password:
        config.setdefault("webdav", {})["password"] = password
    return SyncConfig.from_dict(config)
