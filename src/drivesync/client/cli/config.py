"""Configuration utilities for the drivesync CLI.

This module provides shared configuration functions used across CLI commands.

The config file is a JSON object; every key is optional:

    {
        "access_token": "...",
        "remote": {"api_url": "...", "upload_url": "...", "timeout": 30},
        "sync": {"max_workers": 4, "ignore_patterns": ["build/"]}
    }
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from drivesync.client.status import StatusStore
from drivesync.core.config import RemoteConfig, SyncConfig

TOKEN_ENV_VAR = "DRIVESYNC_TOKEN"


def get_config_dir() -> Path:
    """Get the configuration directory for drivesync.

    Returns:
        Path to ~/.drivesync or equivalent.
    """
    return Path.home() / ".drivesync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_status_file() -> Path:
    """Get the path to the persisted sync status."""
    return get_config_dir() / "status.json"


def get_status_store() -> StatusStore:
    return StatusStore(get_status_file())


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


def get_remote_config(config: dict[str, Any] | None = None) -> RemoteConfig:
    """Remote API settings from the config file."""
    config = load_config() if config is None else config
    return RemoteConfig.from_dict(config.get("remote", {}))


def get_sync_config(config: dict[str, Any] | None = None) -> SyncConfig:
    """Sync engine settings from the config file (unknown keys ignored)."""
    config = load_config() if config is None else config
    return SyncConfig.from_dict(config.get("sync", {}))


def get_access_token(explicit: str | None = None) -> str | None:
    """Resolve the bearer token: explicit value, then environment, then config file."""
    if explicit:
        return explicit
    from_env = os.environ.get(TOKEN_ENV_VAR)
    if from_env:
        return from_env
    token = load_config().get("access_token")
    return str(token) if token else None


def get_sync_folder() -> Path | None:
    """Get the selected sync folder, if one was chosen with select-folder."""
    selected = get_status_store().load().selected_folder
    if selected:
        return Path(selected).expanduser().resolve()
    return None
