"""Shared configuration classes for drivesync.

This module defines configuration used by the remote client, the sync
engine and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from drivesync.core.chunking import DEFAULT_CHUNK_SIZE

DEFAULT_API_URL = "https://www.googleapis.com/drive/v3"
DEFAULT_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote storage API.

    Attributes:
        api_url: Base URL for metadata requests.
        upload_url: Base URL for media (resumable) uploads.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    api_url: str = DEFAULT_API_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize base URLs."""
        self.api_url = self.api_url.rstrip("/")
        self.upload_url = self.upload_url.rstrip("/")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteConfig:
        """Build a config from a JSON-style dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SyncConfig:
    """Tunables for the sync engine.

    Attributes:
        chunk_size: Upload chunk size in bytes.
        max_attempts: Attempts per remote operation before giving up.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound for the retry delay, in seconds.
        backoff_multiplier: Growth factor between retry delays.
        stability_window: Quiet period a changed file must stay the same
            size before the watcher reports it, in seconds.
        poll_interval: How often pending watch changes are re-checked.
        max_workers: Concurrent file transfers during reconciliation.
        watch_workers: Concurrent watch events (distinct paths only).
        ignore_patterns: Extra gitignore-style patterns to exclude.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_attempts: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 10.0
    backoff_multiplier: float = 2.0
    stability_window: float = 2.0
    poll_interval: float = 0.5
    max_workers: int = 1
    watch_workers: int = 2
    ignore_patterns: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_workers < 1 or self.watch_workers < 1:
            raise ValueError("worker counts must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Build a config from a JSON-style dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
