"""Shared types for drivesync.

This module defines enums used across the engine, status store and CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncMode(str, Enum):
    """Direction of a sync session."""

    PUSH = "push"  # local is the source of truth
    PULL = "pull"  # remote is the source of truth
    WATCH = "watch"  # bidirectional reconcile, then live watch

    @property
    def allows_upload(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.WATCH)

    @property
    def allows_download(self) -> bool:
        return self in (SyncMode.PULL, SyncMode.WATCH)


class SessionStatus(str, Enum):
    """Lifecycle state of a sync session."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RECONCILING = "reconciling"
    WATCHING = "watching"
    STOPPING = "stopping"
