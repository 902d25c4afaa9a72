"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, TransferFailed, SessionError, SessionActiveError: Exception classes
- LocalEntry: Immutable snapshot of a local file or directory
- SyncAction, SyncDecision: Change detector output
- WatchEventType, WatchEvent: Live filesystem change notifications
- TransferProgress: Progress tracking dataclass
- SyncSummary: Per-session result counters and failures
- Type aliases for callbacks
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry


class SyncError(Exception):
    """Base exception for sync errors."""


class TransferFailed(SyncError):
    """A remote operation kept failing transiently until attempts ran out.

    Attributes:
        operation: Human-readable description of the operation
        attempts: Number of attempts made
        last_error: The final underlying exception
    """

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class SessionError(SyncError):
    """A session could not be established (auth, unreachable root, bad local root)."""


class SessionActiveError(SyncError):
    """Another session is already running against the same local root."""


def normalize_relative_path(path: str) -> str:
    """Normalize a relative path to forward slashes without leading/trailing separators."""
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def parent_of(relative_path: str) -> str:
    """Parent of a normalized relative path ("" for top-level entries)."""
    head, _, _ = relative_path.rpartition("/")
    return head


def basename_of(relative_path: str) -> str:
    """Last component of a normalized relative path."""
    return relative_path.rpartition("/")[2]


@dataclass(frozen=True)
class LocalEntry:
    """Snapshot of a local file or directory at observation time.

    Entries are never mutated; a fresh entry supersedes an old one on the
    next observation.
    """

    relative_path: str
    absolute_path: Path
    is_directory: bool
    modified_time: float
    size: int = 0

    @classmethod
    def from_path(cls, path: Path, base_path: Path) -> LocalEntry:
        """Create a LocalEntry by stat-ing a path under base_path.

        Raises:
            OSError: If the path vanished or cannot be stat-ed.
        """
        stat = path.stat()
        is_directory = path.is_dir()
        relative_path = normalize_relative_path(path.relative_to(base_path).as_posix())
        return cls(
            relative_path=relative_path,
            absolute_path=path,
            is_directory=is_directory,
            modified_time=stat.st_mtime,
            size=0 if is_directory else stat.st_size,
        )

    @classmethod
    def from_dir_entry(cls, entry: os.DirEntry[str], relative_path: str) -> LocalEntry:
        """Create a LocalEntry from an os.scandir() result."""
        stat = entry.stat(follow_symlinks=False)
        is_directory = entry.is_dir(follow_symlinks=False)
        return cls(
            relative_path=relative_path,
            absolute_path=Path(entry.path),
            is_directory=is_directory,
            modified_time=stat.st_mtime,
            size=0 if is_directory else stat.st_size,
        )

    @property
    def name(self) -> str:
        return basename_of(self.relative_path)

    @property
    def parent_path(self) -> str:
        return parent_of(self.relative_path)


class SyncAction(str, Enum):
    """What to do with a local/remote pair."""

    SKIP = "skip"
    CREATE_REMOTE = "create_remote"  # upload a file the remote lacks
    CREATE_LOCAL = "create_local"  # download a file the local tree lacks
    UPDATE_REMOTE = "update_remote"  # replace remote content from local
    UPDATE_LOCAL = "update_local"  # replace local content from remote

    @property
    def is_upload(self) -> bool:
        return self in (SyncAction.CREATE_REMOTE, SyncAction.UPDATE_REMOTE)

    @property
    def is_download(self) -> bool:
        return self in (SyncAction.CREATE_LOCAL, SyncAction.UPDATE_LOCAL)


@dataclass(frozen=True)
class SyncDecision:
    """Outcome of classifying one local/remote pair.

    Attributes:
        action: Action to take
        reason: Human-readable reason for this decision
        local_checksum: Checksum computed while deciding, reused for upload
    """

    action: SyncAction
    reason: str
    local_checksum: str | None = None


class WatchEventType(IntEnum):
    """Kinds of live filesystem changes.

    Values are ordered by processing priority (lower = first); removals go
    first to avoid useless transfers.
    """

    DIR_REMOVED = 10
    REMOVED = 11
    DIR_ADDED = 20
    ADDED = 21
    CHANGED = 22

    @property
    def is_directory(self) -> bool:
        return self in (WatchEventType.DIR_ADDED, WatchEventType.DIR_REMOVED)

    @property
    def is_removal(self) -> bool:
        return self in (WatchEventType.REMOVED, WatchEventType.DIR_REMOVED)


@dataclass(order=True)
class WatchEvent:
    """A stable filesystem change ready for processing.

    Events are ordered by (priority, timestamp) for queue processing.
    """

    priority: int = field(compare=True)
    timestamp: float = field(compare=True)
    event_type: WatchEventType = field(compare=False)
    path: str = field(compare=False)

    @classmethod
    def create(cls, event_type: WatchEventType, path: str) -> WatchEvent:
        """Create an event stamped with the current time."""
        return cls(
            priority=int(event_type),
            timestamp=time.time(),
            event_type=event_type,
            path=normalize_relative_path(path),
        )

    def __repr__(self) -> str:
        return f"WatchEvent({self.event_type.name}, path={self.path!r})"


@dataclass
class TransferProgress:
    """Progress information for a transfer."""

    path: str
    total_bytes: int
    bytes_transferred: int
    current_chunk: int
    operation: str  # "upload" or "download"

    @property
    def fraction(self) -> float:
        """Completed fraction in [0, 1]."""
        if self.total_bytes <= 0:
            return 1.0
        return min(self.bytes_transferred / self.total_bytes, 1.0)

    @property
    def percent(self) -> float:
        return self.fraction * 100


# Type alias for progress callback
ProgressCallback = Callable[[TransferProgress], None]


@dataclass
class SyncSummary:
    """Result of a reconciliation or of a watch session so far.

    Thread-safe: workers record results concurrently.
    """

    uploaded: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    trashed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, action: SyncAction, path: str) -> None:
        """Record a completed action for a path."""
        with self._lock:
            if action == SyncAction.SKIP:
                self.skipped.append(path)
            elif action == SyncAction.CREATE_REMOTE:
                self.uploaded.append(path)
            elif action == SyncAction.UPDATE_REMOTE:
                self.updated.append(path)
            else:
                self.downloaded.append(path)

    def record_trashed(self, path: str) -> None:
        with self._lock:
            self.trashed.append(path)

    def record_failure(self, path: str, reason: str) -> None:
        with self._lock:
            self.failed[path] = reason

    @property
    def success(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, object]:
        """Counts plus the failure list, for display or JSON output."""
        with self._lock:
            return {
                "uploaded": len(self.uploaded),
                "updated": len(self.updated),
                "downloaded": len(self.downloaded),
                "skipped": len(self.skipped),
                "trashed": len(self.trashed),
                "failed": dict(self.failed),
            }


@dataclass(frozen=True)
class RemoteItem:
    """A remote entry together with its path relative to the sync root."""

    relative_path: str
    entry: RemoteEntry
