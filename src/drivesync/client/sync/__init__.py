"""Sync engine between a local directory tree and remote storage.

Architecture:
    SyncOrchestrator → SyncSession → (scan, resolve, classify, transfer)
    FileWatcher → EventQueue → WatchEventPump → FileSyncWorker

Components:
- **DirectoryScanner / RemoteTreeWalker**: Ordered enumeration of both trees
- **FolderResolver**: Create-or-get remote folders behind a per-session FolderIndex
- **ChangeDetector**: Checksum-first classification of local/remote pairs
- **TransferEngine**: Chunked uploads, atomic downloads, trash; all retried
- **FileSyncWorker**: Per-file units shared by reconciliation and watch mode
- **FileWatcher / EventQueue / WatchEventPump**: Live incremental sync
- **SyncSession / SyncOrchestrator**: Session state machine and entry points
"""

from drivesync.client.sync.detector import MTIME_TOLERANCE, ChangeDetector
from drivesync.client.sync.engine import SyncOrchestrator, SyncSession
from drivesync.client.sync.ignore import IgnorePatterns
from drivesync.client.sync.pump import WatchEventPump
from drivesync.client.sync.queue import EventQueue, QueueClosedError
from drivesync.client.sync.resolver import FolderIndex, FolderResolver
from drivesync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    RetryPolicy,
    retry_with_backoff,
)
from drivesync.client.sync.scanner import DirectoryScanner, RemoteTreeWalker
from drivesync.client.sync.transfer import DownloadResult, TransferEngine, UploadResult
from drivesync.client.sync.types import (
    LocalEntry,
    ProgressCallback,
    RemoteItem,
    SessionActiveError,
    SessionError,
    SyncAction,
    SyncDecision,
    SyncError,
    SyncSummary,
    TransferFailed,
    TransferProgress,
    WatchEvent,
    WatchEventType,
)
from drivesync.client.sync.watcher import FileWatcher, StableEventHandler
from drivesync.client.sync.workers import FileSyncWorker

__all__ = [
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_BACKOFF",
    "RetryPolicy",
    "retry_with_backoff",
    # Types and dataclasses
    "LocalEntry",
    "ProgressCallback",
    "RemoteItem",
    "SyncAction",
    "SyncDecision",
    "SyncSummary",
    "TransferProgress",
    "WatchEvent",
    "WatchEventType",
    # Errors
    "SessionActiveError",
    "SessionError",
    "SyncError",
    "TransferFailed",
    # Scanning and resolution
    "DirectoryScanner",
    "FolderIndex",
    "FolderResolver",
    "IgnorePatterns",
    "RemoteTreeWalker",
    # Detection and transfer
    "MTIME_TOLERANCE",
    "ChangeDetector",
    "DownloadResult",
    "FileSyncWorker",
    "TransferEngine",
    "UploadResult",
    # Watch
    "EventQueue",
    "FileWatcher",
    "QueueClosedError",
    "StableEventHandler",
    "WatchEventPump",
    # Orchestration
    "SyncOrchestrator",
    "SyncSession",
]
