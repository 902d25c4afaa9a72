"""File system watcher with a stability window.

This module provides:
- StableEventHandler: Maps watchdog events to WatchEvents once files settle
- FileWatcher: Watches a sync root using watchdog and feeds an EventQueue

File additions and changes are held back until the file size has stopped
changing for the stability window (default 2s), so in-progress writes are
not uploaded half-done. Removals and new directories are forwarded right
away. Moves are reported as a removal of the source plus an addition of
the destination.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from drivesync.client.sync.ignore import IgnorePatterns
from drivesync.client.sync.queue import QueueClosedError, coalesce
from drivesync.client.sync.types import WatchEvent, WatchEventType

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from drivesync.client.sync.queue import EventQueue

logger = logging.getLogger(__name__)

DEFAULT_STABILITY_WINDOW = 2.0  # seconds without size change
DEFAULT_POLL_INTERVAL = 0.5  # seconds between stability checks


@dataclass
class PendingChange:
    """A file change waiting for its size to settle."""

    event_type: WatchEventType
    path: Path
    size: int
    last_change: float


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class StableEventHandler(FileSystemEventHandler):
    """Event handler that emits file events only once the file is stable."""

    def __init__(
        self,
        base_path: Path,
        event_queue: EventQueue,
        stability_window: float = DEFAULT_STABILITY_WINDOW,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            base_path: Sync root being watched.
            event_queue: Queue to inject watch events into.
            stability_window: Quiet period before a file change is emitted.
            poll_interval: How often pending files are re-checked.
            ignore_patterns: Patterns for paths to ignore.
        """
        super().__init__()
        self._base_path = base_path
        self._event_queue = event_queue
        self._stability_window = stability_window
        self._poll_interval = poll_interval
        self._ignore = ignore_patterns or IgnorePatterns()

        # Pending file changes keyed by relative path
        self._pending: dict[str, PendingChange] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._stopped = False

    @property
    def pending_paths(self) -> list[str]:
        with self._lock:
            return sorted(self._pending)

    def _relative(self, path: Path) -> str | None:
        if self._ignore.should_ignore(path, self._base_path):
            return None
        try:
            return path.relative_to(self._base_path).as_posix()
        except ValueError:
            logger.warning("Path %s is not relative to %s", path, self._base_path)
            return None

    def _emit(self, event_type: WatchEventType, rel_path: str) -> None:
        event = WatchEvent.create(event_type, rel_path)
        try:
            self._event_queue.put(event)
        except QueueClosedError:
            logger.debug("Queue closed, dropping %s", event)
            return
        logger.debug("Watcher emitted %s", event)

    def _schedule_check(self) -> None:
        """Arm the stability timer unless it is already running. Caller holds the lock."""
        if self._timer is not None or self._stopped:
            return
        self._timer = threading.Timer(self._poll_interval, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        self.check_pending()
        with self._lock:
            if self._pending:
                self._schedule_check()

    def check_pending(self, now: float | None = None) -> list[str]:
        """Emit every pending change whose size has been stable long enough.

        Returns:
            Relative paths emitted.
        """
        now = time.monotonic() if now is None else now
        ready: list[tuple[WatchEventType, str]] = []

        with self._lock:
            for rel_path, change in list(self._pending.items()):
                try:
                    size = change.path.stat().st_size
                except FileNotFoundError:
                    # A removal event follows
                    del self._pending[rel_path]
                    continue
                except OSError as e:
                    logger.warning("Cannot stat %s, dropping change: %s", rel_path, e)
                    del self._pending[rel_path]
                    continue

                if size != change.size:
                    change.size = size
                    change.last_change = now
                elif now - change.last_change >= self._stability_window:
                    ready.append((change.event_type, rel_path))
                    del self._pending[rel_path]

        # Inject events outside lock
        for event_type, rel_path in ready:
            self._emit(event_type, rel_path)
        return [rel_path for _, rel_path in ready]

    def _track(self, event_type: WatchEventType, path: Path, rel_path: str) -> None:
        try:
            size = path.stat().st_size
        except OSError:
            size = -1
        now = time.monotonic()

        with self._lock:
            pending = self._pending.get(rel_path)
            if pending is not None:
                pending.event_type = coalesce(pending.event_type, event_type)
                pending.size = size
                pending.last_change = now
            else:
                self._pending[rel_path] = PendingChange(event_type, path, size, now)
            self._schedule_check()

    def _removed(self, path: Path, is_directory: bool) -> None:
        rel_path = self._relative(path)
        if rel_path is None:
            return
        with self._lock:
            self._pending.pop(rel_path, None)
            if is_directory:
                prefix = rel_path + "/"
                for pending in [p for p in self._pending if p.startswith(prefix)]:
                    del self._pending[pending]
        self._emit(WatchEventType.DIR_REMOVED if is_directory else WatchEventType.REMOVED, rel_path)

    def _added(self, path: Path, is_directory: bool, event_type: WatchEventType) -> None:
        rel_path = self._relative(path)
        if rel_path is None:
            return
        if is_directory:
            self._emit(WatchEventType.DIR_ADDED, rel_path)
        else:
            self._track(event_type, path, rel_path)

    def on_created(self, event: FileSystemEvent) -> None:
        path = Path(_decode(event.src_path))
        if isinstance(event, DirCreatedEvent):
            self._added(path, True, WatchEventType.DIR_ADDED)
        elif isinstance(event, FileCreatedEvent):
            self._added(path, False, WatchEventType.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory modifications only mean their listing changed
        if isinstance(event, FileModifiedEvent):
            self._added(Path(_decode(event.src_path)), False, WatchEventType.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = Path(_decode(event.src_path))
        if isinstance(event, DirDeletedEvent):
            self._removed(path, True)
        elif isinstance(event, FileDeletedEvent):
            self._removed(path, False)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not isinstance(event, FileMovedEvent | DirMovedEvent):
            return
        is_directory = isinstance(event, DirMovedEvent)
        self._removed(Path(_decode(event.src_path)), is_directory)
        self._added(Path(_decode(event.dest_path)), is_directory, WatchEventType.ADDED)

    def stop(self) -> None:
        """Stop the stability timer and forget pending changes."""
        with self._lock:
            self._stopped = True
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


class FileWatcher:
    """Watches a sync root and injects stable WatchEvents into an EventQueue."""

    def __init__(
        self,
        watch_path: Path,
        event_queue: EventQueue,
        stability_window: float = DEFAULT_STABILITY_WINDOW,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            event_queue: EventQueue to inject events into.
            stability_window: Quiet period before a file change is emitted.
            poll_interval: How often pending files are re-checked.
            ignore_patterns: Additional patterns to ignore.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._event_queue = event_queue
        self._ignore = IgnorePatterns.for_root(self._watch_path, ignore_patterns)
        self._handler = StableEventHandler(
            base_path=self._watch_path,
            event_queue=event_queue,
            stability_window=stability_window,
            poll_interval=poll_interval,
            ignore_patterns=self._ignore,
        )
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        return self._watch_path

    @property
    def handler(self) -> StableEventHandler:
        return self._handler

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return

        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False
        logger.info("Stopped watching %s", self._watch_path)

    def __enter__(self) -> FileWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
