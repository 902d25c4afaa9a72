"""Sync sessions and their orchestration.

This module provides:
- SyncSession: State machine for one local root / remote root pair
- SyncOrchestrator: Starts, tracks and stops sessions; reports status

Session lifecycle:
    IDLE -> INITIALIZING -> RECONCILING -> WATCHING -> STOPPING -> IDLE

Push and pull sessions go from RECONCILING straight to STOPPING. A fatal
error while establishing or reconciling returns the session to IDLE and
surfaces as SessionError.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.client.api import APIError, NotFoundError
from drivesync.client.status import SyncStatus
from drivesync.client.sync.detector import ChangeDetector
from drivesync.client.sync.ignore import IgnorePatterns, is_hidden
from drivesync.client.sync.pump import WatchEventPump
from drivesync.client.sync.queue import EventQueue
from drivesync.client.sync.resolver import FolderIndex, FolderResolver
from drivesync.client.sync.retry import RetryPolicy
from drivesync.client.sync.scanner import DirectoryScanner, RemoteTreeWalker
from drivesync.client.sync.transfer import TransferEngine
from drivesync.client.sync.types import (
    SessionActiveError,
    SessionError,
    SyncError,
    SyncSummary,
)
from drivesync.client.sync.watcher import FileWatcher
from drivesync.client.sync.workers import FileSyncWorker
from drivesync.core.config import SyncConfig
from drivesync.core.types import SessionStatus, SyncMode

if TYPE_CHECKING:
    from drivesync.client.api import RemoteStorage
    from drivesync.client.status import StatusStore
    from drivesync.client.sync.types import LocalEntry, ProgressCallback, RemoteItem

logger = logging.getLogger(__name__)

# Allowed state transitions
TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.INITIALIZING}),
    SessionStatus.INITIALIZING: frozenset({SessionStatus.RECONCILING, SessionStatus.IDLE}),
    SessionStatus.RECONCILING: frozenset(
        {SessionStatus.WATCHING, SessionStatus.STOPPING, SessionStatus.IDLE}
    ),
    SessionStatus.WATCHING: frozenset({SessionStatus.STOPPING}),
    SessionStatus.STOPPING: frozenset({SessionStatus.IDLE}),
}

# Errors that end a session while it is being established or reconciled
FATAL_ERRORS: tuple[type[Exception], ...] = (APIError, SyncError, OSError)


class SyncSession:
    """One sync run between a local root and a remote root folder.

    The session owns its folder index, watcher, queue and pump; nothing
    is shared with other sessions.
    """

    def __init__(
        self,
        local_root: Path,
        remote_root_id: str,
        mode: SyncMode,
        storage: RemoteStorage,
        config: SyncConfig | None = None,
        progress_callback: ProgressCallback | None = None,
        on_stopped: Callable[[SyncSession], None] | None = None,
    ) -> None:
        """Initialize a session in the IDLE state.

        Args:
            local_root: Local sync root.
            remote_root_id: ID of the remote root folder.
            mode: Push, pull or watch.
            storage: Remote storage collaborator.
            config: Sync settings.
            progress_callback: Optional callback for transfer progress.
            on_stopped: Called once the session has released its resources.
        """
        self.local_root = Path(local_root).expanduser().resolve()
        self.remote_root_id = remote_root_id
        self.mode = mode
        self.summary = SyncSummary()

        self._storage = storage
        self._config = config or SyncConfig()
        self._progress_callback = progress_callback
        self._on_stopped = on_stopped
        self._retry = RetryPolicy.from_config(self._config)

        self._status = SessionStatus.IDLE
        self._lock = threading.RLock()
        self._stop_requested = threading.Event()
        self._idle = threading.Event()
        self._idle.set()

        self._index: FolderIndex | None = None
        self._worker: FileSyncWorker | None = None
        self._scanner: DirectoryScanner | None = None
        self._ignore: IgnorePatterns | None = None
        self._queue: EventQueue | None = None
        self._watcher: FileWatcher | None = None
        self._pump: WatchEventPump | None = None

    def __repr__(self) -> str:
        return f"SyncSession({self.mode.value}, {self.local_root}, status={self._status.value})"

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def folder_index(self) -> FolderIndex | None:
        return self._index

    @property
    def is_watching(self) -> bool:
        return self._status == SessionStatus.WATCHING

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    @property
    def event_queue(self) -> EventQueue | None:
        return self._queue

    @property
    def watcher(self) -> FileWatcher | None:
        return self._watcher

    def _transition(self, new_status: SessionStatus) -> None:
        with self._lock:
            if new_status not in TRANSITIONS[self._status]:
                raise SyncError(f"Invalid transition {self._status.value} -> {new_status.value}")
            logger.info(
                "Session %s: %s -> %s", self.local_root, self._status.value, new_status.value
            )
            self._status = new_status
            if new_status == SessionStatus.IDLE:
                self._idle.set()
            else:
                self._idle.clear()

    # === Lifecycle ===

    def run(self) -> SyncSummary:
        """Establish the session, reconcile, and start watching in watch mode.

        Returns once reconciliation is done; a watch session keeps running
        in background threads until stop() is called.

        Raises:
            SessionError: If the session could not be established or the
                reconciliation hit a session-fatal error. The session is
                IDLE again when this is raised.
        """
        self._stop_requested.clear()
        self._transition(SessionStatus.INITIALIZING)
        try:
            self._initialize()
        except FATAL_ERRORS as e:
            self._fail(e)
            raise SessionError(f"Cannot start session for {self.local_root}: {e}") from e

        self._transition(SessionStatus.RECONCILING)
        try:
            if not self.stop_requested:
                self.reconcile()
        except FATAL_ERRORS as e:
            self._fail(e)
            raise SessionError(f"Reconciliation of {self.local_root} failed: {e}") from e

        if self.mode == SyncMode.WATCH and not self.stop_requested:
            self.start_watching()
            # stop() may have arrived while the watcher was starting
            if self.stop_requested:
                self.stop()
        else:
            self._shutdown()

        return self.summary

    def _initialize(self) -> None:
        """Validate both roots and build the session's components."""
        if self.mode == SyncMode.PULL:
            self.local_root.mkdir(parents=True, exist_ok=True)
        elif not self.local_root.is_dir():
            raise SessionError(f"Local root is not a directory: {self.local_root}")

        try:
            root = self._retry.call(
                lambda: self._storage.get(self.remote_root_id),
                f"probe remote root {self.remote_root_id}",
            )
        except NotFoundError as e:
            raise SessionError(f"Remote root {self.remote_root_id} not found") from e
        if not root.is_folder or root.trashed:
            raise SessionError(f"Remote root {self.remote_root_id} is not a usable folder")

        self._ignore = IgnorePatterns.for_root(self.local_root, self._config.ignore_patterns)
        self._scanner = DirectoryScanner(self._ignore)
        self._index = FolderIndex(self.remote_root_id)
        resolver = FolderResolver(self._storage, self._index, self._retry)
        transfers = TransferEngine(
            self._storage,
            self._retry,
            chunk_size=self._config.chunk_size,
            progress_callback=self._progress_callback,
        )
        self._worker = FileSyncWorker(
            root=self.local_root,
            storage=self._storage,
            resolver=resolver,
            detector=ChangeDetector(self.mode),
            transfers=transfers,
            retry=self._retry,
            summary=self.summary,
            scanner=self._scanner,
        )
        logger.info("Session ready: %s <-> %s (%s)", self.local_root, self.remote_root_id, self.mode.value)

    # === Reconciliation ===

    def _run_all(self, tasks: list[Callable[[], object]]) -> None:
        """Run per-file tasks, concurrently if configured. Stops early on stop()."""

        def run(task: Callable[[], object]) -> None:
            if not self.stop_requested:
                task()

        if self._config.max_workers <= 1:
            for task in tasks:
                if self.stop_requested:
                    break
                task()
            return

        with ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="drivesync-transfer"
        ) as pool:
            futures = [pool.submit(run, task) for task in tasks]
            for future in futures:
                future.result()

    def _remote_items(self) -> list[RemoteItem]:
        assert self._ignore is not None
        walker = RemoteTreeWalker(self._storage, self._retry)
        items = []
        for item in walker.walk(self.remote_root_id):
            if is_hidden(item.relative_path) or self._ignore.matches(
                item.relative_path, is_dir=item.entry.is_folder
            ):
                logger.debug("Ignoring remote entry %s", item.relative_path)
                continue
            items.append(item)
        return items

    def reconcile(self) -> SyncSummary:
        """Bring both trees into agreement in one pass.

        Folders are materialized first and serially; per-file failures are
        recorded in the summary without aborting the pass.
        """
        assert self._worker is not None and self._scanner is not None
        worker = self._worker

        local_entries: list[LocalEntry] = []
        if self.mode.allows_upload:
            local_entries = self._scanner.scan(self.local_root)
            for entry in local_entries:
                if self.stop_requested:
                    return self.summary
                if entry.is_directory:
                    worker.ensure_folder(entry.relative_path)

        if self.mode == SyncMode.PUSH:
            self._run_all([
                lambda e=entry: worker.push_file(e)
                for entry in local_entries
                if not entry.is_directory
            ])
            return self.summary

        remote_items = self._remote_items()
        for item in remote_items:
            if self.stop_requested:
                return self.summary
            if item.entry.is_folder:
                worker.ensure_local_folder(item.relative_path)

        if self.mode == SyncMode.PULL:
            self._run_all([
                lambda i=item: worker.pull_item(i)
                for item in remote_items
                if not item.entry.is_folder
            ])
            return self.summary

        # Watch: pair up both sides by path
        local_by_path = {e.relative_path: e for e in local_entries}
        remote_by_path = {i.relative_path: i.entry for i in remote_items}
        file_paths = sorted(
            {e.relative_path for e in local_entries if not e.is_directory}
            | {i.relative_path for i in remote_items if not i.entry.is_folder}
        )
        self._run_all([
            lambda p=path: worker.sync_pair(p, local_by_path.get(p), remote_by_path.get(p))
            for path in file_paths
        ])
        return self.summary

    # === Watching ===

    def start_watching(self) -> None:
        """Subscribe to local changes and start the event pump."""
        assert self._worker is not None
        # One subscription per session
        self._close_watch()

        self._queue = EventQueue()
        self._pump = WatchEventPump(self._queue, self._worker, self._config.watch_workers)
        self._watcher = FileWatcher(
            self.local_root,
            self._queue,
            stability_window=self._config.stability_window,
            poll_interval=self._config.poll_interval,
            ignore_patterns=self._config.ignore_patterns,
        )
        self._watcher.start()
        self._pump.start()
        self._transition(SessionStatus.WATCHING)

    def _close_watch(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._queue is not None:
            self._queue.close()
        if self._pump is not None:
            self._pump.stop()
            self._pump = None
        self._queue = None

    # === Stopping ===

    def _release(self) -> None:
        self._close_watch()
        if self._index is not None:
            self._index.clear()
        if self._on_stopped is not None:
            self._on_stopped(self)

    def _shutdown(self) -> None:
        self._transition(SessionStatus.STOPPING)
        try:
            self._release()
        finally:
            self._transition(SessionStatus.IDLE)

    def _fail(self, error: BaseException) -> None:
        logger.error("Session %s failed: %s", self.local_root, error)
        try:
            self._release()
        finally:
            self._transition(SessionStatus.IDLE)

    def stop(self) -> None:
        """Stop the session. Safe to call in any state.

        A watching session is torn down right away; a session that is still
        initializing or reconciling finishes the file in hand and then stops.
        """
        with self._lock:
            self._stop_requested.set()
            if self._status != SessionStatus.WATCHING:
                return
            self._transition(SessionStatus.STOPPING)

        try:
            self._release()
        finally:
            self._transition(SessionStatus.IDLE)

    def wait_stopped(self, timeout: float | None = None) -> bool:
        """Block until the session is IDLE."""
        return self._idle.wait(timeout)


class SyncOrchestrator:
    """Entry point for starting and stopping sync sessions.

    At most one live session exists per local root. Status is persisted
    through an optional StatusStore.

    Usage:
        orchestrator = SyncOrchestrator(client, config, StatusStore(path))
        summary = orchestrator.start_push(Path("~/Documents"), "root-folder-id")
    """

    def __init__(
        self,
        storage: RemoteStorage,
        config: SyncConfig | None = None,
        status_store: StatusStore | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._storage = storage
        self._config = config or SyncConfig()
        self._status_store = status_store
        self._progress_callback = progress_callback
        self._sessions: dict[Path, SyncSession] = {}
        self._lock = threading.Lock()

    @property
    def sessions(self) -> list[SyncSession]:
        with self._lock:
            return list(self._sessions.values())

    def session_for(self, local_root: Path | str) -> SyncSession | None:
        with self._lock:
            return self._sessions.get(Path(local_root).expanduser().resolve())

    def _write_status(self, write: Callable[[StatusStore], object]) -> None:
        if self._status_store is None:
            return
        try:
            write(self._status_store)
        except OSError as e:
            logger.warning("Cannot write sync status: %s", e)

    def _is_syncing(self) -> bool:
        return any(s.is_watching for s in self.sessions)

    def _on_session_stopped(self, session: SyncSession) -> None:
        with self._lock:
            if self._sessions.get(session.local_root) is session:
                del self._sessions[session.local_root]
            syncing = any(s.is_watching for s in self._sessions.values())
        self._write_status(lambda store: store.mark_syncing(syncing))

    def _start(self, local_root: Path | str, remote_root_id: str, mode: SyncMode) -> SyncSummary:
        root = Path(local_root).expanduser().resolve()
        with self._lock:
            existing = self._sessions.get(root)
            if existing is not None and existing.status != SessionStatus.IDLE:
                raise SessionActiveError(f"A sync session is already active for {root}")
            session = SyncSession(
                root,
                remote_root_id,
                mode,
                self._storage,
                config=self._config,
                progress_callback=self._progress_callback,
                on_stopped=self._on_session_stopped,
            )
            self._sessions[root] = session

        summary = session.run()

        syncing = self._is_syncing()
        self._write_status(lambda store: store.mark_synced(is_syncing=syncing))
        logger.info("%s of %s finished: %s", mode.value.capitalize(), root, summary.as_dict())
        return summary

    def start_push(self, local_root: Path | str, remote_root_id: str) -> SyncSummary:
        """Reconcile local -> remote once."""
        return self._start(local_root, remote_root_id, SyncMode.PUSH)

    def start_pull(self, remote_root_id: str, local_root: Path | str) -> SyncSummary:
        """Reconcile remote -> local once, recursing through subfolders."""
        return self._start(local_root, remote_root_id, SyncMode.PULL)

    def start_sync(self, local_root: Path | str, remote_root_id: str) -> SyncSummary:
        """Reconcile both ways, then keep watching until stop_sync()."""
        return self._start(local_root, remote_root_id, SyncMode.WATCH)

    def stop_sync(self, local_root: Path | str | None = None) -> int:
        """Stop one session (or all of them). No-op if none is active.

        Returns:
            Number of sessions asked to stop.
        """
        if local_root is None:
            targets = self.sessions
        else:
            session = self.session_for(local_root)
            targets = [session] if session is not None else []

        for session in targets:
            session.stop()
        return len(targets)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every session has stopped."""
        return all(session.wait_stopped(timeout) for session in self.sessions)

    def status(self) -> SyncStatus:
        """Persisted status with isSyncing reflecting live watch sessions."""
        status = self._status_store.load() if self._status_store else SyncStatus()
        status.is_syncing = self._is_syncing()
        return status
