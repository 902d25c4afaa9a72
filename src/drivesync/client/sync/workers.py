"""Per-file sync units shared by batch reconciliation and the watch pump.

This module provides:
- FileSyncWorker: Classify-and-transfer for one path, with per-file error containment

Per-file failures (remote errors, exhausted retries, local I/O) are logged
and recorded in the session summary; they never propagate. AuthError is the
exception: bad credentials are fatal to the whole session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from drivesync.client.api import APIError, AuthError, ListQuery, NotFoundError
from drivesync.client.sync.types import (
    LocalEntry,
    SyncAction,
    SyncError,
    basename_of,
    normalize_relative_path,
    parent_of,
)

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry, RemoteStorage
    from drivesync.client.sync.detector import ChangeDetector
    from drivesync.client.sync.resolver import FolderResolver
    from drivesync.client.sync.retry import RetryPolicy
    from drivesync.client.sync.scanner import DirectoryScanner
    from drivesync.client.sync.transfer import TransferEngine
    from drivesync.client.sync.types import RemoteItem, SyncDecision, SyncSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors contained to the file they happened on
PER_FILE_ERRORS: tuple[type[Exception], ...] = (APIError, SyncError, OSError)


class FileSyncWorker:
    """Brings one path into agreement between the local tree and the remote."""

    def __init__(
        self,
        root: Path,
        storage: RemoteStorage,
        resolver: FolderResolver,
        detector: ChangeDetector,
        transfers: TransferEngine,
        retry: RetryPolicy,
        summary: SyncSummary,
        scanner: DirectoryScanner | None = None,
    ) -> None:
        self._root = root
        self._storage = storage
        self._resolver = resolver
        self._detector = detector
        self._transfers = transfers
        self._retry = retry
        self._summary = summary
        self._scanner = scanner

    @property
    def summary(self) -> SyncSummary:
        return self._summary

    def _guard(self, relative_path: str, func: Callable[[], T]) -> T | None:
        try:
            return func()
        except AuthError:
            raise
        except PER_FILE_ERRORS as e:
            logger.error("Failed to sync %s: %s", relative_path, e)
            self._summary.record_failure(relative_path, str(e))
            return None

    def find_child(
        self,
        name: str,
        parent_id: str,
        is_folder: bool | None = None,
    ) -> RemoteEntry | None:
        """Look up a non-trashed entry by name under a remote folder."""
        query = ListQuery(name=name, parent_id=parent_id, trashed=False, is_folder=is_folder)
        matches = self._retry.call(lambda: self._storage.list(query), f"look up {name!r}")
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Found %d entries named %r under %s, using %s",
                len(matches),
                name,
                parent_id,
                matches[0].id,
            )
        return matches[0]

    # === Uploads ===

    def _upload(self, local: LocalEntry, remote: RemoteEntry | None, checksum: str | None) -> SyncAction:
        parent_path = local.parent_path
        parent_id = self._resolver.resolve(parent_path)
        existing_id = remote.id if remote is not None else None
        try:
            result = self._transfers.upload(
                local.absolute_path, local.relative_path, parent_id, existing_id, checksum
            )
        except NotFoundError:
            # Entry or parent vanished between lookup and use; re-resolve once
            logger.warning("Remote entry for %s vanished, re-resolving", local.relative_path)
            self._resolver.evict(parent_path)
            parent_id = self._resolver.resolve(parent_path)
            fresh = self.find_child(local.name, parent_id, is_folder=False)
            result = self._transfers.upload(
                local.absolute_path,
                local.relative_path,
                parent_id,
                fresh.id if fresh is not None else None,
                checksum,
            )
        return SyncAction.CREATE_REMOTE if result.created else SyncAction.UPDATE_REMOTE

    def _apply(
        self,
        relative_path: str,
        local: LocalEntry | None,
        remote: RemoteEntry | None,
        decision: SyncDecision,
    ) -> SyncAction:
        action = decision.action
        if action == SyncAction.SKIP:
            logger.debug("Skipping %s: %s", relative_path, decision.reason)
        elif action.is_upload:
            assert local is not None
            action = self._upload(local, remote, decision.local_checksum)
        else:
            assert remote is not None
            action = self._download(relative_path, remote, action)

        self._summary.record(action, relative_path)
        return action

    def _download(self, relative_path: str, remote: RemoteEntry, action: SyncAction) -> SyncAction:
        local_path = self._root / relative_path
        try:
            self._transfers.download(remote, local_path, relative_path)
            return action
        except NotFoundError:
            logger.warning("Remote entry for %s vanished, looking it up again", relative_path)

        fresh = None
        if remote.parent_id is not None:
            fresh = self.find_child(remote.name, remote.parent_id, is_folder=False)
        if fresh is None or fresh.id == remote.id:
            logger.info("Skipping %s: no longer on the remote", relative_path)
            return SyncAction.SKIP
        self._transfers.download(fresh, local_path, relative_path)
        return action

    def sync_pair(
        self,
        relative_path: str,
        local: LocalEntry | None,
        remote: RemoteEntry | None,
    ) -> SyncAction | None:
        """Classify a known local/remote pair and carry out the decision.

        Returns:
            The action taken, or None if the path failed.
        """

        def run() -> SyncAction:
            decision = self._detector.classify(local, remote)
            return self._apply(relative_path, local, remote, decision)

        return self._guard(relative_path, run)

    def push_file(self, local: LocalEntry) -> SyncAction | None:
        """Sync a local file against whatever the remote holds at its path.

        Missing remote parent folders are created on demand.
        """

        def run() -> SyncAction:
            parent_id = self._resolver.resolve(local.parent_path)
            remote = self.find_child(local.name, parent_id)
            decision = self._detector.classify(local, remote)
            return self._apply(local.relative_path, local, remote, decision)

        return self._guard(local.relative_path, run)

    def push_path(self, relative_path: str) -> SyncAction | None:
        """Sync a local file by relative path (watch Added/Changed)."""
        path = normalize_relative_path(relative_path)
        try:
            local = LocalEntry.from_path(self._root / path, self._root)
        except FileNotFoundError:
            logger.debug("File vanished before it could be synced: %s", path)
            return None
        except OSError as e:
            logger.error("Cannot read %s: %s", path, e)
            self._summary.record_failure(path, str(e))
            return None

        if local.is_directory:
            return None
        return self.push_file(local)

    def ensure_folder(self, relative_path: str) -> str | None:
        """Resolve (creating if needed) the remote folder for a local directory.

        Returns:
            The folder ID, or None if the path failed.
        """
        path = normalize_relative_path(relative_path)
        return self._guard(path, lambda: self._resolver.resolve(path))

    def push_directory(self, relative_path: str) -> None:
        """Create a remote folder and push anything already inside it.

        A directory that appears under watch may already contain files
        (moved or copied in), and no per-file events arrive for those.
        """
        path = normalize_relative_path(relative_path)
        if self.ensure_folder(path) is None or self._scanner is None:
            return

        for entry in self._scanner.scan(self._root, start=path):
            if entry.is_directory:
                self.ensure_folder(entry.relative_path)
            else:
                self.push_file(entry)

    # === Downloads ===

    def ensure_local_folder(self, relative_path: str) -> bool:
        """Create the local directory for a remote folder.

        Returns:
            True if the directory exists afterwards.
        """
        path = normalize_relative_path(relative_path)
        local_path = self._root / path

        def run() -> bool:
            if local_path.exists() and not local_path.is_dir():
                raise FileExistsError(f"A file is in the way of folder {path}")
            local_path.mkdir(parents=True, exist_ok=True)
            return True

        return bool(self._guard(path, run))

    def pull_item(self, item: RemoteItem) -> SyncAction | None:
        """Sync one remote file into the local tree."""
        local_path = self._root / item.relative_path
        local: LocalEntry | None = None
        if local_path.exists() or local_path.is_symlink():
            if local_path.is_symlink():
                logger.warning("Not overwriting symlink %s", item.relative_path)
                self._summary.record(SyncAction.SKIP, item.relative_path)
                return SyncAction.SKIP
            local = self._guard(item.relative_path, lambda: LocalEntry.from_path(local_path, self._root))
            if local is None:
                return None
        return self.sync_pair(item.relative_path, local, item.entry)

    # === Removals ===

    def trash_path(self, relative_path: str, is_directory: bool) -> bool:
        """Trash the remote counterpart of a removed local file or directory.

        The remote parent is looked up, never created. Directories are
        evicted from the folder index whether or not a remote entry was found.

        Returns:
            True if a remote entry was trashed.
        """
        path = normalize_relative_path(relative_path)

        def run() -> bool:
            parent_id = self._resolver.find(parent_of(path))
            remote = None
            if parent_id is not None:
                remote = self.find_child(basename_of(path), parent_id, is_folder=is_directory)
            if remote is None:
                logger.debug("No remote entry to trash for %s", path)
                return False
            try:
                self._transfers.trash(remote.id, path)
            except NotFoundError:
                logger.debug("Remote entry for %s is already gone", path)
                return False
            self._summary.record_trashed(path)
            return True

        try:
            return bool(self._guard(path, run))
        finally:
            if is_directory:
                self._resolver.evict(path)
