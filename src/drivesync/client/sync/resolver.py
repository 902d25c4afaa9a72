"""Remote folder resolution with a per-session path cache.

This module provides:
- FolderIndex: Thread-safe mapping of local relative paths to remote folder IDs
- FolderResolver: Create-or-get semantics for remote folders

The resolver never creates a folder without first querying for it by
name and parent, so repeated resolution of a path yields one folder.
Concurrent resolutions of the same path are serialized by a per-path
lock; the index lock itself is only held for dictionary access, never
across a network call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from drivesync.client.api import ListQuery, NotFoundError, folder_metadata
from drivesync.client.sync.types import basename_of, normalize_relative_path, parent_of

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry, RemoteStorage
    from drivesync.client.sync.retry import RetryPolicy

logger = logging.getLogger(__name__)


class FolderIndex:
    """Session-local cache of relative path -> remote folder ID.

    The root ("") is seeded at construction and cannot be evicted.
    """

    def __init__(self, root_id: str) -> None:
        self._lock = threading.Lock()
        self._root_id = root_id
        self._ids: dict[str, str] = {"": root_id}

    @property
    def root_id(self) -> str:
        return self._root_id

    def get(self, path: str) -> str | None:
        with self._lock:
            return self._ids.get(path)

    def add(self, path: str, folder_id: str) -> str:
        """Record a mapping unless one exists; return the ID now stored."""
        with self._lock:
            return self._ids.setdefault(path, folder_id)

    def evict(self, path: str) -> list[str]:
        """Drop a path and everything below it.

        Returns:
            The evicted paths.
        """
        if not path:
            return []
        prefix = path + "/"
        with self._lock:
            evicted = [p for p in self._ids if p == path or p.startswith(prefix)]
            for p in evicted:
                del self._ids[p]
        if evicted:
            logger.debug("Evicted %d folder mapping(s) under %s", len(evicted), path)
        return evicted

    def clear(self) -> None:
        """Forget everything except the root mapping."""
        with self._lock:
            self._ids = {"": self._root_id}

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._ids)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class FolderResolver:
    """Resolves local relative directory paths to remote folder IDs."""

    def __init__(
        self,
        storage: RemoteStorage,
        index: FolderIndex,
        retry: RetryPolicy,
    ) -> None:
        self._storage = storage
        self._index = index
        self._retry = retry
        # path -> (lock, number of threads using it); entries live only while in use
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    @property
    def index(self) -> FolderIndex:
        return self._index

    @contextmanager
    def _single_flight(self, path: str) -> Iterator[None]:
        """Serialize resolution of one path across threads."""
        with self._locks_guard:
            lock, users = self._locks.get(path, (threading.Lock(), 0))
            self._locks[path] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._locks[path]
                if users == 1:
                    del self._locks[path]
                else:
                    self._locks[path] = (lock, users - 1)

    @property
    def pending_paths(self) -> int:
        """Number of paths currently being resolved."""
        with self._locks_guard:
            return len(self._locks)

    def _find_child(self, name: str, parent_id: str) -> RemoteEntry | None:
        query = ListQuery(name=name, parent_id=parent_id, trashed=False, is_folder=True)
        matches = self._retry.call(
            lambda: self._storage.list(query), f"look up folder {name!r}"
        )
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Found %d folders named %r under %s, using %s",
                len(matches),
                name,
                parent_id,
                matches[0].id,
            )
        return matches[0]

    def _create(self, relative_path: str, parent_id: str) -> str:
        name = basename_of(relative_path)
        entry = self._retry.call(
            lambda: self._storage.create(folder_metadata(name, parent_id)),
            f"create folder {relative_path}",
        )
        logger.info("Created remote folder %s (%s)", relative_path, entry.id)
        return entry.id

    def _find_or_create(self, relative_path: str, parent_id: str) -> str:
        existing = self._find_child(basename_of(relative_path), parent_id)
        if existing is not None:
            logger.debug("Using existing remote folder %s (%s)", relative_path, existing.id)
            return existing.id
        return self._create(relative_path, parent_id)

    def resolve(self, relative_path: str) -> str:
        """Return the remote folder ID for a path, creating folders as needed.

        Parents are resolved first, bottoming out at the seeded root.

        Raises:
            TransferFailed: If the remote store stays unreachable.
            NotFoundError: If the remote root itself has vanished.
        """
        path = normalize_relative_path(relative_path)
        cached = self._index.get(path)
        if cached is not None:
            return cached

        with self._single_flight(path):
            cached = self._index.get(path)
            if cached is not None:
                return cached

            parent_path = parent_of(path)
            parent_id = self.resolve(parent_path)
            try:
                folder_id = self._find_or_create(path, parent_id)
            except NotFoundError:
                if not parent_path:
                    raise
                # Cached parent vanished remotely; re-resolve it once
                logger.warning("Remote parent of %s vanished, re-resolving", path)
                self._index.evict(parent_path)
                parent_id = self.resolve(parent_path)
                folder_id = self._find_or_create(path, parent_id)

            return self._index.add(path, folder_id)

    def find(self, relative_path: str) -> str | None:
        """Look up a folder ID without creating anything.

        Returns:
            The folder ID, or None if the folder (or an ancestor) doesn't exist.
        """
        path = normalize_relative_path(relative_path)
        cached = self._index.get(path)
        if cached is not None:
            return cached

        parent_id = self.find(parent_of(path))
        if parent_id is None:
            return None
        existing = self._find_child(basename_of(path), parent_id)
        if existing is None:
            return None
        return self._index.add(path, existing.id)

    def evict(self, relative_path: str) -> list[str]:
        """Forget a folder (and its subtree) after it was removed."""
        return self._index.evict(normalize_relative_path(relative_path))
