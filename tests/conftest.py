"""Shared pytest fixtures.

This module provides an in-memory remote store that behaves like the
Drive-shaped API the sync engine talks to, so engine tests run without
any network access.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
import time
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from drivesync.client.api import (
    CHECKSUM_PROPERTY,
    FOLDER_MIME_TYPE,
    ListQuery,
    NotFoundError,
    RemoteEntry,
    parse_timestamp,
)
from drivesync.client.sync.retry import RetryPolicy
from drivesync.core.config import SyncConfig

ROOT_ID = "root"


class InMemoryStorage:
    """RemoteStorage backed by dictionaries.

    Failures can be injected per operation with ``fail(op, *errors)``;
    each queued error is raised by one call of that operation.
    """

    def __init__(self, root_id: str = ROOT_ID) -> None:
        self.root_id = root_id
        self.entries: dict[str, RemoteEntry] = {
            root_id: RemoteEntry(id=root_id, name="", parent_id=None, is_folder=True)
        }
        self.content: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.list_delay = 0.0
        self.closed = False
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # === Failure injection ===

    def fail(self, operation: str, *errors: Exception) -> None:
        with self._lock:
            self._failures[operation].extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            pending = self._failures.get(operation)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error

    def _record(self, operation: str, name: str) -> None:
        with self._lock:
            self.calls.append((operation, name))

    # === RemoteStorage ===

    def list(self, query: ListQuery) -> list[RemoteEntry]:
        self._maybe_fail("list")
        if self.list_delay:
            time.sleep(self.list_delay)
        with self._lock:
            return sorted(
                (e for e in self.entries.values() if e.id != self.root_id and query.matches(e)),
                key=lambda e: e.id,
            )

    def get(self, entry_id: str) -> RemoteEntry:
        self._maybe_fail("get")
        with self._lock:
            entry = self.entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"File not found: {entry_id}", 404)
        return entry

    def create(self, metadata: dict[str, Any], media: Iterable[bytes] | None = None) -> RemoteEntry:
        self._maybe_fail("create")
        parent_id = (metadata.get("parents") or [None])[0]
        with self._lock:
            parent = self.entries.get(parent_id) if parent_id else None
        if parent is None or parent.trashed:
            raise NotFoundError(f"File not found: {parent_id}", 404)

        is_folder = metadata.get("mimeType") == FOLDER_MIME_TYPE
        data = b"".join(media) if media is not None else b""
        with self._lock:
            entry_id = f"id{next(self._ids)}"
            entry = RemoteEntry(
                id=entry_id,
                name=metadata["name"],
                parent_id=parent_id,
                is_folder=is_folder,
                modified_time=parse_timestamp(metadata.get("modifiedTime")) or time.time(),
                size=len(data),
                checksum=None if is_folder else self._checksum_for(metadata, data),
            )
            self.entries[entry_id] = entry
            if not is_folder:
                self.content[entry_id] = data
        self._record("create", entry.name)
        return entry

    def update(
        self,
        entry_id: str,
        patch: dict[str, Any],
        media: Iterable[bytes] | None = None,
    ) -> RemoteEntry:
        self._maybe_fail("update")
        with self._lock:
            entry = self.entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"File not found: {entry_id}", 404)

        changes: dict[str, Any] = {}
        if "name" in patch:
            changes["name"] = patch["name"]
        if "trashed" in patch:
            changes["trashed"] = bool(patch["trashed"])
        if "modifiedTime" in patch:
            changes["modified_time"] = parse_timestamp(patch["modifiedTime"])
        if media is not None:
            data = b"".join(media)
            changes["size"] = len(data)
            changes["checksum"] = self._checksum_for(patch, data)
            with self._lock:
                self.content[entry_id] = data

        with self._lock:
            entry = self.entries[entry_id] = replace(entry, **changes)
        self._record("update", entry.name)
        return entry

    def trash(self, entry_id: str) -> None:
        self._maybe_fail("trash")
        with self._lock:
            entry = self.entries.get(entry_id)
            if entry is None:
                raise NotFoundError(f"File not found: {entry_id}", 404)
            self.entries[entry_id] = replace(entry, trashed=True)
        self._record("trash", entry.name)

    def close(self) -> None:
        self.closed = True

    def download(self, entry_id: str) -> Iterator[bytes]:
        self._maybe_fail("download")
        with self._lock:
            data = self.content.get(entry_id)
        if data is None:
            raise NotFoundError(f"File not found: {entry_id}", 404)
        self._record("download", self.entries[entry_id].name)
        for start in range(0, len(data), 4):
            yield data[start:start + 4]

    @staticmethod
    def _checksum_for(metadata: dict[str, Any], data: bytes) -> str:
        properties = metadata.get("appProperties") or {}
        return properties.get(CHECKSUM_PROPERTY) or hashlib.md5(data).hexdigest()

    # === Test helpers ===

    def _forget_last_call(self) -> None:
        with self._lock:
            self.calls.pop()

    def add_folder(self, name: str, parent_id: str | None = None) -> str:
        entry = self.create({
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or self.root_id],
        })
        self._forget_last_call()
        return entry.id

    def add_file(
        self,
        name: str,
        data: bytes,
        parent_id: str | None = None,
        modified_time: float | None = None,
        checksum: str | None = "auto",
    ) -> str:
        """Add a file directly; ``checksum=None`` stores one without any checksum."""
        entry = self.create({"name": name, "parents": [parent_id or self.root_id]}, [data])
        changes: dict[str, Any] = {}
        if modified_time is not None:
            changes["modified_time"] = modified_time
        if checksum != "auto":
            changes["checksum"] = checksum
        with self._lock:
            self.entries[entry.id] = replace(entry, **changes)
        self._forget_last_call()
        return entry.id

    def children(self, parent_id: str | None = None) -> list[RemoteEntry]:
        """Non-trashed children of a folder, sorted by name."""
        parent_id = parent_id or self.root_id
        with self._lock:
            return sorted(
                (e for e in self.entries.values() if e.parent_id == parent_id and not e.trashed),
                key=lambda e: e.name,
            )

    def find_path(self, relative_path: str) -> RemoteEntry | None:
        """Resolve a slash-separated path of non-trashed entries."""
        parent_id = self.root_id
        entry: RemoteEntry | None = None
        for name in relative_path.split("/"):
            matches = [e for e in self.children(parent_id) if e.name == name]
            if not matches:
                return None
            entry = matches[0]
            parent_id = entry.id
        return entry

    def read(self, relative_path: str) -> bytes | None:
        entry = self.find_path(relative_path)
        return self.content.get(entry.id) if entry is not None else None

    def operations(self, operation: str) -> list[str]:
        with self._lock:
            return [name for op, name in self.calls if op == operation]


@pytest.fixture
def storage() -> InMemoryStorage:
    """An empty in-memory remote store rooted at ROOT_ID."""
    return InMemoryStorage()


@pytest.fixture
def retry() -> RetryPolicy:
    """Retry policy that never actually sleeps between attempts."""
    return RetryPolicy(max_attempts=3, initial_backoff=0.0, max_backoff=0.0)


@pytest.fixture
def sync_config() -> SyncConfig:
    """Engine settings tuned for fast tests."""
    return SyncConfig(
        initial_backoff=0.0,
        max_backoff=0.0,
        stability_window=0.2,
        poll_interval=0.05,
    )


@pytest.fixture
def local_root(tmp_path: Path) -> Path:
    """An empty local sync root."""
    root = tmp_path / "local"
    root.mkdir()
    return root
