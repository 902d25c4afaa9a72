"""File transfers against remote storage.

This module provides:
- TransferEngine: Chunked upload, atomic download and trash, all under retry
- UploadResult / DownloadResult: Outcome of a transfer
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.client.api import file_metadata
from drivesync.client.sync.types import ProgressCallback, TransferProgress
from drivesync.core.checksum import file_checksum
from drivesync.core.chunking import DEFAULT_CHUNK_SIZE, chunk_file

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry, RemoteStorage
    from drivesync.client.sync.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Downloads land in a hidden sibling first; hidden names are never synced
TEMP_PREFIX = ".drivesync-"
TEMP_SUFFIX = ".part"


@dataclass
class UploadResult:
    """Result of a successful upload."""

    path: str
    entry: RemoteEntry
    size: int
    checksum: str
    created: bool


@dataclass
class DownloadResult:
    """Result of a successful download."""

    path: str
    local_path: Path
    size: int
    checksum: str


def temp_path_for(local_path: Path) -> Path:
    """Hidden temporary sibling used while downloading to local_path."""
    return local_path.with_name(f"{TEMP_PREFIX}{local_path.name}{TEMP_SUFFIX}")


class TransferEngine:
    """Moves file content between the local tree and remote storage.

    Every remote call goes through the retry policy; a transfer that keeps
    failing transiently surfaces as TransferFailed. A retried upload starts
    a fresh upload session from the first chunk.
    """

    def __init__(
        self,
        storage: RemoteStorage,
        retry: RetryPolicy,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            storage: Remote storage collaborator.
            retry: Retry policy for remote calls.
            chunk_size: Upload chunk size in bytes.
            progress_callback: Optional callback for progress updates.
        """
        self._storage = storage
        self._retry = retry
        self._chunk_size = chunk_size
        self._progress_callback = progress_callback

    def _report(self, progress: TransferProgress) -> None:
        if self._progress_callback:
            self._progress_callback(progress)

    def _media(self, local_path: Path, relative_path: str, size: int) -> Iterator[bytes]:
        """Stream a file chunk by chunk, reporting progress once each chunk is consumed."""
        for chunk in chunk_file(local_path, self._chunk_size):
            yield chunk.data
            self._report(TransferProgress(
                path=relative_path,
                total_bytes=size,
                bytes_transferred=chunk.end,
                current_chunk=chunk.index + 1,
                operation="upload",
            ))

    def upload(
        self,
        local_path: Path,
        relative_path: str,
        parent_id: str,
        existing_id: str | None = None,
        checksum: str | None = None,
    ) -> UploadResult:
        """Upload a file as a new remote entry or over an existing one.

        Args:
            local_path: Absolute path to the local file.
            relative_path: Path relative to the sync root.
            parent_id: Remote folder the file belongs in.
            existing_id: Remote entry to update, or None to create.
            checksum: Precomputed content checksum, if known.

        Returns:
            UploadResult with the remote entry.

        Raises:
            TransferFailed: If transient failures exhaust the retry attempts.
            OSError: If the local file cannot be read.
        """
        stat = local_path.stat()
        if checksum is None:
            checksum = file_checksum(local_path)
        name = local_path.name

        def attempt() -> RemoteEntry:
            media = self._media(local_path, relative_path, stat.st_size)
            if existing_id is None:
                metadata = file_metadata(name, parent_id, checksum, stat.st_mtime)
                return self._storage.create(metadata, media)
            patch = file_metadata(name, None, checksum, stat.st_mtime)
            return self._storage.update(existing_id, patch, media)

        verb = "Uploading" if existing_id is None else "Updating"
        logger.info("%s %s (%d bytes)", verb, relative_path, stat.st_size)
        entry = self._retry.call(attempt, f"upload {relative_path}")

        logger.info("Uploaded %s as %s", relative_path, entry.id)
        return UploadResult(
            path=relative_path,
            entry=entry,
            size=stat.st_size,
            checksum=checksum,
            created=existing_id is None,
        )

    def _fetch(self, entry: RemoteEntry, relative_path: str, tmp_path: Path) -> str:
        """Write the full content of an entry to tmp_path; return its checksum."""
        hasher = hashlib.md5(usedforsecurity=False)
        received = 0
        with open(tmp_path, "wb") as f:
            for index, data in enumerate(self._storage.download(entry.id), start=1):
                f.write(data)
                hasher.update(data)
                received += len(data)
                self._report(TransferProgress(
                    path=relative_path,
                    total_bytes=entry.size,
                    bytes_transferred=received,
                    current_chunk=index,
                    operation="download",
                ))
        return hasher.hexdigest()

    def download(self, entry: RemoteEntry, local_path: Path, relative_path: str) -> DownloadResult:
        """Download a file entry to local_path atomically.

        Content is written to a hidden temporary sibling, then moved over
        the target. The target's mtime is set to the remote modifiedTime so
        the next pass sees both sides as equally fresh.

        Raises:
            TransferFailed: If transient failures exhaust the retry attempts.
            OSError: If the local file cannot be written.
        """
        logger.info("Downloading %s", relative_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = temp_path_for(local_path)

        try:
            digest = self._retry.call(
                lambda: self._fetch(entry, relative_path, tmp_path),
                f"download {relative_path}",
            )
            os.replace(tmp_path, local_path)
        except Exception:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise

        if entry.modified_time is not None:
            os.utime(local_path, (entry.modified_time, entry.modified_time))

        if entry.checksum and entry.checksum != digest:
            logger.warning(
                "Checksum mismatch after downloading %s (remote %s, local %s)",
                relative_path,
                entry.checksum,
                digest,
            )

        size = local_path.stat().st_size
        logger.info("Downloaded %s (%d bytes)", relative_path, size)
        return DownloadResult(path=relative_path, local_path=local_path, size=size, checksum=digest)

    def trash(self, entry_id: str, relative_path: str) -> None:
        """Move a remote entry to the trash."""
        self._retry.call(lambda: self._storage.trash(entry_id), f"trash {relative_path}")
        logger.info("Trashed %s (%s)", relative_path, entry_id)
