"""Change detection for local/remote entry pairs.

Checksums are the authoritative equality signal. Modification times are
only consulted when the remote entry carries no checksum (legacy or
externally created files).

Decision table (files):
| Local | Remote | Checksums | Action                         |
|-------|--------|-----------|--------------------------------|
| yes   | no     | -         | CREATE_REMOTE                  |
| no    | yes    | -         | CREATE_LOCAL                   |
| yes   | yes    | equal     | SKIP                           |
| yes   | yes    | differ    | UPDATE_* in the mode direction |
| yes   | yes    | missing   | newer modifiedTime wins        |

A direction the session mode does not allow always yields SKIP.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.core.checksum import file_checksum
from drivesync.core.types import SyncMode
from drivesync.client.sync.types import SyncAction, SyncDecision

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry
    from drivesync.client.sync.types import LocalEntry

logger = logging.getLogger(__name__)

# Timestamps closer than this are treated as equal (filesystem and API
# timestamp resolutions differ)
MTIME_TOLERANCE = 2.0  # seconds


class ChangeDetector:
    """Classifies local/remote pairs for one sync mode.

    Examples:
        >>> detector = ChangeDetector(SyncMode.PUSH)
        >>> decision = detector.classify(local_entry, remote_entry)
        >>> decision.action
        <SyncAction.SKIP: 'skip'>
    """

    def __init__(
        self,
        mode: SyncMode,
        mtime_tolerance: float = MTIME_TOLERANCE,
        checksum_func: Callable[[Path], str] = file_checksum,
    ) -> None:
        """Initialize the detector.

        Args:
            mode: Session mode; decides the direction of updates.
            mtime_tolerance: Fallback timestamp comparison slack, in seconds.
            checksum_func: Computes the checksum of a local file.
        """
        self.mode = mode
        self.mtime_tolerance = mtime_tolerance
        self._checksum = checksum_func

    def _upload(self, action: SyncAction, reason: str, local_checksum: str | None = None) -> SyncDecision:
        if not self.mode.allows_upload:
            return SyncDecision(SyncAction.SKIP, f"{reason} (uploads disabled in {self.mode.value} mode)")
        return SyncDecision(action, reason, local_checksum)

    def _download(self, action: SyncAction, reason: str, local_checksum: str | None = None) -> SyncDecision:
        if not self.mode.allows_download:
            return SyncDecision(SyncAction.SKIP, f"{reason} (downloads disabled in {self.mode.value} mode)")
        return SyncDecision(action, reason, local_checksum)

    def _remote_is_newer(self, local: LocalEntry, remote: RemoteEntry) -> bool:
        if remote.modified_time is None:
            return False
        return remote.modified_time - local.modified_time >= self.mtime_tolerance

    def _content_differs(self, local: LocalEntry, remote: RemoteEntry, local_checksum: str) -> SyncDecision:
        if self.mode == SyncMode.PUSH:
            return self._upload(SyncAction.UPDATE_REMOTE, "Content differs", local_checksum)
        if self.mode == SyncMode.PULL:
            return self._download(SyncAction.UPDATE_LOCAL, "Content differs", local_checksum)

        # Watch: last writer wins
        if self._remote_is_newer(local, remote):
            return self._download(SyncAction.UPDATE_LOCAL, "Content differs, remote is newer", local_checksum)
        return self._upload(SyncAction.UPDATE_REMOTE, "Content differs, local is newer", local_checksum)

    def _compare_mtimes(self, local: LocalEntry, remote: RemoteEntry) -> SyncDecision:
        if remote.modified_time is None:
            return self._upload(SyncAction.UPDATE_REMOTE, "Remote has no checksum or timestamp")

        diff = local.modified_time - remote.modified_time
        if abs(diff) < self.mtime_tolerance:
            return SyncDecision(SyncAction.SKIP, "No remote checksum, timestamps match")
        if diff > 0:
            return self._upload(SyncAction.UPDATE_REMOTE, "No remote checksum, local is newer")
        return self._download(SyncAction.UPDATE_LOCAL, "No remote checksum, remote is newer")

    def classify(
        self,
        local: LocalEntry | None,
        remote: RemoteEntry | None,
        local_checksum: str | None = None,
    ) -> SyncDecision:
        """Decide what to do with a pair where either side may be absent.

        Args:
            local: Local snapshot, or None if the local side is missing.
            remote: Remote entry, or None if the remote side is missing.
            local_checksum: Already-known local checksum, if any.

        Returns:
            The decision. A checksum computed on the way is attached to it
            so the upload doesn't hash the file twice.

        Raises:
            OSError: If the local file cannot be read for hashing.
        """
        if local is None and remote is None:
            return SyncDecision(SyncAction.SKIP, "Nothing on either side")

        if remote is None:
            return self._upload(SyncAction.CREATE_REMOTE, "Missing on remote", local_checksum)

        if local is None:
            return self._download(SyncAction.CREATE_LOCAL, "Missing locally")

        if local.is_directory or remote.is_folder:
            if local.is_directory != remote.is_folder:
                logger.warning(
                    "Type mismatch for %s (local %s, remote %s), skipping",
                    local.relative_path,
                    "directory" if local.is_directory else "file",
                    "folder" if remote.is_folder else "file",
                )
                return SyncDecision(SyncAction.SKIP, "File/folder type mismatch")
            return SyncDecision(SyncAction.SKIP, "Folder exists on both sides")

        if remote.checksum is None:
            return self._compare_mtimes(local, remote)

        if local_checksum is None:
            local_checksum = self._checksum(local.absolute_path)

        if local_checksum == remote.checksum:
            logger.debug("Unchanged: %s", local.relative_path)
            return SyncDecision(SyncAction.SKIP, "Checksums match", local_checksum)

        return self._content_differs(local, remote, local_checksum)
