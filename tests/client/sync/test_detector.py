"""Tests for change detection."""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from drivesync.client.api import RemoteEntry
from drivesync.client.sync.detector import MTIME_TOLERANCE, ChangeDetector
from drivesync.client.sync.types import LocalEntry, SyncAction
from drivesync.core.checksum import checksum
from drivesync.core.types import SyncMode

NOW = 1_700_000_000.0


def local_file(tmp_path: Path, content: bytes = b"hello", mtime: float = NOW) -> LocalEntry:
    path = tmp_path / "a.txt"
    path.write_bytes(content)
    os.utime(path, (mtime, mtime))
    return LocalEntry.from_path(path, tmp_path)


def remote_file(
    content: bytes | None = b"hello",
    mtime: float | None = NOW,
    is_folder: bool = False,
) -> RemoteEntry:
    return RemoteEntry(
        id="r1",
        name="a.txt",
        parent_id="root",
        is_folder=is_folder,
        modified_time=mtime,
        checksum=checksum(content) if content is not None else None,
    )


class TestMissingSides:
    """Tests for pairs where one side is absent."""

    def test_nothing_on_either_side(self) -> None:
        assert ChangeDetector(SyncMode.WATCH).classify(None, None).action == SyncAction.SKIP

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            (SyncMode.PUSH, SyncAction.CREATE_REMOTE),
            (SyncMode.WATCH, SyncAction.CREATE_REMOTE),
            (SyncMode.PULL, SyncAction.SKIP),
        ],
    )
    def test_missing_remote(self, tmp_path: Path, mode: SyncMode, expected: SyncAction) -> None:
        """Local-only files are uploaded unless the mode forbids it."""
        decision = ChangeDetector(mode).classify(local_file(tmp_path), None)
        assert decision.action == expected

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            (SyncMode.PULL, SyncAction.CREATE_LOCAL),
            (SyncMode.WATCH, SyncAction.CREATE_LOCAL),
            (SyncMode.PUSH, SyncAction.SKIP),
        ],
    )
    def test_missing_local(self, mode: SyncMode, expected: SyncAction) -> None:
        """Remote-only files are downloaded unless the mode forbids it."""
        decision = ChangeDetector(mode).classify(None, remote_file())
        assert decision.action == expected


class TestChecksums:
    """Checksums are the authoritative equality signal."""

    def test_equal_checksums_skip(self, tmp_path: Path) -> None:
        """Identical content is skipped and the checksum is kept for reuse."""
        decision = ChangeDetector(SyncMode.PUSH).classify(local_file(tmp_path), remote_file())
        assert decision.action == SyncAction.SKIP
        assert decision.local_checksum == checksum(b"hello")

    def test_touch_only_change_is_skipped(self, tmp_path: Path) -> None:
        """A newer mtime with identical content transfers nothing."""
        local = local_file(tmp_path, mtime=NOW + 3600)
        for mode in SyncMode:
            assert ChangeDetector(mode).classify(local, remote_file()).action == SyncAction.SKIP

    def test_push_uploads_differing_content(self, tmp_path: Path) -> None:
        """Push overwrites the remote even if the remote is newer."""
        local = local_file(tmp_path, b"new", mtime=NOW - 3600)
        decision = ChangeDetector(SyncMode.PUSH).classify(local, remote_file())
        assert decision.action == SyncAction.UPDATE_REMOTE
        assert decision.local_checksum == checksum(b"new")

    def test_pull_downloads_differing_content(self, tmp_path: Path) -> None:
        """Pull overwrites the local file even if it is newer."""
        local = local_file(tmp_path, b"new", mtime=NOW + 3600)
        decision = ChangeDetector(SyncMode.PULL).classify(local, remote_file())
        assert decision.action == SyncAction.UPDATE_LOCAL

    def test_watch_newer_local_wins(self, tmp_path: Path) -> None:
        local = local_file(tmp_path, b"new", mtime=NOW + 60)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file())
        assert decision.action == SyncAction.UPDATE_REMOTE

    def test_watch_newer_remote_wins(self, tmp_path: Path) -> None:
        local = local_file(tmp_path, b"old", mtime=NOW - 60)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file())
        assert decision.action == SyncAction.UPDATE_LOCAL

    def test_watch_tie_prefers_local(self, tmp_path: Path) -> None:
        """Within the tolerance the local copy is pushed."""
        local = local_file(tmp_path, b"other", mtime=NOW - MTIME_TOLERANCE / 2)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file())
        assert decision.action == SyncAction.UPDATE_REMOTE

    def test_known_checksum_is_not_recomputed(self, tmp_path: Path) -> None:
        """A checksum passed in is used instead of hashing the file."""
        checksum_func = MagicMock(return_value="unused")
        detector = ChangeDetector(SyncMode.PUSH, checksum_func=checksum_func)

        decision = detector.classify(local_file(tmp_path), remote_file(), checksum(b"hello"))

        assert decision.action == SyncAction.SKIP
        checksum_func.assert_not_called()


class TestTimestampFallback:
    """Remote entries without a checksum fall back to mtimes."""

    def test_within_tolerance_skips(self, tmp_path: Path) -> None:
        local = local_file(tmp_path, mtime=NOW + 1)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file(None))
        assert decision.action == SyncAction.SKIP

    def test_local_newer_uploads(self, tmp_path: Path) -> None:
        local = local_file(tmp_path, mtime=NOW + 10)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file(None))
        assert decision.action == SyncAction.UPDATE_REMOTE

    def test_remote_newer_downloads(self, tmp_path: Path) -> None:
        local = local_file(tmp_path, mtime=NOW - 10)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file(None))
        assert decision.action == SyncAction.UPDATE_LOCAL

    def test_remote_newer_in_push_mode_skips(self, tmp_path: Path) -> None:
        """Push never downloads."""
        local = local_file(tmp_path, mtime=NOW - 10)
        decision = ChangeDetector(SyncMode.PUSH).classify(local, remote_file(None))
        assert decision.action == SyncAction.SKIP

    def test_no_timestamp_uploads(self, tmp_path: Path) -> None:
        """Nothing to compare against means the local copy is pushed."""
        decision = ChangeDetector(SyncMode.PUSH).classify(
            local_file(tmp_path), remote_file(None, mtime=None)
        )
        assert decision.action == SyncAction.UPDATE_REMOTE


class TestDirectories:
    """Directories are never transferred by the detector."""

    def test_folder_on_both_sides(self, tmp_path: Path) -> None:
        (tmp_path / "d").mkdir()
        local = LocalEntry.from_path(tmp_path / "d", tmp_path)
        decision = ChangeDetector(SyncMode.WATCH).classify(local, remote_file(None, is_folder=True))
        assert decision.action == SyncAction.SKIP

    def test_type_mismatch_skips(self, tmp_path: Path) -> None:
        """A local file against a remote folder is skipped."""
        decision = ChangeDetector(SyncMode.WATCH).classify(
            local_file(tmp_path), remote_file(None, is_folder=True)
        )
        assert decision.action == SyncAction.SKIP
        assert "mismatch" in decision.reason
