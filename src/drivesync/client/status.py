"""Persisted sync status.

This module provides:
- SyncStatus: The status shape reported to users ({isSyncing, lastSynced, selectedFolder})
- StatusStore: Small JSON blob on disk with merge-on-write semantics
- FolderSelectionError: Raised when a folder cannot be selected for sync

The blob is for reporting only; it is never used to recover in-flight
transfers.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

IS_SYNCING = "isSyncing"
LAST_SYNCED = "lastSynced"
SELECTED_FOLDER = "selectedFolder"


class FolderSelectionError(ValueError):
    """The folder does not exist or cannot be read."""


@dataclass
class SyncStatus:
    """Status as shown by ``drivesync status``."""

    is_syncing: bool = False
    last_synced: str | None = None  # ISO-8601
    selected_folder: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncStatus:
        return cls(
            is_syncing=bool(data.get(IS_SYNCING, False)),
            last_synced=data.get(LAST_SYNCED),
            selected_folder=data.get(SELECTED_FOLDER),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            IS_SYNCING: self.is_syncing,
            LAST_SYNCED: self.last_synced,
            SELECTED_FOLDER: self.selected_folder,
        }


class StatusStore:
    """Reads and writes the status JSON file.

    Writes merge into the existing object, so keys written by other tools
    are preserved. A missing, unreadable or corrupt file reads as defaults.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_raw(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Cannot read status file %s, using defaults: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Status file %s does not hold an object, using defaults", self._path)
            return {}
        return data

    def load(self) -> SyncStatus:
        """Read the current status."""
        with self._lock:
            return SyncStatus.from_dict(self._read_raw())

    def update(self, changes: dict[str, Any]) -> SyncStatus:
        """Merge changes (camelCase keys) into the file and return the result."""
        with self._lock:
            data = self._read_raw()
            data.update(changes)

            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(self._path.name + ".tmp")
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)

            logger.debug("Status updated: %s", changes)
            return SyncStatus.from_dict(data)

    def mark_syncing(self, is_syncing: bool) -> SyncStatus:
        return self.update({IS_SYNCING: is_syncing})

    def mark_synced(
        self, when: datetime | None = None, is_syncing: bool | None = None
    ) -> SyncStatus:
        """Record a completed reconciliation, and optionally the syncing flag."""
        when = when or datetime.now(timezone.utc)
        changes: dict[str, Any] = {LAST_SYNCED: when.isoformat()}
        if is_syncing is not None:
            changes[IS_SYNCING] = is_syncing
        return self.update(changes)

    def select_folder(self, folder: Path | str) -> Path:
        """Validate a local folder and record it as the selected sync root.

        Returns:
            The resolved folder path.

        Raises:
            FolderSelectionError: If the folder is missing, not a directory
                or not readable.
        """
        path = Path(folder).expanduser().resolve()
        if not path.exists():
            raise FolderSelectionError(f"Folder does not exist: {path}")
        if not path.is_dir():
            raise FolderSelectionError(f"Not a directory: {path}")
        if not os.access(path, os.R_OK | os.X_OK):
            raise FolderSelectionError(f"Folder is not readable: {path}")

        self.update({SELECTED_FOLDER: str(path)})
        logger.info("Selected sync folder %s", path)
        return path
