"""Tree enumeration for reconciliation.

This module provides:
- DirectoryScanner: Depth-first (pre-order) enumeration of a local sync root
- RemoteTreeWalker: Depth-first (pre-order) enumeration of a remote folder tree

Both walkers use an explicit stack and return a plain ordered list in
which every directory precedes its contents, so callers can create
parents before children without looking ahead.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from drivesync.client.api import ListQuery
from drivesync.client.sync.ignore import IgnorePatterns, is_hidden
from drivesync.client.sync.types import LocalEntry, RemoteItem

if TYPE_CHECKING:
    from drivesync.client.api import RemoteEntry, RemoteStorage
    from drivesync.client.sync.retry import RetryPolicy

logger = logging.getLogger(__name__)


class DirectoryScanner:
    """Scans a local directory tree into LocalEntry snapshots.

    Symlinks, hidden entries and paths matching the ignore patterns are
    excluded. Entries that vanish or cannot be read mid-scan are skipped
    with a warning instead of aborting the scan.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> for entry in scanner.scan(Path("/sync/folder")):
        ...     print(entry.relative_path)
    """

    def __init__(self, ignore: IgnorePatterns | None = None) -> None:
        self._ignore = ignore

    @staticmethod
    def _excluded(
        entry: os.DirEntry[str], relative_path: str, ignore: IgnorePatterns
    ) -> bool:
        if is_hidden(relative_path) or entry.is_symlink():
            return True
        return ignore.matches(relative_path, is_dir=entry.is_dir(follow_symlinks=False))

    def _list(self, directory: Path, rel_dir: str, ignore: IgnorePatterns) -> list[LocalEntry]:
        """Children of one directory, sorted by name, excluded entries dropped."""
        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda e: e.name)
        except FileNotFoundError:
            logger.warning("Directory vanished during scan, skipping: %s", directory)
            return []
        except PermissionError:
            logger.warning("Permission denied, skipping directory: %s", directory)
            return []

        entries: list[LocalEntry] = []
        for child in children:
            rel_path = f"{rel_dir}/{child.name}" if rel_dir else child.name
            try:
                if self._excluded(child, rel_path, ignore):
                    continue
                entries.append(LocalEntry.from_dir_entry(child, rel_path))
            except FileNotFoundError:
                logger.warning("Entry vanished during scan, skipping: %s", rel_path)
            except OSError as e:
                logger.warning("Cannot read %s, skipping: %s", rel_path, e)
        return entries

    def scan(self, root: Path, start: str = "") -> list[LocalEntry]:
        """Enumerate a tree depth-first in pre-order.

        Each directory is followed by its whole subtree before its next
        sibling.

        Args:
            root: Sync root; relative paths are computed against it.
            start: Relative path of the subtree to scan ("" for the whole root).

        Returns:
            Ordered list of LocalEntry. The start directory itself is not included.
        """
        root = Path(root)
        ignore = self._ignore or IgnorePatterns.for_root(root)

        entries: list[LocalEntry] = []
        # Reversed so the alphabetically first entry is popped first
        stack = list(reversed(self._list(root / start if start else root, start, ignore)))

        while stack:
            entry = stack.pop()
            entries.append(entry)
            if entry.is_directory:
                children = self._list(entry.absolute_path, entry.relative_path, ignore)
                stack.extend(reversed(children))

        logger.debug("Scanned %s: %d entries", root, len(entries))
        return entries


class RemoteTreeWalker:
    """Enumerates a remote folder tree, skipping trashed entries."""

    def __init__(self, storage: RemoteStorage, retry: RetryPolicy) -> None:
        self._storage = storage
        self._retry = retry

    def children(self, folder_id: str, folders_only: bool = False) -> list[RemoteEntry]:
        """List the non-trashed children of a folder, sorted by name."""
        query = ListQuery(
            parent_id=folder_id, trashed=False, is_folder=True if folders_only else None
        )
        entries = self._retry.call(
            lambda: self._storage.list(query), f"list folder {folder_id}"
        )
        return sorted(entries, key=lambda e: (e.name, e.id))

    def _items(self, folder_id: str, rel_dir: str, folders_only: bool) -> list[RemoteItem]:
        items: list[RemoteItem] = []
        seen: set[str] = set()
        for entry in self.children(folder_id, folders_only):
            if not entry.name or entry.name in (".", "..") or "/" in entry.name:
                logger.warning("Skipping remote entry with unusable name: %r", entry.name)
                continue
            if entry.name in seen:
                logger.warning(
                    "Duplicate remote name %r in folder %s, keeping the first",
                    entry.name,
                    folder_id,
                )
                continue
            seen.add(entry.name)
            rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            items.append(RemoteItem(relative_path=rel_path, entry=entry))
        return items

    def walk(self, root_id: str, folders_only: bool = False) -> list[RemoteItem]:
        """Enumerate a remote tree depth-first in pre-order.

        Names that cannot map to a local path component are skipped.
        Duplicate names within one folder keep the first entry.
        """
        items: list[RemoteItem] = []
        stack = list(reversed(self._items(root_id, "", folders_only)))

        while stack:
            item = stack.pop()
            items.append(item)
            if item.entry.is_folder:
                children = self._items(item.entry.id, item.relative_path, folders_only)
                stack.extend(reversed(children))

        logger.debug("Walked remote folder %s: %d entries", root_id, len(items))
        return items
