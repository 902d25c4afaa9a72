"""Exclusion policy for local entries.

This module provides:
- IgnorePatterns: Hidden-entry and symlink policy plus gitignore-style patterns
- DEFAULT_IGNORE_PATTERNS: Common editor/OS droppings to ignore
- IGNORE_FILE_NAME: Per-root pattern file
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".syncignore"

# Hidden entries are excluded separately; these cover the rest
DEFAULT_IGNORE_PATTERNS = [
    "Thumbs.db",
    "desktop.ini",
    "*.tmp",
    "*.temp",
    "~*",
    "*.swp",
    "*.swo",
]


def is_hidden(relative_path: str) -> bool:
    """True if any component of the path starts with a dot."""
    return any(part.startswith(".") for part in relative_path.split("/") if part)


class IgnorePatterns:
    """Decides which local paths take part in sync."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Extra gitignore-style patterns.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def load_from_file(self, path: Path) -> None:
        """Load patterns from a .syncignore file, if present."""
        if not path.exists():
            return
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                # Skip comments and empty lines
                if line and not line.startswith("#"):
                    self._patterns.append(line)
        logger.debug("Loaded ignore patterns from %s", path)

    @classmethod
    def for_root(cls, root: Path, patterns: list[str] | None = None) -> IgnorePatterns:
        """Patterns for a sync root, including its .syncignore."""
        ignore = cls(patterns)
        ignore.load_from_file(root / IGNORE_FILE_NAME)
        return ignore

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check a relative path against the patterns only."""
        name = relative_path.rpartition("/")[2]
        top = relative_path.split("/", 1)[0]

        for pattern in self._patterns:
            # Directory-only patterns (ending with /) match the dir and its subtree
            if pattern.endswith("/"):
                dir_pattern = pattern[:-1]
                if is_dir and fnmatch.fnmatch(relative_path, dir_pattern):
                    return True
                if fnmatch.fnmatch(top, dir_pattern) and "/" in relative_path:
                    return True
            elif "**" in pattern:
                if fnmatch.fnmatch(relative_path, pattern):
                    return True
            elif fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(name, pattern):
                return True

        return False

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if an absolute path should be excluded.

        Symlinks and hidden entries are always excluded.

        Args:
            path: Absolute path to check.
            base_path: Sync root.

        Returns:
            True if the path should be ignored.
        """
        try:
            rel_str = path.relative_to(base_path).as_posix()
        except ValueError:
            return True

        if rel_str in ("", "."):
            return False
        if is_hidden(rel_str):
            return True
        if path.is_symlink():
            return True

        return self.matches(rel_str, is_dir=path.is_dir())
