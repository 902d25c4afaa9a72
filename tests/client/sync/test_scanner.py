"""Tests for local and remote tree enumeration."""

import os
from pathlib import Path

import pytest

from drivesync.client.sync.ignore import IgnorePatterns
from drivesync.client.sync.scanner import DirectoryScanner, RemoteTreeWalker


def make_tree(root: Path) -> None:
    (root / "b.txt").write_text("b")
    (root / "a").mkdir()
    (root / "a" / "one.txt").write_text("1")
    (root / "a" / "deep").mkdir()
    (root / "a" / "deep" / "two.txt").write_text("2")
    (root / "c").mkdir()


class TestDirectoryScanner:
    """Tests for DirectoryScanner."""

    def test_directories_precede_contents(self, tmp_path: Path) -> None:
        """Every directory is followed by its whole subtree, then its next sibling."""
        make_tree(tmp_path)

        paths = [e.relative_path for e in DirectoryScanner().scan(tmp_path)]

        assert paths == ["a", "a/deep", "a/deep/two.txt", "a/one.txt", "b.txt", "c"]

    def test_entry_metadata(self, tmp_path: Path) -> None:
        """Entries carry type, size and mtime."""
        (tmp_path / "f.txt").write_bytes(b"12345")
        (tmp_path / "d").mkdir()

        entries = {e.relative_path: e for e in DirectoryScanner().scan(tmp_path)}

        assert entries["f.txt"].size == 5
        assert entries["f.txt"].is_directory is False
        assert entries["f.txt"].modified_time == (tmp_path / "f.txt").stat().st_mtime
        assert entries["d"].is_directory is True
        assert entries["d"].size == 0

    def test_scan_subtree(self, tmp_path: Path) -> None:
        """start limits the scan but keeps paths relative to the root."""
        make_tree(tmp_path)

        paths = [e.relative_path for e in DirectoryScanner().scan(tmp_path, start="a")]

        assert paths == ["a/deep", "a/deep/two.txt", "a/one.txt"]

    def test_skips_hidden_entries(self, tmp_path: Path) -> None:
        """Dot files and dot directories are never synced."""
        (tmp_path / ".hidden").write_text("x")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "config").write_text("x")
        (tmp_path / "visible.txt").write_text("x")

        paths = [e.relative_path for e in DirectoryScanner().scan(tmp_path)]

        assert paths == ["visible.txt"]

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_skips_symlinks(self, tmp_path: Path) -> None:
        """Symlinks are excluded, whatever they point at."""
        (tmp_path / "real.txt").write_text("x")
        (tmp_path / "link.txt").symlink_to(tmp_path / "real.txt")
        (tmp_path / "dir").mkdir()
        (tmp_path / "dirlink").symlink_to(tmp_path / "dir", target_is_directory=True)

        paths = [e.relative_path for e in DirectoryScanner().scan(tmp_path)]

        assert paths == ["dir", "real.txt"]

    def test_honors_syncignore(self, tmp_path: Path) -> None:
        """Patterns from the root's .syncignore are applied."""
        (tmp_path / ".syncignore").write_text("# comment\n*.log\nbuild/\n")
        (tmp_path / "app.log").write_text("x")
        (tmp_path / "build").mkdir()
        (tmp_path / "build" / "out.bin").write_text("x")
        (tmp_path / "keep.txt").write_text("x")

        paths = [e.relative_path for e in DirectoryScanner().scan(tmp_path)]

        assert paths == ["keep.txt"]

    def test_explicit_ignore_patterns(self, tmp_path: Path) -> None:
        """A scanner built with patterns uses them."""
        (tmp_path / "a.txt").write_text("x")
        (tmp_path / "b.md").write_text("x")

        scanner = DirectoryScanner(IgnorePatterns(["*.md"]))

        assert [e.relative_path for e in scanner.scan(tmp_path)] == ["a.txt"]

    def test_missing_subtree_is_empty(self, tmp_path: Path) -> None:
        """A start directory that vanished yields nothing instead of raising."""
        assert DirectoryScanner().scan(tmp_path, start="gone") == []


class TestRemoteTreeWalker:
    """Tests for RemoteTreeWalker."""

    def test_walk_nested(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        """Folders come before their contents, children sorted by name."""
        docs = storage.add_folder("docs")
        storage.add_file("b.txt", b"b")
        storage.add_file("readme.md", b"r", parent_id=docs)
        sub = storage.add_folder("sub", parent_id=docs)
        storage.add_file("deep.txt", b"d", parent_id=sub)

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id)

        assert [i.relative_path for i in items] == [
            "b.txt",
            "docs",
            "docs/readme.md",
            "docs/sub",
            "docs/sub/deep.txt",
        ]
        assert items[1].entry.is_folder

    def test_skips_trashed(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        """Trashed entries are invisible."""
        gone = storage.add_file("gone.txt", b"x")
        storage.add_file("kept.txt", b"x")
        storage.trash(gone)

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id)

        assert [i.relative_path for i in items] == ["kept.txt"]

    def test_duplicate_names_keep_first(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        """Only one entry per name and folder is returned."""
        first = storage.add_file("same.txt", b"1")
        storage.add_file("same.txt", b"2")

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id)

        assert len(items) == 1
        assert items[0].entry.id == first

    def test_skips_unusable_names(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        """Names that can't be a path component are skipped."""
        storage.add_file("a/b", b"x")
        storage.add_file("..", b"x")
        storage.add_file("ok", b"x")

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id)

        assert [i.relative_path for i in items] == ["ok"]

    def test_subtree_before_sibling(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        """A folder's whole subtree comes before its next sibling."""
        a = storage.add_folder("a")
        storage.add_folder("b")
        inner = storage.add_folder("inner", parent_id=a)
        storage.add_file("x.txt", b"x", parent_id=inner)

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id)

        assert [i.relative_path for i in items] == ["a", "a/inner", "a/inner/x.txt", "b"]

    def test_folders_only(self, storage, retry) -> None:  # type: ignore[no-untyped-def]
        docs = storage.add_folder("docs")
        storage.add_file("top.txt", b"x")
        storage.add_file("inside.txt", b"x", parent_id=docs)
        storage.add_folder("sub", parent_id=docs)

        items = RemoteTreeWalker(storage, retry).walk(storage.root_id, folders_only=True)

        assert [i.relative_path for i in items] == ["docs", "docs/sub"]
        assert all(i.entry.is_folder for i in items)
