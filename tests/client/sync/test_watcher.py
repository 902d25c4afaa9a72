"""Tests for the file watcher and its stability window."""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from drivesync.client.sync.queue import EventQueue
from drivesync.client.sync.transfer import temp_path_for
from drivesync.client.sync.types import WatchEvent, WatchEventType
from drivesync.client.sync.watcher import FileWatcher, StableEventHandler


def drain(queue: EventQueue) -> list[tuple[WatchEventType, str]]:
    """Take everything currently queued."""
    items = []
    while (item := queue.get(timeout=0)) is not None:
        items.append((item.event_type, item.path))
        queue.task_done(item.path)
    return items


@pytest.fixture
def queue() -> EventQueue:
    return EventQueue()


@pytest.fixture
def handler(tmp_path: Path, queue: EventQueue):  # type: ignore[no-untyped-def]
    """Handler whose timer effectively never fires; tests drive check_pending."""
    handler = StableEventHandler(tmp_path, queue, stability_window=2.0, poll_interval=60.0)
    yield handler
    handler.stop()


class TestStableEventHandler:
    """Tests for StableEventHandler."""

    def test_new_file_waits_for_stability(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """A created file is only emitted once its size held for the window."""
        path = tmp_path / "a.txt"
        path.write_text("hello")

        handler.on_created(FileCreatedEvent(str(path)))

        assert drain(queue) == []
        assert handler.pending_paths == ["a.txt"]

        start = time.monotonic()
        assert handler.check_pending(now=start + 0.5) == []
        assert handler.check_pending(now=start + 5) == ["a.txt"]
        assert drain(queue) == [(WatchEventType.ADDED, "a.txt")]
        assert handler.pending_paths == []

    def test_growing_file_resets_window(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """A size change restarts the stability window."""
        path = tmp_path / "a.txt"
        path.write_text("part")
        handler.on_created(FileCreatedEvent(str(path)))

        path.write_text("partial upload still growing")
        start = time.monotonic()
        assert handler.check_pending(now=start + 5) == []
        assert handler.check_pending(now=start + 6) == []
        assert handler.check_pending(now=start + 7.5) == ["a.txt"]

    def test_created_then_modified_stays_added(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        path = tmp_path / "a.txt"
        path.write_text("x")
        handler.on_created(FileCreatedEvent(str(path)))
        handler.on_modified(FileModifiedEvent(str(path)))

        handler.check_pending(now=time.monotonic() + 5)

        assert drain(queue) == [(WatchEventType.ADDED, "a.txt")]

    def test_modified_file_emits_changed(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        path = tmp_path / "sub" / "a.txt"
        path.parent.mkdir()
        path.write_text("x")
        handler.on_modified(FileModifiedEvent(str(path)))

        handler.check_pending(now=time.monotonic() + 5)

        assert drain(queue) == [(WatchEventType.CHANGED, "sub/a.txt")]

    def test_directory_modified_is_ignored(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        handler.on_modified(DirModifiedEvent(str(tmp_path)))
        assert handler.pending_paths == []
        assert drain(queue) == []

    def test_deleted_file_is_immediate(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """Removals skip the stability window and cancel pending changes."""
        path = tmp_path / "a.txt"
        path.write_text("x")
        handler.on_created(FileCreatedEvent(str(path)))
        path.unlink()

        handler.on_deleted(FileDeletedEvent(str(path)))

        assert handler.pending_paths == []
        assert drain(queue) == [(WatchEventType.REMOVED, "a.txt")]

    def test_directory_events_are_immediate(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """Directory creation and removal are forwarded right away."""
        directory = tmp_path / "docs"
        directory.mkdir()
        (directory / "a.txt").write_text("x")

        handler.on_created(DirCreatedEvent(str(directory)))
        handler.on_created(FileCreatedEvent(str(directory / "a.txt")))
        assert drain(queue) == [(WatchEventType.DIR_ADDED, "docs")]
        assert handler.pending_paths == ["docs/a.txt"]

        handler.on_deleted(DirDeletedEvent(str(directory)))
        assert drain(queue) == [(WatchEventType.DIR_REMOVED, "docs")]
        assert handler.pending_paths == []

    def test_move_is_remove_plus_add(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """A rename trashes the old path and uploads the new one."""
        dest = tmp_path / "new.txt"
        dest.write_text("x")

        handler.on_moved(FileMovedEvent(str(tmp_path / "old.txt"), str(dest)))

        assert drain(queue) == [(WatchEventType.REMOVED, "old.txt")]
        handler.check_pending(now=time.monotonic() + 5)
        assert drain(queue) == [(WatchEventType.ADDED, "new.txt")]

    def test_ignores_hidden_and_temp_files(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """Download temp files and other dot files produce no events."""
        temp = temp_path_for(tmp_path / "a.txt")
        temp.write_text("x")
        (tmp_path / "vim.swp").write_text("x")

        handler.on_created(FileCreatedEvent(str(temp)))
        handler.on_created(FileCreatedEvent(str(tmp_path / "vim.swp")))
        handler.on_deleted(FileDeletedEvent(str(tmp_path / ".DS_Store")))

        assert handler.pending_paths == []
        assert drain(queue) == []

    def test_vanished_pending_file_is_dropped(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        path = tmp_path / "a.txt"
        path.write_text("x")
        handler.on_created(FileCreatedEvent(str(path)))
        path.unlink()

        assert handler.check_pending(now=time.monotonic() + 5) == []
        assert handler.pending_paths == []

    def test_timer_emits_without_manual_checks(self, tmp_path: Path, queue: EventQueue) -> None:
        """The stability timer re-checks pending files on its own."""
        handler = StableEventHandler(tmp_path, queue, stability_window=0.05, poll_interval=0.02)
        try:
            path = tmp_path / "a.txt"
            path.write_text("x")
            handler.on_created(FileCreatedEvent(str(path)))

            item = queue.get(timeout=5)
        finally:
            handler.stop()

        assert item is not None
        assert (item.event_type, item.path) == (WatchEventType.ADDED, "a.txt")

    def test_closed_queue_drops_events(self, tmp_path: Path, queue: EventQueue, handler: StableEventHandler) -> None:
        """Events raised after shutdown are dropped quietly."""
        queue.close()
        handler.on_deleted(FileDeletedEvent(str(tmp_path / "a.txt")))


class TestFileWatcher:
    """Tests for FileWatcher."""

    def test_rejects_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            FileWatcher(tmp_path / "missing", EventQueue())

    def test_watches_real_changes(self, tmp_path: Path) -> None:
        """Files written under the root arrive as stable events."""
        queue = EventQueue()
        with FileWatcher(tmp_path, queue, stability_window=0.1, poll_interval=0.05) as watcher:
            assert watcher.is_running
            (tmp_path / "a.txt").write_text("hello")

            item: WatchEvent | None = None
            deadline = time.monotonic() + 10
            while time.monotonic() < deadline:
                item = queue.get(timeout=0.5)
                if item is not None and item.path == "a.txt":
                    break
                if item is not None:
                    queue.task_done(item.path)

        assert item is not None
        assert item.path == "a.txt"
        assert item.event_type in (WatchEventType.ADDED, WatchEventType.CHANGED)
        assert not watcher.is_running

    def test_uses_root_syncignore(self, tmp_path: Path) -> None:
        (tmp_path / ".syncignore").write_text("*.log\n")
        watcher = FileWatcher(tmp_path, EventQueue())
        assert watcher.handler._ignore.matches("debug.log")
