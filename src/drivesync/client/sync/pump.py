"""Watch event pump.

This module provides:
- WatchEventPump: Worker threads that drain the EventQueue into remote mutations

Events for the same path are processed one at a time (the queue never
hands out a path that is already in flight); unrelated paths are processed
concurrently up to the configured worker count. A failing event is logged
and the pump moves on.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from drivesync.client.sync.queue import QueueClosedError
from drivesync.client.sync.types import WatchEventType

if TYPE_CHECKING:
    from drivesync.client.sync.queue import EventQueue
    from drivesync.client.sync.types import WatchEvent
    from drivesync.client.sync.workers import FileSyncWorker

logger = logging.getLogger(__name__)

# How long an idle worker waits on the queue before re-checking for stop
GET_TIMEOUT = 0.5


class WatchEventPump:
    """Consumes WatchEvents and applies them through a FileSyncWorker.

    Usage:
        pump = WatchEventPump(queue, worker, num_workers=2)
        pump.start()
        ...
        pump.stop()
    """

    def __init__(
        self,
        event_queue: EventQueue,
        worker: FileSyncWorker,
        num_workers: int = 2,
    ) -> None:
        self._queue = event_queue
        self._worker = worker
        self._num_workers = max(1, num_workers)
        self._threads: list[threading.Thread] = []
        self._running = threading.Event()
        self._lock = threading.Lock()
        self._processed = 0
        self._errors = 0

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def processed_count(self) -> int:
        with self._lock:
            return self._processed

    @property
    def error_count(self) -> int:
        with self._lock:
            return self._errors

    def handle(self, event: WatchEvent) -> None:
        """Apply a single event."""
        logger.debug("Processing %s", event)
        if event.event_type in (WatchEventType.ADDED, WatchEventType.CHANGED):
            self._worker.push_path(event.path)
        elif event.event_type == WatchEventType.REMOVED:
            self._worker.trash_path(event.path, is_directory=False)
        elif event.event_type == WatchEventType.DIR_REMOVED:
            self._worker.trash_path(event.path, is_directory=True)
        elif event.event_type == WatchEventType.DIR_ADDED:
            self._worker.push_directory(event.path)

    def _worker_loop(self) -> None:
        while self._running.is_set():
            try:
                event = self._queue.get(timeout=GET_TIMEOUT)
            except QueueClosedError:
                break
            if event is None:
                continue

            try:
                self.handle(event)
            except Exception:
                logger.exception("Failed to process %s", event)
                self._worker.summary.record_failure(event.path, "unexpected error, see log")
                with self._lock:
                    self._errors += 1
            finally:
                with self._lock:
                    self._processed += 1
                self._queue.task_done(event.path)

        logger.debug("Pump worker %s exiting", threading.current_thread().name)

    def start(self) -> None:
        """Start the worker threads."""
        if self._running.is_set():
            return
        self._running.set()
        self._threads = [
            threading.Thread(
                target=self._worker_loop,
                name=f"drivesync-pump-{i}",
                daemon=True,
            )
            for i in range(self._num_workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.debug("Started %d pump worker(s)", self._num_workers)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop taking new events; in-flight events finish naturally."""
        if not self._running.is_set():
            return
        self._running.clear()
        for thread in self._threads:
            thread.join(timeout=timeout / len(self._threads))
        self._threads = []
        logger.debug("Pump stopped after %d event(s)", self.processed_count)
