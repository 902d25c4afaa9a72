"""Watch event queue with per-path serialization.

This module provides:
- EventQueue: Thread-safe priority queue with path-based coalescing
- QueueClosedError: Raised to consumers once the queue is closed

Ordering and coalescing:
- Removals are dequeued before additions and changes (see WatchEventType)
- At most one pending event per path; a new event for a pending path is
  merged into it (Added then Changed stays Added, Removed then Added
  becomes Changed, otherwise the newest event wins)
- A removal followed by an addition of another kind (a directory replaced
  by a directory or a file, a file replaced by a directory) is not merged:
  the addition is held back until the removal has been processed, and a
  later removal cancels it
- A path is handed to at most one consumer at a time: while an event for
  a path is being processed, later events for that path wait in the queue
  until the consumer calls task_done(path)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from drivesync.client.sync.types import WatchEvent, WatchEventType

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class QueueClosedError(RuntimeError):
    """The queue was closed."""


def coalesce(pending: WatchEventType, new: WatchEventType) -> WatchEventType:
    """Merge a new event type into the one already pending for a path."""
    if pending == WatchEventType.ADDED and new == WatchEventType.CHANGED:
        return WatchEventType.ADDED
    if pending == WatchEventType.REMOVED and new == WatchEventType.ADDED:
        return WatchEventType.CHANGED
    return new


def replaces_entry(pending: WatchEventType, new: WatchEventType) -> bool:
    """True if new adds an entry the pending removal must clear first."""
    if pending == WatchEventType.DIR_REMOVED:
        return not new.is_removal
    return pending == WatchEventType.REMOVED and new == WatchEventType.DIR_ADDED


def _merge(pending: WatchEvent, event: WatchEvent) -> WatchEvent:
    incoming = event.event_type
    merged = coalesce(pending.event_type, incoming)
    logger.debug(
        "Coalesced %s + %s -> %s for %s",
        pending.event_type.name,
        incoming.name,
        merged.name,
        event.path,
    )
    if merged == incoming:
        return event
    return WatchEvent(
        priority=int(merged),
        timestamp=event.timestamp,
        event_type=merged,
        path=event.path,
    )


class EventQueue:
    """Thread-safe priority queue of WatchEvents keyed by path."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._events: dict[str, WatchEvent] = {}  # path -> pending event
        self._held: dict[str, WatchEvent] = {}  # path -> addition waiting on a removal
        self._in_flight: set[str] = set()
        self._closed = False

    def put(self, event: WatchEvent) -> None:
        """Add an event, merging it with any pending event for the same path.

        Raises:
            QueueClosedError: If the queue is closed.
        """
        with self._lock:
            if self._closed:
                raise QueueClosedError("Queue is closed")

            path = event.path
            held = self._held.get(path)
            pending = self._events.get(path)
            if held is not None:
                if event.event_type.is_removal:
                    # The held entry never reached the remote
                    del self._held[path]
                    logger.debug("Dropped held %s for %s", held.event_type.name, path)
                else:
                    self._held[path] = _merge(held, event)
                return

            if pending is not None and replaces_entry(pending.event_type, event.event_type):
                self._held[path] = event
                logger.debug("Holding %s until %s is processed", event, pending)
                return

            if pending is not None:
                event = _merge(pending, event)

            self._events[path] = event
            self._changed.notify_all()
            logger.debug("Queued %s (queue size: %d)", event, len(self._events))

    def _next_ready(self) -> WatchEvent | None:
        ready = [e for p, e in self._events.items() if p not in self._in_flight]
        return min(ready) if ready else None

    def get(self, timeout: float | None = None) -> WatchEvent | None:
        """Take the highest priority event whose path is not being processed.

        The caller must call task_done(event.path) when finished.

        Args:
            timeout: Maximum seconds to wait (None = wait forever)

        Returns:
            The event, or None if timeout expired.

        Raises:
            QueueClosedError: If the queue is closed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._changed:
            while True:
                if self._closed:
                    raise QueueClosedError("Queue is closed")

                event = self._next_ready()
                if event is not None:
                    del self._events[event.path]
                    self._in_flight.add(event.path)
                    logger.debug("Dequeued %s (queue size: %d)", event, len(self._events))
                    return event

                if deadline is None:
                    self._changed.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._changed.wait(timeout=remaining)

    def task_done(self, path: str) -> None:
        """Release a path handed out by get().

        An addition held behind the finished removal becomes ready.
        """
        with self._lock:
            self._in_flight.discard(path)
            held = self._held.pop(path, None)
            if held is not None:
                self._events[path] = held
                logger.debug("Released held %s", held)
            self._changed.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is pending or in flight.

        Returns:
            True if the queue became idle, False on timeout or close.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._changed:
            while self._events or self._held or self._in_flight:
                if self._closed:
                    return False
                if deadline is None:
                    self._changed.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    self._changed.wait(timeout=remaining)
            return True

    def clear(self) -> int:
        """Drop all pending events.

        Returns:
            Number of events removed
        """
        with self._lock:
            count = len(self._events) + len(self._held)
            self._events.clear()
            self._held.clear()
            self._changed.notify_all()
            return count

    def close(self) -> None:
        """Close the queue and wake up waiting threads."""
        with self._lock:
            self._closed = True
            self._changed.notify_all()
            logger.debug("Event queue closed")

    @property
    def is_closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._events) + len(self._held)

    def __iter__(self) -> Iterator[WatchEvent]:
        """Iterate over pending events in priority order (does not remove them)."""
        with self._lock:
            return iter(sorted(self._events.values()))
