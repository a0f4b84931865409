"""Filesystem notification source.

This module provides:
- WatchSource: Interface the dispatcher and scheduler depend on
- WatchdogSource: watchdog-backed source with per-directory watches

Watches are registered one directory at a time (non-recursive) so the
scheduler decides which parts of the tree are observed, and in what order.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from cryptmirror.sync.types import EventKind, WatchEvent

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class WatchSource(ABC):
    """A source of raw filesystem change notifications."""

    def __init__(self) -> None:
        self.events: queue.Queue[WatchEvent] = queue.Queue()
        self.errors: queue.Queue[Exception] = queue.Queue()

    @abstractmethod
    def add_watch(self, path: str) -> None:
        """Start watching one directory (non-recursively).

        Idempotent: watching the same directory twice is a no-op.

        Raises:
            OSError: If the directory cannot be watched.
        """

    @abstractmethod
    def start(self) -> None:
        """Start delivering events."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering events."""


class _QueueingHandler(FileSystemEventHandler):
    """Translates watchdog events into WatchEvents on a queue."""

    def __init__(self, source: WatchSource, removed: queue.SimpleQueue[str] | None = None) -> None:
        super().__init__()
        self._source = source
        self._removed = removed

    def _put(self, path: str | bytes, kind: EventKind) -> None:
        self._source.events.put(WatchEvent(path=_decode(path), kind=kind))

    def _forget(self, event: FileSystemEvent) -> None:
        # Must be recorded before the event is queued.
        if event.is_directory and self._removed is not None:
            self._removed.put(os.path.normpath(_decode(event.src_path)))

    def dispatch(self, event: FileSystemEvent) -> None:
        """Dispatch an event, reporting failures on the error queue."""
        try:
            super().dispatch(event)
        except Exception as e:
            self._source.errors.put(e)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._put(event.src_path, EventKind.CREATE)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        # A directory is "modified" whenever a child changes; the child
        # has its own event.
        if isinstance(event, DirModifiedEvent):
            return
        self._put(event.src_path, EventKind.WRITE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        self._forget(event)
        self._put(event.src_path, EventKind.REMOVE)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event as a rename of the source plus a create of the destination."""
        self._forget(event)
        self._put(event.src_path, EventKind.RENAME)
        if event.dest_path:
            self._put(event.dest_path, EventKind.CREATE)


class WatchdogSource(WatchSource):
    """Watch source backed by a watchdog Observer.

    A watched directory that is deleted or moved away loses its watch, so
    a directory recreated at the same path can be watched again.
    """

    def __init__(self) -> None:
        super().__init__()
        self._removed: queue.SimpleQueue[str] = queue.SimpleQueue()
        self._handler = _QueueingHandler(self, self._removed)
        self._observer: BaseObserver = Observer()
        self._watches: dict[str, ObservedWatch] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the observer is running."""
        return self._running

    @property
    def watched(self) -> set[str]:
        """Directories currently watched."""
        with self._lock:
            self._drop_removed()
            return set(self._watches)

    def _drop_removed(self) -> None:
        # Caller holds self._lock. The handler never takes it: the observer
        # calls handlers while holding its own lock, which schedule() takes too.
        while True:
            try:
                path = self._removed.get_nowait()
            except queue.Empty:
                return
            watch = self._watches.pop(path, None)
            if watch is None:
                continue
            try:
                self._observer.unschedule(watch)
            except KeyError:
                logger.debug("Watch on %s already gone", path)
            logger.debug("Dropped watch on removed directory %s", path)

    def add_watch(self, path: str) -> None:
        """Schedule a non-recursive watch on path."""
        path = os.path.normpath(path)
        with self._lock:
            self._drop_removed()
            if path in self._watches:
                return
            try:
                watch = self._observer.schedule(self._handler, path, recursive=False)
            except Exception as e:
                # Backends report some failures (e.g. missing paths) with
                # their own exception types
                raise OSError(f"Cannot watch {path}: {e}") from e
            self._watches[path] = watch

    def start(self) -> None:
        """Start the observer thread."""
        if self._running:
            return
        self._observer.start()
        self._running = True

    def stop(self) -> None:
        """Stop the observer thread."""
        if not self._running:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False
