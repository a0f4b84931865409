"""Routing of raw filesystem events.

This module provides:
- PendingOperations: In-flight file operations, for duplicate suppression
- EventDispatcher: Classifies events and hands them to the pipeline,
  the scheduler or the reconciler
"""

from __future__ import annotations

import logging
import os
import queue
import stat
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from cryptmirror.core.crypto import ENCRYPTED_SUFFIX
from cryptmirror.sync.types import EventKind, WatchEvent

if TYPE_CHECKING:
    from cryptmirror.core.config import WatcherConfig
    from cryptmirror.sync.pipeline import UploadPipeline
    from cryptmirror.sync.reconciler import BatchReconciler
    from cryptmirror.sync.scheduler import WatchScheduler
    from cryptmirror.sync.watcher import WatchSource

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = 5.0  # seconds
SWEEP_INTERVAL = 300.0  # seconds
PENDING_MAX_AGE = 600.0  # seconds
RECEIVE_TIMEOUT = 0.5  # seconds


class PendingOperations:
    """Thread-safe table of file operations currently in flight."""

    def __init__(self) -> None:
        self._ops: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ops)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._ops

    def try_begin(self, path: str, window: float = DUPLICATE_WINDOW) -> bool:
        """Record an operation unless a recent one is still in flight.

        Returns:
            True if recorded, False if this is a duplicate.
        """
        now = time.time()
        with self._lock:
            started = self._ops.get(path)
            if started is not None and now - started < window:
                return False
            self._ops[path] = now
            return True

    def finish(self, path: str) -> None:
        """Remove the entry for path, if any."""
        with self._lock:
            self._ops.pop(path, None)

    def sweep(self, max_age: float = PENDING_MAX_AGE) -> int:
        """Drop entries older than max_age.

        Returns:
            Number of entries removed.
        """
        cutoff = time.time() - max_age
        with self._lock:
            stale = [path for path, started in self._ops.items() if started < cutoff]
            for path in stale:
                del self._ops[path]
        for path in stale:
            logger.info("Removed stale pending op: %s", path)
        return len(stale)


class EventDispatcher:
    """Consumes watch events and routes them."""

    def __init__(
        self,
        config: WatcherConfig,
        scheduler: WatchScheduler,
        pipeline: UploadPipeline,
        reconciler: BatchReconciler,
        source: WatchSource | None = None,
        cancel: threading.Event | None = None,
        max_concurrent_pipelines: int | None = None,
        duplicate_window: float = DUPLICATE_WINDOW,
        sweep_interval: float = SWEEP_INTERVAL,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Watcher configuration (read for ignore_local_events).
            scheduler: Receives newly created directories.
            pipeline: Processes changed files.
            reconciler: Receives structural changes and deletions.
            source: Where events come from; required for run().
            cancel: Shared shutdown event.
            max_concurrent_pipelines: Cap on concurrent pipeline threads.
            duplicate_window: Events for an in-flight path younger than
                this are dropped.
            sweep_interval: Seconds between pending-op sweeps.
        """
        self._config = config
        self._scheduler = scheduler
        self._pipeline = pipeline
        self._reconciler = reconciler
        self._source = source
        self._cancel = cancel or threading.Event()
        self._duplicate_window = duplicate_window
        self._sweep_interval = sweep_interval

        self.pending = PendingOperations()
        self._slots: threading.BoundedSemaphore | None = None
        if max_concurrent_pipelines:
            self._slots = threading.BoundedSemaphore(max_concurrent_pipelines)

        self._threads: set[threading.Thread] = set()
        self._threads_lock = threading.Lock()

    def handle_event(self, path: str, kind: EventKind) -> None:
        """Classify one event and route it."""
        if path.endswith(ENCRYPTED_SUFFIX):
            return
        if self._config.ignore_local_events:
            return

        logger.debug("Event %s: %s", kind.value, path)

        if kind.is_removal:
            logger.info("Removed: %s", path)
            self._reconciler.trigger()
            return

        try:
            st = os.stat(path)
        except OSError:
            # Gone before we got to it
            return

        if stat.S_ISDIR(st.st_mode):
            self._scheduler.add_directory(path)
            self._reconciler.trigger()
            return

        if not self.pending.try_begin(path, self._duplicate_window):
            logger.debug("Skipping duplicate event for: %s", path)
            return

        thread = threading.Thread(
            target=self._run_pipeline,
            args=(path,),
            daemon=True,
            name=f"pipeline-{os.path.basename(path)}",
        )
        with self._threads_lock:
            self._threads.add(thread)
        thread.start()

    def _run_pipeline(self, path: str) -> None:
        try:
            if self._slots is not None:
                self._slots.acquire()
            try:
                self._pipeline.process(Path(path))
            finally:
                if self._slots is not None:
                    self._slots.release()
        except Exception:
            logger.exception("Pipeline crashed for %s", path)
        finally:
            self.pending.finish(path)
            with self._threads_lock:
                self._threads.discard(threading.current_thread())

    def join(self, timeout: float | None = None) -> None:
        """Wait for in-flight pipelines to finish."""
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    def _sweep_loop(self) -> None:
        while not self._cancel.wait(self._sweep_interval):
            self.pending.sweep()

    def start_sweeper(self) -> threading.Thread:
        """Start the background pending-op sweeper."""
        thread = threading.Thread(target=self._sweep_loop, daemon=True, name="pending-sweeper")
        thread.start()
        return thread

    def _drain_errors(self) -> None:
        assert self._source is not None
        while True:
            try:
                error = self._source.errors.get_nowait()
            except queue.Empty:
                return
            logger.error("Watcher error: %s", error)

    def run(self) -> None:
        """Receive and route events until cancelled."""
        if self._source is None:
            raise RuntimeError("EventDispatcher.run() requires a watch source")

        while not self._cancel.is_set():
            self._drain_errors()
            try:
                event: WatchEvent = self._source.events.get(timeout=RECEIVE_TIMEOUT)
            except queue.Empty:
                continue
            try:
                self.handle_event(event.path, event.kind)
            except Exception:
                logger.exception("Failed to handle event for %s", event.path)

        logger.info("Dispatcher shutting down")
