"""Priority-based directory watch registration.

This module provides:
- determine_priority: Classify a directory into a watch tier
- WatchScheduler: Tiered bounded queues drained by a fixed worker pool

Shallow directories are watched first, then "important looking" ones,
then the rest. Very deep subtrees are never watched.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable
from pathlib import Path

from cryptmirror.core.config import DEFAULT_MAX_WATCH_DEPTH, DEFAULT_WATCH_WORKERS
from cryptmirror.sync.types import Priority

logger = logging.getLogger(__name__)

PRIORITY_KEYWORDS = ("active", "current", "202", "client", "matter", "case", "urgent")

HIGH_QUEUE_SIZE = 1000
MEDIUM_QUEUE_SIZE = 3000
LOW_QUEUE_SIZE = 6000

MEDIUM_DELAY = 0.01  # seconds before a MEDIUM registration
LOW_DELAY = 0.05  # seconds before a LOW registration
ADD_WATCH_ATTEMPTS = 3
ADD_WATCH_BACKOFF = 0.1  # seconds, multiplied by the attempt index
IDLE_POLL = 0.2  # seconds a worker waits for work before rechecking cancel


def determine_priority(
    path: Path | str,
    root: Path | str,
    max_depth: int = DEFAULT_MAX_WATCH_DEPTH,
) -> Priority:
    """Classify a directory for watch registration.

    Depth is the number of separators in the path relative to root, so
    the root and its direct children are both at depth 0.

    Args:
        path: Directory to classify.
        root: Watched root.
        max_depth: Deepest depth still watched.

    Returns:
        The watch tier. EXCLUDED_SUBTREE means nothing below is watched either.
    """
    rel = os.path.relpath(os.fspath(path), os.fspath(root))
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return Priority.EXCLUDED

    depth = rel.count(os.sep)
    if depth > max_depth:
        return Priority.EXCLUDED_SUBTREE
    if depth <= 2:
        return Priority.HIGH
    if depth <= 4:
        name = os.path.basename(os.fspath(path)).lower()
        if any(keyword in name for keyword in PRIORITY_KEYWORDS):
            return Priority.MEDIUM
    if depth <= max_depth:
        return Priority.LOW
    return Priority.EXCLUDED


class WatchScheduler:
    """Registers directory watches in priority order.

    Each tier has its own bounded queue. Workers always take HIGH work
    before MEDIUM and MEDIUM before LOW. Enqueueing never blocks: a full
    queue drops the directory with a warning.
    """

    def __init__(
        self,
        add_watch: Callable[[str], None],
        root: Path,
        max_depth: int = DEFAULT_MAX_WATCH_DEPTH,
        num_workers: int = DEFAULT_WATCH_WORKERS,
        cancel: threading.Event | None = None,
        queue_sizes: tuple[int, int, int] = (HIGH_QUEUE_SIZE, MEDIUM_QUEUE_SIZE, LOW_QUEUE_SIZE),
        medium_delay: float = MEDIUM_DELAY,
        low_delay: float = LOW_DELAY,
        retry_backoff: float = ADD_WATCH_BACKOFF,
    ) -> None:
        """Initialize the scheduler.

        Args:
            add_watch: Registers a watch on one directory; may raise OSError.
            root: Watched root.
            max_depth: Deepest depth still watched.
            num_workers: Number of registration threads.
            cancel: Shared shutdown event.
            queue_sizes: Capacities of the HIGH, MEDIUM and LOW queues.
            medium_delay: Pause before each MEDIUM registration.
            low_delay: Pause before each LOW registration.
            retry_backoff: Linear backoff step between failed registrations.
        """
        self._add_watch = add_watch
        self._root = Path(root)
        self._max_depth = max_depth
        self._num_workers = num_workers
        self._cancel = cancel or threading.Event()
        self._queues: dict[Priority, queue.Queue[str]] = {
            Priority.HIGH: queue.Queue(maxsize=queue_sizes[0]),
            Priority.MEDIUM: queue.Queue(maxsize=queue_sizes[1]),
            Priority.LOW: queue.Queue(maxsize=queue_sizes[2]),
        }
        self._delays = {
            Priority.HIGH: 0.0,
            Priority.MEDIUM: medium_delay,
            Priority.LOW: low_delay,
        }
        self._retry_backoff = retry_backoff

        # One permit per queued path across all tiers
        self._available = threading.Semaphore(0)
        self._workers: list[threading.Thread] = []
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        """Check if workers are running."""
        return bool(self._workers) and not self._stopped.is_set()

    def qsize(self, priority: Priority) -> int:
        """Get the number of paths waiting in a tier."""
        return self._queues[priority].qsize()

    def enqueue(self, path: Path | str, priority: Priority) -> bool:
        """Queue a directory for registration without blocking.

        Returns:
            True if queued, False if excluded or the tier's queue is full.
        """
        if not priority.is_watched:
            return False
        try:
            self._queues[priority].put_nowait(os.fspath(path))
        except queue.Full:
            logger.warning("%s priority queue full, dropping %s", priority.name, path)
            return False
        self._available.release()
        return True

    def _is_hidden(self, path: Path | str) -> bool:
        rel = os.path.relpath(path, self._root)
        return any(part.startswith(".") and part != ".." for part in Path(rel).parts)

    def add_directory(self, path: Path | str) -> bool:
        """Classify a new directory and queue it.

        Directories inside hidden directories are skipped, as in initial_scan().
        """
        if self._is_hidden(path):
            logger.debug("Not watching hidden directory %s", path)
            return False
        priority = determine_priority(path, self._root, self._max_depth)
        if not priority.is_watched:
            logger.debug("Not watching %s (%s)", path, priority.name)
            return False
        return self.enqueue(path, priority)

    def initial_scan(self) -> int:
        """Queue the root and every watchable directory below it.

        Hidden directories and subtrees deeper than the limit are skipped.

        Returns:
            Number of directories queued.
        """
        logger.info("Starting prioritized directory scan of %s", self._root)
        queued = 0
        if self.enqueue(self._root, Priority.HIGH):
            queued += 1
        else:
            logger.warning("Could not queue root %s", self._root)

        for dirpath, dirnames, _ in os.walk(self._root):
            if self._cancel.is_set():
                logger.info("Directory scan cancelled")
                return queued

            keep = []
            for name in dirnames:
                if name.startswith("."):
                    continue
                child = os.path.join(dirpath, name)
                priority = determine_priority(child, self._root, self._max_depth)
                if priority == Priority.EXCLUDED_SUBTREE:
                    continue
                if priority.is_watched and self.enqueue(child, priority):
                    queued += 1
                keep.append(name)
            dirnames[:] = keep

        logger.info("Directory scan complete, %d directories queued", queued)
        return queued

    def start(self) -> None:
        """Start the worker threads."""
        if self._workers:
            return
        self._stopped.clear()
        for worker_id in range(self._num_workers):
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                daemon=True,
                name=f"watch-worker-{worker_id}",
            )
            self._workers.append(thread)
            thread.start()
        logger.info("Started %d watch workers", self._num_workers)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker threads."""
        self._stopped.set()
        for thread in self._workers:
            thread.join(timeout=timeout)
        self._workers.clear()
        logger.info("Watch workers stopped")

    def _should_stop(self) -> bool:
        return self._cancel.is_set() or self._stopped.is_set()

    def _next(self) -> tuple[str, Priority] | None:
        for priority in (Priority.HIGH, Priority.MEDIUM, Priority.LOW):
            try:
                return self._queues[priority].get_nowait(), priority
            except queue.Empty:
                continue
        return None

    def _worker_loop(self, worker_id: int) -> None:
        while not self._should_stop():
            if not self._available.acquire(timeout=IDLE_POLL):
                continue
            item = self._next()
            if item is None:
                continue
            path, priority = item
            delay = self._delays[priority]
            if delay and self._cancel.wait(delay):
                return
            self._add_with_retry(path, worker_id, priority)

    def _add_with_retry(self, path: str, worker_id: int, priority: Priority) -> bool:
        for attempt in range(ADD_WATCH_ATTEMPTS):
            try:
                self._add_watch(path)
            except OSError as e:
                logger.warning("Worker %d (%s) failed to watch %s: %s", worker_id, priority.name, path, e)
                if self._cancel.wait(attempt * self._retry_backoff):
                    return False
                continue
            if priority == Priority.HIGH:
                logger.info("Worker %d (%s) watching %s", worker_id, priority.name, path)
            else:
                logger.debug("Worker %d (%s) watching %s", worker_id, priority.name, path)
            return True
        return False
