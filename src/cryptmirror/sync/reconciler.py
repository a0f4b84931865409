"""Debounced whole-tree reconciliation.

This module provides:
- BatchReconciler: Bulk sync in either direction, with retry and verification
- sync_excludes: Patterns never transferred or deleted by a bulk sync

At most one run per direction is scheduled or running at a time; extra
triggers while one is pending are coalesced into it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from cryptmirror.core.config import DEFAULT_DEBOUNCE_SECONDS, LOCK_DIR_NAME
from cryptmirror.core.crypto import ENCRYPTED_SUFFIX
from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import NotFoundError, Transport, TransportError, walk_local_files
from cryptmirror.sync.retry import DEFAULT_MAX_ATTEMPTS, backoff_delay, retry_with_backoff
from cryptmirror.sync.types import RetryExhaustedError, VerificationError

logger = logging.getLogger(__name__)

REMOTE_VERIFY_DEPTH = 3


def sync_excludes(direction: SyncDirection, lock_dir_name: str = LOCK_DIR_NAME) -> list[str]:
    """Get the exclude patterns for a bulk sync.

    Lock artifacts are never mirrored. Pushes also skip local *.enc
    files, which are transient upload artifacts; pulls keep them so they
    can be decrypted afterwards.
    """
    excludes = ["*.synclock", f"{lock_dir_name}/**"]
    if direction == SyncDirection.LOCAL_TO_REMOTE:
        excludes.append(f"*{ENCRYPTED_SUFFIX}")
    return excludes


class BatchReconciler:
    """Runs full-tree syncs between the watched root and the remote."""

    def __init__(
        self,
        transport: Transport,
        local_root: Path,
        cancel: threading.Event | None = None,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: Callable[[int], float] = backoff_delay,
        lock_dir_name: str = LOCK_DIR_NAME,
    ) -> None:
        """Initialize the reconciler.

        Args:
            transport: Remote transport.
            local_root: Watched root.
            cancel: Shared shutdown event.
            debounce: Quiet period before a triggered run starts.
            max_attempts: Attempts per sync before giving up.
            retry_delay: Backoff delay for a failed attempt number.
            lock_dir_name: Name of the lock directory to exclude.
        """
        self._transport = transport
        self._local_root = Path(local_root)
        self._cancel = cancel or threading.Event()
        self._debounce = debounce
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._lock_dir_name = lock_dir_name

        self._lock = threading.Lock()
        self._pending: set[SyncDirection] = set()
        self._threads: dict[SyncDirection, threading.Thread] = {}

    def _verify_remote(self) -> int:
        try:
            files = self._transport.list_files(
                self._transport.remote_root, recursive=True, max_depth=REMOTE_VERIFY_DEPTH
            )
        except NotFoundError:
            logger.info("Remote is empty or does not exist yet")
            return 0
        except TransportError as e:
            raise VerificationError(f"Remote verification failed: {e}") from e
        if files:
            logger.info("Remote has at least %d files", len(files))
        return len(files)

    def _verify_local(self) -> int:
        if not self._local_root.is_dir():
            logger.info("Local folder is empty or does not exist yet")
            return 0
        try:
            files = walk_local_files(
                self._local_root, sync_excludes(SyncDirection.REMOTE_TO_LOCAL, self._lock_dir_name)
            )
        except OSError as e:
            raise VerificationError(f"Local verification failed: {e}") from e
        if files:
            logger.info("Local has %d files", len(files))
        return len(files)

    def _sync(self, direction: SyncDirection) -> None:
        excludes = sync_excludes(direction, self._lock_dir_name)
        remote_root = self._transport.remote_root

        def attempt() -> None:
            result = self._transport.bulk_sync(direction, self._local_root, remote_root, excludes)
            if result.stdout.strip():
                logger.info("Sync stats: %s", result.stdout.strip())
            if direction == SyncDirection.LOCAL_TO_REMOTE:
                self._verify_remote()
            else:
                self._verify_local()

        if direction == SyncDirection.LOCAL_TO_REMOTE:
            logger.info("Local -> Remote: %s -> %s", self._local_root, remote_root)
        else:
            logger.info("Remote -> Local: %s -> %s", remote_root, self._local_root)

        retry_with_backoff(
            attempt,
            max_attempts=self._max_attempts,
            description=f"Sync {direction.value}",
            cancel=self._cancel,
            delay=self._retry_delay,
            retryable_exceptions=(TransportError, VerificationError),
        )
        logger.info("Sync %s completed and verified", direction.value)

    def sync_local_to_remote(self) -> None:
        """Make the remote mirror the watched root.

        Raises:
            RetryExhaustedError: If every attempt failed.
        """
        self._sync(SyncDirection.LOCAL_TO_REMOTE)

    def sync_remote_to_local(self) -> None:
        """Make the watched root mirror the remote.

        Raises:
            RetryExhaustedError: If every attempt failed.
        """
        self._sync(SyncDirection.REMOTE_TO_LOCAL)

    def is_pending(self, direction: SyncDirection = SyncDirection.LOCAL_TO_REMOTE) -> bool:
        """Check whether a run for direction is scheduled or running."""
        with self._lock:
            return direction in self._pending

    def trigger(self, direction: SyncDirection = SyncDirection.LOCAL_TO_REMOTE) -> bool:
        """Schedule a debounced sync.

        Returns:
            True if a run was scheduled, False if one was already pending.
        """
        with self._lock:
            if direction in self._pending:
                logger.debug("Sync %s already pending", direction.value)
                return False
            self._pending.add(direction)
            thread = threading.Thread(
                target=self._run_debounced,
                args=(direction,),
                daemon=True,
                name=f"reconcile-{direction.value}",
            )
            self._threads[direction] = thread
        thread.start()
        return True

    def _run_debounced(self, direction: SyncDirection) -> None:
        try:
            if self._cancel.wait(self._debounce):
                return
            if direction == SyncDirection.LOCAL_TO_REMOTE:
                self.sync_local_to_remote()
            else:
                self.sync_remote_to_local()
        except RetryExhaustedError as e:
            logger.error("Sync %s failed: %s", direction.value, e)
        finally:
            with self._lock:
                self._pending.discard(direction)

    def join(self, timeout: float | None = None) -> None:
        """Wait for scheduled runs to finish."""
        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            thread.join(timeout)
