"""Per-file encrypt-then-upload pipeline.

Each changed file goes through:
    lock -> wait-stable -> encrypt -> upload with retry and verify -> cleanup -> unlock

Each step gates the next. The encrypted sibling (<path>.enc) never
outlives a call to UploadPipeline.process().
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from cryptmirror.core.crypto import ENCRYPTED_SUFFIX, CryptoError, encrypt_file
from cryptmirror.remote.base import NotFoundError, Transport, TransportError
from cryptmirror.sync.locks import FileLock
from cryptmirror.sync.retry import DEFAULT_MAX_ATTEMPTS, backoff_delay, retry_with_backoff
from cryptmirror.sync.stability import STABLE_INTERVAL, STABLE_TRIES, wait_for_stable
from cryptmirror.sync.types import LockError, RetryExhaustedError, VerificationError

logger = logging.getLogger(__name__)

LOCK_WAIT_SECONDS = 30.0
LOCK_POLL_SECONDS = 0.5
VERSION_STAMP_FORMAT = "%Y%m%d_%H%M%S"


def verify_remote_file(transport: Transport, remote_path: str) -> None:
    """Confirm an uploaded file is visible on the remote.

    Some remotes report "not found" when listing a single file at the
    top level. That is accepted as long as the parent can be listed.

    Raises:
        VerificationError: If the file cannot be confirmed.
    """
    try:
        listing = transport.list_files(remote_path, recursive=False)
    except NotFoundError:
        parent = transport.parent_path(remote_path)
        try:
            transport.list_files(parent, recursive=False)
        except TransportError as e:
            raise VerificationError(f"Parent directory verification failed: {e}") from e
        return
    except TransportError as e:
        raise VerificationError(f"Verify failed: {e}") from e

    if not listing:
        raise VerificationError(f"Remote file missing after upload: {remote_path}")


class UploadPipeline:
    """Encrypts and uploads single files from the watched root."""

    def __init__(
        self,
        root: Path,
        key: bytes,
        transport: Transport,
        file_lock: FileLock,
        on_success: Callable[[], object] | None = None,
        cancel: threading.Event | None = None,
        lock_wait: float = LOCK_WAIT_SECONDS,
        lock_poll: float = LOCK_POLL_SECONDS,
        stable_interval: float = STABLE_INTERVAL,
        stable_tries: int = STABLE_TRIES,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: Callable[[int], float] = backoff_delay,
        versioning: bool = False,
    ) -> None:
        """Initialize the pipeline.

        Args:
            root: Watched root; remote paths mirror positions relative to it.
            key: 32-byte AES key.
            transport: Where encrypted files are uploaded.
            file_lock: Cross-process lock manager.
            on_success: Called after each verified upload (schedules reconciliation).
            cancel: Shared shutdown event.
            lock_wait: Total seconds to wait for a busy lock.
            lock_poll: Seconds between lock attempts.
            stable_interval: Seconds between stability polls.
            stable_tries: Stability poll budget multiplier.
            max_attempts: Upload attempts before giving up.
            retry_delay: Backoff delay for a failed attempt number.
            versioning: Also keep a timestamped copy of every upload.
        """
        self._root = Path(root)
        self._key = key
        self._transport = transport
        self._lock = file_lock
        self._on_success = on_success
        self._cancel = cancel or threading.Event()
        self._lock_wait = lock_wait
        self._lock_poll = lock_poll
        self._stable_interval = stable_interval
        self._stable_tries = stable_tries
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._versioning = versioning

    def remote_path_for(self, enc_path: Path) -> str:
        """Get the remote destination of an encrypted artifact."""
        rel = enc_path.relative_to(self._root).as_posix()
        return self._transport.remote_path(rel)

    def _acquire_lock(self, path: Path) -> bool:
        deadline = time.monotonic() + self._lock_wait
        while True:
            if self._lock.acquire(path):
                return True
            if time.monotonic() >= deadline:
                return False
            if self._cancel.wait(self._lock_poll):
                return False

    def _upload_version(self, enc_path: Path, name: str) -> None:
        stamp = datetime.now().strftime(VERSION_STAMP_FORMAT)
        dest = self._transport.versions_path(stamp, name)
        try:
            self._transport.copy_one(enc_path, dest)
            logger.info("Created backup version: %s", dest)
        except TransportError as e:
            logger.warning("Failed to create backup version of %s: %s", name, e)

    def _upload(self, enc_path: Path) -> None:
        remote_path = self.remote_path_for(enc_path)
        logger.info("Uploading %s -> %s", enc_path.name, remote_path)

        def attempt() -> None:
            self._transport.copy_one(enc_path, remote_path)
            verify_remote_file(self._transport, remote_path)

        retry_with_backoff(
            attempt,
            max_attempts=self._max_attempts,
            description=f"Upload of {enc_path.name}",
            cancel=self._cancel,
            delay=self._retry_delay,
            retryable_exceptions=(TransportError, VerificationError),
        )
        logger.info("%s verified on remote", enc_path.name)

    def process(self, path: Path | str) -> bool:
        """Run the full pipeline for one file.

        Never raises: failures are logged.

        Args:
            path: Plaintext file under the watched root.

        Returns:
            True if the file was uploaded and verified.
        """
        path = Path(path)
        try:
            if not self._acquire_lock(path):
                logger.warning("Could not acquire lock for %s within %.0fs", path, self._lock_wait)
                return False
        except LockError as e:
            logger.error("Lock error for %s: %s", path, e)
            return False

        try:
            return self._process_locked(path)
        finally:
            try:
                self._lock.release(path)
            except LockError as e:
                logger.warning("Failed to release lock for %s: %s", path, e)

    def _process_locked(self, path: Path) -> bool:
        try:
            wait_for_stable(path, self._stable_interval, self._stable_tries, self._cancel)
        except OSError as e:
            logger.info("Skipping %s: %s", path, e)
            return False
        if self._cancel.is_set():
            return False

        enc_path = path.with_name(path.name + ENCRYPTED_SUFFIX)
        try:
            encrypt_file(self._key, path, enc_path)
        except (OSError, CryptoError, ValueError) as e:
            logger.error("Encryption failed for %s: %s", path, e)
            enc_path.unlink(missing_ok=True)
            return False

        try:
            if self._versioning:
                self._upload_version(enc_path, enc_path.name)
            self._upload(enc_path)
        except RetryExhaustedError as e:
            logger.error("Upload failed for %s: %s", path, e)
            return False
        finally:
            try:
                enc_path.unlink(missing_ok=True)
            except OSError as e:
                logger.error("Failed to remove temp file %s: %s", enc_path, e)

        if self._on_success is not None:
            self._on_success()
        return True
