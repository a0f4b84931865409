"""Cross-process file locks backed by marker files.

Each logical path maps to a marker file named after a truncated SHA-256
of its canonical form. The marker is created with O_CREAT | O_EXCL, so
only one acquirer can win. A marker older than the staleness window is
treated as abandoned by a crashed holder and may be reclaimed.

Exclusivity is approximate: a holder slower than the staleness window
can be overtaken.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import time
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from cryptmirror.sync.types import LockError, LockHeldError

logger = logging.getLogger(__name__)

STALE_LOCK_SECONDS = 120.0
LOCK_SUFFIX = ".lock"


def canonical_path(path: Path | str) -> str:
    """Return the absolute, normalized form of path."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


class FileLock:
    """Marker-file lock manager for one lock directory."""

    def __init__(self, lock_dir: Path, stale_after: float = STALE_LOCK_SECONDS) -> None:
        """Initialize the lock manager.

        Args:
            lock_dir: Directory holding marker files (created if missing).
            stale_after: Age in seconds after which a marker may be reclaimed.
        """
        self._lock_dir = Path(lock_dir)
        self._lock_dir.mkdir(parents=True, exist_ok=True)
        self._stale_after = stale_after

    @property
    def lock_dir(self) -> Path:
        """Get the lock directory."""
        return self._lock_dir

    def lock_file_path(self, path: Path | str) -> Path:
        """Get the marker file for a logical path."""
        digest = hashlib.sha256(canonical_path(path).encode("utf-8")).hexdigest()
        return self._lock_dir / f"{digest[:16]}{LOCK_SUFFIX}"

    def acquire(self, path: Path | str) -> bool:
        """Try to take the lock for path.

        Returns:
            True if the lock was taken, False if someone else holds it.

        Raises:
            LockError: If the marker cannot be created for another reason.
        """
        return self._acquire(path, reclaim=True)

    def _acquire(self, path: Path | str, reclaim: bool) -> bool:
        lock_file = self.lock_file_path(path)
        try:
            fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if not reclaim:
                return False
            try:
                age = time.time() - lock_file.stat().st_mtime
            except FileNotFoundError:
                # Released between our create and stat
                return self._acquire(path, reclaim=False)
            if age > self._stale_after:
                logger.info("Reclaiming stale lock for %s (age %.0fs)", path, age)
                lock_file.unlink(missing_ok=True)
                return self._acquire(path, reclaim=False)
            return False
        except OSError as e:
            raise LockError(f"Cannot create lock for {path}: {e}") from e

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(datetime.now(UTC).isoformat(timespec="seconds"))
        return True

    def release(self, path: Path | str) -> None:
        """Release the lock for path.

        Raises:
            LockError: If the lock is not held (double release).
        """
        lock_file = self.lock_file_path(path)
        try:
            lock_file.unlink()
        except FileNotFoundError as e:
            raise LockError(f"Lock not held for {path}") from e
        except OSError as e:
            raise LockError(f"Cannot release lock for {path}: {e}") from e

    def is_locked(self, path: Path | str) -> bool:
        """Check whether a non-stale marker exists for path."""
        lock_file = self.lock_file_path(path)
        try:
            age = time.time() - lock_file.stat().st_mtime
        except FileNotFoundError:
            return False
        return age <= self._stale_after

    @contextlib.contextmanager
    def hold(self, path: Path | str) -> Iterator[None]:
        """Hold the lock for the duration of a with-block.

        Raises:
            LockHeldError: If the lock is held by someone else.
        """
        if not self.acquire(path):
            raise LockHeldError(f"Lock already held for {path}")
        try:
            yield
        finally:
            self.release(path)
