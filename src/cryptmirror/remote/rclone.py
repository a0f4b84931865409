"""rclone command-line transport.

Every operation shells out to the rclone binary with an explicit timeout,
so a cancelled engine waits at most one timeout for an in-flight call.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import (
    CommandResult,
    NotFoundError,
    Transport,
    TransportError,
    TransportTimeoutError,
)

logger = logging.getLogger(__name__)

SYNC_TIMEOUT = 600.0  # 10 minutes
LIST_TIMEOUT = 60.0
CHECK_TIMEOUT = 30.0

# rclone reports a missing path with one of these depending on the backend
NOT_FOUND_MARKERS = (
    "directory not found",
    "doesn't exist",
    "not found",
    "Couldn't find",
)


class RcloneTransport(Transport):
    """Transport backed by the rclone CLI."""

    def __init__(
        self,
        remote: str,
        base_dir: str = "Watched_folder",
        binary: str = "rclone",
    ) -> None:
        """Initialize the transport.

        Args:
            remote: Name of the configured rclone remote (without colon).
            base_dir: Directory on the remote that mirrors the watched root.
            binary: rclone executable.
        """
        self._remote = remote.rstrip(":")
        self._base_dir = base_dir.strip("/")
        self._binary = binary

    @property
    def location(self) -> str:
        """Return the rclone remote root."""
        return f"rclone: {self.remote_root}"

    @property
    def remote_root(self) -> str:
        """Root of the mirrored tree on the remote."""
        return f"{self._remote}:/{self._base_dir}"

    def remote_path(self, rel_path: str) -> str:
        """Build an rclone path for a forward-slash relative path."""
        return f"{self.remote_root}/{rel_path.lstrip('/')}"

    def _run(self, args: list[str], timeout: float) -> CommandResult:
        """Run an rclone command.

        Raises:
            TransportTimeoutError: If the command exceeds timeout.
            NotFoundError: If stderr reports a missing path.
            TransportError: For any other failure.
        """
        cmd = [self._binary, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TransportTimeoutError(
                f"rclone {args[0]} timed out after {timeout:.0f}s"
            ) from e
        except FileNotFoundError as e:
            raise TransportError(f"rclone not found in PATH: {self._binary}") from e

        result = CommandResult(stdout=proc.stdout or "", stderr=proc.stderr or "")
        if proc.returncode != 0:
            stderr = result.stderr.strip()
            message = f"rclone {args[0]} failed (exit {proc.returncode}): {stderr}"
            if any(marker in stderr for marker in NOT_FOUND_MARKERS):
                raise NotFoundError(message)
            raise TransportError(message)
        return result

    def bulk_sync(
        self,
        direction: SyncDirection,
        local_root: Path,
        remote_root: str,
        excludes: list[str],
    ) -> CommandResult:
        """Run `rclone sync` in the requested direction."""
        if direction == SyncDirection.LOCAL_TO_REMOTE:
            src, dst = str(local_root), remote_root
        else:
            src, dst = remote_root, str(local_root)

        args = ["sync", src, dst, "--create-empty-src-dirs"]
        for pattern in excludes:
            args += ["--exclude", pattern]
        args += [
            "--retries", "2",
            "--low-level-retries", "3",
            "--stats", "30s",
            "--stats-one-line",
            "--transfers", "4",
            "--checkers", "8",
        ]
        return self._run(args, SYNC_TIMEOUT)

    def copy_one(self, local_path: Path, remote_path: str) -> CommandResult:
        """Run `rclone copyto` for a single file."""
        args = [
            "copyto",
            str(Path(local_path).resolve()),
            remote_path,
            "--retries", "2",
            "--low-level-retries", "3",
            "--stats", "0",
            "--transfers", "1",
            "--checkers", "1",
        ]
        return self._run(args, SYNC_TIMEOUT)

    def list_files(
        self,
        root: str,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> list[str]:
        """Run `rclone lsf` and return the listed files."""
        args = ["lsf", root, "--files-only"]
        if recursive:
            args.append("--recursive")
        if max_depth is not None:
            args += ["--max-depth", str(max_depth)]
        result = self._run(args, LIST_TIMEOUT)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def check(self) -> None:
        """Check the rclone binary and the remote are usable."""
        self._run(["version"], CHECK_TIMEOUT)
        self._run(["lsd", f"{self._remote}:"], CHECK_TIMEOUT)
