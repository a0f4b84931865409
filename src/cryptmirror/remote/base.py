"""Remote transport abstraction.

This module provides:
- Transport: Abstract interface for bulk sync, single copy and listing
- TransportError, NotFoundError, TransportTimeoutError: Transport errors
- CommandResult: Captured stdout/stderr of a transport operation
"""

from __future__ import annotations

import fnmatch
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cryptmirror.core.types import CryptMirrorError

if TYPE_CHECKING:
    from cryptmirror.core.types import SyncDirection


class TransportError(CryptMirrorError):
    """A remote operation failed."""


class NotFoundError(TransportError):
    """The remote (or local) path does not exist."""


class TransportTimeoutError(TransportError):
    """A remote operation exceeded its timeout."""


@dataclass
class CommandResult:
    """Output of a transport operation."""

    stdout: str = ""
    stderr: str = ""


def is_excluded(rel_path: str, excludes: list[str]) -> bool:
    """Check a forward-slash relative path against rclone-style exclude globs.

    A pattern ending in "/**" excludes the directory and everything below it.
    Other patterns match the full relative path or the file name.
    """
    name = rel_path.rsplit("/", 1)[-1]
    for pattern in excludes:
        if pattern.endswith("/**"):
            prefix = pattern[:-3]
            parts = rel_path.split("/")
            if any(fnmatch.fnmatch(part, prefix) for part in parts[:-1]) or rel_path == prefix:
                return True
        elif fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern):
            return True
    return False


def walk_local_files(root: Path, excludes: list[str] | None = None) -> dict[str, int]:
    """Map forward-slash relative paths of files under root to their sizes."""
    excludes = excludes or []
    files: dict[str, int] = {}
    for path in root.rglob("*"):
        if path.is_symlink() or not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if is_excluded(rel, excludes):
            continue
        try:
            files[rel] = path.stat().st_size
        except FileNotFoundError:
            continue
    return files


class Transport(ABC):
    """Abstract interface for the remote storage location."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of the remote root."""

    @property
    @abstractmethod
    def remote_root(self) -> str:
        """Root under which the watched tree is mirrored."""

    @abstractmethod
    def remote_path(self, rel_path: str) -> str:
        """Build the remote path for a forward-slash relative path."""

    def parent_path(self, remote_path: str) -> str:
        """Return the parent of a remote path."""
        return remote_path.rstrip("/").rsplit("/", 1)[0]

    def versions_path(self, stamp: str, name: str) -> str:
        """Build the remote path of a timestamped upload version."""
        return f"{self.remote_root}_versions/{stamp}/{name}"

    @abstractmethod
    def bulk_sync(
        self,
        direction: SyncDirection,
        local_root: Path,
        remote_root: str,
        excludes: list[str],
    ) -> CommandResult:
        """Mirror one tree onto the other.

        Args:
            direction: Which side is the source.
            local_root: Local tree root.
            remote_root: Remote tree root.
            excludes: Glob patterns never transferred or deleted.

        Raises:
            TransportError: If the mirror fails.
        """

    @abstractmethod
    def copy_one(self, local_path: Path, remote_path: str) -> CommandResult:
        """Upload a single file.

        Raises:
            TransportError: If the transfer fails.
        """

    @abstractmethod
    def list_files(
        self,
        root: str,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> list[str]:
        """List file paths under root, relative to it.

        Raises:
            NotFoundError: If root does not exist.
            TransportError: For any other listing failure.
        """

    @abstractmethod
    def check(self) -> None:
        """Test that the remote is reachable.

        Raises:
            TransportError: If it is not.
        """


def create_transport(config: dict[str, str | None]) -> Transport:
    """Factory function to create a transport from configuration.

    Args:
        config: Transport configuration dict with keys:
            - type: "rclone", "s3" or "local"
            - For rclone: remote, base_dir, binary
            - For s3: bucket, prefix, endpoint_url, access_key, secret_key, region
            - For local: path

    Returns:
        Configured Transport instance.

    Raises:
        ValueError: If the transport type is unknown or misconfigured.
    """
    transport_type = config.get("type", "rclone")

    if transport_type == "rclone":
        from cryptmirror.remote.rclone import RcloneTransport

        remote = config.get("remote")
        if not remote:
            raise ValueError("rclone transport requires 'remote' configuration")
        return RcloneTransport(
            remote=remote,
            base_dir=config.get("base_dir") or "Watched_folder",
            binary=config.get("binary") or "rclone",
        )

    if transport_type == "s3":
        from cryptmirror.remote.s3 import S3Transport

        bucket = config.get("bucket")
        if not bucket:
            raise ValueError("s3 transport requires 'bucket' configuration")
        return S3Transport(
            bucket=bucket,
            prefix=config.get("prefix") or "Watched_folder",
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            region=config.get("region") or "us-east-1",
        )

    if transport_type == "local":
        from cryptmirror.remote.local import LocalTransport

        path = config.get("path")
        if not path:
            raise ValueError("local transport requires 'path' configuration")
        return LocalTransport(path)

    raise ValueError(f"Unknown transport type: {transport_type}")
