"""Plain filesystem transport.

The "remote" is a directory, typically a NAS or removable-drive mount.
Also used as the transport in tests.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import (
    CommandResult,
    NotFoundError,
    Transport,
    TransportError,
    is_excluded,
    walk_local_files,
)

logger = logging.getLogger(__name__)


def _dir_excluded(rel_dir: str, excludes: list[str]) -> bool:
    """Check whether a directory falls under a "dir/**" exclude."""
    return is_excluded(f"{rel_dir}/.", excludes)


def _mirror_tree(src: Path, dst: Path, excludes: list[str]) -> tuple[int, int]:
    """Make dst an exact copy of src, leaving excluded paths alone.

    Returns:
        (files copied, entries deleted)
    """
    copied = 0
    deleted = 0
    dst.mkdir(parents=True, exist_ok=True)

    src_files = walk_local_files(src, excludes)
    dst_files = walk_local_files(dst, excludes)

    # Empty directories are mirrored too
    for directory in src.rglob("*"):
        if directory.is_dir() and not directory.is_symlink():
            rel = directory.relative_to(src).as_posix()
            if not _dir_excluded(rel, excludes):
                (dst / rel).mkdir(parents=True, exist_ok=True)

    for rel, size in src_files.items():
        target = dst / rel
        source = src / rel
        if rel in dst_files and dst_files[rel] == size:
            if abs(target.stat().st_mtime - source.stat().st_mtime) < 1.0:
                continue
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        copied += 1

    for rel in set(dst_files) - set(src_files):
        (dst / rel).unlink(missing_ok=True)
        deleted += 1

    # Remove directories that no longer exist in src, deepest first
    for directory in sorted(dst.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if not directory.is_dir() or directory.is_symlink():
            continue
        rel = directory.relative_to(dst).as_posix()
        if _dir_excluded(rel, excludes):
            continue
        if not (src / rel).is_dir() and not any(directory.iterdir()):
            directory.rmdir()
            deleted += 1

    return copied, deleted


class LocalTransport(Transport):
    """Transport whose remote is a local directory."""

    def __init__(self, base_path: Path | str) -> None:
        """Initialize the transport.

        Args:
            base_path: Directory that mirrors the watched root.
        """
        self._base_path = Path(base_path).expanduser().resolve()

    @property
    def location(self) -> str:
        """Return the local mirror path."""
        return f"Local filesystem: {self._base_path}"

    @property
    def remote_root(self) -> str:
        """Root of the mirrored tree."""
        return str(self._base_path)

    def remote_path(self, rel_path: str) -> str:
        """Build the mirror path for a forward-slash relative path."""
        return str(self._base_path / rel_path.lstrip("/"))

    def bulk_sync(
        self,
        direction: SyncDirection,
        local_root: Path,
        remote_root: str,
        excludes: list[str],
    ) -> CommandResult:
        """Mirror directories with shutil."""
        remote = Path(remote_root)
        if direction == SyncDirection.LOCAL_TO_REMOTE:
            src, dst = Path(local_root), remote
        else:
            src, dst = remote, Path(local_root)

        if not src.is_dir():
            raise NotFoundError(f"Source directory not found: {src}")

        try:
            copied, deleted = _mirror_tree(src, dst, excludes)
        except OSError as e:
            raise TransportError(f"Mirror {src} -> {dst} failed: {e}") from e
        return CommandResult(stdout=f"Transferred: {copied} files, Deleted: {deleted}")

    def copy_one(self, local_path: Path, remote_path: str) -> CommandResult:
        """Copy a single file into the mirror."""
        target = Path(remote_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, target)
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {local_path}") from e
        except OSError as e:
            raise TransportError(f"Copy {local_path} -> {target} failed: {e}") from e
        return CommandResult(stdout=f"Transferred: 1 file ({target.name})")

    def list_files(
        self,
        root: str,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> list[str]:
        """List files under root, relative to it."""
        base = Path(root)
        if base.is_file():
            return [base.name]
        if not base.is_dir():
            raise NotFoundError(f"directory not found: {root}")

        pattern = "*" if not recursive else "**/*"
        files = []
        for path in base.glob(pattern):
            if not path.is_file():
                continue
            rel = path.relative_to(base)
            if max_depth is not None and len(rel.parts) > max_depth:
                continue
            files.append(rel.as_posix())
        return sorted(files)

    def check(self) -> None:
        """Check the mirror directory is usable."""
        if not self._base_path.exists():
            try:
                self._base_path.mkdir(parents=True)
            except OSError as e:
                raise TransportError(f"Cannot create {self._base_path}: {e}") from e
        if not self._base_path.is_dir():
            raise TransportError(f"Not a directory: {self._base_path}")
