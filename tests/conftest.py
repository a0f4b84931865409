"""Shared fixtures for cryptmirror tests."""

from __future__ import annotations

import base64
import os
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from cryptmirror.core.config import WatcherConfig
from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import CommandResult
from cryptmirror.remote.local import LocalTransport


class RecordingTransport(LocalTransport):
    """LocalTransport that records every call and can inject failures."""

    def __init__(self, base_path: Path) -> None:
        super().__init__(base_path)
        self.uploads: list[tuple[Path, str]] = []
        self.syncs: list[tuple[SyncDirection, list[str]]] = []
        self.enc_existed: list[bool] = []
        self.upload_errors: list[Exception] = []
        self.sync_errors: list[Exception] = []
        self.lock = threading.Lock()

    def copy_one(self, local_path: Path, remote_path: str) -> CommandResult:
        with self.lock:
            self.uploads.append((Path(local_path), remote_path))
            self.enc_existed.append(Path(local_path).exists())
            if self.upload_errors:
                raise self.upload_errors.pop(0)
        return super().copy_one(local_path, remote_path)

    def bulk_sync(
        self,
        direction: SyncDirection,
        local_root: Path,
        remote_root: str,
        excludes: list[str],
    ) -> CommandResult:
        with self.lock:
            self.syncs.append((direction, list(excludes)))
            if self.sync_errors:
                raise self.sync_errors.pop(0)
        return super().bulk_sync(direction, local_root, remote_root, excludes)


def no_delay(attempt: int) -> float:
    """Backoff policy that never waits."""
    return 0.0


@pytest.fixture
def key() -> bytes:
    """A random 32-byte key."""
    return os.urandom(32)


@pytest.fixture
def watched(tmp_path: Path) -> Path:
    """An empty watched root."""
    path = tmp_path / "watched"
    path.mkdir()
    return path


@pytest.fixture
def mirror(tmp_path: Path) -> Path:
    """Directory used as the remote by LocalTransport."""
    return tmp_path / "mirror"


@pytest.fixture
def transport(mirror: Path) -> RecordingTransport:
    """A recording local transport."""
    return RecordingTransport(mirror)


@pytest.fixture
def config(tmp_path: Path, watched: Path, mirror: Path, key: bytes) -> WatcherConfig:
    """A valid configuration pointing at the local mirror."""
    return WatcherConfig(
        watched_folder=watched,
        remote={"type": "local", "path": str(mirror)},
        encryption_key=base64.b64encode(key).decode("ascii"),
        state_dir=tmp_path / "state",
        debounce_seconds=0.0,
    )


@pytest.fixture
def no_backoff() -> Callable[[int], float]:
    """Backoff policy that never waits."""
    return no_delay
