"""Tests for debounced batch reconciliation."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import CommandResult, NotFoundError, TransportError
from cryptmirror.sync.reconciler import BatchReconciler, sync_excludes
from cryptmirror.sync.types import RetryExhaustedError


def mock_transport() -> MagicMock:
    transport = MagicMock()
    transport.remote_root = "remote:/Watched_folder"
    transport.bulk_sync.return_value = CommandResult(stdout="Transferred: 0")
    transport.list_files.return_value = []
    return transport


class TestSyncExcludes:
    """Tests for sync_excludes()."""

    def test_lock_artifacts_always_excluded(self) -> None:
        """Both directions should exclude lock files and the lock directory."""
        for direction in SyncDirection:
            excludes = sync_excludes(direction)
            assert "*.synclock" in excludes
            assert ".synclocks/**" in excludes

    def test_push_excludes_artifacts(self) -> None:
        """Pushing should never mirror local .enc artifacts."""
        assert "*.enc" in sync_excludes(SyncDirection.LOCAL_TO_REMOTE)

    def test_pull_keeps_artifacts(self) -> None:
        """Pulling should bring .enc files down for decryption."""
        assert "*.enc" not in sync_excludes(SyncDirection.REMOTE_TO_LOCAL)


class TestSync:
    """Tests for sync_local_to_remote() / sync_remote_to_local()."""

    def test_push_mirrors_tree(self, watched: Path, mirror: Path, transport) -> None:
        """A push should copy the watched tree to the remote."""
        (watched / "a").mkdir()
        (watched / "a" / "doc.txt").write_text("hello")
        (watched / "empty").mkdir()
        (watched / "leftover.txt.enc").write_bytes(b"artifact")

        BatchReconciler(transport, watched).sync_local_to_remote()

        assert (mirror / "a" / "doc.txt").read_text() == "hello"
        assert (mirror / "empty").is_dir()
        assert not (mirror / "leftover.txt.enc").exists()

    def test_push_keeps_remote_artifacts(self, watched: Path, mirror: Path, transport) -> None:
        """Encrypted uploads on the remote should survive a push."""
        mirror.mkdir()
        (mirror / "report.txt.enc").write_bytes(b"ciphertext")

        BatchReconciler(transport, watched).sync_local_to_remote()
        assert (mirror / "report.txt.enc").exists()

    def test_push_removes_deleted(self, watched: Path, mirror: Path, transport) -> None:
        """Files deleted locally should be deleted on the remote."""
        mirror.mkdir()
        (mirror / "old.txt").write_text("stale")

        BatchReconciler(transport, watched).sync_local_to_remote()
        assert not (mirror / "old.txt").exists()

    def test_pull_mirrors_remote(self, watched: Path, mirror: Path, transport) -> None:
        """A pull should copy the remote tree locally."""
        (mirror / "sub").mkdir(parents=True)
        (mirror / "sub" / "x.enc").write_bytes(b"data")

        BatchReconciler(transport, watched).sync_remote_to_local()
        assert (watched / "sub" / "x.enc").read_bytes() == b"data"

    def test_empty_destination_ok(self, watched: Path) -> None:
        """An empty destination listing should be acceptable."""
        transport = mock_transport()
        BatchReconciler(transport, watched).sync_local_to_remote()
        transport.list_files.assert_called_once_with(
            "remote:/Watched_folder", recursive=True, max_depth=3
        )

    def test_not_found_destination_ok(self, watched: Path) -> None:
        """A not-found listing counts as an empty, acceptable destination."""
        transport = mock_transport()
        transport.list_files.side_effect = NotFoundError("directory not found")
        BatchReconciler(transport, watched).sync_local_to_remote()
        assert transport.bulk_sync.call_count == 1

    def test_listing_error_fails(self, watched: Path, no_backoff: Callable[[int], float]) -> None:
        """Other listing errors should fail verification and be retried."""
        transport = mock_transport()
        transport.list_files.side_effect = TransportError("permission denied")
        reconciler = BatchReconciler(transport, watched, retry_delay=no_backoff)

        with pytest.raises(RetryExhaustedError):
            reconciler.sync_local_to_remote()
        assert transport.bulk_sync.call_count == 3

    def test_sync_failure_retried(self, watched: Path, no_backoff: Callable[[int], float]) -> None:
        """A failing bulk sync should be retried then succeed."""
        transport = mock_transport()
        transport.bulk_sync.side_effect = [TransportError("flaky"), CommandResult()]
        BatchReconciler(transport, watched, retry_delay=no_backoff).sync_local_to_remote()
        assert transport.bulk_sync.call_count == 2

    def test_missing_source_fails(self, watched: Path, transport, no_backoff: Callable[[int], float]) -> None:
        """Pulling from a remote that does not exist should fail after retries."""
        reconciler = BatchReconciler(transport, watched, retry_delay=no_backoff)
        with pytest.raises(RetryExhaustedError):
            reconciler.sync_remote_to_local()
        assert len(transport.syncs) == 3


class TestTrigger:
    """Tests for debounced triggering."""

    def test_trigger_runs_sync(self, watched: Path) -> None:
        """A trigger should run one sync after the quiet period."""
        transport = mock_transport()
        reconciler = BatchReconciler(transport, watched, debounce=0.0)

        assert reconciler.trigger() is True
        reconciler.join(timeout=5.0)

        assert transport.bulk_sync.call_count == 1
        assert reconciler.is_pending() is False

    def test_triggers_coalesce(self, watched: Path) -> None:
        """Triggers while one is pending should be no-ops."""
        transport = mock_transport()
        reconciler = BatchReconciler(transport, watched, debounce=0.2)

        assert reconciler.trigger() is True
        assert reconciler.trigger() is False
        assert reconciler.trigger() is False
        assert reconciler.is_pending() is True
        reconciler.join(timeout=5.0)

        assert transport.bulk_sync.call_count == 1

    def test_directions_independent(self, watched: Path) -> None:
        """Each direction should have its own pending slot."""
        transport = mock_transport()
        reconciler = BatchReconciler(transport, watched, debounce=0.2)

        assert reconciler.trigger(SyncDirection.LOCAL_TO_REMOTE) is True
        assert reconciler.trigger(SyncDirection.REMOTE_TO_LOCAL) is True
        reconciler.join(timeout=5.0)
        assert transport.bulk_sync.call_count == 2

    def test_cancel_during_debounce(self, watched: Path) -> None:
        """Cancelling during the quiet period should skip the sync."""
        transport = mock_transport()
        cancel = threading.Event()
        reconciler = BatchReconciler(transport, watched, cancel=cancel, debounce=10.0)

        reconciler.trigger()
        cancel.set()
        reconciler.join(timeout=5.0)

        transport.bulk_sync.assert_not_called()
        assert reconciler.is_pending() is False

    def test_failed_sync_clears_pending(self, watched: Path, no_backoff: Callable[[int], float]) -> None:
        """A failed run should be logged and allow later triggers."""
        transport = mock_transport()
        transport.bulk_sync.side_effect = TransportError("down")
        reconciler = BatchReconciler(transport, watched, debounce=0.0, retry_delay=no_backoff)

        reconciler.trigger()
        reconciler.join(timeout=5.0)

        assert reconciler.is_pending() is False
        assert reconciler.trigger() is True
        reconciler.join(timeout=5.0)
