"""Tests for the encrypt-then-upload pipeline."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cryptmirror.core.crypto import CryptoError, decrypt_file
from cryptmirror.remote.base import NotFoundError, TransportError
from cryptmirror.sync.locks import FileLock
from cryptmirror.sync.pipeline import UploadPipeline, verify_remote_file
from cryptmirror.sync.types import VerificationError


@pytest.fixture
def file_lock(tmp_path: Path) -> FileLock:
    """Lock manager in the test state dir."""
    return FileLock(tmp_path / "state" / ".synclocks")


@pytest.fixture
def make_pipeline(
    watched: Path,
    key: bytes,
    transport,
    file_lock: FileLock,
    no_backoff: Callable[[int], float],
):
    """Factory for pipelines with short waits."""

    def factory(**kwargs: object) -> UploadPipeline:
        kwargs.setdefault("stable_interval", 0.01)
        kwargs.setdefault("lock_wait", 0.2)
        kwargs.setdefault("lock_poll", 0.01)
        kwargs.setdefault("retry_delay", no_backoff)
        return UploadPipeline(watched, key, transport, file_lock, **kwargs)  # type: ignore[arg-type]

    return factory


class TestVerifyRemoteFile:
    """Tests for verify_remote_file()."""

    def test_listed_file_ok(self) -> None:
        """A file that lists should verify."""
        transport = MagicMock()
        transport.list_files.return_value = ["a.txt.enc"]
        verify_remote_file(transport, "remote:/W/a.txt.enc")

    def test_empty_listing_fails(self) -> None:
        """An empty listing should fail verification."""
        transport = MagicMock()
        transport.list_files.return_value = []
        with pytest.raises(VerificationError, match="missing"):
            verify_remote_file(transport, "remote:/W/a.txt.enc")

    def test_not_found_with_listable_parent_ok(self) -> None:
        """A not-found file is accepted when its parent can be listed."""
        transport = MagicMock()
        transport.parent_path.return_value = "remote:/W"
        transport.list_files.side_effect = [NotFoundError("directory not found"), ["a.txt.enc"]]
        verify_remote_file(transport, "remote:/W/a.txt.enc")
        transport.list_files.assert_called_with("remote:/W", recursive=False)

    def test_not_found_parent_missing_fails(self) -> None:
        """A not-found file whose parent is also missing should fail."""
        transport = MagicMock()
        transport.list_files.side_effect = NotFoundError("directory not found")
        with pytest.raises(VerificationError, match="Parent"):
            verify_remote_file(transport, "remote:/W/a.txt.enc")

    def test_other_error_fails(self) -> None:
        """Other listing errors should fail verification."""
        transport = MagicMock()
        transport.list_files.side_effect = TransportError("permission denied")
        with pytest.raises(VerificationError):
            verify_remote_file(transport, "remote:/W/a.txt.enc")


class TestProcess:
    """Tests for UploadPipeline.process()."""

    def test_ten_byte_file(self, watched: Path, mirror: Path, key: bytes, transport, make_pipeline) -> None:
        """A 10-byte file should be encrypted, uploaded once and cleaned up."""
        f = watched / "report.txt"
        f.write_bytes(b"0123456789")
        on_success = MagicMock()
        pipeline = make_pipeline(on_success=on_success)

        assert pipeline.process(f) is True

        assert len(transport.uploads) == 1
        uploaded, remote_path = transport.uploads[0]
        assert uploaded == watched / "report.txt.enc"
        assert transport.enc_existed == [True]
        assert remote_path == str(Path(transport.remote_root) / "report.txt.enc")
        assert not (watched / "report.txt.enc").exists()
        on_success.assert_called_once()

        out = watched.parent / "decrypted.txt"
        decrypt_file(key, mirror / "report.txt.enc", out)
        assert out.read_bytes() == b"0123456789"

    def test_nested_path_mirrored(self, watched: Path, mirror: Path, transport, make_pipeline) -> None:
        """The remote path should mirror the position under the root."""
        nested = watched / "clients" / "acme"
        nested.mkdir(parents=True)
        f = nested / "contract.pdf"
        f.write_bytes(b"%PDF")

        assert make_pipeline().process(f) is True
        assert (mirror / "clients" / "acme" / "contract.pdf.enc").is_file()

    def test_lock_released(self, watched: Path, file_lock: FileLock, make_pipeline) -> None:
        """The lock should be free after processing."""
        f = watched / "a.txt"
        f.write_text("x")
        make_pipeline().process(f)
        assert file_lock.is_locked(f) is False

    def test_lock_timeout_aborts(self, watched: Path, file_lock: FileLock, transport, make_pipeline) -> None:
        """A lock held elsewhere should abort without uploading."""
        f = watched / "a.txt"
        f.write_text("x")
        assert file_lock.acquire(f)

        assert make_pipeline().process(f) is False
        assert transport.uploads == []
        assert file_lock.is_locked(f) is True

    def test_vanished_file_aborts(self, watched: Path, transport, make_pipeline, file_lock: FileLock) -> None:
        """A file deleted before processing should abort quietly."""
        missing = watched / "gone.txt"
        assert make_pipeline().process(missing) is False
        assert transport.uploads == []
        assert file_lock.is_locked(missing) is False

    @pytest.mark.parametrize(
        "error",
        [OSError("disk full"), CryptoError("segment counter exhausted"), ValueError("bad segment size")],
    )
    def test_encrypt_failure_releases_lock(
        self, watched: Path, file_lock: FileLock, transport, make_pipeline, error: Exception
    ) -> None:
        """An encryption failure should release the lock and leave no artifact."""
        f = watched / "a.txt"
        f.write_text("x")
        with patch("cryptmirror.sync.pipeline.encrypt_file", side_effect=error):
            assert make_pipeline().process(f) is False
        assert file_lock.is_locked(f) is False
        assert not (watched / "a.txt.enc").exists()
        assert transport.uploads == []

    def test_upload_retried(self, watched: Path, transport, make_pipeline) -> None:
        """A transient upload failure should be retried."""
        f = watched / "a.txt"
        f.write_text("x")
        transport.upload_errors.append(TransportError("503"))

        assert make_pipeline().process(f) is True
        assert len(transport.uploads) == 2
        assert not (watched / "a.txt.enc").exists()

    def test_upload_exhausted(self, watched: Path, file_lock: FileLock, transport, make_pipeline) -> None:
        """Persistent failures should give up, clean up and not trigger sync."""
        f = watched / "a.txt"
        f.write_text("x")
        transport.upload_errors.extend(TransportError("down") for _ in range(3))
        on_success = MagicMock()

        assert make_pipeline(on_success=on_success).process(f) is False
        assert len(transport.uploads) == 3
        assert not (watched / "a.txt.enc").exists()
        assert file_lock.is_locked(f) is False
        on_success.assert_not_called()

    def test_cancelled_during_stability(self, watched: Path, transport, make_pipeline) -> None:
        """A cancelled engine should not upload."""
        f = watched / "a.txt"
        f.write_text("x")
        cancel = threading.Event()
        cancel.set()
        assert make_pipeline(cancel=cancel).process(f) is False
        assert transport.uploads == []

    def test_versioning_copy(self, watched: Path, mirror: Path, transport, make_pipeline) -> None:
        """With versioning on, a timestamped copy should also be uploaded."""
        f = watched / "a.txt"
        f.write_text("x")

        assert make_pipeline(versioning=True).process(f) is True
        assert len(transport.uploads) == 2
        versions = list((mirror.parent / f"{mirror.name}_versions").rglob("a.txt.enc"))
        assert len(versions) == 1

    def test_versioning_failure_ignored(self, watched: Path, transport, make_pipeline) -> None:
        """A failed version copy should not fail the upload."""
        f = watched / "a.txt"
        f.write_text("x")
        transport.upload_errors.append(TransportError("versions bucket missing"))

        assert make_pipeline(versioning=True).process(f) is True
        assert len(transport.uploads) == 2
