"""Tests for watcher configuration."""

from __future__ import annotations

import base64
import json
import logging
from pathlib import Path

import pytest

from cryptmirror.core import (
    ConfigError,
    WatcherConfig,
    generate_salt,
    load_config,
    save_config,
    setup_logging,
)


def write_config(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data))
    return path


class TestWatcherConfig:
    """Tests for WatcherConfig class."""

    def test_defaults(self, watched: Path) -> None:
        """Should fill in documented defaults."""
        config = WatcherConfig(watched_folder=watched, remote={"type": "local"}, encryption_key="x")
        assert config.max_watch_depth == 6
        assert config.watch_workers == 4
        assert config.debounce_seconds == 10.0
        assert config.ignore_local_events is False
        assert config.max_concurrent_pipelines is None
        assert config.versioning is False

    def test_watched_folder_resolved(self, watched: Path) -> None:
        """Relative components should be resolved to an absolute path."""
        config = WatcherConfig(
            watched_folder=watched / "sub" / "..",
            remote={"type": "local"},
            encryption_key="x",
        )
        assert config.watched_folder == watched.resolve()
        assert config.watched_folder.is_absolute()

    def test_lock_dir_under_state_dir(self, config: WatcherConfig) -> None:
        """Lock markers should live in .synclocks under the state dir."""
        assert config.lock_dir == config.state_dir / ".synclocks"

    def test_validate_ok(self, config: WatcherConfig) -> None:
        """A valid configuration should pass validation."""
        config.validate()

    def test_validate_missing_folder(self, config: WatcherConfig, tmp_path: Path) -> None:
        """A missing watched folder should be a ConfigError."""
        config.watched_folder = tmp_path / "nope"
        with pytest.raises(ConfigError, match="does not exist"):
            config.validate()

    def test_validate_file_not_dir(self, config: WatcherConfig, tmp_path: Path) -> None:
        """A watched path that is a file should be a ConfigError."""
        f = tmp_path / "file.txt"
        f.write_text("x")
        config.watched_folder = f
        with pytest.raises(ConfigError, match="not a directory"):
            config.validate()

    def test_validate_empty_key(self, config: WatcherConfig) -> None:
        """An empty key should be a ConfigError."""
        config.encryption_key = ""
        with pytest.raises(ConfigError, match="encryption key"):
            config.validate()

    def test_validate_missing_remote_type(self, config: WatcherConfig) -> None:
        """A remote without a type should be a ConfigError."""
        config.remote = {}
        with pytest.raises(ConfigError):
            config.validate()

    def test_invalid_salt(self, config: WatcherConfig) -> None:
        """A salt that is not base64 should be a ConfigError."""
        config.encryption_key = "a passphrase"
        config.key_salt = "!!not base64!!"
        with pytest.raises(ConfigError, match="key_salt"):
            config.load_key()

    def test_salted_passphrase(self, config: WatcherConfig) -> None:
        """A salted passphrase should load a 32-byte key."""
        config.encryption_key = "a passphrase"
        config.key_salt = base64.b64encode(generate_salt()).decode()
        assert len(config.load_key()) == 32


class TestLoadConfig:
    """Tests for JSON config loading."""

    def test_load_minimal(self, tmp_path: Path, watched: Path) -> None:
        """Should load a config with only the required keys."""
        path = write_config(
            tmp_path / "config.json",
            {
                "watched_folder": str(watched),
                "remote": {"type": "rclone", "remote": "gdrive"},
                "encryption_key": "k" * 32,
            },
        )
        config = load_config(path)
        assert config.watched_folder == watched.resolve()
        assert config.remote["remote"] == "gdrive"

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file should be a ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Malformed JSON should be a ConfigError."""
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        """A JSON array should be a ConfigError."""
        path = write_config(tmp_path / "config.json", [])  # type: ignore[arg-type]
        with pytest.raises(ConfigError, match="JSON object"):
            load_config(path)

    def test_missing_required(self, tmp_path: Path, watched: Path) -> None:
        """Missing required keys should be listed in the error."""
        path = write_config(tmp_path / "config.json", {"watched_folder": str(watched)})
        with pytest.raises(ConfigError, match="remote, encryption_key"):
            load_config(path)

    def test_unknown_keys(self, tmp_path: Path, watched: Path) -> None:
        """Unknown keys should be rejected."""
        path = write_config(
            tmp_path / "config.json",
            {
                "watched_folder": str(watched),
                "remote": {"type": "local"},
                "encryption_key": "x",
                "colour": "blue",
            },
        )
        with pytest.raises(ConfigError, match="colour"):
            load_config(path)

    def test_save_and_reload(self, tmp_path: Path, config: WatcherConfig) -> None:
        """A saved config should load back with the same values."""
        config.versioning = True
        config.max_concurrent_pipelines = 2
        path = tmp_path / "nested" / "config.json"
        save_config(config, path)

        loaded = load_config(path)
        assert loaded.watched_folder == config.watched_folder
        assert loaded.remote == config.remote
        assert loaded.versioning is True
        assert loaded.max_concurrent_pipelines == 2


class TestSetupLogging:
    """Tests for logging setup."""

    def test_file_handler(self, tmp_path: Path) -> None:
        """Should write cryptmirror log records to the file."""
        log_path = tmp_path / "logs" / "cryptmirror.log"
        setup_logging(log_path, logging.DEBUG)
        try:
            logging.getLogger("cryptmirror.test").info("hello from test")
            for handler in logging.getLogger("cryptmirror").handlers:
                handler.flush()
            content = log_path.read_text()
            assert "hello from test" in content
            assert " - cryptmirror.test - INFO - " in content
        finally:
            logger = logging.getLogger("cryptmirror")
            for handler in logger.handlers[:]:
                handler.close()
                logger.removeHandler(handler)

    def test_reconfigure_replaces_handlers(self, tmp_path: Path) -> None:
        """Calling setup twice should not duplicate handlers."""
        setup_logging()
        setup_logging()
        logger = logging.getLogger("cryptmirror")
        try:
            assert len(logger.handlers) == 1
        finally:
            for handler in logger.handlers[:]:
                logger.removeHandler(handler)
