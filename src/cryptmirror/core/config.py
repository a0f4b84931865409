"""Configuration for the cryptmirror watcher.

This module provides:
- WatcherConfig: Settings shared by the engine, pipeline and reconciler
- load_config / save_config: JSON configuration file helpers
- get_config_dir: Default state directory (~/.cryptmirror)
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cryptmirror.core.crypto import CryptoError, load_key
from cryptmirror.core.types import ConfigError

DEFAULT_MAX_WATCH_DEPTH = 6
DEFAULT_WATCH_WORKERS = 4
DEFAULT_DEBOUNCE_SECONDS = 10.0
LOCK_DIR_NAME = ".synclocks"


def get_config_dir() -> Path:
    """Get the state directory for cryptmirror.

    Returns:
        Path to ~/.cryptmirror.
    """
    return Path.home() / ".cryptmirror"


@dataclass
class WatcherConfig:
    """Configuration for one watched root.

    Attributes:
        watched_folder: Absolute path of the local tree to mirror.
        remote: Transport settings; the "type" key selects the backend.
        encryption_key: Raw, base64 or passphrase key material.
        key_salt: Optional base64 salt enabling Argon2id derivation.
        max_watch_depth: Directories deeper than this are not watched.
        ignore_local_events: Drop all watch events (set during a bulk pull).
        state_dir: Directory holding lock markers and logs.
        watch_workers: Threads registering directory watches.
        debounce_seconds: Quiet period before a batch reconciliation runs.
        max_concurrent_pipelines: Cap on concurrent uploads (None = unbounded).
        versioning: Keep timestamped copies of every upload on the remote.
    """

    watched_folder: Path
    remote: dict[str, Any]
    encryption_key: str
    key_salt: str | None = None
    max_watch_depth: int = DEFAULT_MAX_WATCH_DEPTH
    ignore_local_events: bool = False
    state_dir: Path = field(default_factory=get_config_dir)
    watch_workers: int = DEFAULT_WATCH_WORKERS
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    max_concurrent_pipelines: int | None = None
    versioning: bool = False

    def __post_init__(self) -> None:
        """Normalize paths."""
        self.watched_folder = Path(self.watched_folder).expanduser().resolve()
        self.state_dir = Path(self.state_dir).expanduser()

    @property
    def lock_dir(self) -> Path:
        """Directory holding lock marker files."""
        return self.state_dir / LOCK_DIR_NAME

    @property
    def salt(self) -> bytes | None:
        """Decoded key salt, if configured."""
        if not self.key_salt:
            return None
        try:
            return base64.b64decode(self.key_salt, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError("key_salt is not valid base64") from e

    def load_key(self) -> bytes:
        """Resolve the encryption key.

        Raises:
            ConfigError: If the key material is missing or unusable.
        """
        try:
            return load_key(self.encryption_key, self.salt)
        except CryptoError as e:
            raise ConfigError(f"Invalid encryption key: {e}") from e

    def validate(self) -> None:
        """Check the configuration before the watch loop starts.

        Raises:
            ConfigError: If the watched folder or the key is unusable.
        """
        if not self.watched_folder.exists():
            raise ConfigError(f"Watched folder does not exist: {self.watched_folder}")
        if not self.watched_folder.is_dir():
            raise ConfigError(f"Watched path is not a directory: {self.watched_folder}")
        if self.max_watch_depth < 0:
            raise ConfigError("max_watch_depth must be >= 0")
        if self.watch_workers < 1:
            raise ConfigError("watch_workers must be >= 1")
        if not self.remote.get("type"):
            raise ConfigError("remote.type is required")
        self.load_key()


def load_config(path: Path) -> WatcherConfig:
    """Load a WatcherConfig from a JSON file.

    Args:
        path: Path to the configuration file.

    Returns:
        The parsed configuration.

    Raises:
        ConfigError: If the file is missing, malformed, or lacks required keys.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")

    missing = [k for k in ("watched_folder", "remote", "encryption_key") if not data.get(k)]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    known = WatcherConfig.__dataclass_fields__.keys()
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    try:
        return WatcherConfig(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid config: {e}") from e


def save_config(config: WatcherConfig, path: Path) -> None:
    """Save a WatcherConfig as JSON."""
    data: dict[str, Any] = {
        "watched_folder": str(config.watched_folder),
        "remote": config.remote,
        "encryption_key": config.encryption_key,
        "key_salt": config.key_salt,
        "max_watch_depth": config.max_watch_depth,
        "state_dir": str(config.state_dir),
        "watch_workers": config.watch_workers,
        "debounce_seconds": config.debounce_seconds,
        "max_concurrent_pipelines": config.max_concurrent_pipelines,
        "versioning": config.versioning,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
