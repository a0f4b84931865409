"""Core module - Shared crypto, configuration and types."""

from cryptmirror.core.config import (
    LOCK_DIR_NAME,
    WatcherConfig,
    get_config_dir,
    load_config,
    save_config,
)
from cryptmirror.core.crypto import (
    ENCRYPTED_SUFFIX,
    CryptoError,
    decrypt_file,
    derive_key,
    encrypt_file,
    generate_salt,
    load_key,
)
from cryptmirror.core.logs import setup_logging
from cryptmirror.core.types import ConfigError, CryptMirrorError, SyncDirection

__all__ = [
    # Config
    "LOCK_DIR_NAME",
    "WatcherConfig",
    "get_config_dir",
    "load_config",
    "save_config",
    # Crypto
    "ENCRYPTED_SUFFIX",
    "CryptoError",
    "decrypt_file",
    "derive_key",
    "encrypt_file",
    "generate_salt",
    "load_key",
    # Logging
    "setup_logging",
    # Types
    "ConfigError",
    "CryptMirrorError",
    "SyncDirection",
]
