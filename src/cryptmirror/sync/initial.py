"""Startup baseline: pull the remote tree and decrypt it in place."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptmirror.core.crypto import ENCRYPTED_SUFFIX, CryptoError, decrypt_file
from cryptmirror.sync.reconciler import BatchReconciler

if TYPE_CHECKING:
    from cryptmirror.core.config import WatcherConfig
    from cryptmirror.remote.base import Transport

logger = logging.getLogger(__name__)


def decrypt_tree(root: Path, key: bytes) -> tuple[int, int]:
    """Decrypt every *.enc artifact under root into its plaintext sibling.

    Artifacts are deleted once decrypted. Failures are logged and the
    artifact is left in place.

    Returns:
        (files decrypted, files failed)
    """
    decrypted = 0
    failed = 0
    for enc_path in sorted(root.rglob(f"*{ENCRYPTED_SUFFIX}")):
        if not enc_path.is_file():
            continue
        target = enc_path.with_name(enc_path.name[: -len(ENCRYPTED_SUFFIX)])
        try:
            decrypt_file(key, enc_path, target)
            enc_path.unlink()
        except (CryptoError, OSError) as e:
            logger.error("Failed to decrypt %s: %s", enc_path, e)
            failed += 1
            continue
        logger.debug("Decrypted %s", target)
        decrypted += 1

    if decrypted or failed:
        logger.info("Decrypted %d files (%d failed)", decrypted, failed)
    return decrypted, failed


def initial_pull(
    config: WatcherConfig,
    transport: Transport,
    reconciler: BatchReconciler | None = None,
) -> tuple[int, int]:
    """Mirror the remote onto the watched root, then decrypt it.

    Local events are ignored for the duration so the pulled files are
    not uploaded straight back.

    Returns:
        (files decrypted, files failed)

    Raises:
        RetryExhaustedError: If the pull itself failed.
        ConfigError: If the encryption key is unusable.
    """
    key = config.load_key()
    reconciler = reconciler or BatchReconciler(
        transport, config.watched_folder, lock_dir_name=config.lock_dir.name
    )

    config.ignore_local_events = True
    try:
        logger.info("Pulling %s into %s", transport.location, config.watched_folder)
        reconciler.sync_remote_to_local()
        return decrypt_tree(config.watched_folder, key)
    finally:
        config.ignore_local_events = False
