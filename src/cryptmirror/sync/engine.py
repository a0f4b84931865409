"""Watch-and-sync engine.

Wires the lock manager, reconciler, pipeline, scheduler, watch source
and dispatcher together and runs them until cancelled.
"""

from __future__ import annotations

import logging
import threading

from cryptmirror.core.config import WatcherConfig
from cryptmirror.core.types import ConfigError
from cryptmirror.remote.base import Transport, create_transport
from cryptmirror.sync.dispatcher import EventDispatcher
from cryptmirror.sync.locks import FileLock
from cryptmirror.sync.pipeline import UploadPipeline
from cryptmirror.sync.reconciler import BatchReconciler
from cryptmirror.sync.scheduler import WatchScheduler
from cryptmirror.sync.watcher import WatchdogSource, WatchSource

logger = logging.getLogger(__name__)


def build_transport(config: WatcherConfig) -> Transport:
    """Create the configured transport.

    Raises:
        ConfigError: If the remote settings are invalid.
    """
    try:
        return create_transport(config.remote)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def start_watcher(
    cancel: threading.Event,
    config: WatcherConfig,
    transport: Transport | None = None,
    source: WatchSource | None = None,
) -> None:
    """Watch config.watched_folder and mirror it until cancel is set.

    Args:
        cancel: Shutdown event shared by every component.
        config: Watcher configuration.
        transport: Remote transport (built from config.remote if omitted).
        source: Watch source (watchdog if omitted).

    Raises:
        ConfigError: If the configuration is unusable.
    """
    config.validate()
    key = config.load_key()
    transport = transport or build_transport(config)
    source = source or WatchdogSource()

    logger.info("Starting watcher for %s -> %s", config.watched_folder, transport.location)

    file_lock = FileLock(config.lock_dir)
    reconciler = BatchReconciler(
        transport,
        config.watched_folder,
        cancel=cancel,
        debounce=config.debounce_seconds,
        lock_dir_name=config.lock_dir.name,
    )
    pipeline = UploadPipeline(
        config.watched_folder,
        key,
        transport,
        file_lock,
        on_success=reconciler.trigger,
        cancel=cancel,
        versioning=config.versioning,
    )
    scheduler = WatchScheduler(
        source.add_watch,
        config.watched_folder,
        max_depth=config.max_watch_depth,
        num_workers=config.watch_workers,
        cancel=cancel,
    )
    dispatcher = EventDispatcher(
        config,
        scheduler,
        pipeline,
        reconciler,
        source=source,
        cancel=cancel,
        max_concurrent_pipelines=config.max_concurrent_pipelines,
    )

    source.start()
    scheduler.start()
    dispatcher.start_sweeper()
    scan = threading.Thread(target=scheduler.initial_scan, daemon=True, name="initial-scan")
    scan.start()

    logger.info("Watching folder: %s", config.watched_folder)
    try:
        dispatcher.run()
    finally:
        logger.info("Shutting down watcher...")
        scheduler.stop()
        source.stop()
        scan.join(timeout=5.0)
