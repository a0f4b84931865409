"""Watch-and-sync engine.

- WatchScheduler: Priority-based directory watch registration
- EventDispatcher: Routes filesystem events
- UploadPipeline: Per-file lock, encrypt, upload, verify
- BatchReconciler: Debounced whole-tree sync
- FileLock: Cross-process file locks
- start_watcher / initial_pull: Entry points
"""

from cryptmirror.sync.dispatcher import EventDispatcher, PendingOperations
from cryptmirror.sync.engine import build_transport, start_watcher
from cryptmirror.sync.initial import decrypt_tree, initial_pull
from cryptmirror.sync.locks import FileLock
from cryptmirror.sync.pipeline import UploadPipeline, verify_remote_file
from cryptmirror.sync.reconciler import BatchReconciler, sync_excludes
from cryptmirror.sync.retry import backoff_delay, retry_with_backoff
from cryptmirror.sync.scheduler import PRIORITY_KEYWORDS, WatchScheduler, determine_priority
from cryptmirror.sync.stability import wait_for_stable
from cryptmirror.sync.types import (
    EventKind,
    LockError,
    LockHeldError,
    Priority,
    RetryExhaustedError,
    VerificationError,
    WatchEvent,
)
from cryptmirror.sync.watcher import WatchdogSource, WatchSource

__all__ = [
    # Engine
    "build_transport",
    "initial_pull",
    "decrypt_tree",
    "start_watcher",
    # Dispatching
    "EventDispatcher",
    "PendingOperations",
    # Scheduling
    "PRIORITY_KEYWORDS",
    "WatchScheduler",
    "determine_priority",
    # Pipeline
    "UploadPipeline",
    "verify_remote_file",
    "wait_for_stable",
    # Reconciliation
    "BatchReconciler",
    "sync_excludes",
    # Locks
    "FileLock",
    # Retry
    "backoff_delay",
    "retry_with_backoff",
    # Watching
    "WatchSource",
    "WatchdogSource",
    # Types
    "EventKind",
    "LockError",
    "LockHeldError",
    "Priority",
    "RetryExhaustedError",
    "VerificationError",
    "WatchEvent",
]
