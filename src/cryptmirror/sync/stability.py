"""Write-stability detection.

A file is considered stable once its size is unchanged across two
consecutive polls. Detection is best-effort: after a bounded number of
polls the caller proceeds anyway rather than blocking forever.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

STABLE_INTERVAL = 2.0  # seconds between size polls
STABLE_TRIES = 3
STABLE_POLLS_REQUIRED = 2


def wait_for_stable(
    path: Path | str,
    interval: float = STABLE_INTERVAL,
    tries: int = STABLE_TRIES,
    cancel: threading.Event | None = None,
) -> bool:
    """Wait until the size of path stops changing.

    Args:
        path: File to watch.
        interval: Seconds between polls.
        tries: Polls are capped at tries * 3.
        cancel: Optional event that interrupts the wait.

    Returns:
        True if the file was seen stable, False if the poll ceiling was
        reached (or the wait was cancelled) first.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    cancel = cancel or threading.Event()
    last_size = -1
    stable_count = 0

    for _ in range(tries * 3):
        size = os.stat(path).st_size
        if size == last_size:
            stable_count += 1
            if stable_count >= STABLE_POLLS_REQUIRED:
                return True
        else:
            stable_count = 0
            last_size = size

        if cancel.wait(interval):
            return False

    logger.debug("%s still changing after %d polls, proceeding", path, tries * 3)
    return False
