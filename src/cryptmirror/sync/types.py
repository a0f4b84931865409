"""Shared types for the watch-and-sync engine.

This module provides:
- EventKind, WatchEvent: Raw filesystem notifications
- Priority: Watch registration tiers
- LockError, LockHeldError, VerificationError, RetryExhaustedError: Exceptions
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from cryptmirror.core.types import CryptMirrorError


class EventKind(Enum):
    """Kind of filesystem change."""

    CREATE = "create"
    WRITE = "write"
    CHMOD = "chmod"
    REMOVE = "remove"
    RENAME = "rename"

    @property
    def is_removal(self) -> bool:
        """True for events after which the path no longer exists."""
        return self in (EventKind.REMOVE, EventKind.RENAME)


@dataclass
class WatchEvent:
    """A raw notification from the watch source."""

    path: str
    kind: EventKind
    timestamp: float = field(default_factory=time.time)


class Priority(IntEnum):
    """Watch registration tier.

    Non-positive values are not watched. EXCLUDED_SUBTREE additionally
    tells the initial walk to skip everything below the directory.
    """

    EXCLUDED_SUBTREE = -1
    EXCLUDED = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3

    @property
    def is_watched(self) -> bool:
        """True for the three queue tiers."""
        return self > 0


class LockError(CryptMirrorError):
    """A lock marker could not be created or removed."""


class LockHeldError(LockError):
    """The lock is currently held by another holder."""


class VerificationError(CryptMirrorError):
    """A transfer completed but its result could not be confirmed."""


class RetryExhaustedError(CryptMirrorError):
    """An operation kept failing after every allowed attempt.

    Attributes:
        attempts: Number of attempts made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
