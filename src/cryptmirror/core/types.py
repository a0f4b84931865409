"""Shared types for cryptmirror.

This module defines the base exception and enums used across packages.
"""

from __future__ import annotations

from enum import Enum


class CryptMirrorError(Exception):
    """Base exception for cryptmirror errors."""


class ConfigError(CryptMirrorError):
    """Invalid or missing configuration. Fatal at startup."""


class SyncDirection(str, Enum):
    """Direction of a batch reconciliation."""

    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"
