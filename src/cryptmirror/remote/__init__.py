"""Remote transports - where the encrypted mirror lives.

- RcloneTransport: any rclone remote, via the rclone CLI
- S3Transport: S3-compatible object stores, via boto3
- LocalTransport: a plain directory (NAS mounts, tests)
"""

from cryptmirror.remote.base import (
    CommandResult,
    NotFoundError,
    Transport,
    TransportError,
    TransportTimeoutError,
    create_transport,
)
from cryptmirror.remote.local import LocalTransport
from cryptmirror.remote.rclone import RcloneTransport

__all__ = [
    "CommandResult",
    "LocalTransport",
    "NotFoundError",
    "RcloneTransport",
    "Transport",
    "TransportError",
    "TransportTimeoutError",
    "create_transport",
]
