"""S3-compatible object store transport (AWS, Backblaze B2, MinIO, GCS interop)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptmirror.core.types import SyncDirection
from cryptmirror.remote.base import (
    CommandResult,
    NotFoundError,
    Transport,
    TransportError,
    is_excluded,
    walk_local_files,
)

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class S3Transport(Transport):
    """Transport that mirrors the watched tree under a bucket prefix."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "Watched_folder",
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
    ) -> None:
        """Initialize S3 transport.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix that mirrors the watched root.
            endpoint_url: Custom endpoint URL (for B2, MinIO, etc.).
            access_key: Access key ID.
            secret_key: Secret access key.
            region: Region (default: us-east-1).
        """
        import boto3

        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._endpoint_url = endpoint_url
        self._client: Any = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @property
    def location(self) -> str:
        """Return the S3 bucket location."""
        if self._endpoint_url:
            return f"S3: {self._endpoint_url}/{self._bucket}/{self._prefix}"
        return f"S3: s3://{self._bucket}/{self._prefix}"

    @property
    def remote_root(self) -> str:
        """Key prefix of the mirrored tree."""
        return self._prefix

    def remote_path(self, rel_path: str) -> str:
        """Build the object key for a forward-slash relative path."""
        return f"{self._prefix}/{rel_path.lstrip('/')}"

    def _objects(self, prefix: str) -> dict[str, int]:
        """Map keys under prefix (relative to it) to their sizes."""
        from botocore.exceptions import BotoCoreError, ClientError

        prefix = prefix.strip("/")
        objects: dict[str, int] = {}
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=f"{prefix}/"):
                for obj in page.get("Contents", []):
                    objects[obj["Key"][len(prefix) + 1 :]] = obj["Size"]
        except ClientError as e:
            if e.response["Error"]["Code"] == "NoSuchBucket":
                raise NotFoundError(f"Bucket not found: {self._bucket}") from e
            raise TransportError(f"List {prefix} failed: {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"List {prefix} failed: {e}") from e
        return objects

    def bulk_sync(
        self,
        direction: SyncDirection,
        local_root: Path,
        remote_root: str,
        excludes: list[str],
    ) -> CommandResult:
        """Mirror by comparing sizes and transferring the differences."""
        from botocore.exceptions import BotoCoreError, ClientError

        local_root = Path(local_root)
        remote_root = remote_root.strip("/")
        local_files = walk_local_files(local_root, excludes)
        remote_files = {
            rel: size
            for rel, size in self._objects(remote_root).items()
            if not is_excluded(rel, excludes)
        }

        transferred = 0
        deleted = 0
        try:
            if direction == SyncDirection.LOCAL_TO_REMOTE:
                for rel, size in local_files.items():
                    if remote_files.get(rel) != size:
                        self._client.upload_file(
                            str(local_root / rel), self._bucket, f"{remote_root}/{rel}"
                        )
                        transferred += 1
                for rel in set(remote_files) - set(local_files):
                    self._client.delete_object(Bucket=self._bucket, Key=f"{remote_root}/{rel}")
                    deleted += 1
            else:
                for rel, size in remote_files.items():
                    if local_files.get(rel) != size:
                        target = local_root / rel
                        target.parent.mkdir(parents=True, exist_ok=True)
                        self._client.download_file(
                            self._bucket, f"{remote_root}/{rel}", str(target)
                        )
                        transferred += 1
                for rel in set(local_files) - set(remote_files):
                    (local_root / rel).unlink(missing_ok=True)
                    deleted += 1
        except (BotoCoreError, ClientError, OSError) as e:
            raise TransportError(f"Bulk sync {direction.value} failed: {e}") from e

        return CommandResult(stdout=f"Transferred: {transferred} files, Deleted: {deleted}")

    def copy_one(self, local_path: Path, remote_path: str) -> CommandResult:
        """Upload a single object."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.upload_file(str(local_path), self._bucket, remote_path)
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {local_path}") from e
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Upload {remote_path} failed: {e}") from e
        return CommandResult(stdout=f"Transferred: 1 file ({remote_path})")

    def list_files(
        self,
        root: str,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> list[str]:
        """List object keys under root, relative to it.

        Object stores have no directories, so an empty prefix is reported
        as not found.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        root = root.strip("/")
        try:
            self._client.head_object(Bucket=self._bucket, Key=root)
            return [root.rsplit("/", 1)[-1]]
        except ClientError as e:
            if e.response["Error"]["Code"] not in ("404", "NoSuchKey", "NotFound"):
                raise TransportError(f"Head {root} failed: {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"Head {root} failed: {e}") from e

        files = []
        for rel in self._objects(root):
            depth = rel.count("/") + 1
            if not recursive and depth > 1:
                continue
            if max_depth is not None and depth > max_depth:
                continue
            files.append(rel)
        if not files:
            raise NotFoundError(f"directory not found: {root}")
        return sorted(files)

    def check(self) -> None:
        """Check the bucket is reachable."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.head_bucket(Bucket=self._bucket)
        except (BotoCoreError, ClientError) as e:
            raise TransportError(f"Cannot reach bucket {self._bucket}: {e}") from e
