"""Blob storage abstraction for sync records.

This module provides:
- Abstract key/value interface for blob storage
- LocalFSStorage for development/testing
- S3Storage for production (Cloudflare R2, AWS, MinIO)

Keys are slash-separated strings such as ``users/<id>/data.json``.
No versioning is assumed from the backend; ordering of writes is enforced
one layer up by the record repository.
"""

from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BlobNotFoundError(Exception):
    """Raised when a blob is not found in storage."""


class BlobStore(ABC):
    """Abstract interface for blob storage."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where blobs are stored."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store a blob, replacing any previous value.

        Args:
            key: Blob key.
            data: Blob content.
        """

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Retrieve a blob.

        Args:
            key: Blob key.

        Returns:
            Blob content.

        Raises:
            BlobNotFoundError: If blob doesn't exist.
        """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a blob exists in storage."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a blob from storage.

        Returns:
            True if blob was deleted, False if it didn't exist.
        """


def _validate_key(key: str) -> PurePosixPath:
    """Reject keys that could escape the storage root."""
    path = PurePosixPath(key)
    if not key or path.is_absolute() or ".." in path.parts:
        raise ValueError(f"Invalid blob key: {key!r}")
    return path


class LocalFSStorage(BlobStore):
    """Local filesystem storage for development and testing.

    Each key maps to a file below the base directory. Writes go to a
    temporary file first and are moved into place, so readers never see
    a partially written blob.
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for blob storage.
        """
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _blob_path(self, key: str) -> Path:
        return self._base_path.joinpath(*_validate_key(key).parts)

    def put(self, key: str, data: bytes) -> None:
        """Store a blob atomically."""
        path = self._blob_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> bytes:
        """Retrieve a blob."""
        path = self._blob_path(key)
        if not path.exists():
            raise BlobNotFoundError(f"Blob not found: {key}")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        """Check if a blob exists."""
        return self._blob_path(key).exists()

    def delete(self, key: str) -> bool:
        """Delete a blob."""
        path = self._blob_path(key)
        if path.exists():
            path.unlink()
            return True
        return False


class S3Storage(BlobStore):
    """S3-compatible storage for production (R2, AWS, MinIO, etc.)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "auto",
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: S3 bucket name.
            endpoint_url: Custom endpoint URL (for R2, MinIO, etc.).
            access_key: Access key ID.
            secret_key: Secret access key.
            region: Region name (R2 uses "auto").
        """
        import boto3

        self._bucket = bucket
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
            return f"S3: {self._endpoint_url}/{self._bucket}"
        return f"S3: s3://{self._bucket}"

    def put(self, key: str, data: bytes) -> None:
        """Store a blob."""
        self._client.put_object(
            Bucket=self._bucket,
            Key=str(_validate_key(key)),
            Body=data,
            ContentType="application/json",
        )

    def get(self, key: str) -> bytes:
        """Retrieve a blob."""
        from botocore.exceptions import ClientError

        try:
            response = self._client.get_object(
                Bucket=self._bucket,
                Key=str(_validate_key(key)),
            )
            body: bytes = response["Body"].read()
            return body
        except ClientError as e:
            if e.response["Error"]["Code"] == "NoSuchKey":
                raise BlobNotFoundError(f"Blob not found: {key}") from e
            raise

    def exists(self, key: str) -> bool:
        """Check if a blob exists."""
        from botocore.exceptions import ClientError

        try:
            self._client.head_object(
                Bucket=self._bucket,
                Key=str(_validate_key(key)),
            )
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> bool:
        """Delete a blob."""
        if not self.exists(key):
            return False
        self._client.delete_object(
            Bucket=self._bucket,
            Key=str(_validate_key(key)),
        )
        return True


def create_storage(config: dict[str, str | None]) -> BlobStore | None:
    """Factory function to create storage from configuration.

    Args:
        config: Storage configuration dict with keys:
            - type: "local", "s3" or "none"
            - For local: local_path
            - For S3: bucket, endpoint_url, access_key, secret_key, region

    Returns:
        Configured BlobStore instance, or None when storage is disabled.

    Raises:
        ValueError: If storage type is unknown or S3 has no bucket.
    """
    storage_type = config.get("type") or "local"

    if storage_type == "none":
        return None

    if storage_type == "local":
        local_path = config.get("local_path") or "./storage"
        return LocalFSStorage(local_path)

    if storage_type == "s3":
        bucket = config.get("bucket")
        if not bucket:
            raise ValueError("S3 storage requires 'bucket' configuration")
        return S3Storage(
            bucket=bucket,
            endpoint_url=config.get("endpoint_url"),
            access_key=config.get("access_key"),
            secret_key=config.get("secret_key"),
            region=config.get("region") or "auto",
        )

    raise ValueError(f"Unknown storage type: {storage_type}")
