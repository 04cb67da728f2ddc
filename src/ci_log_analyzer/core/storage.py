"""Where the index lives: a local file or an S3 object.

Backends only move bytes: ``read`` returns ``None`` when nothing is stored yet and
``write`` replaces the stored data atomically.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

S3_PREFIX = "s3://"
_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


class IndexStorage(Protocol):
    def read(self) -> bytes | None:
        """Return stored bytes, or None when absent."""
        ...

    def write(self, data: bytes) -> None:
        """Replace stored bytes atomically."""
        ...

    def stamp(self) -> object:
        """Cheap token that changes whenever the stored bytes are replaced (None when absent)."""
        ...


class FileSystemStorage:
    """Index stored in a local file, replaced via temp file + rename."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def __str__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        return f"FileSystemStorage({str(self.path)!r})"

    def read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    def stamp(self) -> tuple[int, int, int] | None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return st.st_ino, st.st_size, st.st_mtime_ns

    def write(self, data: bytes) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class S3Storage:
    """Index stored as a single S3 object.

    The client is created on first use in the bucket's own region unless one is
    passed in.
    """

    def __init__(self, bucket: str, key: str, *, client: Any | None = None) -> None:
        if not bucket or not key:
            raise ValueError("S3 storage needs both a bucket and a key")
        self.bucket = bucket
        self.key = key
        self._client = client

    def __str__(self) -> str:
        return f"{S3_PREFIX}{self.bucket}/{self.key}"

    def __repr__(self) -> str:
        return f"S3Storage({str(self)!r})"

    @property
    def client(self) -> Any:
        if self._client is None:
            lookup = boto3.client("s3")
            location = lookup.get_bucket_location(Bucket=self.bucket)
            # us-east-1 buckets report no location constraint.
            region = location.get("LocationConstraint") or "us-east-1"
            logger.info("Using S3 bucket %s in region %s", self.bucket, region)
            self._client = boto3.client("s3", region_name=region)
        return self._client

    def read(self) -> bytes | None:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if _error_code(e) in _MISSING_KEY_CODES:
                return None
            raise
        return response["Body"].read()

    def stamp(self) -> str | None:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if _error_code(e) in _MISSING_KEY_CODES:
                return None
            raise
        return response.get("ETag")

    def write(self, data: bytes) -> None:
        # A single PUT either fully replaces the object or leaves it untouched.
        self.client.put_object(Bucket=self.bucket, Key=self.key, Body=data)


def resolve_storage(location: str | Path) -> FileSystemStorage | S3Storage:
    """Build a storage backend from ``s3://bucket/key`` or a filesystem path."""
    text = str(location)
    if text.startswith(S3_PREFIX):
        bucket, sep, key = text[len(S3_PREFIX) :].partition("/")
        if not sep or not bucket or not key:
            raise ValueError(f"Invalid S3 url: {text} (expected s3://bucket/key)")
        return S3Storage(bucket, key)
    return FileSystemStorage(location)
