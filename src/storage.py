"""Durable object storage module.

All boto3 S3 usage is isolated here. Every store exposes a single
put(key, body, content_type) that either publishes the whole object or
raises StorageError.
"""

import logging
import os
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import StorageConfig


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a local or durable read/write fails."""
    pass


class S3ObjectStore:
    """Publishes objects to an S3 bucket.

    A single PutObject is atomic: readers see either the previous object or
    the new one, never a partial body.
    """

    def __init__(self, bucket: str, prefix: str = "", client: Any = None) -> None:
        """Initialize the store.

        Args:
            bucket: Target bucket name
            prefix: Optional key prefix prepended to every key
            client: Pre-built S3 client (defaults to boto3.client("s3"))
        """
        self._bucket = bucket
        self._prefix = prefix
        self._client = client if client is not None else boto3.client("s3")

    def put(self, key: str, body: bytes, content_type: str) -> None:
        full_key = f"{self._prefix}{key}"
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=full_key,
                Body=body,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(
                f"Failed to put s3://{self._bucket}/{full_key}: {e}"
            ) from e
        logger.debug(f"Put s3://{self._bucket}/{full_key} ({len(body)} bytes)")


class LocalObjectStore:
    """Publishes objects as files under a root directory.

    Writes to a temp file first, then uses os.replace() for atomic rename.
    """

    def __init__(self, root: str) -> None:
        self._root = root

    def put(self, key: str, body: bytes, content_type: str) -> None:
        path = os.path.join(self._root, *key.split("/"))
        tmp_path = f"{path}.tmp"

        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(body)
            os.replace(tmp_path, path)
        except OSError as e:
            # Clean up temp file on error
            try:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
            except OSError:
                pass
            raise StorageError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Wrote {path} ({len(body)} bytes, {content_type})")


def build_object_store(storage: StorageConfig, client: Optional[Any] = None) -> Any:
    """Construct the object store selected by configuration.

    Args:
        storage: Storage configuration section
        client: Optional pre-built S3 client

    Returns:
        S3ObjectStore or LocalObjectStore
    """
    if storage.backend == "s3":
        return S3ObjectStore(storage.bucket, storage.prefix, client=client)
    return LocalObjectStore(storage.path)
