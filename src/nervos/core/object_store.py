"""Object stores backing the sync server.

All durable server state lives in an object store with get/put-by-key
semantics and no compare-and-swap:

    {userHash}/_meta          serialized Metadata
    {userHash}/{chunkIndex}   serialized item batch

A missing key reads as empty bytes.

CRITICAL: This module must have NO UI dependencies.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from .config import ServerConfig

logger = logging.getLogger(__name__)

__all__ = [
    "ObjectStore",
    "MemoryObjectStore",
    "FileObjectStore",
    "S3ObjectStore",
    "create_object_store",
]


class ObjectStore:
    """Interface of a durable key/value object store."""

    def get(self, key: str) -> bytes:
        """Read an object, returning b"" when the key does not exist."""
        raise NotImplementedError

    def put(self, key: str, data: bytes) -> None:
        """Write an object, replacing any previous value."""
        raise NotImplementedError


class MemoryObjectStore(ObjectStore):
    """Process-local store for tests and development servers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.objects: Dict[str, bytes] = {}

    def get(self, key: str) -> bytes:
        with self._lock:
            return self.objects.get(key, b"")

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self.objects[key] = bytes(data)


class FileObjectStore(ObjectStore):
    """Stores each object as a file below a root directory."""

    def __init__(self, root: Union[Path, str]) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"File object store at {self.root}")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Object key escapes store root: {key}")
        return path

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return b""

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Readers never observe a partially written object
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class S3ObjectStore(ObjectStore):
    """Stores objects in an S3 bucket with private ACLs."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client: Optional[object] = None,
    ) -> None:
        """Initialize the S3 store.

        Args:
            bucket: Bucket name
            region: Bucket region
            access_key: Static access key (None uses the boto3 credential chain)
            secret_key: Static secret key
            client: Preconfigured S3 client

        Raises:
            ImportError: If boto3 is not installed
        """
        if client is None:
            try:
                import boto3
            except ImportError:
                raise ImportError(
                    "The 'boto3' package is required for the S3 object store. "
                    "Install it with: pip install 'nervos[s3]'"
                )
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
            )
        self.bucket = bucket
        self.client = client
        logger.info(f"S3 object store on bucket {bucket} ({region})")

    def get(self, key: str) -> bytes:
        try:
            result = self.client.get_object(Bucket=self.bucket, Key=key)
        except self.client.exceptions.NoSuchKey:
            return b""
        body = result["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def put(self, key: str, data: bytes) -> None:
        self.client.put_object(ACL="private", Bucket=self.bucket, Key=key, Body=data)


def create_object_store(config: ServerConfig) -> ObjectStore:
    """Build the object store selected by the server config."""
    if config.object_store == "s3":
        return S3ObjectStore(
            config.s3_bucket,
            region=config.aws_region,
            access_key=config.aws_access_key,
            secret_key=config.aws_secret_key,
        )
    if config.object_store == "memory":
        logger.warning("Using in-memory object store; data is lost on restart")
        return MemoryObjectStore()
    return FileObjectStore(config.data_dir)
