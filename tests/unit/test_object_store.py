"""Unit tests for the object stores.

Tests core/object_store.py. The S3 store is exercised against a stub
client exposing the calls it makes.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict

import pytest

from nervos.core.config import ServerConfig
from nervos.core.object_store import (
    FileObjectStore,
    MemoryObjectStore,
    S3ObjectStore,
    create_object_store,
)


class NoSuchKey(Exception):
    pass


class StubS3Client:
    """Stands in for a boto3 S3 client."""

    class exceptions:
        NoSuchKey = NoSuchKey

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.put_calls: list = []

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        if Key not in self.objects:
            raise NoSuchKey(Key)
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, **kwargs: Any) -> None:
        self.put_calls.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]


@pytest.mark.unit
class TestMemoryObjectStore:
    """Tests for MemoryObjectStore."""

    def test_missing_key_is_empty(self) -> None:
        assert MemoryObjectStore().get("nobody/_meta") == b""

    def test_put_get(self) -> None:
        store = MemoryObjectStore()
        store.put("u/0", b"data")
        assert store.get("u/0") == b"data"

    def test_put_replaces(self) -> None:
        store = MemoryObjectStore()
        store.put("u/0", b"one")
        store.put("u/0", b"two")
        assert store.get("u/0") == b"two"


@pytest.mark.unit
class TestFileObjectStore:
    """Tests for FileObjectStore."""

    def test_missing_key_is_empty(self, tmp_path: Path) -> None:
        assert FileObjectStore(tmp_path).get("nobody/_meta") == b""

    def test_put_get(self, tmp_path: Path) -> None:
        store = FileObjectStore(tmp_path / "store")
        store.put("abc/_meta", b"meta")
        store.put("abc/0", b"chunk")
        assert store.get("abc/_meta") == b"meta"
        assert store.get("abc/0") == b"chunk"
        assert (tmp_path / "store" / "abc" / "0").read_bytes() == b"chunk"

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        store = FileObjectStore(tmp_path)
        store.put("abc/0", b"one")
        store.put("abc/0", b"two")
        assert sorted(p.name for p in (tmp_path / "abc").iterdir()) == ["0"]

    def test_key_escaping_root_rejected(self, tmp_path: Path) -> None:
        store = FileObjectStore(tmp_path / "store")
        with pytest.raises(ValueError):
            store.put("../outside", b"x")
        with pytest.raises(ValueError):
            store.get("../../etc/passwd")


@pytest.mark.unit
class TestS3ObjectStore:
    """Tests for S3ObjectStore with a stub client."""

    def test_missing_key_is_empty(self) -> None:
        store = S3ObjectStore("bucket", client=StubS3Client())
        assert store.get("u/_meta") == b""

    def test_put_is_private(self) -> None:
        client = StubS3Client()
        store = S3ObjectStore("bucket", client=client)
        store.put("u/0", b"chunk")
        assert client.put_calls == [{"ACL": "private", "Bucket": "bucket", "Key": "u/0", "Body": b"chunk"}]
        assert store.get("u/0") == b"chunk"


@pytest.mark.unit
class TestCreateObjectStore:
    """Tests for create_object_store."""

    def test_memory(self) -> None:
        assert isinstance(create_object_store(ServerConfig(object_store="memory")), MemoryObjectStore)

    def test_file(self, tmp_path: Path) -> None:
        store = create_object_store(ServerConfig(object_store="file", data_dir=str(tmp_path)))
        assert isinstance(store, FileObjectStore)
        assert store.root == tmp_path.resolve()
