import io

import pytest
from botocore.exceptions import ClientError

from relay_worker.config import Settings
from relay_worker.errors import ConfigurationError
from relay_worker.infrastructure.object_storage import (
    InMemoryObjectStorage, S3ObjectStorage, build_object_storage, is_sanitized_key, raw_key_for, sanitized_key,
)


def test_sanitized_key_is_deterministic_sibling():
    assert sanitized_key("replays/p/r/0.json") == "replays/p/r/0.sanitized.json"
    assert sanitized_key("replays/p/r/0.sanitized.json") == "replays/p/r/0.sanitized.json"
    assert sanitized_key("blob") == "blob.sanitized"
    assert raw_key_for("replays/p/r/0.sanitized.json") == "replays/p/r/0.json"
    assert is_sanitized_key("x.sanitized.json") and not is_sanitized_key("x.json")


def test_in_memory_delete_many_batches_and_dedupes():
    storage = InMemoryObjectStorage()
    for i in range(5):
        storage.put(f"k{i}", b"x")
    result = storage.delete_many(["k0", "k1", "k1", "k2", "", "k3"], batch_size=2)
    assert result == {"requested": 4, "deleted": 4, "failed_batches": 0}
    assert storage.keys() == ["k4"]


class FakeS3:
    def __init__(self):
        self.objects = {}
        self.delete_calls = []

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body

    def delete_objects(self, Bucket, Delete):
        keys = [o["Key"] for o in Delete["Objects"]]
        self.delete_calls.append(keys)
        if "locked" in keys:
            return {"Errors": [{"Key": "locked", "Code": "AccessDenied"}]}
        for k in keys:
            self.objects.pop(k, None)
        return {}

    def close(self):
        pass


def test_s3_storage_get_put_and_missing_key():
    s3 = S3ObjectStorage("bucket", client=FakeS3())
    assert s3.get("absent.json") is None
    s3.put("a.json", b"[]")
    assert s3.get("a.json") == b"[]"


def test_s3_partial_batch_failure_continues():
    client = FakeS3()
    s3 = S3ObjectStorage("bucket", client=client)
    for k in ("a", "b", "c", "d"):
        s3.put(k, b"1")
    result = s3.delete_many(["a", "locked", "c", "d"], batch_size=2)
    assert result == {"requested": 4, "deleted": 2, "failed_batches": 1}
    assert len(client.delete_calls) == 2
    assert "c" not in client.objects and "d" not in client.objects


def test_build_object_storage():
    assert isinstance(build_object_storage(Settings(OBJECT_STORAGE_BACKEND="memory")), InMemoryObjectStorage)
    with pytest.raises(ConfigurationError):
        build_object_storage(Settings(OBJECT_STORAGE_BACKEND="ftp"))
