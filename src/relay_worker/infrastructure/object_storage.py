"""Blob storage for replay chunks and media.

Three operations only: get (None when the key is absent), put, and best-effort batched delete.
Sanitized replay chunks live next to their raw chunk under a deterministic sibling key.
"""
from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable
import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectionError as BotoConnectionError, ReadTimeoutError
from prometheus_client import Counter
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from relay_worker.config import Settings
from relay_worker.errors import ConfigurationError
from relay_worker.utils import batched

logger = logging.getLogger(__name__)

STORAGE_OPS = Counter('object_storage_operations_total', 'Object storage calls', ['op', 'result'])
STORAGE_KEYS_DELETED = Counter('object_storage_keys_deleted_total', 'Keys removed by batched deletes')

SANITIZED_SUFFIX = ".sanitized"
S3_DELETE_LIMIT = 1000

_TRANSIENT = (BotoConnectionError, ReadTimeoutError)


def sanitized_key(raw_key: str) -> str:
    """Sibling key holding the redacted copy of a raw chunk (same path, distinguishing suffix)."""
    if is_sanitized_key(raw_key):
        return raw_key
    if raw_key.endswith(".json"):
        return raw_key[: -len(".json")] + SANITIZED_SUFFIX + ".json"
    return raw_key + SANITIZED_SUFFIX


def is_sanitized_key(key: str) -> bool:
    return key.endswith(SANITIZED_SUFFIX + ".json") or key.endswith(SANITIZED_SUFFIX)


def raw_key_for(key: str) -> str:
    if key.endswith(SANITIZED_SUFFIX + ".json"):
        return key[: -len(SANITIZED_SUFFIX + ".json")] + ".json"
    if key.endswith(SANITIZED_SUFFIX):
        return key[: -len(SANITIZED_SUFFIX)]
    return key


class ObjectStorage(ABC):
    @abstractmethod
    def get(self, key: str) -> bytes | None:
        ...

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/json") -> None:
        ...

    @abstractmethod
    def _delete_batch(self, keys: list[str]) -> None:
        ...

    def delete_many(self, keys: Iterable[str], batch_size: int = S3_DELETE_LIMIT) -> dict:
        """Delete keys in batches; a failing batch is logged and the remaining batches still run."""
        unique = list(dict.fromkeys(k for k in keys if k))
        deleted = 0
        failed_batches = 0
        for batch in batched(unique, max(1, min(batch_size, S3_DELETE_LIMIT))):
            try:
                self._delete_batch(batch)
                deleted += len(batch)
                STORAGE_OPS.labels(op='delete', result='ok').inc()
            except Exception as e:  # noqa: BLE001 - one bad batch must not stop the rest
                failed_batches += 1
                STORAGE_OPS.labels(op='delete', result='error').inc()
                logger.warning("object storage batch delete failed (%d keys): %s", len(batch), e)
        STORAGE_KEYS_DELETED.inc(deleted)
        return {"requested": len(unique), "deleted": deleted, "failed_batches": failed_batches}

    def close(self) -> None:
        pass


class S3ObjectStorage(ObjectStorage):
    def __init__(self, bucket: str, client=None, **client_kwargs):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            **client_kwargs,
        )

    @retry(retry=retry_if_exception_type(_TRANSIENT), stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=5), reraise=True)
    def get(self, key: str) -> bytes | None:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = (e.response.get("Error") or {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                STORAGE_OPS.labels(op='get', result='missing').inc()
                return None
            STORAGE_OPS.labels(op='get', result='error').inc()
            raise
        STORAGE_OPS.labels(op='get', result='ok').inc()
        return resp["Body"].read()

    @retry(retry=retry_if_exception_type(_TRANSIENT), stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.5, max=5), reraise=True)
    def put(self, key: str, data: bytes, content_type: str = "application/json") -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        STORAGE_OPS.labels(op='put', result='ok').inc()

    def _delete_batch(self, keys: list[str]) -> None:
        resp = self.client.delete_objects(
            Bucket=self.bucket,
            Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
        )
        errors = resp.get("Errors") or []
        if errors:
            raise RuntimeError(f"{len(errors)} keys not deleted, first: {errors[0].get('Code')}")

    def close(self) -> None:
        try:
            self.client.close()
        except (AttributeError, BotoCoreError):
            pass


class InMemoryObjectStorage(ObjectStorage):
    """Process-local storage used for local development and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._objects: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._objects.get(key)

    def put(self, key: str, data: bytes, content_type: str = "application/json") -> None:
        with self._lock:
            self._objects[key] = bytes(data)

    def _delete_batch(self, keys: list[str]) -> None:
        with self._lock:
            for k in keys:
                self._objects.pop(k, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


def build_object_storage(settings: Settings) -> ObjectStorage:
    backend = (settings.object_storage_backend or "s3").lower()
    if backend == "memory":
        return InMemoryObjectStorage()
    if backend != "s3":
        raise ConfigurationError(f"unknown object storage backend: {backend}")
    return S3ObjectStorage(
        settings.s3_bucket,
        endpoint_url=settings.s3_endpoint,
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )
