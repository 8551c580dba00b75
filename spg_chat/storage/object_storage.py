"""
Binary object storage for chat media.

S3ObjectStorage talks to any S3-compatible bucket (AWS, Cloudflare R2, MinIO)
and serves objects from a public URL prefix. InMemoryObjectStorage keeps
bytes in a dict for tests and local development.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from spg_chat.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ObjectStorageError(Exception):
    """Upload or lookup against the object store failed."""


class ObjectStorage(Protocol):
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None: ...
    def get_public_url(self, key: str) -> str: ...


def _public_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{quote(key)}"


class S3ObjectStorage:
    def __init__(
        self,
        bucket: str,
        public_url: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.public_url = public_url
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                service_name="s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=Config(signature_version="s3v4"),
            )
        self._client = client

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or DEFAULT_CONTENT_TYPE,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStorageError(f"Upload of {key} failed: {e}") from e

    def get_public_url(self, key: str) -> str:
        return _public_url(self.public_url, key)


@dataclass(frozen=True)
class StoredObject:
    data: bytes
    content_type: str


class InMemoryObjectStorage:
    def __init__(self, public_url: str = "memory://chat-media") -> None:
        self.public_url = public_url
        self._objects: Dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        with self._lock:
            self._objects[key] = StoredObject(
                data=bytes(data), content_type=content_type or DEFAULT_CONTENT_TYPE
            )

    def get_public_url(self, key: str) -> str:
        return _public_url(self.public_url, key)

    def get(self, key: str) -> Optional[StoredObject]:
        with self._lock:
            return self._objects.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


def build_object_storage(settings: Optional[Settings] = None) -> ObjectStorage:
    settings = settings or get_settings()
    backend = settings.storage_backend.lower()
    if backend == "s3":
        return S3ObjectStorage(
            bucket=settings.s3_bucket,
            public_url=settings.s3_public_url,
            endpoint_url=settings.s3_endpoint_url,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
    if backend == "memory":
        return InMemoryObjectStorage(public_url=settings.s3_public_url)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
