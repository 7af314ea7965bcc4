"""
Storage abstraction for S3-compatible avatar storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config


def public_url(base_url: str, path: str, token: Optional[str] = None) -> str:
    """Build the public download URL for an object, with its access token if any."""
    url = f"{base_url.rstrip('/')}/o/{quote(path, safe='')}?alt=media"
    if token:
        url += f"&token={token}"
    return url


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(
        self, path: str, data: bytes, *, content_type: str, token: str
    ) -> str:
        ...

    def public_url(self, path: str, token: Optional[str] = None) -> str:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_bytes(
        self, path: str, data: bytes, *, content_type: str, token: str
    ) -> str:
        self.stored_objects[path] = {
            "data": data,
            "content_type": content_type,
            "token": token,
        }
        return self.public_url(path, token)

    def public_url(self, path: str, token: Optional[str] = None) -> str:
        return public_url(self.base_url, path, token)

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored["data"]

    def reset(self) -> None:
        self.stored_objects.clear()


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client. Objects carry their download token as metadata.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    base_url: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(
        self, path: str, data: bytes, *, content_type: str, token: str
    ) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
            Metadata={"download-token": token},
        )
        return self.public_url(path, token)

    def public_url(self, path: str, token: Optional[str] = None) -> str:
        return public_url(self.base_url, path, token)

    def get_bytes(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=path)
        return response["Body"].read()
