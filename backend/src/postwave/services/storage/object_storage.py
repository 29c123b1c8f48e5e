"""Object storage client for generated videos and uploaded input images.

Talks to any S3-compatible endpoint through boto3. By default this is the Cloud
Storage interoperability endpoint, so locations are expressed as
``gs://<bucket>/<key>``, the same URIs the synthesis provider reads and writes.
boto3 is synchronous; every call runs in a worker thread.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from postwave.core.timezone import to_naive_utc
from postwave.services.exceptions import (
    StorageAccessError,
    StorageObjectNotFoundError,
    StorageUnavailableError,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """Listing entry for one object."""

    key: str
    location: str
    created_at: datetime  # naive UTC
    size: int | None = None


@dataclass(frozen=True)
class ObjectMetadata:
    size: int
    content_type: str


class ObjectStorageClient:
    """Async facade over a single bucket."""

    def __init__(
        self,
        bucket: str,
        uri_scheme: str = "gs",
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
        client: Any = None,
    ):
        """Initialize storage client.

        Args:
            bucket: Bucket holding generated videos and input images
            uri_scheme: Scheme used in location URIs (``gs`` or ``s3``)
            endpoint_url: S3-compatible endpoint (None for AWS)
            access_key_id: HMAC access key
            secret_access_key: HMAC secret
            region: Region name for request signing
            client: Pre-built boto3 S3 client (overrides the connection arguments)
        """
        self.bucket = bucket
        self.uri_scheme = uri_scheme
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    def location_for(self, key: str) -> str:
        """Build the location URI for a key in this bucket."""
        return f"{self.uri_scheme}://{self.bucket}/{key}"

    def key_for(self, location: str) -> str:
        """Extract the object key from a location URI.

        Raises:
            StorageAccessError: If the location points outside this bucket
        """
        prefix = f"{self.uri_scheme}://{self.bucket}/"
        if not location.startswith(prefix) or len(location) == len(prefix):
            raise StorageAccessError(f"Location {location!r} is not inside bucket {self.bucket!r}")
        return location[len(prefix) :]

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Upload raw bytes and return the object's location URI."""

        def _put_object() -> None:
            self._client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )

        await self._call(_put_object, key)
        logger.info("storage.uploaded", key=key, size=len(data), content_type=content_type)
        return self.location_for(key)

    async def list_objects(self, prefix: str) -> list[StoredObject]:
        """List every object under ``prefix`` with its creation timestamp."""

        def _list() -> list[StoredObject]:
            paginator = self._client.get_paginator("list_objects_v2")
            objects = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for entry in page.get("Contents", []):
                    objects.append(
                        StoredObject(
                            key=entry["Key"],
                            location=self.location_for(entry["Key"]),
                            created_at=to_naive_utc(entry["LastModified"]),
                            size=entry.get("Size"),
                        )
                    )
            return objects

        return await self._call(_list, prefix)

    async def get_metadata(self, location: str) -> ObjectMetadata:
        """Resolve size and content type of an object."""
        key = self.key_for(location)

        def _head() -> ObjectMetadata:
            head = self._client.head_object(Bucket=self.bucket, Key=key)
            return ObjectMetadata(
                size=int(head.get("ContentLength", 0)),
                content_type=head.get("ContentType") or "application/octet-stream",
            )

        return await self._call(_head, key)

    async def get_signed_read_url(self, location: str, ttl_seconds: int) -> str:
        """Generate a time-limited signed URL for reading an object."""
        key = self.key_for(location)

        def _sign() -> str:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )

        return await self._call(_sign, key)

    async def delete(self, location: str) -> None:
        """Delete an object."""
        key = self.key_for(location)

        def _delete() -> None:
            self._client.delete_object(Bucket=self.bucket, Key=key)

        await self._call(_delete, key)
        logger.info("storage.deleted", key=key)

    async def _call(self, func, key: str):
        try:
            return await asyncio.to_thread(func)
        except ClientError as e:
            raise _classify_client_error(e, key) from e
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Storage unreachable for {key}: {e}") from e


def _classify_client_error(error: ClientError, key: str) -> Exception:
    """Map a botocore ClientError onto the storage error hierarchy."""
    code = str(error.response.get("Error", {}).get("Code", ""))
    http_status = int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))

    if code in ("NoSuchKey", "404", "NotFound") or http_status == 404:
        return StorageObjectNotFoundError(f"Object not found: {key}")
    if code in ("AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch") or http_status in (
        401,
        403,
    ):
        return StorageAccessError(f"Access denied for {key}: {code or http_status}")
    return StorageUnavailableError(f"Storage error for {key}: {code or http_status}")
