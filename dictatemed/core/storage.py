"""
S3-compatible object storage.

Clients upload and download file bytes directly through pre-signed URLs; the
server only reads objects back for text extraction and deletes them when the
owning row is removed. boto3 calls that hit the network run in a worker
thread so they do not block the event loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dictatemed.core.errors import ExternalServiceError
from dictatemed.core.logging_config import get_logger
from dictatemed.server.core.config import StorageConfig, settings

logger = get_logger(__name__)

STORAGE_SERVICE = "object-storage"


class ObjectStorage:
    """Thin wrapper over a boto3 S3 client bound to one bucket."""

    def __init__(self, config: StorageConfig, client=None) -> None:
        self.config = config
        self.bucket = config.bucket_name
        self._client = client or boto3.client(
            "s3",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
        )

    def get_upload_url(self, key: str, content_type: str, expires_in: Optional[int] = None) -> Tuple[str, datetime]:
        """Pre-signed PUT URL for ``key``.

        Returns:
            Tuple of (url, expiry time in UTC)
        """
        expires_in = expires_in or self.config.upload_url_expiry_seconds
        url = self._client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in,
        )
        return url, datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    def get_download_url(self, key: str, expires_in: Optional[int] = None) -> Tuple[str, datetime]:
        """Pre-signed GET URL for ``key``."""
        expires_in = expires_in or self.config.download_url_expiry_seconds
        url = self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )
        return url, datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    async def get_object_bytes(self, key: str) -> bytes:
        def _read() -> bytes:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_read)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to read s3://{self.bucket}/{key}: {e}")
            raise ExternalServiceError(STORAGE_SERVICE, f"could not read object {key}") from e

    async def delete_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete s3://{self.bucket}/{key}: {e}")
            raise ExternalServiceError(STORAGE_SERVICE, f"could not delete object {key}") from e
        logger.debug(f"Deleted s3://{self.bucket}/{key}")


_storage: Optional[ObjectStorage] = None


def get_object_storage() -> ObjectStorage:
    """FastAPI dependency returning the process-wide storage client."""
    global _storage
    if _storage is None:
        _storage = ObjectStorage(settings.storage)
    return _storage
