"""Object storage for uploaded receipts and documents (S3 / MinIO)."""

from __future__ import annotations

import asyncio
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from buck.config import Settings, get_settings
from buck.core.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored."""


class ObjectStorage(Protocol):
    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Store ``data`` under ``key`` and return a retrievable URL."""
        ...


class S3ObjectStorage:
    """boto3 client run in a worker thread so uploads never block the event loop."""

    def __init__(self, settings: Settings | None = None, client=None) -> None:
        self._settings = settings or get_settings()
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self._settings.s3_endpoint_url,
            aws_access_key_id=self._settings.s3_access_key,
            aws_secret_access_key=self._settings.s3_secret_key,
            region_name=self._settings.s3_region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )

    def public_url(self, key: str) -> str:
        base = self._settings.s3_public_base_url
        if base:
            return f"{base.rstrip('/')}/{key}"
        endpoint = (self._settings.s3_endpoint_url or "").rstrip("/")
        if endpoint:
            return f"{endpoint}/{self._settings.s3_bucket}/{key}"
        return f"https://{self._settings.s3_bucket}.s3.{self._settings.s3_region}.amazonaws.com/{key}"

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._settings.s3_bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("storage_upload_failed", key=key, error=str(e))
            raise StorageError(f"Upload of '{key}' failed: {e}") from e

        logger.info("storage_upload_done", key=key, size=len(data))
        return self.public_url(key)
