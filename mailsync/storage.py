"""S3 object storage for materialized attachments.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import S3Config
from .errors import StorageError

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoredObject:
    url: str
    key: str


class S3Store:
    """Write-once uploads of attachment bytes plus public URL resolution."""

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]

    @property
    def prefix(self) -> str:
        return self._config.prefix

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("s3_store_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        """Clean up the boto3 client."""
        self._client = None
        logger.info("s3_store_stopped")

    def public_url(self, key: str) -> str:
        """Return the URL *key* is served from."""
        if self._config.public_base_url:
            return f"{self._config.public_base_url.rstrip('/')}/{key}"
        if self._config.endpoint_url:
            return f"{self._config.endpoint_url.rstrip('/')}/{self._config.bucket}/{key}"
        return f"https://{self._config.bucket}.s3.{self._config.region}.amazonaws.com/{key}"

    async def upload(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Upload *data* under *key*; an existing object at *key* is never replaced.

        Raises :class:`StorageError` on any S3 failure, including the
        precondition failure for a duplicate key.
        """
        assert self._client is not None, "S3 client not started"
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("attachment_upload_failed", key=key, error=str(exc))
            raise StorageError(f"Upload of {key} failed: {exc}") from exc

        url = self.public_url(key)
        logger.debug("attachment_uploaded", key=key, size=len(data))
        return StoredObject(url=url, key=key)
