"""Tests for mailsync.storage."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from mailsync.config import S3Config
from mailsync.errors import StorageError
from mailsync.storage import S3Store


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(bucket="test-bucket", prefix="attachments", region="eu-west-1")


@pytest.fixture
def store(s3_config: S3Config) -> S3Store:
    return S3Store(s3_config)


class TestS3StoreLifecycle:
    async def test_start_creates_client(self, store: S3Store):
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await store.start()
            mock_boto3.client.assert_called_once_with("s3", region_name="eu-west-1")

    async def test_start_with_endpoint_url(self):
        store = S3Store(S3Config(bucket="b", endpoint_url="http://minio:9000"))
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await store.start()
            mock_boto3.client.assert_called_once_with(
                "s3", region_name="us-east-1", endpoint_url="http://minio:9000"
            )

    async def test_stop(self, store: S3Store):
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await store.start()
            await store.stop()
            assert store._client is None


class TestS3StoreUpload:
    async def test_upload_is_write_once(self, store: S3Store):
        mock_client = MagicMock()
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = mock_client
            await store.start()

            stored = await store.upload("attachments/u/2024/03/1-a.pdf", b"pdf", "application/pdf")

            assert stored.key == "attachments/u/2024/03/1-a.pdf"
            assert stored.url == "https://test-bucket.s3.eu-west-1.amazonaws.com/attachments/u/2024/03/1-a.pdf"
            mock_client.put_object.assert_called_once_with(
                Bucket="test-bucket",
                Key="attachments/u/2024/03/1-a.pdf",
                Body=b"pdf",
                ContentType="application/pdf",
                IfNoneMatch="*",
            )

    async def test_existing_key_is_storage_error(self, store: S3Store):
        mock_client = MagicMock()
        mock_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "PreconditionFailed", "Message": "At least one precondition failed"}},
            "PutObject",
        )
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = mock_client
            await store.start()

            with pytest.raises(StorageError, match="PreconditionFailed"):
                await store.upload("k", b"x", "text/plain")

    async def test_connection_failure_is_storage_error(self, store: S3Store):
        mock_client = MagicMock()
        mock_client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with patch("mailsync.storage.boto3") as mock_boto3:
            mock_boto3.client.return_value = mock_client
            await store.start()

            with pytest.raises(StorageError):
                await store.upload("k", b"x", "text/plain")


class TestPublicUrl:
    def test_public_base_url_wins(self):
        store = S3Store(S3Config(bucket="b", public_base_url="https://cdn.example.com/", endpoint_url="http://minio"))
        assert store.public_url("a/b.pdf") == "https://cdn.example.com/a/b.pdf"

    def test_custom_endpoint_uses_path_style(self):
        store = S3Store(S3Config(bucket="b", endpoint_url="http://minio:9000/"))
        assert store.public_url("a/b.pdf") == "http://minio:9000/b/a/b.pdf"

    def test_virtual_hosted_default(self, store: S3Store):
        assert store.public_url("k") == "https://test-bucket.s3.eu-west-1.amazonaws.com/k"
