"""
Unit tests for the object storage wrapper.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from dictatemed.core import storage as storage_module
from dictatemed.core.errors import ExternalServiceError
from dictatemed.core.storage import ObjectStorage, get_object_storage


class TestPresignedUrls:
    def test_upload_url(self, storage, s3_client):
        url, expires_at = storage.get_upload_url("referrals/u1/r1.pdf", "application/pdf")

        assert url == f"http://mock-s3/{storage.bucket}/referrals/u1/r1.pdf?op=put_object&expires=900"
        remaining = expires_at - datetime.now(timezone.utc)
        assert timedelta(seconds=890) < remaining <= timedelta(seconds=900)

    def test_download_url_with_custom_expiry(self, storage):
        url, _ = storage.get_download_url("recordings/u1/r1.webm", expires_in=60)

        assert url.endswith("?op=get_object&expires=60")


class TestObjectAccess:
    @pytest.mark.asyncio
    async def test_read_bytes(self, storage, s3_client):
        s3_client.objects["documents/d1.txt"] = b"LVEF 55%"

        assert await storage.get_object_bytes("documents/d1.txt") == b"LVEF 55%"

    @pytest.mark.asyncio
    async def test_missing_object(self, storage):
        with pytest.raises(ExternalServiceError) as exc_info:
            await storage.get_object_bytes("documents/missing.txt")

        assert exc_info.value.service == "object-storage"
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_delete(self, storage, s3_client):
        s3_client.objects["documents/d1.txt"] = b"x"

        await storage.delete_object("documents/d1.txt")

        assert s3_client.deleted == ["documents/d1.txt"]
        assert "documents/d1.txt" not in s3_client.objects

    @pytest.mark.asyncio
    async def test_delete_failure(self, storage, s3_client):
        s3_client.fail_deletes = True

        with pytest.raises(ExternalServiceError, match="could not delete object"):
            await storage.delete_object("documents/d1.txt")


def test_storage_dependency_is_shared(monkeypatch):
    monkeypatch.setattr(storage_module, "_storage", None)

    with patch("dictatemed.core.storage.boto3") as boto3:
        first = get_object_storage()
        second = get_object_storage()

    assert isinstance(first, ObjectStorage)
    assert first is second
    boto3.client.assert_called_once()
    assert boto3.client.call_args.args == ("s3",)
