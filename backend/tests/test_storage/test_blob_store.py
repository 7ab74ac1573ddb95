"""
Test suite for blob storage backends.

The local backend runs against a temporary directory; the S3 backend runs
against a mocked boto3 client.
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.core.config import Settings
from src.core.exceptions import StorageError
from src.services.storage.blob_store import (
    LocalBlobStore,
    S3BlobStore,
    create_blob_store,
    put_with_retry,
    safe_key_segment,
)


def client_error(code: str, operation: str = "PutObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# ============================================================================
# Key Helpers
# ============================================================================


class TestSafeKeySegment:
    """Test path segment sanitizing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("ORD-001", "ORD-001"),
            ("ORD/001", "ORD_001"),
            ("../etc", ".._etc"),
            ("  spaced out ", "spaced_out"),
            ("", "_"),
        ],
    )
    def test_sanitizes(self, value: str, expected: str) -> None:
        assert safe_key_segment(value) == expected


# ============================================================================
# Local Backend Tests
# ============================================================================


class TestLocalBlobStore:
    """Test the directory-backed blob store."""

    @pytest.mark.asyncio
    async def test_put_then_read(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        url = await store.put(b"%PDF-data", "orders/A/invoice/v1.pdf", "application/pdf")

        assert url.startswith("file://")
        assert (tmp_path / "orders/A/invoice/v1.pdf").read_bytes() == b"%PDF-data"
        assert await store.read("orders/A/invoice/v1.pdf") == b"%PDF-data"

    @pytest.mark.asyncio
    async def test_delete_missing_blob_is_ignored(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        await store.delete("orders/none.pdf")

    @pytest.mark.asyncio
    async def test_delete_removes_blob(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)
        await store.put(b"x", "a/b.pdf", "application/pdf")

        await store.delete("a/b.pdf")

        assert not (tmp_path / "a/b.pdf").exists()

    @pytest.mark.asyncio
    async def test_path_escaping_root_rejected(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path / "root")

        with pytest.raises(StorageError, match="escapes"):
            await store.put(b"x", "../outside.pdf", "application/pdf")

    @pytest.mark.asyncio
    async def test_read_missing_blob_raises(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        with pytest.raises(StorageError):
            await store.read("missing.pdf")


# ============================================================================
# S3 Backend Tests
# ============================================================================


class TestS3BlobStore:
    """Test the S3-backed blob store with a mocked client."""

    @pytest.fixture
    def client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def store(self, client: MagicMock) -> S3BlobStore:
        return S3BlobStore(bucket="docs", region_name="eu-west-1", client=client)

    @pytest.mark.asyncio
    async def test_put_returns_bucket_url(
        self, store: S3BlobStore, client: MagicMock
    ) -> None:
        url = await store.put(b"data", "orders/A/v1.pdf", "application/pdf")

        assert url == "https://docs.s3.eu-west-1.amazonaws.com/orders/A/v1.pdf"
        client.put_object.assert_called_once_with(
            Bucket="docs",
            Key="orders/A/v1.pdf",
            Body=b"data",
            ContentType="application/pdf",
        )

    @pytest.mark.asyncio
    async def test_put_client_error_maps_to_storage_error(
        self, store: S3BlobStore, client: MagicMock
    ) -> None:
        client.put_object.side_effect = client_error("AccessDenied")

        with pytest.raises(StorageError) as exc_info:
            await store.put(b"data", "k.pdf", "application/pdf")

        assert exc_info.value.context["error_code"] == "AccessDenied"

    @pytest.mark.asyncio
    async def test_put_connection_error_maps_to_storage_error(
        self, store: S3BlobStore, client: MagicMock
    ) -> None:
        client.put_object.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.example"
        )

        with pytest.raises(StorageError, match="connection"):
            await store.put(b"data", "k.pdf", "application/pdf")

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_ignored(
        self, store: S3BlobStore, client: MagicMock
    ) -> None:
        client.delete_object.side_effect = client_error("NoSuchKey", "DeleteObject")

        await store.delete("k.pdf")

    @pytest.mark.asyncio
    async def test_delete_other_error_raises(
        self, store: S3BlobStore, client: MagicMock
    ) -> None:
        client.delete_object.side_effect = client_error("AccessDenied", "DeleteObject")

        with pytest.raises(StorageError):
            await store.delete("k.pdf")


# ============================================================================
# Retry and Factory Tests
# ============================================================================


class TestPutWithRetry:
    """Test bounded upload retries."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failure(self) -> None:
        store = AsyncMock()
        store.put.side_effect = [StorageError("flaky"), "file:///ok"]

        url = await put_with_retry(
            store, b"x", "p.pdf", "application/pdf", attempts=3, timeout=1
        )

        assert url == "file:///ok"
        assert store.put.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self) -> None:
        store = AsyncMock()
        store.put.side_effect = StorageError("down")

        with pytest.raises(StorageError) as exc_info:
            await put_with_retry(
                store, b"x", "p.pdf", "application/pdf", attempts=3, timeout=1
            )

        assert store.put.await_count == 3
        assert exc_info.value.context["attempts"] == 3

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self) -> None:
        async def slow_put(data, path, content_type):
            await asyncio.sleep(1)
            return "never"

        store = MagicMock()
        store.put = slow_put

        with pytest.raises(StorageError, match="after retries"):
            await put_with_retry(
                store, b"x", "p.pdf", "application/pdf", attempts=2, timeout=0.01
            )


class TestCreateBlobStore:
    def test_local_backend_by_default(self, tmp_path: Path) -> None:
        settings = Settings(attachment_local_root=str(tmp_path))

        store = create_blob_store(settings)

        assert isinstance(store, LocalBlobStore)
        assert store.root == tmp_path.resolve()
