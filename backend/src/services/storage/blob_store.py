"""
Blob storage backends for attachment contents.

The attachment store only needs ``put`` and ``delete``. Two backends are
provided: a local directory written with aiofiles and an S3 bucket driven
through boto3. Both convert backend failures into ``StorageError``.
"""

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Optional, Protocol

import aiofiles
import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
)

from src.core.config import Settings, get_settings
from src.core.exceptions import StorageError
from src.core.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_key_segment(value: str) -> str:
    """Make a single path segment safe for any blob backend."""
    cleaned = _UNSAFE_KEY_CHARS.sub("_", value.strip())
    return cleaned or "_"


class BlobStore(Protocol):
    """Object store holding attachment blobs."""

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        """Store ``data`` under ``path`` and return a retrievable URL."""
        ...

    async def delete(self, path: str) -> None:
        """Remove the blob stored under ``path``. Missing blobs are ignored."""
        ...


class LocalBlobStore:
    """
    Blob store backed by a local directory.

    Used for development and tests. URLs are ``file://`` URIs.
    """

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise StorageError("Blob path escapes storage root", path=path)
        return target

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, mode="wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error("Local blob write failed", path=path, error=str(e))
            raise StorageError("Failed to write blob", path=path, error=str(e)) from e

        logger.debug("Local blob written", path=path, size=len(data))
        return target.as_uri()

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Local blob delete failed", path=path, error=str(e))
            raise StorageError("Failed to delete blob", path=path, error=str(e)) from e

        logger.debug("Local blob deleted", path=path)

    async def read(self, path: str) -> bytes:
        """Read a stored blob back, used by tests and repair tooling."""
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, mode="rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError("Failed to read blob", path=path, error=str(e)) from e


class S3BlobStore:
    """
    Blob store backed by an S3 bucket.

    boto3 is synchronous, so each call runs in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region_name: Optional[str] = None,
        client: Any = None,
    ) -> None:
        """
        Initialize S3 blob store.

        Args:
            bucket: Bucket holding attachment blobs
            aws_access_key_id: AWS access key ID (defaults to settings)
            aws_secret_access_key: AWS secret access key (defaults to settings)
            region_name: AWS region name (defaults to settings)
            client: Preconfigured boto3 S3 client
        """
        settings = get_settings()
        self.bucket = bucket
        self.region_name = region_name or settings.aws_region
        self._client = client or boto3.client(
            "s3",
            aws_access_key_id=aws_access_key_id or settings.aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key
            or settings.aws_secret_access_key,
            region_name=self.region_name,
        )

        logger.info("S3 blob store initialized", bucket=bucket, region=self.region_name)

    def _url_for(self, path: str) -> str:
        return f"https://{self.bucket}.s3.{self.region_name}.amazonaws.com/{path}"

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.warning("S3 put failed", path=path, error_code=error_code)
            raise StorageError(
                "S3 put failed", path=path, error_code=error_code
            ) from e
        except (BotoConnectionError, EndpointConnectionError, BotoCoreError) as e:
            logger.warning("S3 connection error", path=path, error=str(e))
            raise StorageError("S3 connection error", path=path, error=str(e)) from e

        return self._url_for(path)

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self.bucket, Key=path
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("NoSuchKey", "404"):
                return
            logger.warning("S3 delete failed", path=path, error_code=error_code)
            raise StorageError(
                "S3 delete failed", path=path, error_code=error_code
            ) from e
        except (BotoConnectionError, EndpointConnectionError, BotoCoreError) as e:
            logger.warning("S3 connection error", path=path, error=str(e))
            raise StorageError("S3 connection error", path=path, error=str(e)) from e


async def put_with_retry(
    store: BlobStore,
    data: bytes,
    path: str,
    content_type: str,
    *,
    attempts: int,
    timeout: float,
) -> str:
    """
    Upload a blob with a per-attempt timeout.

    Raises:
        StorageError: If every attempt fails or times out
    """
    last_error: Optional[BaseException] = None
    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(store.put(data, path, content_type), timeout)
        except (StorageError, asyncio.TimeoutError) as e:
            last_error = e
            logger.warning(
                "Blob upload attempt failed",
                path=path,
                attempt=attempt + 1,
                attempts=attempts,
                error_type=type(e).__name__,
            )

    raise StorageError(
        "Blob upload failed after retries",
        path=path,
        attempts=attempts,
        error=str(last_error) or type(last_error).__name__,
    ) from last_error


def create_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    """Build the blob store selected by configuration."""
    settings = settings or get_settings()
    if settings.attachment_storage_backend == "s3":
        return S3BlobStore(
            bucket=settings.s3_bucket,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
    return LocalBlobStore(settings.attachment_local_root)
