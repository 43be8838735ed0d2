"""Cloudflare R2 storage service for recipe images."""

import asyncio
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from recipe_easy.core.config import settings

logger = logging.getLogger(__name__)

# Content types served for stored keys, by extension
CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# S3 error codes that mean "no such object"
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class R2StorageError(Exception):
    """Raised when R2 storage operation fails."""

    pass


@dataclass
class StoredObject:
    """An object read back from storage."""

    key: str
    body: bytes
    content_type: str
    metadata: dict[str, str] = field(default_factory=dict)
    etag: Optional[str] = None


def content_type_for_key(key: str) -> str:
    """Infer a content type from a key's extension."""
    if "." not in key:
        return DEFAULT_CONTENT_TYPE
    extension = key.rsplit(".", 1)[1].lower()
    return CONTENT_TYPES.get(extension, DEFAULT_CONTENT_TYPE)


def build_public_url(key: str) -> str:
    """Public URL that serves a stored key through the /images route."""
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/images/{key}"


def _is_not_found(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


class R2StorageService:
    """Service for storing recipe images in Cloudflare R2.

    boto3 is synchronous, so every call runs in the default executor.
    """

    def __init__(self, bucket_name: Optional[str] = None):
        """Initialize R2 storage service with boto3 client.

        Args:
            bucket_name: Bucket to use (defaults to R2_BUCKET_IMAGES)
        """
        self.bucket_name = bucket_name or settings.R2_BUCKET_IMAGES
        self._client = None

    @property
    def client(self):
        """Get or create boto3 S3 client for R2."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.R2_ENDPOINT_URL,
                aws_access_key_id=settings.R2_ACCESS_KEY_ID,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=settings.HTTP_TIMEOUT_SECONDS,
                    read_timeout=settings.HTTP_TIMEOUT_SECONDS,
                ),
                region_name="auto",  # R2 uses 'auto' region
            )
        return self._client

    async def _run(self, func):
        return await asyncio.get_event_loop().run_in_executor(None, func)

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Upload an object.

        Args:
            key: Object key
            body: Object bytes
            content_type: MIME type stored with the object
            metadata: Custom metadata (string values)

        Raises:
            R2StorageError: If the upload fails
        """
        try:
            await self._run(
                lambda: self.client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                    Metadata=metadata or {},
                )
            )
        except (ClientError, BotoCoreError) as e:
            raise R2StorageError(f"Failed to upload {key} to R2: {str(e)}")

        logger.info(f"Uploaded {key} to R2 ({len(body)} bytes, {content_type})")

    async def get_object(self, key: str) -> Optional[StoredObject]:
        """
        Read an object.

        Args:
            key: Object key

        Returns:
            StoredObject, or None if the key does not exist

        Raises:
            R2StorageError: If the read fails for any other reason
        """
        try:
            response = await self._run(
                lambda: self.client.get_object(Bucket=self.bucket_name, Key=key)
            )
            body = await self._run(response["Body"].read)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise R2StorageError(f"Failed to read {key} from R2: {str(e)}")
        except BotoCoreError as e:
            raise R2StorageError(f"Failed to read {key} from R2: {str(e)}")

        return StoredObject(
            key=key,
            body=body,
            content_type=response.get("ContentType") or content_type_for_key(key),
            metadata=response.get("Metadata") or {},
            etag=response.get("ETag"),
        )

    async def head_object(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            R2StorageError: If the check fails for a reason other than 404
        """
        try:
            await self._run(
                lambda: self.client.head_object(Bucket=self.bucket_name, Key=key)
            )
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise R2StorageError(f"Failed to check {key} in R2: {str(e)}")
        except BotoCoreError as e:
            raise R2StorageError(f"Failed to check {key} in R2: {str(e)}")
        return True

    async def delete_object(self, key: str) -> None:
        """
        Delete an object from R2 storage.

        Args:
            key: Object key

        Raises:
            R2StorageError: If deletion fails
        """
        try:
            await self._run(
                lambda: self.client.delete_object(Bucket=self.bucket_name, Key=key)
            )
        except (ClientError, BotoCoreError) as e:
            raise R2StorageError(f"Failed to delete {key} from R2: {str(e)}")

        logger.info(f"Deleted {key} from R2")

    async def delete_if_exists(self, key: str) -> bool:
        """
        Delete an object if it exists.

        Returns:
            True if an object was deleted, False if it was already gone
        """
        if not await self.head_object(key):
            logger.info(f"Object {key} not found in R2, nothing to delete")
            return False
        await self.delete_object(key)
        return True


@lru_cache
def get_r2_service() -> R2StorageService:
    """
    Get R2 storage service instance (cached).

    Returns:
        R2StorageService instance
    """
    return R2StorageService()
