"""Persistence pipeline: copy a provider result into our own storage.

Provider result URLs are temporary, so a finished image is downloaded,
uploaded to R2 under a fresh key, recorded against its recipe, and only
then is the recipe's previous image deleted.
"""

import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.core.config import settings
from recipe_easy.services.errors import DownloadError, ImageOwnershipError, UploadError
from recipe_easy.services.r2_storage import (
    CONTENT_TYPES,
    R2StorageError,
    R2StorageService,
    build_public_url,
    get_r2_service,
)
from recipe_easy.services.recipe_images import RecipeImageService

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "jpg"
DEFAULT_IMAGE_CONTENT_TYPE = "image/jpeg"

EXTENSIONS_BY_CONTENT_TYPE = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

# Served from our own domain, so scriptable formats are refused
BLOCKED_IMAGE_TYPES = {"image/svg+xml"}


@dataclass
class PersistedImage:
    """Result of persisting an image for a recipe."""

    image_path: str
    public_url: str
    image_model: str
    expires_at: datetime
    replaced_path: Optional[str] = None


def sanitize_path_segment(value: str) -> str:
    """Strip everything except letters, digits, '-' and '_'."""
    return _UNSAFE_PATH_CHARS.sub("", str(value))


def build_image_path(
    user_id: str,
    recipe_id: str,
    extension: str = DEFAULT_EXTENSION,
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Generate a storage key for a recipe image.

    Key format: {user_id}/{recipe_id}/{epoch_ms}-{16 hex chars}.{extension}

    Args:
        user_id: Image owner
        recipe_id: Recipe the image belongs to
        extension: File extension without the dot
        timestamp_ms: Milliseconds since the epoch (defaults to now)

    Returns:
        Storage key

    Raises:
        ValueError: If either identifier is empty after sanitizing
    """
    safe_user = sanitize_path_segment(user_id)
    safe_recipe = sanitize_path_segment(recipe_id)
    if not safe_user:
        raise ValueError(f"User id {user_id!r} has no usable characters")
    if not safe_recipe:
        raise ValueError(f"Recipe id {recipe_id!r} has no usable characters")

    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{safe_user}/{safe_recipe}/{timestamp_ms}-{secrets.token_hex(8)}.{extension}"


def is_image_content_type(content_type: str) -> bool:
    """Whether a response content type is a raster image we will store."""
    media_type = content_type.split(";")[0].strip().lower()
    return media_type.startswith("image/") and media_type not in BLOCKED_IMAGE_TYPES


def infer_extension(content_type: Optional[str], source_url: str) -> str:
    """Pick a file extension from the content type, then the URL, then 'jpg'."""
    if content_type:
        extension = EXTENSIONS_BY_CONTENT_TYPE.get(content_type.split(";")[0].strip().lower())
        if extension:
            return extension

    path = urlparse(source_url).path
    if "." in path.rsplit("/", 1)[-1]:
        suffix = path.rsplit(".", 1)[1].lower()
        if suffix in CONTENT_TYPES:
            return "jpg" if suffix == "jpeg" else suffix

    return DEFAULT_EXTENSION


class ImagePersistenceService:
    """Service that moves generated images into R2 and records them."""

    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[R2StorageService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ):
        """Initialize the pipeline.

        Args:
            db: Database session for the recipe image row
            storage: Object store (defaults to the cached R2 service)
            transport: Optional httpx transport for downloads (used by tests)
            timeout: Download timeout in seconds (defaults to HTTP_TIMEOUT_SECONDS)
            max_bytes: Largest accepted image (defaults to MAX_IMAGE_BYTES)
        """
        self.db = db
        self.storage = storage or get_r2_service()
        self.images = RecipeImageService(db)
        self._transport = transport
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_IMAGE_BYTES

    async def download(self, source_url: str) -> tuple[bytes, Optional[str]]:
        """
        Download image bytes from a provider URL.

        The body is streamed and abandoned as soon as it passes
        ``max_bytes``, so an oversized result is never held in memory.

        Returns:
            Tuple of (bytes, response content type)

        Raises:
            DownloadError: On transport failure, non-2xx status, a non-image
                content type, an oversized or an empty body
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, follow_redirects=True
            ) as client:
                async with client.stream("GET", source_url) as response:
                    if response.status_code >= 400:
                        logger.error(
                            f"Image download from {source_url} returned {response.status_code}"
                        )
                        raise DownloadError(
                            f"Failed to download image: "
                            f"{response.status_code} {response.reason_phrase}"
                        )

                    content_type = response.headers.get("content-type")
                    if content_type and not is_image_content_type(content_type):
                        logger.error(
                            f"Image download from {source_url} returned {content_type}"
                        )
                        raise DownloadError(
                            "Downloaded file is not an image", detail=content_type
                        )

                    declared_length = response.headers.get("content-length")
                    if declared_length and declared_length.isdigit():
                        if int(declared_length) > self.max_bytes:
                            raise DownloadError(
                                f"Image is larger than {self.max_bytes} bytes",
                                detail=f"content-length {declared_length}",
                            )

                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > self.max_bytes:
                            logger.error(
                                f"Image download from {source_url} exceeded {self.max_bytes} bytes"
                            )
                            raise DownloadError(f"Image is larger than {self.max_bytes} bytes")
        except httpx.HTTPError as e:
            logger.error(f"Network error downloading image from {source_url}: {e}")
            raise DownloadError("Failed to download generated image", detail=str(e))

        if not body:
            raise DownloadError("Downloaded image is empty")

        return bytes(body), content_type

    async def persist(
        self,
        source_url: str,
        user_id: str,
        recipe_id: str,
        image_model: str = "unknown",
    ) -> PersistedImage:
        """
        Persist a generated image as the recipe's current image.

        Steps run strictly in order: download, upload, record, then delete
        the superseded object. If recording fails after the upload, the new
        object is left orphaned (logged) and the previous image stays current.

        Args:
            source_url: Temporary provider URL of the finished image
            user_id: Image owner
            recipe_id: Recipe the image belongs to
            image_model: Model that produced the image

        Returns:
            PersistedImage describing the stored image

        Raises:
            ValueError: If user_id or recipe_id has no usable characters
            ImageOwnershipError: If another user owns the recipe's image
            DownloadError: If the image cannot be fetched
            UploadError: If the image cannot be stored or recorded
        """
        # Fail on unusable ids or a foreign recipe before any network traffic
        build_image_path(user_id, recipe_id)
        await self.images.ensure_owner(recipe_id, user_id)

        body, response_type = await self.download(source_url)

        extension = infer_extension(response_type, source_url)
        image_path = build_image_path(user_id, recipe_id, extension)
        content_type = CONTENT_TYPES.get(extension, DEFAULT_IMAGE_CONTENT_TYPE)

        uploaded_at = datetime.now(timezone.utc)
        expires_at = uploaded_at + timedelta(days=settings.IMAGE_TTL_DAYS)

        try:
            await self.storage.put_object(
                image_path,
                body,
                content_type,
                metadata={
                    "userId": user_id,
                    "recipeId": recipe_id,
                    "imageModel": image_model,
                    "expiresAt": expires_at.isoformat(),
                    "uploadedAt": uploaded_at.isoformat(),
                },
            )
        except R2StorageError as e:
            logger.error(f"Upload of {image_path} for recipe {recipe_id} failed: {e}")
            raise UploadError("Failed to upload image to storage", detail=str(e))

        try:
            _, replaced_path = await self.images.upsert(
                user_id=user_id,
                recipe_id=recipe_id,
                image_path=image_path,
                image_model=image_model,
                expires_at=expires_at,
            )
        except ImageOwnershipError:
            logger.error(
                f"Uploaded {image_path} but recipe {recipe_id} changed owner; object is orphaned"
            )
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Uploaded {image_path} but could not record it for recipe {recipe_id}; "
                f"object is orphaned: {e}"
            )
            raise UploadError("Failed to save image record", detail=str(e))

        if replaced_path:
            try:
                await self.storage.delete_if_exists(replaced_path)
            except R2StorageError as e:
                logger.warning(f"Failed to delete superseded image {replaced_path}: {e}")

        logger.info(f"Persisted image {image_path} for recipe {recipe_id}")

        return PersistedImage(
            image_path=image_path,
            public_url=build_public_url(image_path),
            image_model=image_model,
            expires_at=expires_at,
            replaced_path=replaced_path,
        )


def get_image_persistence_service(db: AsyncSession) -> ImagePersistenceService:
    """Factory function to create ImagePersistenceService."""
    return ImagePersistenceService(db)
