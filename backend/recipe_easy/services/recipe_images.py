"""Recipe image association and expiry bookkeeping.

Each recipe has at most one current image. Writing a new image for a recipe
replaces its row in place and reports the superseded storage key so the
caller can delete it once the new row is committed.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.models.recipe_image import RecipeImage
from recipe_easy.services.errors import ImageOwnershipError
from recipe_easy.services.r2_storage import R2StorageError, R2StorageService, build_public_url

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class SweepResult:
    """Outcome of an expiry sweep."""

    deleted: int = 0
    errors: int = 0


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_until(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until a time, rounded up, never negative."""
    now = now or datetime.now(timezone.utc)
    remaining = (_as_utc(expires_at) - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining / SECONDS_PER_DAY)


class RecipeImageService:
    """Service for reading and writing recipe image associations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_recipe(self, recipe_id: str) -> Optional[RecipeImage]:
        """Get the current image for a recipe, if any."""
        result = await self.db.execute(
            select(RecipeImage)
            .where(RecipeImage.recipe_id == recipe_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure_owner(self, recipe_id: str, user_id: str) -> None:
        """Raise ImageOwnershipError if another user owns the recipe's image."""
        existing = await self.get_for_recipe(recipe_id)
        if existing is not None and existing.user_id != user_id:
            raise ImageOwnershipError(recipe_id)

    async def upsert(
        self,
        user_id: str,
        recipe_id: str,
        image_path: str,
        image_model: str,
        expires_at: datetime,
    ) -> tuple[RecipeImage, Optional[str]]:
        """Insert or replace the image for a recipe.

        Concurrent writers for the same recipe are not serialized: if an
        insert loses to a concurrent insert, the existing row is updated
        instead, so the last writer wins.

        Args:
            user_id: Owner of the image
            recipe_id: Recipe the image belongs to
            image_path: Storage key of the new image
            image_model: Model that produced the image
            expires_at: Advisory expiry time

        Returns:
            Tuple of (stored row, superseded storage key or None)

        Raises:
            ImageOwnershipError: If the recipe's image belongs to another user
        """
        existing = await self.get_for_recipe(recipe_id)
        if existing is not None:
            return await self._replace(existing, user_id, image_path, image_model, expires_at)

        record = RecipeImage(
            user_id=user_id,
            recipe_id=recipe_id,
            image_path=image_path,
            image_model=image_model,
            expires_at=expires_at,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                f"Concurrent image write for recipe {recipe_id}, replacing the other writer's row"
            )
            existing = await self.get_for_recipe(recipe_id)
            if existing is None:
                raise
            return await self._replace(existing, user_id, image_path, image_model, expires_at)

        await self.db.refresh(record)
        logger.info(f"Stored image {image_path} for recipe {recipe_id}")
        return record, None

    async def _replace(
        self,
        record: RecipeImage,
        user_id: str,
        image_path: str,
        image_model: str,
        expires_at: datetime,
    ) -> tuple[RecipeImage, Optional[str]]:
        previous_path = record.image_path
        if record.user_id != user_id:
            logger.warning(
                f"User {user_id} tried to replace the image of recipe {record.recipe_id} "
                f"owned by {record.user_id}"
            )
            raise ImageOwnershipError(record.recipe_id)

        record.user_id = user_id
        record.image_path = image_path
        record.image_model = image_model
        record.expires_at = expires_at
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(
            f"Replaced image for recipe {record.recipe_id}: {previous_path} -> {image_path}"
        )
        replaced = previous_path if previous_path != image_path else None
        return record, replaced

    async def get_image_urls(self, recipe_ids: Iterable[str]) -> dict[str, str]:
        """Map recipe IDs to public image URLs.

        Recipes without an image are left out of the result.
        """
        ids = list(dict.fromkeys(recipe_ids))
        if not ids:
            return {}

        result = await self.db.execute(
            select(RecipeImage.recipe_id, RecipeImage.image_path).where(
                RecipeImage.recipe_id.in_(ids)
            )
        )
        return {recipe_id: build_public_url(path) for recipe_id, path in result.all()}

    @staticmethod
    def expires_in_days(record: RecipeImage, now: Optional[datetime] = None) -> int:
        """Whole days until the record expires."""
        return days_until(record.expires_at, now)

    async def find_expired(
        self, now: Optional[datetime] = None, limit: int = 100
    ) -> list[RecipeImage]:
        """Get records whose expiry time has passed, oldest first."""
        now = now or datetime.now(timezone.utc)
        result = await self.db.execute(
            select(RecipeImage)
            .where(RecipeImage.expires_at < now)
            .order_by(RecipeImage.expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def sweep_expired(
        self,
        storage: R2StorageService,
        now: Optional[datetime] = None,
        limit: int = 100,
    ) -> SweepResult:
        """Delete expired images from storage, then their rows.

        A row whose object could not be deleted is kept so the next sweep
        retries it.

        Args:
            storage: Object store holding the images
            now: Reference time (defaults to current UTC time)
            limit: Maximum records handled in one sweep

        Returns:
            SweepResult with deleted and error counts
        """
        sweep = SweepResult()
        removable_ids = []

        for record in await self.find_expired(now=now, limit=limit):
            try:
                await storage.delete_if_exists(record.image_path)
            except R2StorageError as e:
                logger.error(f"Failed to delete expired image {record.image_path}: {e}")
                sweep.errors += 1
                continue
            removable_ids.append(record.id)

        if removable_ids:
            await self.db.execute(delete(RecipeImage).where(RecipeImage.id.in_(removable_ids)))
            await self.db.commit()
            sweep.deleted = len(removable_ids)

        logger.info(f"Expired image sweep: {sweep.deleted} deleted, {sweep.errors} errors")
        return sweep


def get_recipe_image_service(db: AsyncSession) -> RecipeImageService:
    """Factory function to create RecipeImageService."""
    return RecipeImageService(db)
