"""Tests for recipe image association and expiry bookkeeping."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.models import RecipeImage
from recipe_easy.services.errors import ImageOwnershipError
from recipe_easy.services.r2_storage import R2StorageError
from recipe_easy.services.recipe_images import (
    RecipeImageService,
    days_until,
    get_recipe_image_service,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def images(db_session: AsyncSession) -> RecipeImageService:
    """Provide a recipe image service bound to the test session."""
    return get_recipe_image_service(db_session)


# ============================================================================
# Expiry Helper Tests
# ============================================================================

class TestDaysUntil:
    """Tests for days_until."""

    def test_full_week(self):
        assert days_until(NOW + timedelta(days=7), now=NOW) == 7

    def test_partial_day_rounds_up(self):
        assert days_until(NOW + timedelta(days=2, hours=1), now=NOW) == 3

    def test_past_is_zero(self):
        assert days_until(NOW - timedelta(days=1), now=NOW) == 0

    def test_naive_datetime_is_treated_as_utc(self):
        naive = (NOW + timedelta(days=1)).replace(tzinfo=None)

        assert days_until(naive, now=NOW) == 1


# ============================================================================
# Upsert Tests
# ============================================================================

@pytest.mark.asyncio
async def test_upsert_inserts_new_row(images: RecipeImageService):
    """Test that the first image for a recipe is inserted."""
    record, replaced = await images.upsert(
        "user-1", "recipe-1", "user-1/recipe-1/1-a.png", "flux", NOW + timedelta(days=7)
    )

    assert replaced is None
    assert record.recipe_id == "recipe-1"
    assert record.image_path == "user-1/recipe-1/1-a.png"
    assert images.expires_in_days(record, now=NOW) == 7


@pytest.mark.asyncio
async def test_upsert_replaces_in_place(
    images: RecipeImageService,
    db_session: AsyncSession,
):
    """Test that a second write updates the same row and reports the old key."""
    first, _ = await images.upsert(
        "user-1", "recipe-1", "user-1/recipe-1/1-a.png", "wanx", NOW + timedelta(days=7)
    )
    second, replaced = await images.upsert(
        "user-1", "recipe-1", "user-1/recipe-1/2-b.png", "flux", NOW + timedelta(days=8)
    )

    assert replaced == "user-1/recipe-1/1-a.png"
    assert second.id == first.id
    assert second.image_path == "user-1/recipe-1/2-b.png"
    assert second.image_model == "flux"

    count = await db_session.scalar(
        select(func.count()).select_from(RecipeImage).where(RecipeImage.recipe_id == "recipe-1")
    )
    assert count == 1


@pytest.mark.asyncio
async def test_upsert_same_path_reports_nothing_replaced(images: RecipeImageService):
    """Test that rewriting the same key does not ask for a delete."""
    await images.upsert("user-1", "recipe-1", "user-1/recipe-1/1-a.png", "flux", NOW)
    _, replaced = await images.upsert("user-1", "recipe-1", "user-1/recipe-1/1-a.png", "flux", NOW)

    assert replaced is None


@pytest.mark.asyncio
async def test_upsert_refuses_another_users_image(images: RecipeImageService):
    """Test that one user cannot replace the image another user saved."""
    await images.upsert("alice", "recipe-1", "alice/recipe-1/1-a.png", "flux", NOW)

    with pytest.raises(ImageOwnershipError):
        await images.upsert("mallory", "recipe-1", "mallory/recipe-1/2-b.png", "wanx", NOW)

    record = await images.get_for_recipe("recipe-1")
    assert record.user_id == "alice"
    assert record.image_path == "alice/recipe-1/1-a.png"


# ============================================================================
# Lookup Tests
# ============================================================================

@pytest.mark.asyncio
async def test_get_for_recipe_missing(images: RecipeImageService):
    """Test that a recipe without an image returns None."""
    assert await images.get_for_recipe("recipe-none") is None


@pytest.mark.asyncio
async def test_get_image_urls(images: RecipeImageService):
    """Test bulk URL lookup skips recipes without images."""
    await images.upsert("user-1", "recipe-a", "user-1/recipe-a/1-a.png", "flux", NOW)
    await images.upsert("user-1", "recipe-b", "user-1/recipe-b/1-b.jpg", "wanx", NOW)

    urls = await images.get_image_urls(["recipe-a", "recipe-b", "recipe-c", "recipe-a"])

    assert urls == {
        "recipe-a": "https://recipes.test/images/user-1/recipe-a/1-a.png",
        "recipe-b": "https://recipes.test/images/user-1/recipe-b/1-b.jpg",
    }


@pytest.mark.asyncio
async def test_get_image_urls_empty(images: RecipeImageService):
    """Test that an empty id list returns an empty mapping."""
    assert await images.get_image_urls([]) == {}


# ============================================================================
# Expiry Sweep Tests
# ============================================================================

@pytest.mark.asyncio
async def test_find_expired(images: RecipeImageService):
    """Test that only rows past their expiry are returned."""
    await images.upsert("u", "recipe-old", "u/recipe-old/1.png", "flux", NOW - timedelta(days=1))
    await images.upsert("u", "recipe-new", "u/recipe-new/1.png", "flux", NOW + timedelta(days=1))

    expired = await images.find_expired(now=NOW)

    assert [record.recipe_id for record in expired] == ["recipe-old"]


@pytest.mark.asyncio
async def test_sweep_expired_deletes_objects_and_rows(
    images: RecipeImageService,
    storage,
):
    """Test that the sweep removes expired objects and their rows."""
    await storage.put_object("u/recipe-old/1.png", b"old", "image/png")
    await storage.put_object("u/recipe-new/1.png", b"new", "image/png")
    await images.upsert("u", "recipe-old", "u/recipe-old/1.png", "flux", NOW - timedelta(hours=1))
    await images.upsert("u", "recipe-new", "u/recipe-new/1.png", "flux", NOW + timedelta(days=3))

    result = await images.sweep_expired(storage, now=NOW)

    assert result.deleted == 1
    assert result.errors == 0
    assert "u/recipe-old/1.png" not in storage.objects
    assert "u/recipe-new/1.png" in storage.objects
    assert await images.get_for_recipe("recipe-old") is None
    assert await images.get_for_recipe("recipe-new") is not None


@pytest.mark.asyncio
async def test_sweep_keeps_rows_when_delete_fails(
    images: RecipeImageService,
    storage,
):
    """Test that a row stays for the next sweep when its object can't be deleted."""
    await storage.put_object("u/recipe-old/1.png", b"old", "image/png")
    await images.upsert("u", "recipe-old", "u/recipe-old/1.png", "flux", NOW - timedelta(days=2))
    storage.delete_object = AsyncMock(side_effect=R2StorageError("denied"))

    result = await images.sweep_expired(storage, now=NOW)

    assert result.deleted == 0
    assert result.errors == 1
    assert await images.get_for_recipe("recipe-old") is not None


@pytest.mark.asyncio
async def test_sweep_removes_rows_for_missing_objects(
    images: RecipeImageService,
    storage,
):
    """Test that rows whose object is already gone are still cleaned up."""
    await images.upsert("u", "recipe-gone", "u/recipe-gone/1.png", "flux", NOW - timedelta(days=2))

    result = await images.sweep_expired(storage, now=NOW)

    assert result.deleted == 1
    assert await images.get_for_recipe("recipe-gone") is None
