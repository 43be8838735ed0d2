"""Tests for the image persistence pipeline."""

import re
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.models import RecipeImage
from recipe_easy.services.errors import DownloadError, ImageOwnershipError, UploadError
from recipe_easy.services.image_persistence import (
    ImagePersistenceService,
    build_image_path,
    infer_extension,
    is_image_content_type,
    sanitize_path_segment,
)
from recipe_easy.services.r2_storage import R2StorageError

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-data"


def _image_transport(body: bytes = PNG_BYTES, content_type: str = "image/png", status: int = 200):
    return httpx.MockTransport(
        lambda request: httpx.Response(status, content=body, headers={"content-type": content_type})
    )


@pytest.fixture
def persistence(db_session: AsyncSession, storage) -> ImagePersistenceService:
    """Provide a pipeline with in-memory storage and a mocked download."""
    return ImagePersistenceService(db_session, storage=storage, transport=_image_transport())


async def _image_rows(db: AsyncSession, recipe_id: str) -> int:
    return await db.scalar(
        select(func.count()).select_from(RecipeImage).where(RecipeImage.recipe_id == recipe_id)
    )


# ============================================================================
# Key Generation Tests
# ============================================================================

class TestImagePaths:
    """Tests for storage key helpers."""

    def test_build_image_path_format(self):
        path = build_image_path("user-1", "recipe_9", "png", timestamp_ms=1700000000000)

        assert re.fullmatch(r"user-1/recipe_9/1700000000000-[0-9a-f]{16}\.png", path)

    def test_build_image_path_is_unique(self):
        paths = {build_image_path("u", "r", timestamp_ms=1) for _ in range(50)}

        assert len(paths) == 50

    def test_build_image_path_sanitizes_ids(self):
        path = build_image_path("../evil user", "rec/ipe?1", "jpg", timestamp_ms=5)

        assert path.startswith("eviluser/recipe1/5-")
        assert ".." not in path

    def test_build_image_path_rejects_empty_ids(self):
        with pytest.raises(ValueError):
            build_image_path("///", "recipe-1")

        with pytest.raises(ValueError):
            build_image_path("user-1", "...")

    def test_sanitize_path_segment(self):
        assert sanitize_path_segment("user_1-A") == "user_1-A"
        assert sanitize_path_segment("a b/c\\d%2e") == "abcd2e"

    @pytest.mark.parametrize(
        "content_type,url,expected",
        [
            ("image/png", "https://ext/img", "png"),
            ("image/webp; charset=binary", "https://ext/img", "webp"),
            ("application/octet-stream", "https://ext/out.jpeg?sig=1", "jpg"),
            (None, "https://ext/out.gif", "gif"),
            (None, "https://ext/out.exe", "jpg"),
            (None, "https://ext/noext", "jpg"),
        ],
    )
    def test_infer_extension(self, content_type, url, expected):
        assert infer_extension(content_type, url) == expected


# ============================================================================
# Persist Tests
# ============================================================================

@pytest.mark.asyncio
async def test_persist_new_image(
    persistence: ImagePersistenceService,
    db_session: AsyncSession,
    storage,
):
    """Test downloading, uploading and recording a first image."""
    before = datetime.now(timezone.utc)

    persisted = await persistence.persist(
        "https://ext/img.png", "user-1", "recipe-1", image_model="flux"
    )

    assert persisted.image_path.startswith("user-1/recipe-1/")
    assert persisted.image_path.endswith(".png")
    assert persisted.public_url == f"https://recipes.test/images/{persisted.image_path}"
    assert persisted.replaced_path is None
    assert before + timedelta(days=7) <= persisted.expires_at
    assert persisted.expires_at <= datetime.now(timezone.utc) + timedelta(days=7)

    stored = storage.objects[persisted.image_path]
    assert stored.body == PNG_BYTES
    assert stored.content_type == "image/png"
    assert stored.metadata["userId"] == "user-1"
    assert stored.metadata["recipeId"] == "recipe-1"
    assert stored.metadata["imageModel"] == "flux"
    assert "uploadedAt" in stored.metadata

    record = await persistence.images.get_for_recipe("recipe-1")
    assert record.image_path == persisted.image_path
    assert record.image_model == "flux"
    assert record.user_id == "user-1"


@pytest.mark.asyncio
async def test_persist_replaces_previous_image(
    persistence: ImagePersistenceService,
    db_session: AsyncSession,
    storage,
):
    """Test that regenerating leaves one row pointing at the new object."""
    first = await persistence.persist("https://ext/1.png", "user-1", "recipe-2", "wanx")
    second = await persistence.persist("https://ext/2.png", "user-1", "recipe-2", "flux")

    assert first.image_path != second.image_path
    assert second.replaced_path == first.image_path
    assert first.image_path not in storage.objects
    assert second.image_path in storage.objects

    assert await _image_rows(db_session, "recipe-2") == 1
    record = await persistence.images.get_for_recipe("recipe-2")
    assert record.image_path == second.image_path
    assert record.image_model == "flux"


@pytest.mark.asyncio
async def test_persist_download_failure(
    db_session: AsyncSession,
    storage,
):
    """Test that a non-2xx download raises DownloadError and stores nothing."""
    service = ImagePersistenceService(
        db_session, storage=storage, transport=_image_transport(b"gone", "text/plain", 404)
    )

    with pytest.raises(DownloadError) as exc_info:
        await service.persist("https://ext/expired.png", "user-1", "recipe-3")

    assert "404" in exc_info.value.message
    assert storage.objects == {}
    assert await _image_rows(db_session, "recipe-3") == 0


@pytest.mark.asyncio
async def test_persist_download_network_error(db_session: AsyncSession, storage):
    """Test that a transport failure is converted to DownloadError."""

    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    service = ImagePersistenceService(
        db_session, storage=storage, transport=httpx.MockTransport(handler)
    )

    with pytest.raises(DownloadError):
        await service.persist("https://ext/slow.png", "user-1", "recipe-4")


@pytest.mark.asyncio
async def test_persist_empty_download(db_session: AsyncSession, storage):
    """Test that an empty body is not uploaded."""
    service = ImagePersistenceService(
        db_session, storage=storage, transport=_image_transport(b"")
    )

    with pytest.raises(DownloadError):
        await service.persist("https://ext/empty.png", "user-1", "recipe-5")

    assert storage.objects == {}


@pytest.mark.asyncio
async def test_persist_upload_failure_keeps_previous_image(
    persistence: ImagePersistenceService,
    storage,
):
    """Test that a failed upload leaves the existing image untouched."""
    first = await persistence.persist("https://ext/1.png", "user-1", "recipe-6")
    storage.put_object = AsyncMock(side_effect=R2StorageError("bucket unavailable"))

    with pytest.raises(UploadError):
        await persistence.persist("https://ext/2.png", "user-1", "recipe-6")

    record = await persistence.images.get_for_recipe("recipe-6")
    assert record.image_path == first.image_path
    assert first.image_path in storage.objects


@pytest.mark.asyncio
async def test_persist_record_failure_orphans_new_object(
    persistence: ImagePersistenceService,
    storage,
):
    """Test that a failed row write raises UploadError and keeps the old image."""
    first = await persistence.persist("https://ext/1.png", "user-1", "recipe-7")
    persistence.images.upsert = AsyncMock(
        side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))
    )

    with pytest.raises(UploadError) as exc_info:
        await persistence.persist("https://ext/2.png", "user-1", "recipe-7")

    assert exc_info.value.message == "Failed to save image record"
    # The new object stays behind; the old one is still current
    assert len(storage.objects) == 2
    assert first.image_path in storage.objects


@pytest.mark.asyncio
async def test_persist_old_object_delete_failure_is_not_fatal(
    persistence: ImagePersistenceService,
    storage,
):
    """Test that failing to delete the superseded object still returns success."""
    await persistence.persist("https://ext/1.png", "user-1", "recipe-8")
    storage.delete_object = AsyncMock(side_effect=R2StorageError("delete denied"))

    persisted = await persistence.persist("https://ext/2.png", "user-1", "recipe-8")

    record = await persistence.images.get_for_recipe("recipe-8")
    assert record.image_path == persisted.image_path


@pytest.mark.asyncio
async def test_persist_rejects_unusable_ids_before_download(db_session: AsyncSession, storage):
    """Test that ids with no usable characters fail without network traffic."""
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=PNG_BYTES)

    service = ImagePersistenceService(
        db_session, storage=storage, transport=httpx.MockTransport(handler)
    )

    with pytest.raises(ValueError):
        await service.persist("https://ext/1.png", "user-1", "///")

    assert requests == []


# ============================================================================
# Download Safeguard Tests
# ============================================================================

@pytest.mark.asyncio
async def test_persist_rejects_non_image_body(db_session: AsyncSession, storage):
    """Test that an HTML error page served with 200 is not stored as an image."""
    service = ImagePersistenceService(
        db_session,
        storage=storage,
        transport=_image_transport(b"<html>expired</html>", "text/html; charset=utf-8"),
    )

    with pytest.raises(DownloadError) as exc_info:
        await service.persist("https://ext/img", "user-1", "recipe-9")

    assert exc_info.value.message == "Downloaded file is not an image"
    assert storage.objects == {}
    assert await _image_rows(db_session, "recipe-9") == 0


@pytest.mark.asyncio
async def test_persist_rejects_svg(db_session: AsyncSession, storage):
    """Test that SVG results are refused because they can carry scripts."""
    service = ImagePersistenceService(
        db_session,
        storage=storage,
        transport=_image_transport(b"<svg onload='x()'/>", "image/svg+xml"),
    )

    with pytest.raises(DownloadError):
        await service.persist("https://ext/img.svg", "user-1", "recipe-10")

    assert storage.objects == {}


@pytest.mark.asyncio
async def test_persist_rejects_declared_oversized_body(db_session: AsyncSession, storage):
    """Test that a Content-Length over the limit is refused before reading."""
    service = ImagePersistenceService(
        db_session,
        storage=storage,
        transport=_image_transport(b"\x89PNG" + b"0" * 2048),
        max_bytes=1024,
    )

    with pytest.raises(DownloadError) as exc_info:
        await service.persist("https://ext/big.png", "user-1", "recipe-11")

    assert "1024" in exc_info.value.message
    assert exc_info.value.detail == "content-length 2052"
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_persist_stops_streaming_past_limit(db_session: AsyncSession, storage):
    """Test that a chunked body with no length is cut off once it passes the limit."""
    chunks_sent = []

    async def body():
        for _ in range(100):
            chunks_sent.append(1)
            yield b"0" * 512

    service = ImagePersistenceService(
        db_session,
        storage=storage,
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200, headers={"content-type": "image/png"}, content=body()
            )
        ),
        max_bytes=1024,
    )

    with pytest.raises(DownloadError):
        await service.persist("https://ext/big.png", "user-1", "recipe-12")

    assert len(chunks_sent) < 100
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_persist_accepts_image_without_content_type(db_session: AsyncSession, storage):
    """Test that a missing content type falls back to the URL extension."""
    service = ImagePersistenceService(
        db_session,
        storage=storage,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=PNG_BYTES)),
    )

    persisted = await service.persist("https://ext/out.webp", "user-1", "recipe-13")

    assert persisted.image_path.endswith(".webp")
    assert storage.objects[persisted.image_path].body == PNG_BYTES


@pytest.mark.asyncio
async def test_persist_refuses_another_users_recipe_before_download(
    db_session: AsyncSession, storage
):
    """Test that replacing another user's image fails without a download or upload."""
    owner = ImagePersistenceService(db_session, storage=storage, transport=_image_transport())
    first = await owner.persist("https://ext/1.png", "alice", "recipe-14")

    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    intruder = ImagePersistenceService(
        db_session, storage=storage, transport=httpx.MockTransport(handler)
    )

    with pytest.raises(ImageOwnershipError):
        await intruder.persist("https://ext/2.png", "mallory", "recipe-14")

    assert requests == []
    assert list(storage.objects) == [first.image_path]
    record = await owner.images.get_for_recipe("recipe-14")
    assert record.user_id == "alice"


def test_is_image_content_type():
    assert is_image_content_type("image/png")
    assert is_image_content_type("IMAGE/JPEG; q=1")
    assert not is_image_content_type("image/svg+xml")
    assert not is_image_content_type("text/html")
    assert not is_image_content_type("application/octet-stream")
