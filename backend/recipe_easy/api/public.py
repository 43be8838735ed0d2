"""Public read path for stored images."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from recipe_easy.api.deps import get_storage
from recipe_easy.services.r2_storage import R2StorageError, R2StorageService, content_type_for_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["public"])

# Keys are never reused, so responses can be cached forever
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


@router.get("/images/{key:path}", summary="Serve a stored image")
async def serve_image(
    key: str,
    storage: R2StorageService = Depends(get_storage),
) -> Response:
    """Serve an image from storage by key.

    Raises:
        HTTPException: 404 if the key does not exist, 502 if storage fails
    """
    if not key or ".." in key.split("/"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")

    try:
        stored = await storage.get_object(key)
    except R2StorageError as e:
        logger.error(f"Failed to read image {key}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load image",
        )

    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")

    return Response(
        content=stored.body,
        media_type=content_type_for_key(key),
        headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL},
    )
