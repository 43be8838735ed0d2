"""API routes for recipe images.

This module provides REST endpoints for:
- GET /api/v1/recipes/{recipe_id}/image - Get a recipe's current image
- GET /api/v1/recipes/images - Map several recipes to their image URLs
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.api.deps import get_db
from recipe_easy.schemas.image import RecipeImageResponse
from recipe_easy.services.r2_storage import build_public_url
from recipe_easy.services.recipe_images import get_recipe_image_service

router = APIRouter(prefix="/recipes", tags=["recipes"])


@router.get(
    "/images",
    response_model=dict[str, str],
    summary="Get image URLs for recipes",
    description="Map recipe IDs to public image URLs; recipes without an image are omitted",
)
async def get_recipe_image_urls(
    recipe_ids: list[str] = Query(default=[], alias="recipe_id"),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Get public image URLs for several recipes."""
    return await get_recipe_image_service(db).get_image_urls(recipe_ids)


@router.get(
    "/{recipe_id}/image",
    response_model=RecipeImageResponse,
    summary="Get recipe image",
    description="Get the recipe's current image and days until it expires",
)
async def get_recipe_image(
    recipe_id: str,
    db: AsyncSession = Depends(get_db),
) -> RecipeImageResponse:
    """Get a recipe's current image.

    Raises:
        HTTPException: 404 if the recipe has no image
    """
    service = get_recipe_image_service(db)
    record = await service.get_for_recipe(recipe_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No image for recipe {recipe_id}",
        )

    return RecipeImageResponse(
        recipe_id=record.recipe_id,
        image_path=record.image_path,
        image_url=build_public_url(record.image_path),
        image_model=record.image_model,
        expires_at=record.expires_at,
        expires_in_days=service.expires_in_days(record),
    )
