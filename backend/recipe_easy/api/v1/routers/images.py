"""API routes for recipe image generation.

This module provides REST endpoints for:
- POST /api/v1/images/generate - Submit a generation and charge for it
- GET /api/v1/images/tasks/{task_id} - Check a provider task once
- POST /api/v1/images/save - Store a finished image for a recipe
- POST /api/v1/images/jobs - Queue server-side polling and persistence
- GET /api/v1/images/jobs/{job_id} - Get a queued job's status
- DELETE /api/v1/images/jobs/{job_id} - Abort a queued job
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.api.deps import Caller, get_caller, get_db, get_storage, pipeline_http_exception
from recipe_easy.core.arq_config import abort_job, enqueue_job, get_job_status
from recipe_easy.schemas.credits import InsufficientCreditsResponse
from recipe_easy.schemas.image import (
    GenerateImageRequest,
    GenerateImageResponse,
    ImageJobCreate,
    ImageJobResponse,
    IngredientItem,
    RecipeImageResponse,
    SaveImageRequest,
    TaskStatusResponse,
)
from recipe_easy.services.credit_ledger import InsufficientCreditsError
from recipe_easy.services.errors import ImagePipelineError
from recipe_easy.services.image_generation import ImageGenerationService, record_model_usage
from recipe_easy.services.image_providers import UnsupportedModelError
from recipe_easy.services.r2_storage import R2StorageService
from recipe_easy.services.recipe_images import days_until

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["images"])


@router.post(
    "/generate",
    response_model=GenerateImageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate a recipe image",
    description="Submit an image generation task. Poll /images/tasks/{task_id} for the result.",
    responses={402: {"model": InsufficientCreditsResponse}},
)
async def generate_image(
    request: GenerateImageRequest,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> GenerateImageResponse:
    """Start an image generation for a recipe.

    Args:
        request: Recipe details and generation options
        background_tasks: FastAPI background tasks
        caller: Caller identity
        db: Database session

    Returns:
        GenerateImageResponse with the provider task ID

    Raises:
        HTTPException: 400 for unknown models, 402 for insufficient credits,
            502/503 for provider failures
    """
    ingredients = [
        item.model_dump() if isinstance(item, IngredientItem) else item
        for item in request.ingredients
    ]

    service = ImageGenerationService(db)
    try:
        ticket = await service.start_generation(
            caller.user_id,
            request.recipe_title,
            ingredients=ingredients,
            language=request.language,
            is_admin=caller.is_admin,
            model=request.model,
            style=request.style,
            size=request.size,
            count=request.count,
            negative_prompt=request.negative_prompt,
        )
    except UnsupportedModelError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "detail": f"Insufficient credits. You need at least {e.required} credit(s) to generate an image.",
                "required": e.required,
                "available": e.available,
            },
        )
    except ImagePipelineError as e:
        raise pipeline_http_exception(e)

    background_tasks.add_task(
        record_model_usage,
        ticket.model.value,
        ticket.task_id,
        caller.user_id,
        {
            "recipe_title": request.recipe_title,
            "language": request.language,
            "charged": ticket.charged,
        },
    )

    return GenerateImageResponse(
        task_id=ticket.task_id,
        model=ticket.model,
        status=ticket.status,
        prompt=ticket.prompt,
        credits_remaining=ticket.credits_remaining,
        charged=ticket.charged,
    )


@router.get(
    "/tasks/{task_id}",
    response_model=TaskStatusResponse,
    summary="Check task status",
    description="Check the provider status of an image generation task",
)
async def get_task_status(
    task_id: str,
    model: str = Query(..., description="Model the task was submitted to"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> TaskStatusResponse:
    """Check a provider task once."""
    service = ImageGenerationService(db)
    try:
        state = await service.check_task(task_id, model)
    except UnsupportedModelError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ImagePipelineError as e:
        raise pipeline_http_exception(e)

    return TaskStatusResponse(
        task_id=state.task_id,
        model=state.model,
        status=state.status,
        image_url=state.result_url,
        images=state.result_urls,
        error=state.error,
    )


@router.post(
    "/save",
    response_model=RecipeImageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a generated image",
    description="Copy a finished image into storage and make it the recipe's image",
)
async def save_image(
    request: SaveImageRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    storage: R2StorageService = Depends(get_storage),
) -> RecipeImageResponse:
    """Persist a finished provider image for a recipe.

    Raises:
        HTTPException: 400 for unusable IDs, 403 if another user owns the
            recipe's image, 502 if download or upload fails
    """
    service = ImageGenerationService(db, storage=storage)
    try:
        persisted = await service.save_image(
            caller.user_id, request.recipe_id, request.image_url, request.model
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ImagePipelineError as e:
        raise pipeline_http_exception(e)

    return RecipeImageResponse(
        recipe_id=request.recipe_id,
        image_path=persisted.image_path,
        image_url=persisted.public_url,
        image_model=persisted.image_model,
        expires_at=persisted.expires_at,
        expires_in_days=days_until(persisted.expires_at),
        replaced_path=persisted.replaced_path,
    )


@router.post(
    "/jobs",
    response_model=ImageJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue image completion",
    description="Queue a job that polls a submitted task and stores the finished image",
)
async def create_image_job(
    request: ImageJobCreate,
    caller: Caller = Depends(get_caller),
) -> ImageJobResponse:
    """Queue server-side polling and persistence for a submitted task.

    Raises:
        HTTPException: 409 if the task is already queued, 503 if the queue is down
    """
    job_id = f"image:{request.model.value}:{request.task_id}"
    try:
        job = await enqueue_job(
            "generate_recipe_image",
            request.task_id,
            request.model.value,
            caller.user_id,
            request.recipe_id,
            _job_id=job_id,
        )
    except (RedisError, OSError) as e:
        logger.error(f"Failed to queue image job for task {request.task_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is unavailable",
        )

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Task {request.task_id} is already queued",
        )

    return ImageJobResponse(job_id=job.job_id, status="queued")


@router.get(
    "/jobs/{job_id}",
    response_model=ImageJobResponse,
    summary="Get image job status",
)
async def get_image_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
) -> ImageJobResponse:
    """Get the status of a queued image job.

    Raises:
        HTTPException: 404 if the job does not exist
    """
    data = await get_job_status(job_id)
    if data["status"] == "not_found":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )

    result: Optional[dict] = data.get("result")
    error = data.get("error")
    success = data.get("success")
    if isinstance(result, dict) and result.get("status") == "failed":
        success = False
        error = result.get("error")

    return ImageJobResponse(
        job_id=job_id,
        status=data["status"],
        success=success,
        result=result if isinstance(result, dict) else None,
        error=error,
        enqueue_time=data.get("enqueue_time"),
    )


@router.delete(
    "/jobs/{job_id}",
    summary="Abort image job",
    description="Abort a queued or running image job; polling stops without further updates",
)
async def cancel_image_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
) -> dict:
    """Abort a queued image job."""
    aborted = await abort_job(job_id)
    return {"job_id": job_id, "aborted": aborted}
