"""ARQ worker tasks for recipe images.

Tasks:
- generate_recipe_image: poll a submitted provider task, then persist its image
- sweep_expired_images: delete images past their expiry (cron, opt-in)

Usage:
    Start worker with: arq recipe_easy.core.arq_config.WorkerSettings
"""

import logging
from typing import Any

from recipe_easy.core.database import close_db, get_session_factory
from recipe_easy.services.errors import ImagePipelineError
from recipe_easy.services.image_generation import ImageGenerationService
from recipe_easy.services.image_providers import TaskState
from recipe_easy.services.r2_storage import get_r2_service
from recipe_easy.services.recipe_images import RecipeImageService

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    logger.info("Recipe image worker started")


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook: release database connections."""
    await close_db()
    logger.info("Recipe image worker stopped")


async def generate_recipe_image(
    ctx: dict,
    task_id: str,
    model: str,
    user_id: str,
    recipe_id: str,
) -> dict[str, Any]:
    """Poll a provider task to completion and store the image for a recipe.

    Pipeline failures are reported in the result rather than raised, so the
    job completes with a readable outcome. Aborting the job cancels polling.

    Args:
        ctx: ARQ context
        task_id: Provider task ID
        model: Model the task was submitted to
        user_id: Image owner
        recipe_id: Recipe the image belongs to

    Returns:
        Dict describing the outcome
    """
    job_id = ctx.get("job_id")
    logger.info(f"Job {job_id}: polling {model} task {task_id} for recipe {recipe_id}")

    def on_update(state: TaskState) -> None:
        logger.info(f"Job {job_id}: task {task_id} is {state.status.value}")

    session_factory = get_session_factory()
    async with session_factory() as db:
        service = ImageGenerationService(db)
        try:
            persisted = await service.complete_generation(
                task_id, model, user_id, recipe_id, on_update=on_update
            )
        except ImagePipelineError as e:
            logger.error(f"Job {job_id}: task {task_id} ended with {e.code}: {e.message}")
            return {
                "status": "failed",
                "task_id": task_id,
                "recipe_id": recipe_id,
                "code": e.code,
                "error": e.message,
                "retryable": e.retryable,
            }

    logger.info(f"Job {job_id}: stored {persisted.image_path} for recipe {recipe_id}")
    return {
        "status": "completed",
        "task_id": task_id,
        "recipe_id": recipe_id,
        "image_path": persisted.image_path,
        "image_url": persisted.public_url,
        "image_model": persisted.image_model,
        "expires_at": persisted.expires_at.isoformat(),
        "replaced_path": persisted.replaced_path,
    }


async def sweep_expired_images(ctx: dict) -> dict[str, int]:
    """Delete expired recipe images from storage and the database."""
    session_factory = get_session_factory()
    async with session_factory() as db:
        result = await RecipeImageService(db).sweep_expired(get_r2_service())

    return {"deleted": result.deleted, "errors": result.errors}
