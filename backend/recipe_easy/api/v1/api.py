"""API v1 router aggregation."""

from fastapi import APIRouter

from recipe_easy.api.v1.routers import credits, images, recipes, system_config, user_usage

api_router = APIRouter()

api_router.include_router(user_usage.router)  # Balance and spend for the caller
api_router.include_router(credits.router)  # Grants and transaction history
api_router.include_router(images.router)  # Generation, task status, save, queued jobs
api_router.include_router(recipes.router)  # Recipe image lookups
api_router.include_router(system_config.router)  # Runtime business settings
