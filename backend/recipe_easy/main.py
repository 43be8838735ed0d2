"""FastAPI application entry point.

This module configures the FastAPI application with:
- CORS middleware for frontend communication
- API v1 router with all endpoints
- Public image read path
- Database and ARQ lifecycle management
- Health check endpoint
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from recipe_easy.api.public import router as public_router
from recipe_easy.api.v1.api import api_router
from recipe_easy.core.arq_config import close_arq_pool, get_arq_pool
from recipe_easy.core.config import settings
from recipe_easy.core.database import close_db, init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events.

    Handles:
    - Table creation
    - ARQ job queue pool initialization
    - Graceful shutdown of connections
    """
    # Startup
    logger.info(f"Starting {settings.PROJECT_NAME} API...")

    await init_db()
    logger.info("Database tables ready")

    try:
        await get_arq_pool()
        logger.info("ARQ job queue pool initialized")
    except (RedisError, OSError) as e:
        # Queued jobs fail until Redis is back; everything else keeps working
        logger.error(f"Failed to initialize job queue: {e}")

    yield  # Application is running

    # Shutdown
    logger.info(f"Shutting down {settings.PROJECT_NAME} API...")

    await close_arq_pool()
    await close_db()
    logger.info("Connections closed")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Credit ledger and recipe image generation",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API v1 router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)

# Public image path lives outside the versioned API
app.include_router(public_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "recipe-easy-backend", "version": settings.VERSION}
