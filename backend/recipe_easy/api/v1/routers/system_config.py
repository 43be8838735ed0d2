"""API routes for system configuration (administrators only)."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.api.deps import Caller, get_db, require_admin
from recipe_easy.schemas.system_config import SystemConfigResponse, SystemConfigUpdate
from recipe_easy.services.system_config import get_system_config_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system-configs", tags=["system-config"])


@router.get(
    "",
    response_model=list[SystemConfigResponse],
    summary="List system configuration",
)
async def list_system_configs(
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[SystemConfigResponse]:
    """List all stored configuration values."""
    configs = await get_system_config_service(db).list_configs()
    return [SystemConfigResponse.model_validate(config) for config in configs]


@router.post(
    "",
    response_model=SystemConfigResponse,
    summary="Set a system configuration value",
    description="Create or update a value such as initial_credits, generation_cost or admin_unlimited",
)
async def set_system_config(
    request: SystemConfigUpdate,
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SystemConfigResponse:
    """Create or update a configuration value."""
    config = await get_system_config_service(db).set_config(
        request.key, request.value, request.description
    )
    logger.info(f"Admin {admin.user_id} set system config {request.key}")
    return SystemConfigResponse.model_validate(config)
