"""Pydantic schemas for API requests and responses."""

from recipe_easy.schemas.credits import (
    BalanceResponse,
    GrantRequest,
    InsufficientCreditsResponse,
    SpendRequest,
    SpendResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    UserUsageResponse,
)
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
from recipe_easy.schemas.system_config import SystemConfigResponse, SystemConfigUpdate

__all__ = [
    # Credits
    "UserUsageResponse",
    "SpendRequest",
    "SpendResponse",
    "GrantRequest",
    "BalanceResponse",
    "TransactionResponse",
    "TransactionHistoryResponse",
    "InsufficientCreditsResponse",
    # Images
    "IngredientItem",
    "GenerateImageRequest",
    "GenerateImageResponse",
    "TaskStatusResponse",
    "SaveImageRequest",
    "RecipeImageResponse",
    "ImageJobCreate",
    "ImageJobResponse",
    # System config
    "SystemConfigResponse",
    "SystemConfigUpdate",
]
