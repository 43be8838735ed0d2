"""SQLAlchemy models for Recipe Easy."""

from recipe_easy.models.credit_transaction import (
    CreditTransaction,
    TransactionReason,
    TransactionType,
)
from recipe_easy.models.model_usage import ModelUsageRecord
from recipe_easy.models.recipe_image import RecipeImage
from recipe_easy.models.system_config import SystemConfig
from recipe_easy.models.user_credits import UserCredits

__all__ = [
    "UserCredits",
    "CreditTransaction",
    "TransactionType",
    "TransactionReason",
    "RecipeImage",
    "SystemConfig",
    "ModelUsageRecord",
]
