"""Pydantic schemas for credit API endpoints.

This module defines request and response models for:
- User usage (balance plus whether an image can be generated)
- Spending and granting credits
- Transaction history
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from recipe_easy.models.credit_transaction import TransactionReason, TransactionType


class UserUsageResponse(BaseModel):
    """Response model for user usage queries."""

    user_id: str = Field(description="User ID")
    credits: int = Field(description="Current credit balance")
    total_earned: int = Field(description="Credits earned over the account's lifetime")
    total_spent: int = Field(description="Credits spent over the account's lifetime")
    can_generate: bool = Field(description="Whether the user can start an image generation")
    generation_cost: int = Field(description="Credits charged per image generation")
    is_admin: bool = Field(default=False, description="Whether the caller is an administrator")
    unlimited: bool = Field(default=False, description="Whether the caller bypasses spending")


class SpendRequest(BaseModel):
    """Request model for spending credits."""

    amount: Optional[int] = Field(
        default=None,
        ge=1,
        description="Credits to spend (defaults to the generation cost)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Optional description for the ledger entry"
    )


class SpendResponse(BaseModel):
    """Response model for a successful spend."""

    success: bool = Field(description="Whether the spend succeeded")
    credits: int = Field(description="Balance after the spend")
    transaction_id: Optional[str] = Field(
        default=None,
        description="Ledger transaction ID (absent for unlimited callers)"
    )


class GrantRequest(BaseModel):
    """Request model for granting credits to a user."""

    user_id: str = Field(min_length=1, max_length=64, description="User receiving the credits")
    amount: int = Field(ge=1, description="Credits to grant")
    reason: TransactionReason = Field(
        default=TransactionReason.ADMIN_GRANT,
        description="Ledger reason (admin_grant or earned)"
    )
    description: Optional[str] = Field(default=None, max_length=500, description="Ledger note")


class BalanceResponse(BaseModel):
    """Response model for a user's balance row."""

    user_id: str = Field(description="User ID")
    credits: int = Field(description="Current credit balance")
    total_earned: int = Field(description="Lifetime credits earned")
    total_spent: int = Field(description="Lifetime credits spent")
    updated_at: Optional[datetime] = Field(default=None, description="Last balance change")

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    """Response model for a single ledger transaction."""

    id: str = Field(description="Transaction ID")
    type: TransactionType = Field(description="Transaction type")
    amount: int = Field(description="Credits moved (always positive)")
    reason: TransactionReason = Field(description="Why the credits moved")
    description: Optional[str] = Field(default=None, description="Human-readable note")
    created_at: datetime = Field(description="Transaction timestamp")

    class Config:
        from_attributes = True


class TransactionHistoryResponse(BaseModel):
    """Response model for transaction history queries."""

    transactions: list[TransactionResponse] = Field(description="List of transactions")
    total: int = Field(description="Total number of transactions")
    limit: int = Field(description="Page size limit")
    offset: int = Field(description="Current offset")


class InsufficientCreditsResponse(BaseModel):
    """Response model when a user has insufficient credits."""

    detail: str = Field(description="Error message")
    required: int = Field(description="Credits required for operation")
    available: int = Field(description="Credits currently available")
