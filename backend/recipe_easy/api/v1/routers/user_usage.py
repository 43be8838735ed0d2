"""API routes for the caller's credit usage.

This module provides REST endpoints for:
- GET /api/v1/user-usage - Get balance and whether an image can be generated
- POST /api/v1/user-usage/spend - Spend the generation cost (or an explicit amount)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.api.deps import Caller, get_caller, get_db
from recipe_easy.models.credit_transaction import TransactionReason
from recipe_easy.schemas.credits import (
    InsufficientCreditsResponse,
    SpendRequest,
    SpendResponse,
    UserUsageResponse,
)
from recipe_easy.services.credit_ledger import (
    InsufficientCreditsError,
    InvalidAmountError,
    get_credit_ledger,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user-usage", tags=["credits"])


@router.get(
    "",
    response_model=UserUsageResponse,
    summary="Get user usage",
    description="Get the caller's credit balance, creating it on first use",
)
async def get_user_usage(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> UserUsageResponse:
    """Get the caller's balance and whether they can generate an image.

    Args:
        caller: Caller identity
        db: Database session

    Returns:
        UserUsageResponse with balance and can_generate flag
    """
    ledger = get_credit_ledger(db)
    usage = await ledger.get_usage(caller.user_id, is_admin=caller.is_admin)

    return UserUsageResponse(
        user_id=caller.user_id,
        credits=usage.credits.credits,
        total_earned=usage.credits.total_earned,
        total_spent=usage.credits.total_spent,
        can_generate=usage.can_generate,
        generation_cost=usage.generation_cost,
        is_admin=caller.is_admin,
        unlimited=usage.unlimited,
    )


@router.post(
    "/spend",
    response_model=SpendResponse,
    summary="Spend credits",
    description="Spend credits from the caller's balance",
    responses={402: {"model": InsufficientCreditsResponse}},
)
async def spend_credits(
    request: Optional[SpendRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> SpendResponse:
    """Spend credits for the caller.

    Administrators with unlimited credits are not charged.

    Args:
        request: Optional amount and description
        caller: Caller identity
        db: Database session

    Returns:
        SpendResponse with the new balance

    Raises:
        HTTPException: 402 if the balance cannot cover the amount
    """
    request = request or SpendRequest()
    ledger = get_credit_ledger(db)

    if await ledger.is_unlimited(caller.is_admin):
        balance = await ledger.get_or_create(caller.user_id)
        logger.info(f"Admin {caller.user_id} skipped credit deduction")
        return SpendResponse(success=True, credits=balance.credits, transaction_id=None)

    amount = request.amount or await ledger.get_generation_cost()

    try:
        result = await ledger.spend(
            caller.user_id,
            amount,
            reason=TransactionReason.GENERATION,
            description=request.description,
        )
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "detail": str(e),
                "required": e.required,
                "available": e.available,
            },
        )
    except InvalidAmountError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return SpendResponse(
        success=result.success,
        credits=result.balance.credits,
        transaction_id=result.transaction_id,
    )
