"""API routes for credit administration and history.

This module provides REST endpoints for:
- POST /api/v1/credits/grant - Grant credits to a user (administrators)
- GET /api/v1/credits/history - Get the caller's transaction history
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.api.deps import Caller, get_caller, get_db, require_admin
from recipe_easy.models.credit_transaction import TransactionReason, TransactionType
from recipe_easy.schemas.credits import (
    BalanceResponse,
    GrantRequest,
    TransactionHistoryResponse,
    TransactionResponse,
)
from recipe_easy.services.credit_ledger import InvalidAmountError, get_credit_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])

GRANTABLE_REASONS = {TransactionReason.ADMIN_GRANT, TransactionReason.EARNED}


@router.post(
    "/grant",
    response_model=BalanceResponse,
    summary="Grant credits",
    description="Add credits to a user's balance (administrators only)",
)
async def grant_credits(
    request: GrantRequest,
    admin: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BalanceResponse:
    """Grant credits to a user.

    Args:
        request: Target user, amount and reason
        admin: Administrator making the grant
        db: Database session

    Returns:
        BalanceResponse with the updated balance

    Raises:
        HTTPException: 400 if the reason cannot be granted
    """
    if request.reason not in GRANTABLE_REASONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Credits cannot be granted with reason {request.reason.value}",
        )

    ledger = get_credit_ledger(db)
    try:
        balance = await ledger.earn(
            request.user_id,
            request.amount,
            reason=request.reason,
            description=request.description or f"Granted by {admin.user_id}",
        )
    except InvalidAmountError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Admin {admin.user_id} granted {request.amount} credits to {request.user_id}")
    return BalanceResponse.model_validate(balance)


@router.get(
    "/history",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history",
    description="Get paginated credit transaction history for the caller",
)
async def get_history(
    transaction_type: Optional[TransactionType] = Query(
        default=None,
        description="Filter by transaction type",
    ),
    limit: int = Query(
        default=50,
        ge=1,
        le=100,
        description="Maximum number of transactions to return",
    ),
    offset: int = Query(
        default=0,
        ge=0,
        description="Number of transactions to skip",
    ),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> TransactionHistoryResponse:
    """Get the caller's transaction history, newest first.

    Args:
        transaction_type: Optional filter
        limit: Page size
        offset: Pagination offset
        caller: Caller identity
        db: Database session

    Returns:
        TransactionHistoryResponse with one page of transactions
    """
    ledger = get_credit_ledger(db)
    transactions, total = await ledger.get_transaction_history(
        caller.user_id,
        limit=limit,
        offset=offset,
        transaction_type=transaction_type,
    )

    return TransactionHistoryResponse(
        transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )
