"""Credit ledger service for user balances and the transaction log.

This service provides business logic for:
- Lazily creating a user's balance, seeded from the initial_credits config
- Spending credits with a single conditional UPDATE (no double spend)
- Earning credits (admin grants, activity rewards)
- Reading transaction history and reconciling the ledger
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.core.config import settings
from recipe_easy.models.credit_transaction import (
    CreditTransaction,
    TransactionReason,
    TransactionType,
)
from recipe_easy.models.user_credits import UserCredits
from recipe_easy.services.system_config import (
    ADMIN_UNLIMITED_KEY,
    GENERATION_COST_KEY,
    INITIAL_CREDITS_KEY,
    SystemConfigService,
)

logger = logging.getLogger(__name__)


class InsufficientCreditsError(Exception):
    """Raised when a user doesn't have enough credits for an operation."""

    def __init__(self, user_id: str, required: int, available: int):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits: required {required}, available {available}"
        )


class InvalidAmountError(ValueError):
    """Raised when a ledger amount is not strictly positive.

    This is a programming error, not a business condition.
    """


@dataclass
class SpendResult:
    """Outcome of a successful spend."""

    success: bool
    balance: UserCredits
    transaction_id: str


@dataclass
class UsageSummary:
    """Balance plus whether the user may start a generation."""

    credits: UserCredits
    can_generate: bool
    generation_cost: int
    unlimited: bool


@dataclass
class ReconciliationReport:
    """Ledger consistency check for a single user."""

    user_id: str
    credits: int
    total_earned: int
    total_spent: int
    seed_amount: int
    transaction_sum: int

    @property
    def balance_consistent(self) -> bool:
        return self.credits == self.total_earned - self.total_spent

    @property
    def log_consistent(self) -> bool:
        return self.transaction_sum == self.credits - self.seed_amount

    @property
    def is_consistent(self) -> bool:
        return self.balance_consistent and self.log_consistent


class CreditLedgerService:
    """Service for managing user credit balances and transactions."""

    def __init__(self, db: AsyncSession, config_service: Optional[SystemConfigService] = None):
        """Initialize the ledger.

        Args:
            db: Database session for ledger operations
            config_service: Optional system config service (created from db if omitted)
        """
        self.db = db
        self.config = config_service or SystemConfigService(db)

    async def get_or_create(self, user_id: str) -> UserCredits:
        """Get a user's balance row, creating it on first lookup.

        A new row is seeded with ``initial_credits`` and an ``initial`` earn
        transaction in the same database transaction. Concurrent first calls
        for the same user are resolved by the unique constraint on
        ``user_id``: the loser rolls back and re-reads the winner's row.

        Args:
            user_id: Opaque user identifier

        Returns:
            UserCredits instance
        """
        balance = await self._get_balance_row(user_id)
        if balance is not None:
            return balance

        initial_credits = await self.config.get_config(
            INITIAL_CREDITS_KEY, settings.DEFAULT_INITIAL_CREDITS
        )
        if initial_credits < 0:
            logger.warning(
                f"Configured initial_credits {initial_credits} is negative, using 0"
            )
            initial_credits = 0

        balance = UserCredits(
            user_id=user_id,
            credits=initial_credits,
            total_earned=initial_credits,
            total_spent=0,
        )
        self.db.add(balance)

        if initial_credits > 0:
            self.db.add(
                CreditTransaction(
                    user_id=user_id,
                    type=TransactionType.EARN,
                    amount=initial_credits,
                    reason=TransactionReason.INITIAL,
                    description="Initial credits for new user",
                )
            )

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Credit balance for user {user_id} created concurrently, re-reading")
            balance = await self._get_balance_row(user_id)
            if balance is None:
                raise
            return balance

        await self.db.refresh(balance)

        logger.info(
            f"Created credit balance for user {user_id} with {initial_credits} credits"
        )
        return balance

    async def get_balance(self, user_id: str) -> int:
        """Get the current credit balance for a user."""
        balance = await self.get_or_create(user_id)
        return balance.credits

    async def get_generation_cost(self) -> int:
        """Get the per-generation cost from system config (at least 1)."""
        cost = await self.config.get_config(
            GENERATION_COST_KEY, settings.DEFAULT_GENERATION_COST
        )
        if cost < 1:
            logger.warning(f"Configured generation_cost {cost} is below 1, using 1")
            return 1
        return cost

    async def is_unlimited(self, is_admin: bool) -> bool:
        """Whether the caller bypasses spending entirely."""
        if not is_admin:
            return False
        return await self.config.get_config(ADMIN_UNLIMITED_KEY, True)

    async def get_usage(self, user_id: str, is_admin: bool = False) -> UsageSummary:
        """Get a user's balance and whether they can generate right now.

        Args:
            user_id: Opaque user identifier
            is_admin: Whether the caller holds the administrator role

        Returns:
            UsageSummary with balance row and can_generate flag
        """
        balance = await self.get_or_create(user_id)
        unlimited = await self.is_unlimited(is_admin)
        cost = await self.get_generation_cost()

        return UsageSummary(
            credits=balance,
            can_generate=unlimited or balance.credits >= cost,
            generation_cost=cost,
            unlimited=unlimited,
        )

    async def spend(
        self,
        user_id: str,
        amount: int,
        reason: TransactionReason = TransactionReason.GENERATION,
        description: Optional[str] = None,
    ) -> SpendResult:
        """Spend credits from a user's balance.

        The advisory read only short-circuits obvious failures. The decrement
        itself is a single ``UPDATE ... WHERE credits >= amount``; if it
        touches no row the spend fails and nothing changes.

        Args:
            user_id: Opaque user identifier
            amount: Credits to spend (must be positive)
            reason: Ledger reason for the spend
            description: Optional human-readable description

        Returns:
            SpendResult with the updated balance and transaction ID

        Raises:
            InvalidAmountError: If amount is not positive
            InsufficientCreditsError: If the balance cannot cover amount
        """
        if amount <= 0:
            raise InvalidAmountError(f"Spend amount must be positive, got {amount}")

        current = await self.get_or_create(user_id)
        if current.credits < amount:
            raise InsufficientCreditsError(user_id, required=amount, available=current.credits)

        stmt = (
            update(UserCredits)
            .where(UserCredits.user_id == user_id, UserCredits.credits >= amount)
            .values(
                credits=UserCredits.credits - amount,
                total_spent=UserCredits.total_spent + amount,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            await self.db.rollback()
            latest = await self._get_balance_row(user_id)
            available = latest.credits if latest is not None else 0
            logger.info(
                f"Spend of {amount} credits for user {user_id} lost the race, "
                f"available {available}"
            )
            raise InsufficientCreditsError(user_id, required=amount, available=available)

        transaction = CreditTransaction(
            user_id=user_id,
            type=TransactionType.SPEND,
            amount=amount,
            reason=reason,
            description=description or f"Spent {amount} credits on {reason.value}",
        )
        self.db.add(transaction)
        await self.db.commit()

        balance = await self._get_balance_row(user_id)

        logger.info(
            f"Spent {amount} credits for user {user_id} ({reason.value}). "
            f"New balance: {balance.credits}"
        )

        return SpendResult(success=True, balance=balance, transaction_id=transaction.id)

    async def earn(
        self,
        user_id: str,
        amount: int,
        reason: TransactionReason = TransactionReason.ADMIN_GRANT,
        description: Optional[str] = None,
    ) -> UserCredits:
        """Add credits to a user's balance.

        Args:
            user_id: Opaque user identifier
            amount: Credits to add (must be positive)
            reason: Ledger reason for the grant
            description: Optional human-readable description

        Returns:
            Updated UserCredits row

        Raises:
            InvalidAmountError: If amount is not positive
        """
        if amount <= 0:
            raise InvalidAmountError(f"Earn amount must be positive, got {amount}")

        await self.get_or_create(user_id)

        stmt = (
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(
                credits=UserCredits.credits + amount,
                total_earned=UserCredits.total_earned + amount,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

        self.db.add(
            CreditTransaction(
                user_id=user_id,
                type=TransactionType.EARN,
                amount=amount,
                reason=reason,
                description=description or f"Received {amount} credits ({reason.value})",
            )
        )
        await self.db.commit()

        balance = await self._get_balance_row(user_id)

        logger.info(
            f"Added {amount} credits to user {user_id} ({reason.value}). "
            f"New balance: {balance.credits}"
        )
        return balance

    async def get_transaction_history(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> tuple[list[CreditTransaction], int]:
        """Get transaction history for a user.

        Args:
            user_id: Opaque user identifier
            limit: Maximum number of transactions to return
            offset: Offset for pagination
            transaction_type: Optional filter by transaction type

        Returns:
            Tuple of (list of transactions, total count)
        """
        base_query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)

        if transaction_type:
            base_query = base_query.where(CreditTransaction.type == transaction_type)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = await self.db.scalar(count_query) or 0

        query = (
            base_query
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        transactions = list(result.scalars().all())

        return transactions, total

    async def reconcile(self, user_id: str) -> ReconciliationReport:
        """Check a user's balance against the transaction log.

        Args:
            user_id: Opaque user identifier

        Returns:
            ReconciliationReport describing both consistency checks
        """
        balance = await self.get_or_create(user_id)

        result = await self.db.execute(
            select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        )
        transactions = result.scalars().all()

        seed_amount = sum(
            tx.amount for tx in transactions if tx.reason == TransactionReason.INITIAL
        )
        transaction_sum = sum(
            tx.signed_amount for tx in transactions if tx.reason != TransactionReason.INITIAL
        )

        report = ReconciliationReport(
            user_id=user_id,
            credits=balance.credits,
            total_earned=balance.total_earned,
            total_spent=balance.total_spent,
            seed_amount=seed_amount,
            transaction_sum=transaction_sum,
        )
        if not report.is_consistent:
            logger.error(f"Ledger for user {user_id} is inconsistent: {report}")
        return report

    async def _get_balance_row(self, user_id: str) -> Optional[UserCredits]:
        stmt = (
            select(UserCredits)
            .where(UserCredits.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()


def get_credit_ledger(db: AsyncSession) -> CreditLedgerService:
    """Factory function to create CreditLedgerService.

    Args:
        db: Database session

    Returns:
        Configured CreditLedgerService instance
    """
    return CreditLedgerService(db)
