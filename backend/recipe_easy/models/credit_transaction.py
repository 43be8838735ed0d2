"""Credit transaction model for the append-only ledger."""

import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from recipe_easy.core.database import Base


class TransactionType(str, enum.Enum):
    """Direction of a ledger entry."""

    EARN = "earn"
    SPEND = "spend"


class TransactionReason(str, enum.Enum):
    """Why credits moved."""

    INITIAL = "initial"  # Seed balance for a new user
    GENERATION = "generation"  # Image generation cost
    ADMIN_GRANT = "admin_grant"  # Granted by an administrator
    EARNED = "earned"  # Earned through app activity


class CreditTransaction(Base):
    """
    Immutable audit log for all credit operations.

    This table is append-only. Never UPDATE or DELETE records.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
    )

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Transaction details
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # Always positive
    reason: Mapped[TransactionReason] = mapped_column(
        Enum(TransactionReason), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    @property
    def signed_amount(self) -> int:
        """Amount with sign applied (positive for earn, negative for spend)."""
        return self.amount if self.type == TransactionType.EARN else -self.amount

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, type={self.type.value}, "
            f"amount={self.amount}, reason={self.reason.value})>"
        )
