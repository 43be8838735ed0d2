"""User credits model for the per-user spendable balance."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from recipe_easy.core.database import Base


class UserCredits(Base):
    """
    Credit balance for each user.

    One row per user, created lazily on first lookup and never deleted.
    ``credits == total_earned - total_spent`` holds after every commit.
    """

    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_credits_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_user_credits_earned_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_user_credits_spent_non_negative"),
    )

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    # Opaque identifier from the auth provider; the unique constraint is what
    # makes lazy creation safe under concurrent first lookups
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Balance
    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True
    )

    @property
    def is_consistent(self) -> bool:
        """Whether the running balance matches earned minus spent."""
        return self.credits == self.total_earned - self.total_spent

    def __repr__(self) -> str:
        return f"<UserCredits(user_id={self.user_id}, credits={self.credits})>"
