"""Recipe image model linking a recipe to its current stored image."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from recipe_easy.core.database import Base


class RecipeImage(Base):
    """
    Current image of a recipe.

    At most one row per recipe; regenerating replaces the row in place and
    the superseded object is removed from storage. ``expires_at`` is advisory
    unless the expiry sweep is enabled.
    """

    __tablename__ = "recipe_images"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    # Owner
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Recipes live outside this service, so there is no foreign key here
    recipe_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Opaque object storage key
    image_path: Mapped[str] = mapped_column(String(512), nullable=False)
    image_model: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")

    # TTL marker
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the image is past its advisory lifetime."""
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            # SQLite hands back naive datetimes; values are stored as UTC
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def __repr__(self) -> str:
        return f"<RecipeImage(recipe_id={self.recipe_id}, path={self.image_path})>"
