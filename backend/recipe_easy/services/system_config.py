"""System configuration lookups backed by the system_configs table.

Values are stored as text and coerced to the type of the caller's default.
Lookups never raise: a missing row, an unparseable value or a database
error all fall back to the default.
"""

import logging
from typing import Any, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.models.system_config import SystemConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Well-known keys
INITIAL_CREDITS_KEY = "initial_credits"
GENERATION_COST_KEY = "generation_cost"
ADMIN_UNLIMITED_KEY = "admin_unlimited"

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


def coerce_config_value(raw: Optional[str], default: T) -> T:
    """Coerce a stored text value to the type of ``default``.

    Args:
        raw: Raw stored value (None when missing)
        default: Fallback value, also used to pick the target type

    Returns:
        Coerced value, or ``default`` when missing or unparseable
    """
    if raw is None:
        return default

    value = str(raw).strip()
    if value == "":
        return default

    # bool must be checked before int: bool is a subclass of int
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True  # type: ignore[return-value]
        if lowered in _FALSE_VALUES:
            return False  # type: ignore[return-value]
        return default
    if isinstance(default, int):
        try:
            return int(value)  # type: ignore[return-value]
        except ValueError:
            return default
    if isinstance(default, float):
        try:
            return float(value)  # type: ignore[return-value]
        except ValueError:
            return default

    return value  # type: ignore[return-value]


class SystemConfigService:
    """Service for reading and writing system configuration values."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_config(self, key: str, default: T) -> T:
        """Get a typed configuration value.

        Args:
            key: Configuration key
            default: Value returned when the key is missing or invalid

        Returns:
            Stored value coerced to the type of ``default``
        """
        # A savepoint keeps a failed lookup from aborting the caller's transaction
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(SystemConfig.value).where(SystemConfig.key == key)
                )
                raw = result.scalar_one_or_none()
        except Exception as e:
            logger.error(f"Error getting system config {key}: {e}")
            return default

        return coerce_config_value(raw, default)

    async def set_config(
        self, key: str, value: Any, description: Optional[str] = None
    ) -> SystemConfig:
        """Create or update a configuration value.

        Args:
            key: Configuration key
            value: New value (stored as text; booleans as "true"/"false")
            description: Optional human-readable description

        Returns:
            The stored SystemConfig row
        """
        text_value = str(value).lower() if isinstance(value, bool) else str(value)

        config = await self.db.get(SystemConfig, key)
        if config is None:
            config = SystemConfig(key=key, value=text_value, description=description)
            self.db.add(config)
        else:
            config.value = text_value
            if description is not None:
                config.description = description

        await self.db.commit()
        await self.db.refresh(config)

        logger.info(f"System config {key} set to {text_value!r}")
        return config

    async def list_configs(self) -> list[SystemConfig]:
        """List all stored configuration values ordered by key."""
        result = await self.db.execute(select(SystemConfig).order_by(SystemConfig.key))
        return list(result.scalars().all())


def get_system_config_service(db: AsyncSession) -> SystemConfigService:
    """Factory function to create SystemConfigService.

    Args:
        db: Database session

    Returns:
        Configured SystemConfigService instance
    """
    return SystemConfigService(db)
