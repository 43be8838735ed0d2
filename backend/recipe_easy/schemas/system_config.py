"""Pydantic schemas for system configuration endpoints."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class SystemConfigResponse(BaseModel):
    """A stored configuration value."""

    key: str = Field(description="Configuration key")
    value: str = Field(description="Stored value (text)")
    description: Optional[str] = Field(default=None, description="What the value controls")
    updated_at: Optional[datetime] = Field(default=None, description="Last change")

    class Config:
        from_attributes = True


class SystemConfigUpdate(BaseModel):
    """Request model for setting a configuration value."""

    key: str = Field(min_length=1, max_length=100, description="Configuration key")
    value: Union[bool, int, float, str] = Field(description="New value")
    description: Optional[str] = Field(default=None, max_length=500, description="Description")
