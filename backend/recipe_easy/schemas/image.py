"""Pydantic schemas for image generation endpoints.

This module defines the request/response schemas for:
- Starting a generation and checking its provider task
- Saving a finished image against a recipe
- Server-side generation jobs on the ARQ queue
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from recipe_easy.services.image_providers import ImageModel, TaskStatus


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must use http or https")
    return v


class IngredientItem(BaseModel):
    """Structured ingredient as sent by the recipe form."""

    name: str = Field(min_length=1, description="Ingredient name")
    amount: Optional[str] = Field(default=None, description="Quantity")
    unit: Optional[str] = Field(default=None, description="Unit of measure")


class GenerateImageRequest(BaseModel):
    """Request body for POST /images/generate."""

    recipe_title: str = Field(min_length=1, max_length=200, description="Recipe title")
    ingredients: list[Union[str, IngredientItem]] = Field(
        default_factory=list, description="Recipe ingredients (first three go into the prompt)"
    )
    language: str = Field(default="en", description="Prompt language (zh selects Wanx)")
    model: Optional[ImageModel] = Field(
        default=None, description="Explicit model; chosen from language when omitted"
    )
    style: Optional[str] = Field(default=None, description="Visual style (Wanx only)")
    size: Optional[str] = Field(default=None, description="Output size such as 1024*1024 (Wanx only)")
    count: int = Field(default=1, ge=1, le=4, description="Number of images (clamped per provider)")
    negative_prompt: Optional[str] = Field(
        default=None, max_length=1000, description="Override the default negative prompt"
    )


class GenerateImageResponse(BaseModel):
    """Response body for an accepted generation."""

    task_id: str = Field(description="Provider task ID to poll")
    model: ImageModel = Field(description="Model the task was submitted to")
    status: TaskStatus = Field(description="Task status at submission")
    prompt: str = Field(description="Prompt sent to the provider")
    credits_remaining: Optional[int] = Field(default=None, description="Balance after charging")
    charged: int = Field(description="Credits charged for this generation")


class TaskStatusResponse(BaseModel):
    """Response body for a provider task status check."""

    task_id: str = Field(description="Provider task ID")
    model: ImageModel = Field(description="Model the task runs on")
    status: TaskStatus = Field(description="Normalized task status")
    image_url: Optional[str] = Field(default=None, description="First result URL when succeeded")
    images: list[str] = Field(default_factory=list, description="All result URLs")
    error: Optional[str] = Field(default=None, description="Provider error when failed")


class SaveImageRequest(BaseModel):
    """Request body for POST /images/save."""

    recipe_id: str = Field(min_length=1, max_length=64, description="Recipe to attach the image to")
    image_url: str = Field(description="Temporary provider URL of the finished image")
    model: Optional[ImageModel] = Field(default=None, description="Model that produced the image")

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, v: str) -> str:
        return _validate_http_url(v)


class RecipeImageResponse(BaseModel):
    """A recipe's current stored image."""

    recipe_id: str = Field(description="Recipe ID")
    image_path: str = Field(description="Storage key")
    image_url: str = Field(description="Public URL of the image")
    image_model: str = Field(description="Model that produced the image")
    expires_at: datetime = Field(description="Advisory expiry time")
    expires_in_days: int = Field(description="Whole days until expiry (0 when expired)")
    replaced_path: Optional[str] = Field(
        default=None, description="Storage key of the image this one replaced"
    )


class ImageJobCreate(BaseModel):
    """Request body for POST /images/jobs.

    Queues server-side polling and persistence for a submitted task.
    """

    task_id: str = Field(min_length=1, description="Provider task ID")
    model: ImageModel = Field(description="Model the task was submitted to")
    recipe_id: str = Field(min_length=1, max_length=64, description="Recipe to attach the image to")


class ImageJobResponse(BaseModel):
    """Status of a queued server-side generation job."""

    job_id: str = Field(description="ARQ job ID")
    status: str = Field(description="Queue status (deferred, queued, in_progress, complete, not_found)")
    success: Optional[bool] = Field(default=None, description="Outcome once complete")
    result: Optional[dict] = Field(default=None, description="Job result once complete")
    error: Optional[str] = Field(default=None, description="Failure description")
    enqueue_time: Optional[datetime] = Field(default=None, description="When the job was queued")
