"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Object storage
- Caller identity (supplied by the upstream auth layer as headers)
- Translating image pipeline errors into HTTP errors
"""

from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.core.database import get_db as get_db_session
from recipe_easy.services.errors import (
    DownloadError,
    ImageOwnershipError,
    ImagePipelineError,
    PollCancelledError,
    PollTimeoutError,
    ProviderConfigurationError,
    ProviderStatusError,
    SubmissionError,
    TaskFailedError,
    UploadError,
)
from recipe_easy.services.r2_storage import R2StorageService, get_r2_service

ADMIN_ROLE = "admin"

# Most specific classes first
_PIPELINE_STATUS = [
    (ProviderConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SubmissionError, status.HTTP_502_BAD_GATEWAY),
    (ProviderStatusError, status.HTTP_502_BAD_GATEWAY),
    (TaskFailedError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PollTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (PollCancelledError, status.HTTP_409_CONFLICT),
    (ImageOwnershipError, status.HTTP_403_FORBIDDEN),
    (DownloadError, status.HTTP_502_BAD_GATEWAY),
    (UploadError, status.HTTP_502_BAD_GATEWAY),
]


@dataclass
class Caller:
    """Identity of the user making a request."""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


def get_storage() -> R2StorageService:
    """Dependency to get the R2 storage service."""
    return get_r2_service()


async def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    """Dependency to get the caller from identity headers.

    Args:
        x_user_id: Authenticated user ID (X-User-Id)
        x_user_role: Caller role (X-User-Role), "admin" for administrators

    Returns:
        Caller

    Raises:
        HTTPException: 401 if no user ID was supplied
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User must be logged in",
        )
    role = (x_user_role or "user").strip().lower()
    return Caller(user_id=user_id, role=role)


async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """Dependency to verify the caller is an administrator.

    Raises:
        HTTPException: 403 if the caller is not an administrator
    """
    if not caller.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return caller


def pipeline_http_exception(error: ImagePipelineError) -> HTTPException:
    """Translate an image pipeline error into an HTTPException.

    The detail carries the error code and whether retrying makes sense.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_cls, code in _PIPELINE_STATUS:
        if isinstance(error, error_cls):
            status_code = code
            break

    message = error.message
    if isinstance(error, (DownloadError, UploadError)):
        message = f"The image was generated but could not be saved: {error.message}"
    elif isinstance(error, ProviderConfigurationError):
        message = f"{error.message}. Please contact support."

    return HTTPException(
        status_code=status_code,
        detail={
            "code": error.code,
            "message": message,
            "retryable": error.retryable,
        },
    )
