"""Image generation orchestration.

Ties the credit ledger, the provider adapters, the poller and the
persistence pipeline together. The order of operations on start is fixed:

1. provider configuration check (no ledger access on failure)
2. advisory credit check for callers without unlimited credits
3. provider submission (no ledger mutation on failure)
4. atomic spend, the authoritative credit gate

Credits are never refunded when a job later fails, times out or cannot
be saved.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_easy.core.database import get_session_factory
from recipe_easy.models.credit_transaction import TransactionReason
from recipe_easy.models.model_usage import ModelUsageRecord
from recipe_easy.services.credit_ledger import CreditLedgerService, InsufficientCreditsError
from recipe_easy.services.image_persistence import ImagePersistenceService, PersistedImage
from recipe_easy.services.image_providers import (
    ImageModel,
    ImageProvider,
    TaskState,
    TaskStatus,
    build_recipe_image_prompt,
    get_image_provider,
    parse_image_model,
    select_model_for_language,
)
from recipe_easy.services.r2_storage import R2StorageService
from recipe_easy.services.task_poller import OnUpdate, TaskPoller

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ImageModel], ImageProvider]


@dataclass
class GenerationTicket:
    """Handle returned to the client after a successful start."""

    task_id: str
    model: ImageModel
    status: TaskStatus
    prompt: str
    credits_remaining: Optional[int]
    charged: int


class ImageGenerationService:
    """Service for starting, checking and completing image generations."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[CreditLedgerService] = None,
        storage: Optional[R2StorageService] = None,
        provider_factory: ProviderFactory = get_image_provider,
        download_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the orchestrator.

        Args:
            db: Database session
            ledger: Credit ledger (created from db if omitted)
            storage: Object store for persistence (cached R2 service if omitted)
            provider_factory: Callable returning a provider for a model
            download_transport: Optional httpx transport for result downloads
        """
        self.db = db
        self.ledger = ledger or CreditLedgerService(db)
        self.storage = storage
        self.provider_factory = provider_factory
        self.download_transport = download_transport

    def _resolve_model(
        self, model: Optional[Union[str, ImageModel]], language: Optional[str]
    ) -> ImageModel:
        if model:
            return parse_image_model(model)
        return select_model_for_language(language)

    async def start_generation(
        self,
        user_id: str,
        recipe_title: str,
        ingredients: Optional[Sequence[Any]] = None,
        language: Optional[str] = "en",
        is_admin: bool = False,
        model: Optional[Union[str, ImageModel]] = None,
        style: Optional[str] = None,
        size: Optional[str] = None,
        count: int = 1,
        negative_prompt: Optional[str] = None,
    ) -> GenerationTicket:
        """
        Submit an image generation job and charge for it.

        Args:
            user_id: Caller's user ID
            recipe_title: Recipe title used in the prompt
            ingredients: Recipe ingredients (first three are used)
            language: Prompt language, also picks the model when none is given
            is_admin: Whether the caller holds the administrator role
            model: Explicit model ("wanx" or "flux")
            style: Visual style (Wanx only)
            size: Output size (Wanx only)
            count: Number of images, clamped per provider
            negative_prompt: Override for the provider's default negative prompt

        Returns:
            GenerationTicket with the provider task id and charge details

        Raises:
            UnsupportedModelError: If the model is unknown
            ProviderConfigurationError: If the provider has no credentials
            InsufficientCreditsError: If the caller cannot pay
            SubmissionError: If the provider does not accept the job
        """
        image_model = self._resolve_model(model, language)
        provider = self.provider_factory(image_model)
        provider.ensure_configured()

        unlimited = await self.ledger.is_unlimited(is_admin)
        cost = await self.ledger.get_generation_cost()

        if not unlimited:
            balance = await self.ledger.get_or_create(user_id)
            if balance.credits < cost:
                raise InsufficientCreditsError(user_id, required=cost, available=balance.credits)

        prompt = build_recipe_image_prompt(recipe_title, ingredients, language)
        task = await provider.submit(
            prompt,
            negative_prompt=negative_prompt,
            style=style,
            size=size,
            count=count,
        )

        if unlimited:
            logger.info(
                f"Admin {user_id} started {image_model.value} task {task.task_id} without charge"
            )
            balance = await self.ledger.get_or_create(user_id)
            return GenerationTicket(
                task_id=task.task_id,
                model=image_model,
                status=task.status,
                prompt=prompt,
                credits_remaining=balance.credits,
                charged=0,
            )

        try:
            spent = await self.ledger.spend(
                user_id,
                cost,
                reason=TransactionReason.GENERATION,
                description=f"Image generation ({image_model.value}, task {task.task_id})",
            )
        except InsufficientCreditsError:
            logger.warning(
                f"Credits for user {user_id} ran out after submitting "
                f"{image_model.value} task {task.task_id}; the provider task is orphaned"
            )
            raise

        logger.info(
            f"User {user_id} started {image_model.value} task {task.task_id}, "
            f"charged {cost}, {spent.balance.credits} credits left"
        )
        return GenerationTicket(
            task_id=task.task_id,
            model=image_model,
            status=task.status,
            prompt=prompt,
            credits_remaining=spent.balance.credits,
            charged=cost,
        )

    async def check_task(self, task_id: str, model: Union[str, ImageModel]) -> TaskState:
        """Check a task's status once."""
        provider = self.provider_factory(parse_image_model(model))
        return await provider.check_status(task_id)

    async def save_image(
        self,
        user_id: str,
        recipe_id: str,
        source_url: str,
        model: Union[str, ImageModel, None] = None,
    ) -> PersistedImage:
        """Persist a finished provider result as a recipe's image."""
        image_model = parse_image_model(model).value if model else "unknown"
        persistence = ImagePersistenceService(
            self.db, storage=self.storage, transport=self.download_transport
        )
        return await persistence.persist(source_url, user_id, recipe_id, image_model)

    async def complete_generation(
        self,
        task_id: str,
        model: Union[str, ImageModel],
        user_id: str,
        recipe_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_update: Optional[OnUpdate] = None,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> PersistedImage:
        """
        Poll a task to completion and persist its first image.

        Args:
            task_id: Provider task id
            model: Model the task was submitted to
            user_id: Image owner
            recipe_id: Recipe the image belongs to
            cancel_event: Event that cancels polling
            on_update: Callback for non-terminal status changes
            interval_seconds: Poll interval override
            max_attempts: Poll attempt budget override

        Returns:
            PersistedImage for the stored result

        Raises:
            TaskFailedError, PollTimeoutError, PollCancelledError: From polling
            DownloadError, UploadError: From persistence
        """
        image_model = parse_image_model(model)
        poller = TaskPoller(
            self.provider_factory(image_model),
            interval_seconds=interval_seconds,
            max_attempts=max_attempts,
        )
        state = await poller.poll(task_id, cancel_event=cancel_event, on_update=on_update)
        return await self.save_image(user_id, recipe_id, state.result_url, image_model)


async def record_model_usage(
    model_name: str,
    model_response_id: str,
    user_id: Optional[str],
    request_details: Optional[dict[str, Any]] = None,
) -> None:
    """Record a model invocation for auditing.

    Runs after the response in its own session. Failures are logged and
    never reach the caller.
    """
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            session.add(
                ModelUsageRecord(
                    model_name=model_name,
                    model_type="image",
                    model_response_id=model_response_id,
                    user_id=user_id,
                    request_details=json.dumps(request_details, ensure_ascii=False)
                    if request_details
                    else None,
                )
            )
            await session.commit()
    except Exception as e:
        logger.error(f"Failed to record model usage for {model_name} ({model_response_id}): {e}")


def get_image_generation_service(db: AsyncSession) -> ImageGenerationService:
    """Factory function to create ImageGenerationService."""
    return ImageGenerationService(db)
