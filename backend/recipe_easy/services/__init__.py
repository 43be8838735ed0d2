"""Services for handling business logic and external integrations."""

from recipe_easy.services.credit_ledger import (
    CreditLedgerService,
    InsufficientCreditsError,
    InvalidAmountError,
    SpendResult,
    get_credit_ledger,
)
from recipe_easy.services.errors import (
    DownloadError,
    ImagePipelineError,
    PollCancelledError,
    PollTimeoutError,
    ProviderConfigurationError,
    ProviderStatusError,
    SubmissionError,
    TaskFailedError,
    UploadError,
)
from recipe_easy.services.image_generation import (
    GenerationTicket,
    ImageGenerationService,
    get_image_generation_service,
    record_model_usage,
)
from recipe_easy.services.image_persistence import (
    ImagePersistenceService,
    PersistedImage,
    build_image_path,
)
from recipe_easy.services.image_providers import (
    FluxProvider,
    ImageModel,
    ImageProvider,
    TaskState,
    TaskStatus,
    UnsupportedModelError,
    WanxProvider,
    get_image_provider,
)
from recipe_easy.services.r2_storage import R2StorageError, R2StorageService, get_r2_service
from recipe_easy.services.recipe_images import RecipeImageService, get_recipe_image_service
from recipe_easy.services.system_config import SystemConfigService, get_system_config_service
from recipe_easy.services.task_poller import TaskPoller

__all__ = [
    "CreditLedgerService",
    "InsufficientCreditsError",
    "InvalidAmountError",
    "SpendResult",
    "get_credit_ledger",
    "ImagePipelineError",
    "ProviderConfigurationError",
    "SubmissionError",
    "ProviderStatusError",
    "TaskFailedError",
    "PollTimeoutError",
    "PollCancelledError",
    "DownloadError",
    "UploadError",
    "ImageGenerationService",
    "GenerationTicket",
    "get_image_generation_service",
    "record_model_usage",
    "ImagePersistenceService",
    "PersistedImage",
    "build_image_path",
    "ImageModel",
    "ImageProvider",
    "WanxProvider",
    "FluxProvider",
    "TaskState",
    "TaskStatus",
    "UnsupportedModelError",
    "get_image_provider",
    "R2StorageService",
    "R2StorageError",
    "get_r2_service",
    "RecipeImageService",
    "get_recipe_image_service",
    "SystemConfigService",
    "get_system_config_service",
    "TaskPoller",
]
