"""Error taxonomy shared by the image generation pipeline.

Every failure that crosses back from a provider, the object store or the
download step is converted into one of these before it reaches a router, so
callers can tell a transient failure from a configuration problem.
"""

from typing import Optional


class ImagePipelineError(Exception):
    """Base class for image pipeline failures."""

    code: str = "IMAGE_PIPELINE_ERROR"
    retryable: bool = False

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ProviderConfigurationError(ImagePipelineError):
    """Raised when provider credentials or settings are missing."""

    code = "CONFIGURATION_ERROR"


class SubmissionError(ImagePipelineError):
    """Raised when a provider rejects or fails to accept a job."""

    code = "SUBMISSION_ERROR"
    retryable = True


class ProviderStatusError(ImagePipelineError):
    """Raised when a status check cannot be completed."""

    code = "STATUS_CHECK_ERROR"
    retryable = True


class TaskFailedError(ImagePipelineError):
    """Raised when the provider reports the task as FAILED."""

    code = "TASK_FAILED"

    def __init__(self, task_id: str, error: Optional[str]):
        self.task_id = task_id
        self.provider_error = error or "Image generation task failed"
        super().__init__(self.provider_error)


class PollTimeoutError(ImagePipelineError):
    """Raised when polling exceeds the configured attempt budget."""

    code = "TIMEOUT"
    retryable = True

    def __init__(self, task_id: str, attempts: int):
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(
            f"Image generation task {task_id} did not finish after {attempts} checks"
        )


class PollCancelledError(ImagePipelineError):
    """Raised when polling is cancelled by the caller."""

    code = "CANCELLED"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Polling for task {task_id} was cancelled")


class DownloadError(ImagePipelineError):
    """Raised when the provider's result cannot be fetched."""

    code = "DOWNLOAD_ERROR"
    retryable = True


class UploadError(ImagePipelineError):
    """Raised when the image cannot be stored or recorded."""

    code = "UPLOAD_ERROR"
    retryable = True


class ImageOwnershipError(ImagePipelineError):
    """Raised when a recipe's image belongs to a different user."""

    code = "FORBIDDEN"

    def __init__(self, recipe_id: str):
        self.recipe_id = recipe_id
        super().__init__(f"The image for recipe {recipe_id} belongs to another user")
