"""Image generation provider adapters.

Two asynchronous text-to-image backends are supported:
- Wanx (Alibaba DashScope): style and size aware, used for Chinese prompts
- Flux (Replicate predictions): used for everything else

Both follow the same two-call protocol: ``submit`` returns a task id,
``check_status`` reports the task's state. Neither retries internally;
retry and polling policy belong to the caller.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

import httpx

from recipe_easy.core.config import settings
from recipe_easy.services.errors import (
    ProviderConfigurationError,
    ProviderStatusError,
    SubmissionError,
)

logger = logging.getLogger(__name__)

# Default negative prompts, one per provider language
WANX_NEGATIVE_PROMPT = "低质量，模糊，卡通，动画，动漫，绘图，绘画，素描，水印，签名，文字"
FLUX_NEGATIVE_PROMPT = (
    "low quality, blurry, cartoon, animation, anime, drawing, painting, "
    "sketch, watermark, signature, text"
)

# Replicate request defaults
FLUX_IMAGE_SIZE = 1024
FLUX_GUIDANCE_SCALE = 3.5
FLUX_INFERENCE_STEPS = 4

# Error bodies are truncated in messages
_MAX_ERROR_BODY = 500


class ImageModel(str, Enum):
    """Supported image generation models."""

    WANX = "wanx"
    FLUX = "flux"


class TaskStatus(str, Enum):
    """Normalized provider task status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


@dataclass
class SubmittedTask:
    """Provider acknowledgement of an accepted job."""

    task_id: str
    model: ImageModel
    status: TaskStatus = TaskStatus.PENDING


@dataclass
class TaskState:
    """Snapshot of a provider task.

    Never persisted; the provider is the source of truth.
    """

    task_id: str
    model: ImageModel
    status: TaskStatus
    result_urls: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def result_url(self) -> Optional[str]:
        """First result URL, if any."""
        return self.result_urls[0] if self.result_urls else None


class UnsupportedModelError(ValueError):
    """Raised when an unknown image model is requested."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unsupported image model: {model}")


class ImageProvider(ABC):
    """Abstract base class for image generation providers.

    Defines the interface that all providers must implement.
    """

    model: ImageModel
    max_images: int = 1
    default_negative_prompt: str = ""

    def __init__(
        self,
        api_key: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Provider credential (may be empty; checked before use)
            timeout: HTTP timeout in seconds (defaults to HTTP_TIMEOUT_SECONDS)
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        """Fail fast when credentials are missing.

        Raises:
            ProviderConfigurationError: If the provider has no credential
        """
        if not self.is_configured:
            raise ProviderConfigurationError(
                f"Image model {self.model.value} is not configured",
                detail=f"Missing credential for {self.model.value} provider",
            )

    def clamp_count(self, count: Optional[int]) -> int:
        """Clamp a requested image count to [1, max_images]."""
        if not count:
            return 1
        return max(1, min(int(count), self.max_images))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @abstractmethod
    async def submit(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        style: Optional[str] = None,
        size: Optional[str] = None,
        count: int = 1,
    ) -> SubmittedTask:
        """Submit a generation job.

        Args:
            prompt: Text prompt
            negative_prompt: Things to avoid (provider default when omitted)
            style: Visual style (ignored by providers without style support)
            size: Output size (ignored by providers without size support)
            count: Number of images, clamped to the provider's maximum

        Returns:
            SubmittedTask with the provider's task id

        Raises:
            ProviderConfigurationError: If credentials are missing
            SubmissionError: If the provider rejects or cannot be reached
        """
        pass

    @abstractmethod
    async def check_status(self, task_id: str) -> TaskState:
        """Fetch the current state of a task.

        Args:
            task_id: Provider task id returned by submit

        Returns:
            Normalized TaskState

        Raises:
            ProviderConfigurationError: If credentials are missing
            ProviderStatusError: If the status call fails or is malformed
        """
        pass


def _error_body(response: httpx.Response) -> str:
    text = response.text or ""
    return text[:_MAX_ERROR_BODY]


class WanxProvider(ImageProvider):
    """Alibaba DashScope Wanx text-to-image provider."""

    model = ImageModel.WANX
    default_negative_prompt = WANX_NEGATIVE_PROMPT

    # DashScope task statuses
    STATUS_MAP = {
        "PENDING": TaskStatus.PENDING,
        "RUNNING": TaskStatus.RUNNING,
        "SUSPENDED": TaskStatus.RUNNING,
        "SUCCEEDED": TaskStatus.SUCCEEDED,
        "FAILED": TaskStatus.FAILED,
        "CANCELED": TaskStatus.FAILED,
        "UNKNOWN": TaskStatus.FAILED,
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key if api_key is not None else settings.DASHSCOPE_API_KEY,
            timeout=timeout,
            transport=transport,
        )
        self.model_name = settings.WANX_MODEL
        self.submit_url = settings.WANX_SUBMIT_URL
        self.task_url = settings.WANX_TASK_URL.rstrip("/")
        self.max_images = settings.WANX_MAX_IMAGES

    def _headers(self, asynchronous: bool = False) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if asynchronous:
            headers["X-DashScope-Async"] = "enable"
        return headers

    async def submit(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        style: Optional[str] = None,
        size: Optional[str] = None,
        count: int = 1,
    ) -> SubmittedTask:
        self.ensure_configured()

        payload = {
            "model": self.model_name,
            "input": {
                "prompt": prompt,
                "negative_prompt": negative_prompt or self.default_negative_prompt,
            },
            "parameters": {
                "style": style or settings.WANX_DEFAULT_STYLE,
                "size": size or settings.WANX_DEFAULT_SIZE,
                "n": self.clamp_count(count),
            },
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    self.submit_url,
                    json=payload,
                    headers=self._headers(asynchronous=True),
                )
        except httpx.HTTPError as e:
            logger.error(f"Network error submitting Wanx task: {e}")
            raise SubmissionError("Failed to reach Wanx", detail=str(e))

        if response.status_code >= 400:
            logger.error(
                f"Wanx submission rejected with status {response.status_code}: "
                f"{_error_body(response)}"
            )
            raise SubmissionError(
                f"Wanx API error: {response.status_code}",
                detail=_error_body(response),
            )

        try:
            data = response.json()
            task_id = data["output"]["task_id"]
        except (ValueError, KeyError, TypeError):
            raise SubmissionError(
                "Wanx response did not include a task id",
                detail=_error_body(response),
            )

        status = self.STATUS_MAP.get(
            str(data["output"].get("task_status", "PENDING")).upper(), TaskStatus.PENDING
        )

        logger.info(f"Submitted Wanx task {task_id}")
        return SubmittedTask(task_id=task_id, model=self.model, status=status)

    async def check_status(self, task_id: str) -> TaskState:
        self.ensure_configured()

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.task_url}/{task_id}",
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise ProviderStatusError(
                f"Failed to check Wanx task {task_id}", detail=str(e)
            )

        if response.status_code >= 400:
            raise ProviderStatusError(
                f"Wanx status check failed: {response.status_code}",
                detail=_error_body(response),
            )

        try:
            output = response.json()["output"]
            raw_status = str(output["task_status"]).upper()
        except (ValueError, KeyError, TypeError):
            raise ProviderStatusError(
                f"Malformed Wanx status for task {task_id}",
                detail=_error_body(response),
            )

        status = self.STATUS_MAP.get(raw_status)
        if status is None:
            raise ProviderStatusError(f"Unknown Wanx task status: {raw_status}")

        urls = [
            result["url"]
            for result in output.get("results") or []
            if isinstance(result, dict) and result.get("url")
        ]

        error = None
        if status == TaskStatus.FAILED:
            error = output.get("message") or output.get("code") or (
                "Task not found or expired" if raw_status == "UNKNOWN" else None
            )
        elif status == TaskStatus.SUCCEEDED and not urls:
            status = TaskStatus.FAILED
            error = "Provider reported success without an image URL"

        return TaskState(
            task_id=task_id,
            model=self.model,
            status=status,
            result_urls=urls,
            error=error,
        )


class FluxProvider(ImageProvider):
    """Replicate Flux text-to-image provider.

    Flux has no style or size parameters; both are ignored.
    """

    model = ImageModel.FLUX
    default_negative_prompt = FLUX_NEGATIVE_PROMPT

    STATUS_MAP = {
        "starting": TaskStatus.PENDING,
        "processing": TaskStatus.RUNNING,
        "succeeded": TaskStatus.SUCCEEDED,
        "failed": TaskStatus.FAILED,
        "canceled": TaskStatus.FAILED,
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key if api_key is not None else settings.REPLICATE_API_TOKEN,
            timeout=timeout,
            transport=transport,
        )
        self.model_name = settings.FLUX_MODEL
        self.base_url = settings.REPLICATE_BASE_URL.rstrip("/")
        self.max_images = settings.FLUX_MAX_IMAGES

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    async def submit(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        style: Optional[str] = None,
        size: Optional[str] = None,
        count: int = 1,
    ) -> SubmittedTask:
        self.ensure_configured()

        if style or size:
            logger.debug("Flux ignores style and size parameters")

        payload = {
            "version": self.model_name,
            "input": {
                "prompt": prompt,
                "negative_prompt": negative_prompt or self.default_negative_prompt,
                "width": FLUX_IMAGE_SIZE,
                "height": FLUX_IMAGE_SIZE,
                "num_outputs": self.clamp_count(count),
                "guidance_scale": FLUX_GUIDANCE_SCALE,
                "num_inference_steps": FLUX_INFERENCE_STEPS,
            },
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/predictions",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Network error submitting Flux prediction: {e}")
            raise SubmissionError("Failed to reach Replicate", detail=str(e))

        if response.status_code >= 400:
            logger.error(
                f"Flux submission rejected with status {response.status_code}: "
                f"{_error_body(response)}"
            )
            raise SubmissionError(
                f"Flux API error: {response.status_code}",
                detail=_error_body(response),
            )

        try:
            prediction = response.json()
            if prediction.get("error"):
                raise SubmissionError(f"Flux API error: {prediction['error']}")
            task_id = prediction["id"]
        except (ValueError, KeyError, TypeError, AttributeError):
            raise SubmissionError(
                "Replicate response did not include a prediction id",
                detail=_error_body(response),
            )

        status = self.STATUS_MAP.get(str(prediction.get("status", "starting")), TaskStatus.PENDING)

        logger.info(f"Submitted Flux prediction {task_id}")
        return SubmittedTask(task_id=task_id, model=self.model, status=status)

    async def check_status(self, task_id: str) -> TaskState:
        self.ensure_configured()

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/predictions/{task_id}",
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            raise ProviderStatusError(
                f"Failed to check Flux prediction {task_id}", detail=str(e)
            )

        if response.status_code >= 400:
            raise ProviderStatusError(
                f"Flux status check failed: {response.status_code}",
                detail=_error_body(response),
            )

        try:
            prediction = response.json()
            raw_status = str(prediction["status"])
        except (ValueError, KeyError, TypeError):
            raise ProviderStatusError(
                f"Malformed Flux status for prediction {task_id}",
                detail=_error_body(response),
            )

        status = self.STATUS_MAP.get(raw_status)
        if status is None:
            raise ProviderStatusError(f"Unknown Flux prediction status: {raw_status}")

        output = prediction.get("output")
        if isinstance(output, str):
            urls = [output]
        elif isinstance(output, list):
            urls = [url for url in output if isinstance(url, str) and url]
        else:
            urls = []

        error = None
        if status == TaskStatus.FAILED:
            error = prediction.get("error") or (
                "Prediction was canceled" if raw_status == "canceled" else None
            )
        elif status == TaskStatus.SUCCEEDED and not urls:
            status = TaskStatus.FAILED
            error = "Provider reported success without an image URL"

        return TaskState(
            task_id=task_id,
            model=self.model,
            status=status,
            result_urls=urls,
            error=str(error) if error is not None else None,
        )


_PROVIDERS: dict[ImageModel, type[ImageProvider]] = {
    ImageModel.WANX: WanxProvider,
    ImageModel.FLUX: FluxProvider,
}


def parse_image_model(model: Union[str, ImageModel]) -> ImageModel:
    """Parse a model name.

    Raises:
        UnsupportedModelError: If the name is not a known model
    """
    if isinstance(model, ImageModel):
        return model
    try:
        return ImageModel(str(model).lower())
    except ValueError:
        raise UnsupportedModelError(str(model))


def get_image_provider(
    model: Union[str, ImageModel],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ImageProvider:
    """Factory function to create an image provider.

    Args:
        model: Model name ("wanx" or "flux")
        transport: Optional httpx transport (used by tests)

    Returns:
        Provider instance for the model

    Raises:
        UnsupportedModelError: If the model is unknown
    """
    provider_cls = _PROVIDERS[parse_image_model(model)]
    return provider_cls(transport=transport)


def select_model_for_language(language: Optional[str]) -> ImageModel:
    """Chinese prompts go to Wanx, everything else to Flux."""
    if language and language.lower().startswith("zh"):
        return ImageModel.WANX
    return ImageModel.FLUX


def _ingredient_name(ingredient: Any) -> str:
    if isinstance(ingredient, dict):
        return str(ingredient.get("name") or "").strip()
    # "tomato(ripe) x2" -> "tomato"
    text = str(ingredient).strip()
    return text.split(" ")[0].split("(")[0].strip()


def build_recipe_image_prompt(
    title: str,
    ingredients: Optional[Sequence[Any]] = None,
    language: Optional[str] = "en",
) -> str:
    """Build a food photography prompt for a recipe.

    Uses at most the first three usable ingredient names. Ingredients may
    be plain strings or mappings with a ``name`` key.

    Args:
        title: Recipe title
        ingredients: Ingredient strings or dicts
        language: Prompt language; "zh*" produces a Chinese prompt

    Returns:
        Prompt text
    """
    chinese = select_model_for_language(language) == ImageModel.WANX

    names = []
    for ingredient in ingredients or []:
        name = _ingredient_name(ingredient)
        if name and not re.fullmatch(r"\d+", name):
            names.append(name)
    main_ingredients = names[:3]

    if chinese:
        prompt = f"美食照片：{title}"
        if main_ingredients:
            prompt += f"。主要原料：{'、'.join(main_ingredients)}"
        prompt += (
            "。背景干净简约，突出主体，高清晰度特写镜头，柔和自然光线下拍摄，"
            "展现食材的质感与色彩层次，营造温暖诱人的食欲氛围。"
        )
    else:
        prompt = f"Professional food photograph of {title}"
        if main_ingredients:
            prompt += f" with {', '.join(main_ingredients)}"
        prompt += (
            ". Clean and minimalist background, highlighting the subject, "
            "high-definition close-up shot, captured under soft natural lighting "
            "to showcase the texture and color layers of the ingredients, "
            "creating a warm and appetizing atmosphere."
        )

    return prompt
