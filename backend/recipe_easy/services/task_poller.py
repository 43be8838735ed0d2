"""Polling loop that drives a provider task to a terminal state."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from recipe_easy.core.config import settings
from recipe_easy.services.errors import (
    PollCancelledError,
    PollTimeoutError,
    ProviderStatusError,
    TaskFailedError,
)
from recipe_easy.services.image_providers import ImageProvider, TaskState, TaskStatus

logger = logging.getLogger(__name__)

OnUpdate = Callable[[TaskState], Union[None, Awaitable[None]]]


class TaskPoller:
    """Polls a provider until a task succeeds, fails, times out or is cancelled.

    Each ``poll`` call is independent and holds no shared state, so one
    poller can serve many tasks concurrently.

    Attributes:
        provider: Provider used for status checks
        interval_seconds: Delay before each status check
        max_attempts: Maximum number of status checks
    """

    def __init__(
        self,
        provider: ImageProvider,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.provider = provider
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.POLL_INTERVAL_SECONDS
        )
        self.max_attempts = max_attempts if max_attempts is not None else settings.POLL_MAX_ATTEMPTS

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")

    async def poll(
        self,
        task_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        on_update: Optional[OnUpdate] = None,
    ) -> TaskState:
        """Poll a task until it reaches a terminal state.

        Args:
            task_id: Provider task id
            cancel_event: Setting this event stops polling before the next check
            on_update: Called with each non-terminal state whose status changed

        Returns:
            The SUCCEEDED TaskState (with at least one result URL)

        Raises:
            TaskFailedError: Provider reported FAILED (error kept verbatim)
            PollTimeoutError: max_attempts checks without a terminal state
            PollCancelledError: cancel_event was set
        """
        last_status: Optional[TaskStatus] = None

        for attempt in range(1, self.max_attempts + 1):
            await self._wait(task_id, cancel_event)

            try:
                state = await self.provider.check_status(task_id)
            except ProviderStatusError as e:
                # Transient; the attempt still counts against the budget
                logger.warning(
                    f"Status check {attempt}/{self.max_attempts} for task {task_id} "
                    f"failed: {e}"
                )
                continue

            if cancel_event is not None and cancel_event.is_set():
                raise self._cancelled(task_id)

            if state.status == TaskStatus.SUCCEEDED:
                logger.info(
                    f"Task {task_id} succeeded after {attempt} checks "
                    f"({len(state.result_urls)} images)"
                )
                return state

            if state.status == TaskStatus.FAILED:
                logger.error(f"Task {task_id} failed at provider: {state.error}")
                raise TaskFailedError(task_id, state.error)

            logger.debug(
                f"Task {task_id} check {attempt}/{self.max_attempts}: {state.status.value}"
            )
            if state.status != last_status:
                last_status = state.status
                if on_update is not None:
                    result = on_update(state)
                    if inspect.isawaitable(result):
                        await result

        logger.error(
            f"Task {task_id} timed out after {self.max_attempts} checks "
            f"(last status {last_status.value if last_status else 'unknown'})"
        )
        raise PollTimeoutError(task_id, self.max_attempts)

    async def _wait(self, task_id: str, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await asyncio.sleep(self.interval_seconds)
            return

        if cancel_event.is_set():
            raise self._cancelled(task_id)

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return

        raise self._cancelled(task_id)

    @staticmethod
    def _cancelled(task_id: str) -> PollCancelledError:
        logger.info(f"Polling for task {task_id} cancelled")
        return PollCancelledError(task_id)
