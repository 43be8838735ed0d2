"""Tests for the task polling state machine."""

import asyncio
from typing import Optional

import pytest

from recipe_easy.services.errors import (
    PollCancelledError,
    PollTimeoutError,
    ProviderStatusError,
    TaskFailedError,
)
from recipe_easy.services.image_providers import (
    ImageModel,
    ImageProvider,
    SubmittedTask,
    TaskState,
    TaskStatus,
)
from recipe_easy.services.task_poller import TaskPoller


class ScriptedProvider(ImageProvider):
    """Provider whose status checks replay a fixed script.

    Script items are TaskStatus values, TaskState objects or exceptions.
    The last item repeats once the script runs out.
    """

    model = ImageModel.FLUX

    def __init__(self, script):
        super().__init__(api_key="test-key")
        self.script = list(script)
        self.calls = 0

    async def submit(self, prompt, negative_prompt=None, style=None, size=None, count=1):
        return SubmittedTask(task_id="task-1", model=self.model)

    async def check_status(self, task_id: str) -> TaskState:
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        if isinstance(item, TaskState):
            return item
        return _state(task_id, item)


def _state(
    task_id: str, status: TaskStatus, url: Optional[str] = None, error: Optional[str] = None
) -> TaskState:
    if status == TaskStatus.SUCCEEDED and url is None:
        url = "https://ext/img.png"
    return TaskState(
        task_id=task_id,
        model=ImageModel.FLUX,
        status=status,
        result_urls=[url] if url else [],
        error=error,
    )


# ============================================================================
# Terminal Transition Tests
# ============================================================================

@pytest.mark.asyncio
async def test_poll_until_succeeded():
    """Test PENDING polls followed by SUCCEEDED stop exactly once."""
    provider = ScriptedProvider(
        [TaskStatus.PENDING, TaskStatus.PENDING, TaskStatus.PENDING, TaskStatus.SUCCEEDED]
    )
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=10)

    state = await poller.poll("task-1")

    assert state.status == TaskStatus.SUCCEEDED
    assert state.result_url == "https://ext/img.png"
    assert provider.calls == 4


@pytest.mark.asyncio
async def test_poll_failed_raises_task_failed_with_provider_error():
    """Test that FAILED propagates the provider error and is not a timeout."""
    provider = ScriptedProvider(
        [TaskStatus.RUNNING, _state("task-1", TaskStatus.FAILED, error="NSFW content")]
    )
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=10)

    with pytest.raises(TaskFailedError) as exc_info:
        await poller.poll("task-1")

    assert not isinstance(exc_info.value, PollTimeoutError)
    assert exc_info.value.provider_error == "NSFW content"
    assert exc_info.value.code == "TASK_FAILED"
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_poll_times_out_at_max_attempts():
    """Test that a task that never finishes stops at max_attempts."""
    provider = ScriptedProvider([TaskStatus.RUNNING])
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=5)

    with pytest.raises(PollTimeoutError) as exc_info:
        await poller.poll("task-1")

    assert exc_info.value.attempts == 5
    assert exc_info.value.code == "TIMEOUT"
    assert provider.calls == 5


@pytest.mark.asyncio
async def test_transient_status_errors_count_as_attempts():
    """Test that status check failures keep polling within the budget."""
    provider = ScriptedProvider(
        [ProviderStatusError("502 from provider"), TaskStatus.RUNNING, TaskStatus.SUCCEEDED]
    )
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=3)

    state = await poller.poll("task-1")

    assert state.status == TaskStatus.SUCCEEDED
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_only_status_errors_time_out():
    """Test that a provider that only errors ends in a timeout."""
    provider = ScriptedProvider([ProviderStatusError("unreachable")])
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=3)

    with pytest.raises(PollTimeoutError):
        await poller.poll("task-1")

    assert provider.calls == 3


# ============================================================================
# Update Callback Tests
# ============================================================================

@pytest.mark.asyncio
async def test_on_update_only_fires_on_status_change():
    """Test that on_update sees each non-terminal status change once."""
    provider = ScriptedProvider(
        [
            TaskStatus.PENDING,
            TaskStatus.PENDING,
            TaskStatus.RUNNING,
            TaskStatus.RUNNING,
            TaskStatus.SUCCEEDED,
        ]
    )
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=10)
    seen = []

    await poller.poll("task-1", on_update=lambda state: seen.append(state.status))

    assert seen == [TaskStatus.PENDING, TaskStatus.RUNNING]


@pytest.mark.asyncio
async def test_async_on_update_is_awaited():
    """Test that coroutine callbacks are awaited."""
    provider = ScriptedProvider([TaskStatus.RUNNING, TaskStatus.SUCCEEDED])
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=10)
    seen = []

    async def on_update(state: TaskState):
        seen.append(state.status)

    await poller.poll("task-1", on_update=on_update)

    assert seen == [TaskStatus.RUNNING]


# ============================================================================
# Cancellation Tests
# ============================================================================

@pytest.mark.asyncio
async def test_cancel_before_first_check():
    """Test that an already-set event stops polling with no status calls."""
    provider = ScriptedProvider([TaskStatus.RUNNING])
    poller = TaskPoller(provider, interval_seconds=0, max_attempts=10)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(PollCancelledError):
        await poller.poll("task-1", cancel_event=cancel)

    assert provider.calls == 0


@pytest.mark.asyncio
async def test_cancel_during_wait_stops_polling():
    """Test that setting the event mid-wait ends polling without more updates."""
    provider = ScriptedProvider([TaskStatus.RUNNING])
    poller = TaskPoller(provider, interval_seconds=0.05, max_attempts=1000)
    cancel = asyncio.Event()
    updates = []

    def on_update(state: TaskState):
        updates.append(state.status)
        cancel.set()

    with pytest.raises(PollCancelledError) as exc_info:
        await poller.poll("task-1", cancel_event=cancel, on_update=on_update)

    assert exc_info.value.code == "CANCELLED"
    assert provider.calls == 1
    assert updates == [TaskStatus.RUNNING]


@pytest.mark.asyncio
async def test_cancelling_the_task_stops_polling():
    """Test that cancelling the awaiting asyncio task stops the loop."""
    provider = ScriptedProvider([TaskStatus.RUNNING])
    poller = TaskPoller(provider, interval_seconds=0.01, max_attempts=100000)

    task = asyncio.create_task(poller.poll("task-1"))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    calls_at_cancel = provider.calls
    await asyncio.sleep(0.05)
    assert provider.calls == calls_at_cancel


# ============================================================================
# Configuration Tests
# ============================================================================

def test_poller_rejects_invalid_budget():
    """Test that a non-positive attempt budget is rejected."""
    provider = ScriptedProvider([TaskStatus.RUNNING])

    with pytest.raises(ValueError):
        TaskPoller(provider, interval_seconds=0, max_attempts=0)

    with pytest.raises(ValueError):
        TaskPoller(provider, interval_seconds=-1, max_attempts=1)
