"""ARQ (Async Redis Queue) configuration for image jobs.

This module provides the configuration for ARQ workers and job enqueueing.
The worker runs server-side "poll then persist" jobs and, when enabled,
the hourly expired-image sweep.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from arq import create_pool, cron
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job, JobStatus

from recipe_easy.core.config import settings
from recipe_easy.workers.arq_tasks import (
    generate_recipe_image,
    shutdown,
    startup,
    sweep_expired_images,
)

logger = logging.getLogger(__name__)

QUEUE_NAME = "recipe_easy:images"


def get_redis_settings() -> RedisSettings:
    """Get ARQ Redis settings from application config."""
    return RedisSettings.from_dsn(settings.REDIS_URL)


def get_cron_jobs() -> list:
    """Cron jobs for the worker; the expiry sweep only runs when enabled."""
    if not settings.IMAGE_EXPIRY_SWEEP_ENABLED:
        return []
    return [cron(sweep_expired_images, minute=0, run_at_startup=False)]


class WorkerSettings:
    """ARQ Worker configuration.

    This class is discovered by the ARQ CLI when starting workers.
    Usage: arq recipe_easy.core.arq_config.WorkerSettings
    """

    redis_settings = get_redis_settings()
    queue_name = QUEUE_NAME

    functions = [generate_recipe_image, sweep_expired_images]
    cron_jobs = get_cron_jobs()

    on_startup = startup
    on_shutdown = shutdown

    # Worker behavior
    max_jobs = 10
    # Enough for a full polling budget plus download and upload
    job_timeout = int(settings.POLL_INTERVAL_SECONDS * settings.POLL_MAX_ATTEMPTS) + 120
    # Credits were already spent; a failed job is reported, not retried
    max_tries = 1
    allow_abort_jobs = True
    poll_delay = 0.5
    health_check_interval = 30


# Global ARQ pool for enqueueing jobs
_arq_pool: Optional[ArqRedis] = None


async def get_arq_pool() -> ArqRedis:
    """Get or create the global ARQ Redis pool.

    Returns:
        ArqRedis connection pool for enqueueing jobs
    """
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(get_redis_settings(), default_queue_name=QUEUE_NAME)
    return _arq_pool


async def close_arq_pool() -> None:
    """Close the global ARQ Redis pool."""
    global _arq_pool
    if _arq_pool is not None:
        await _arq_pool.close()
        _arq_pool = None


async def enqueue_job(
    function_name: str,
    *args: Any,
    _job_id: Optional[str] = None,
    _defer_by: Optional[timedelta] = None,
    **kwargs: Any,
) -> Optional[Job]:
    """Enqueue a job to the ARQ queue.

    Args:
        function_name: Name of the function to execute
        *args: Positional arguments for the function
        _job_id: Optional custom job ID (for deduplication)
        _defer_by: Timedelta to defer execution by
        **kwargs: Keyword arguments for the function

    Returns:
        Job object if enqueued, None if duplicate job ID exists
    """
    pool = await get_arq_pool()

    job = await pool.enqueue_job(
        function_name,
        *args,
        _job_id=_job_id,
        _queue_name=QUEUE_NAME,
        _defer_by=_defer_by,
        **kwargs,
    )

    if job is None:
        logger.warning(f"Job with ID {_job_id} already exists, skipping")
    else:
        logger.info(f"Enqueued job {function_name} with ID {job.job_id}")

    return job


async def get_job_status(job_id: str) -> dict:
    """Get the status of a job from ARQ.

    Args:
        job_id: The job ID to check

    Returns:
        Dict with status, enqueue time and, once complete, the outcome
    """
    pool = await get_arq_pool()
    job = Job(job_id=job_id, redis=pool, _queue_name=QUEUE_NAME)

    status = await job.status()
    data: dict[str, Any] = {"job_id": job_id, "status": status.value}

    if status == JobStatus.complete:
        result = await job.result_info()
        if result is not None:
            data["success"] = result.success
            data["enqueue_time"] = result.enqueue_time
            if result.success:
                data["result"] = result.result
            else:
                data["error"] = str(result.result)
    elif status != JobStatus.not_found:
        info = await job.info()
        if info is not None:
            data["enqueue_time"] = info.enqueue_time

    return data


async def abort_job(job_id: str, timeout: float = 5.0) -> bool:
    """Abort a queued or running job.

    Aborting a running image job cancels its polling loop.

    Args:
        job_id: The job ID to abort
        timeout: Seconds to wait for the worker to confirm

    Returns:
        True if the job was confirmed aborted, False otherwise
    """
    pool = await get_arq_pool()
    job = Job(job_id=job_id, redis=pool, _queue_name=QUEUE_NAME)

    aborted = await job.abort(timeout=timeout)
    if aborted:
        logger.info(f"Aborted job {job_id}")
    else:
        logger.warning(f"Abort of job {job_id} requested but not confirmed")
    return aborted
