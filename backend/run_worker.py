#!/usr/bin/env python3
"""
Entrypoint for the Recipe Easy image worker.

Runs the ARQ worker that polls provider tasks, persists finished images
and, when enabled, sweeps expired images.
"""

import logging
import sys

from arq.worker import run_worker

from recipe_easy.core.arq_config import WorkerSettings
from recipe_easy.core.config import settings

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point for worker service."""
    logger.info("Starting Recipe Easy image worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
