"""arq worker runner.

Run with: python -m services.queue.worker
Or: arq services.queue.tasks.WorkerSettings

This module configures and runs the analysis worker.
"""

import logging

from arq import run_worker

from services.queue.tasks import WorkerSettings, get_redis_settings
from services.shared.config import get_settings

logger = logging.getLogger(__name__)


def configure_worker() -> type[WorkerSettings]:
    """Apply configuration to the worker settings class."""
    settings = get_settings()

    WorkerSettings.redis_settings = get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout
    return WorkerSettings


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    run_worker(configure_worker())  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
