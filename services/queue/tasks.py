"""Async task definitions for invoice analysis.

Uses arq (async Redis queue) for background task processing. The API
enqueues ``analyze_invoice`` after an invoice is stored; the worker runs the
analysis orchestrator for it.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from typing import Any

from arq.connections import RedisSettings

from services.shared.config import get_settings
from services.shared.container import ServiceContainer

logger = logging.getLogger(__name__)


async def analyze_invoice(ctx: dict[str, Any], invoice_id: str) -> dict[str, Any]:
    """Run the compliance analysis for a stored invoice.

    The orchestrator is synchronous (database and provider calls), so it runs
    on a worker thread to keep the event loop free for other jobs.

    Args:
        ctx: arq context (contains the service container)
        invoice_id: Invoice to analyze

    Returns:
        AnalysisOutcome as dict
    """
    logger.info(f"Processing analysis job for invoice {invoice_id}")
    container: ServiceContainer = ctx["container"]

    outcome = await asyncio.to_thread(container.orchestrator.analyze, invoice_id)

    logger.info(f"Analysis job for invoice {invoice_id} finished with status: {outcome.status}")
    return outcome.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts. Initializes shared services
    to avoid re-creating them for each job.
    """
    logger.info("Initializing worker services...")
    ctx["container"] = ServiceContainer.build(get_settings())
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    container: ServiceContainer | None = ctx.get("container")
    if container is not None:
        container.close()


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from configuration."""
    return RedisSettings.from_dsn(get_settings().redis_url)


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout and concurrency
    """

    functions = [analyze_invoice]
    on_startup = startup
    on_shutdown = shutdown

    # Set from configuration by the worker runner
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300
