"""Hand-off of analysis jobs away from the request path.

``ArqAnalysisQueue`` enqueues a job for the arq worker. ``LocalAnalysisQueue``
runs the orchestrator on a worker thread in the API process and keeps track of
its tasks so shutdown can wait for them.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from typing import Protocol

from arq.connections import ArqRedis

from services.analysis.orchestrator import AnalysisOrchestrator, AnalysisOutcome

logger = logging.getLogger(__name__)

ANALYZE_INVOICE_TASK = "analyze_invoice"


def analysis_job_id(invoice_id: str) -> str:
    return f"analyze:{invoice_id}"


class AnalysisQueue(Protocol):
    """Anything that can schedule the analysis of a stored invoice."""

    async def enqueue(self, invoice_id: str) -> str | None:
        """Schedule analysis and return a job reference."""
        ...

    async def close(self) -> None:
        """Release queue resources."""
        ...


class ArqAnalysisQueue:
    """Enqueues analysis jobs on Redis for the arq worker."""

    def __init__(self, pool: ArqRedis) -> None:
        self.pool = pool

    async def enqueue(self, invoice_id: str) -> str | None:
        job = await self.pool.enqueue_job(
            ANALYZE_INVOICE_TASK,
            invoice_id,
            _job_id=analysis_job_id(invoice_id),
        )
        if job is None:
            logger.info(f"Analysis job for invoice {invoice_id} already queued")
            return None
        logger.info(f"Queued analysis job {job.job_id}")
        return str(job.job_id)

    async def close(self) -> None:
        await self.pool.aclose()


class LocalAnalysisQueue:
    """Runs analyses as background tasks of the current event loop."""

    def __init__(self, orchestrator: AnalysisOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._tasks: set[asyncio.Task[AnalysisOutcome]] = set()

    async def enqueue(self, invoice_id: str) -> str | None:
        task = asyncio.create_task(
            asyncio.to_thread(self.orchestrator.analyze, invoice_id),
            name=analysis_job_id(invoice_id),
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Scheduled in-process analysis for invoice {invoice_id}")
        return task.get_name()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> list[AnalysisOutcome]:
        """Wait for every scheduled analysis to finish."""
        if not self._tasks:
            return []
        return list(await asyncio.gather(*list(self._tasks)))

    async def close(self) -> None:
        await self.drain()
