"""Delayed classification jobs.

The sync orchestrator staggers classification of new supplier invoices. Jobs
are submitted through a scheduler so their state and failures stay
observable: in-process (asyncio tasks) by default, or on Redis via arq.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

CLASSIFY_JOB_NAME = "classify_supplier_invoice_job"

JobRunner = Callable[[UUID, Optional[str]], Awaitable[Any]]


class JobState(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ScheduledJob:
    """A classification job and what became of it."""

    invoice_id: UUID
    attachment_id: str | None
    delay_seconds: float
    job_id: str = field(default_factory=lambda: uuid4().hex)
    state: JobState = JobState.SCHEDULED
    error: str | None = None
    scheduled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def done(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)


class ClassificationScheduler(ABC):
    """Submit classification jobs to run after a delay.

    ``jobs`` keeps the most recent ``history`` submissions only.
    """

    def __init__(self, history: int = 1000) -> None:
        self.jobs: deque[ScheduledJob] = deque(maxlen=history)

    @abstractmethod
    async def schedule(
        self, invoice_id: UUID, attachment_id: str | None, delay_seconds: float = 0.0
    ) -> ScheduledJob:
        ...

    def pending(self) -> list[ScheduledJob]:
        """Jobs not yet finished."""
        return [job for job in self.jobs if not job.done]

    async def drain(self) -> None:
        """Wait for outstanding jobs where the scheduler can observe them."""

    async def close(self) -> None:
        """Release resources."""


class InProcessScheduler(ClassificationScheduler):
    """Run jobs as asyncio tasks in this process.

    Exceptions are recorded on the ScheduledJob and logged.
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        history: int = 1000,
    ) -> None:
        super().__init__(history)
        self.runner = runner
        self._sleep = sleep
        # Live tasks only; each removes itself when done
        self._tasks: dict[asyncio.Task[None], ScheduledJob] = {}

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def pending(self) -> list[ScheduledJob]:
        return [job for job in self._tasks.values() if not job.done]

    async def schedule(
        self, invoice_id: UUID, attachment_id: str | None, delay_seconds: float = 0.0
    ) -> ScheduledJob:
        if self.runner is None:
            raise RuntimeError("InProcessScheduler has no runner")
        job = ScheduledJob(invoice_id, attachment_id, max(0.0, delay_seconds))
        self.jobs.append(job)
        task = asyncio.get_running_loop().create_task(self._run(job))
        self._tasks[task] = job
        task.add_done_callback(self._release)
        logger.info(
            "Scheduled classification of invoice %s in %.1fs (job %s)",
            invoice_id,
            job.delay_seconds,
            job.job_id,
        )
        return job

    async def _run(self, job: ScheduledJob) -> None:
        if job.delay_seconds > 0:
            await self._sleep(job.delay_seconds)
        job.state = JobState.RUNNING
        job.started_at = datetime.now(timezone.utc)
        try:
            await self.runner(job.invoice_id, job.attachment_id)
        except Exception as exc:
            job.state = JobState.FAILED
            job.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Classification job %s for invoice %s failed", job.job_id, job.invoice_id)
        else:
            job.state = JobState.SUCCEEDED
        finally:
            job.finished_at = datetime.now(timezone.utc)

    def _release(self, task: asyncio.Task[None]) -> None:
        self._tasks.pop(task, None)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class ArqScheduler(ClassificationScheduler):
    """Enqueue jobs on Redis for the arq worker (finsync.worker)."""

    def __init__(self, redis_url: str | None = None, pool: Any = None) -> None:
        super().__init__()
        self.redis_url = redis_url
        self._pool = pool
        # A pool handed in (the worker's own) is closed by its owner
        self._owns_pool = pool is None

    async def _get_pool(self):
        if self._pool is None:
            from finsync.core.queue import get_queue

            self._pool = await get_queue(self.redis_url)
        return self._pool

    async def schedule(
        self, invoice_id: UUID, attachment_id: str | None, delay_seconds: float = 0.0
    ) -> ScheduledJob:
        job = ScheduledJob(invoice_id, attachment_id, max(0.0, delay_seconds))
        pool = await self._get_pool()
        await pool.enqueue_job(
            CLASSIFY_JOB_NAME,
            str(invoice_id),
            attachment_id,
            _job_id=job.job_id,
            _defer_by=timedelta(seconds=job.delay_seconds),
        )
        self.jobs.append(job)
        logger.info(
            "Enqueued classification of invoice %s on arq in %.1fs (job %s)",
            invoice_id,
            job.delay_seconds,
            job.job_id,
        )
        return job

    async def close(self) -> None:
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
        self._pool = None

