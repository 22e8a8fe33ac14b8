"""Bounded-concurrency job queue for book generation requests."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from ..errors import ExternalRenderFailure, GenerationCancelled
from .cancellation import CancellationRegistry
from .state import GenerationRequest

__all__ = ["Job", "JobQueue"]

logger = logging.getLogger(__name__)

Runner = Callable[[GenerationRequest], Awaitable[Path]]
ACTIVE_STATUSES = {"pending", "processing"}


@dataclass
class Job:
    job_id: str
    topic: str
    session_id: str
    status: str = "pending"  # pending | processing | completed | cancelled | failed
    pdf_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # cancelled | external_service | failed
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_resumable(self) -> bool:
        return self.status in {"cancelled", "failed"}

    def to_dict(self) -> dict:
        return asdict(self)


def _classify(exc: BaseException) -> tuple[str, str]:
    if isinstance(exc, GenerationCancelled):
        return "cancelled", "cancelled"
    if isinstance(exc, ExternalRenderFailure):
        return "failed", "external_service"
    return "failed", "failed"


class JobQueue:
    """Run at most ``concurrency`` pipelines at once, in submission order.

    A session that already has an active job is not queued twice; the
    existing job is returned instead.
    """

    def __init__(
        self,
        runner: Runner,
        *,
        concurrency: int = 1,
        cancellation: CancellationRegistry | None = None,
        history_limit: int = 100,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if history_limit < 0:
            raise ValueError("history_limit must not be negative")
        self._runner = runner
        self.concurrency = concurrency
        self.cancellation = cancellation or CancellationRegistry()
        self._semaphore = asyncio.Semaphore(concurrency)
        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task[Optional[Path]]] = {}
        self._running = 0
        self.peak_running = 0
        self.history_limit = history_limit

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def all_jobs(self) -> List[dict]:
        return [job.to_dict() for job in self._jobs.values()]

    def _active_job_for(self, session_id: str) -> Optional[Job]:
        for job in self._jobs.values():
            if job.session_id == session_id and job.is_active:
                return job
        return None

    def _update(self, job: Job, **changes) -> None:
        for key, value in changes.items():
            setattr(job, key, value)
        job.updated_at = time.time()

    def submit(self, request: GenerationRequest) -> Job:
        """Queue *request*; must be called from a running event loop."""

        existing = self._active_job_for(request.session_id)
        if existing is not None:
            logger.info("Session %s already queued as job %s", request.session_id, existing.job_id)
            return existing

        job = Job(job_id=uuid.uuid4().hex[:8], topic=request.topic, session_id=request.session_id)
        self._jobs[job.job_id] = job
        self._tasks[job.job_id] = asyncio.create_task(self._execute(job, request))
        logger.info("Queued job %s for %r", job.job_id, request.topic)
        return job

    async def _execute(self, job: Job, request: GenerationRequest) -> Optional[Path]:
        async with self._semaphore:
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)
            self._update(job, status="processing")
            try:
                pdf_path = await self._runner(request)
            except Exception as exc:
                status, kind = _classify(exc)
                logger.error("Job %s %s: %s", job.job_id, status, exc)
                self._update(job, status=status, error=str(exc), error_kind=kind)
                raise
            else:
                self._update(job, status="completed", pdf_path=str(pdf_path))
                return pdf_path
            finally:
                self._running -= 1
                self.cancellation.reset(job.session_id)
                self._evict_finished()

    def _evict_finished(self) -> None:
        finished = [job for job in self._jobs.values() if not job.is_active]
        excess = len(finished) - self.history_limit
        for job in sorted(finished, key=lambda item: item.updated_at)[: max(excess, 0)]:
            del self._jobs[job.job_id]
            self._tasks.pop(job.job_id, None)

    async def result(self, job_id: str) -> Path:
        """Wait for a job and return its PDF path, re-raising its failure."""

        return await self._tasks[job_id]

    def cancel(self, job_id: str) -> bool:
        """Flag the job's session; the pipeline stops before its next step."""

        job = self._jobs.get(job_id)
        if job is None or not job.is_active:
            return False
        self.cancellation.cancel(job.session_id)
        return True

    async def join(self) -> None:
        """Wait for every submitted job, without raising their failures."""

        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
