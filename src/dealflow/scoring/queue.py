"""In-process scoring job queue.

Scoring requests become ScoringJob records on an asyncio.Queue consumed by
a single worker task. Each job calls the scoring collaborator once; on
success the score and letter grade are written to the deal, on failure the
job is marked failed and stays that way until an admin calls retry().

Job records live in memory. Queued and running jobs are always kept; once
more than ``max_finished_jobs`` jobs have finished, the oldest finished ones
are evicted and their ids return 404. The score itself is persisted on the
deal.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

import structlog
from pydantic import BaseModel

from src.dealflow.core.errors import (
    DealNotFoundError,
    ScoringJobNotFoundError,
    ScoringJobStateError,
)
from src.dealflow.core.monitoring import scoring_jobs_total
from src.dealflow.deals.repository import DealRepository
from src.dealflow.notifications.service import NotificationService
from src.dealflow.scoring.client import ScoringClient
from src.dealflow.workflow.authorization import Caller, require_admin, require_staff

logger = structlog.get_logger(__name__)


class ScoringJobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class ScoringJob(BaseModel):
    """One request to score a deal."""

    id: str
    deal_id: str
    status: ScoringJobStatus = ScoringJobStatus.QUEUED
    attempts: int = 0
    error: str | None = None
    overall_score: float | None = None
    letter_grade: str | None = None
    requested_by: str | None = None
    trigger: str = "manual"
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ScoringQueue:
    """Queue of scoring jobs with a single background worker.

    Args:
        repository: DealRepository for loading deals and recording scores.
        client: Scoring collaborator.
        notifications: Optional NotificationService for owner notifications.
        clock: Returns the current UTC time; injectable for tests.
        max_finished_jobs: How many complete or failed jobs to keep.
    """

    def __init__(
        self,
        repository: DealRepository,
        client: ScoringClient,
        notifications: NotificationService | None = None,
        clock: Callable[[], datetime] | None = None,
        max_finished_jobs: int = 1000,
    ) -> None:
        self._repo = repository
        self._client = client
        self._max_finished_jobs = max_finished_jobs
        self._notifications = notifications
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._jobs: dict[str, ScoringJob] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    # ── Lifecycle ───────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker task. Idempotent."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker())
            logger.info("scoring.worker_started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("scoring.worker_stopped")

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    # ── Public API ──────────────────────────────────────────────────────────

    async def enqueue(
        self, caller: Caller, deal_id: str, trigger: str = "manual"
    ) -> ScoringJob:
        """Queue a scoring job for a deal.

        ``trigger`` records why the job exists ("manual", "loan_tape_approved").

        Raises:
            ForbiddenError: Caller is not an admin.
            DealNotFoundError: No such deal.
        """
        require_admin(caller)
        deal = await self._repo.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)

        job = ScoringJob(
            id=str(uuid.uuid4()),
            deal_id=deal.id,
            requested_by=caller.user_id,
            trigger=trigger,
            created_at=self._clock(),
        )
        self._jobs[job.id] = job
        self._queue.put_nowait(job.id)
        logger.info(
            "scoring.job_queued", job_id=job.id, deal_id=deal.id, trigger=trigger
        )
        if self._notifications is not None:
            await self._notifications.scoring_started(deal)
        return job.model_copy()

    def get(self, caller: Caller, job_id: str) -> ScoringJob:
        """Current state of a job. Admin or legal only."""
        require_staff(caller)
        job = self._jobs.get(job_id)
        if job is None:
            raise ScoringJobNotFoundError(job_id)
        return job.model_copy()

    async def retry(self, caller: Caller, job_id: str) -> ScoringJob:
        """Re-queue a failed job. Only failed jobs can be retried."""
        require_admin(caller)
        job = self._jobs.get(job_id)
        if job is None:
            raise ScoringJobNotFoundError(job_id)
        if job.status != ScoringJobStatus.FAILED:
            raise ScoringJobStateError(
                f"Scoring job {job_id} is {job.status.value}; only failed jobs can be retried"
            )
        job.status = ScoringJobStatus.QUEUED
        job.error = None
        job.started_at = None
        job.finished_at = None
        # Re-insert so eviction sees it as the newest job.
        self._jobs[job.id] = self._jobs.pop(job.id)
        self._queue.put_nowait(job.id)
        logger.info("scoring.job_requeued", job_id=job.id, attempts=job.attempts)
        return job.model_copy()

    # ── Worker ──────────────────────────────────────────────────────────────

    async def _run_worker(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._process(self._jobs[job_id])
            except Exception as exc:
                logger.error("scoring.worker_error", job_id=job_id, error=str(exc))
            finally:
                self._evict_finished()
                self._queue.task_done()

    def _evict_finished(self) -> None:
        finished = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in (ScoringJobStatus.COMPLETE, ScoringJobStatus.FAILED)
        ]
        for job_id in finished[: max(0, len(finished) - self._max_finished_jobs)]:
            del self._jobs[job_id]

    async def _process(self, job: ScoringJob) -> None:
        job.status = ScoringJobStatus.RUNNING
        job.attempts += 1
        job.started_at = self._clock()

        try:
            deal = await self._repo.get_deal(job.deal_id)
            if deal is None:
                raise DealNotFoundError(job.deal_id)
            result = (await self._client.score(deal)).graded()
            updated = await self._repo.update_deal(
                deal.id,
                {
                    "overall_score": result.overall_score,
                    "letter_grade": result.letter_grade,
                },
            )
            await self._repo.add_activity(
                deal.id,
                job.requested_by,
                "score_recorded",
                {
                    "job_id": job.id,
                    "overall_score": result.overall_score,
                    "letter_grade": result.letter_grade,
                },
            )
        except Exception as exc:
            job.status = ScoringJobStatus.FAILED
            job.error = str(exc)
            job.finished_at = self._clock()
            scoring_jobs_total.labels(status="failed").inc()
            logger.error(
                "scoring.job_failed",
                job_id=job.id,
                deal_id=job.deal_id,
                attempts=job.attempts,
                error=str(exc),
            )
            return

        job.status = ScoringJobStatus.COMPLETE
        job.overall_score = result.overall_score
        job.letter_grade = result.letter_grade
        job.finished_at = self._clock()
        scoring_jobs_total.labels(status="complete").inc()
        logger.info(
            "scoring.job_complete",
            job_id=job.id,
            deal_id=job.deal_id,
            overall_score=result.overall_score,
            letter_grade=result.letter_grade,
        )
        if self._notifications is not None:
            await self._notifications.scoring_complete(updated)
