"""Durable job queue backed by the pipeline_jobs table.

Delivery is at-least-once: a job interrupted by a crash is handed out again
after restart, so handlers must be idempotent. Jobs sharing a serial key
(the file path, or the series folder path) never run concurrently.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import exists, func, update
from sqlalchemy.orm import aliased
from sqlmodel import col, select

from comicshelf.core.database import SessionFactory, retry_db_operation
from comicshelf.core.exceptions import PermanentJobError
from comicshelf.core.jobs.payloads import NewComicFile, ProcessComicSeries
from comicshelf.core.jobs.policy import RetryPolicy
from comicshelf.core.metrics import (
    jobs_completed_total,
    jobs_enqueued_total,
    jobs_failed_total,
    jobs_retried_total,
)
from comicshelf.db.models import PipelineJob

logger = structlog.get_logger("comicshelf.jobs.queue")

QUEUED = "queued"
ACTIVE = "active"
COMPLETED = "completed"
RETRYING = "retrying"
FAILED = "failed"

JOB_STATUSES = (QUEUED, ACTIVE, COMPLETED, RETRYING, FAILED)
RUNNABLE_STATUSES = (QUEUED, RETRYING)

Payload = NewComicFile | ProcessComicSeries
JobHandler = Callable[[Payload], Awaitable[str | None]]


@dataclass(frozen=True)
class JobEvent:
    """Emitted when a job completes, is scheduled for retry, or fails for good."""

    job_id: str
    job_type: str
    status: str
    attempts: int
    duration: float | None = None
    error: str | None = None
    result: str | None = None


JobListener = Callable[[JobEvent], Awaitable[None] | None]


def _describe(error: BaseException) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class JobQueue:
    """Enqueue, claim and settle ingestion jobs."""

    def __init__(
        self,
        session_factory: SessionFactory,
        policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._default_policy = policy or RetryPolicy()
        self._policies: dict[str, RetryPolicy] = {}
        self._handlers: dict[str, JobHandler] = {}
        self._listeners: list[JobListener] = []
        self._clock = clock
        # Workers in this process claim one at a time; the SQL guard covers other processes
        self._claim_lock = asyncio.Lock()

    def on_job(self, job_type: str, handler: JobHandler, policy: RetryPolicy | None = None) -> None:
        """Register the handler (and optionally a retry policy) for a job type."""
        self._handlers[job_type] = handler
        if policy is not None:
            self._policies[job_type] = policy

    def handler_for(self, job_type: str) -> JobHandler | None:
        return self._handlers.get(job_type)

    def policy_for(self, job_type: str) -> RetryPolicy:
        return self._policies.get(job_type, self._default_policy)

    def add_listener(self, listener: JobListener) -> None:
        """Subscribe to completion, retry and failure events."""
        self._listeners.append(listener)

    async def enqueue(self, payload: Payload, delay: float = 0.0) -> str:
        """Persist a job and return its id.

        An identical job that is still waiting to run is reused instead of
        adding a duplicate, so bursts of events for one file collapse.
        """
        data = payload.model_dump(mode="json")

        async def insert() -> tuple[str, bool]:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(PipelineJob).where(
                        PipelineJob.job_type == payload.job_type,
                        PipelineJob.serial_key == payload.serial_key,
                        col(PipelineJob.status).in_(RUNNABLE_STATUSES),
                    )
                )
                for waiting in result.all():
                    if waiting.payload == data:
                        return waiting.id, False

                job = PipelineJob(
                    job_type=payload.job_type,
                    payload=data,
                    serial_key=payload.serial_key,
                    max_attempts=self.policy_for(payload.job_type).max_attempts,
                    next_run_at=self._clock() + delay,
                )
                session.add(job)
                await session.commit()
                return job.id, True

        job_id, created = await retry_db_operation(insert, operation_type="insert")
        if not created:
            logger.debug(
                "Job already waiting, not enqueued again",
                job_id=job_id,
                job_type=payload.job_type,
                serial_key=payload.serial_key,
            )
            return job_id

        jobs_enqueued_total.labels(job_type=payload.job_type).inc()
        logger.info(
            "Job enqueued",
            job_id=job_id,
            job_type=payload.job_type,
            serial_key=payload.serial_key,
        )
        return job_id

    async def claim(self) -> PipelineJob | None:
        """Mark the oldest runnable job active and return it.

        Skips jobs whose serial key already has an active job. The status
        update is conditional, so a job is never handed to two workers.
        """

        async def claim_next(now: float) -> PipelineJob | None:
            async with self._session_factory() as session:
                running = aliased(PipelineJob)
                busy_keys = select(running.serial_key).where(running.status == ACTIVE)
                result = await session.exec(
                    select(PipelineJob)
                    .where(
                        col(PipelineJob.status).in_(RUNNABLE_STATUSES),
                        PipelineJob.next_run_at <= now,
                        col(PipelineJob.serial_key).not_in(busy_keys),
                    )
                    .order_by(col(PipelineJob.next_run_at), col(PipelineJob.created_at))
                    .limit(10)
                )
                for job in result.all():
                    claimed = await session.execute(
                        update(PipelineJob)
                        .where(
                            PipelineJob.id == job.id,
                            PipelineJob.status == job.status,
                            ~exists().where(
                                running.serial_key == job.serial_key,
                                running.status == ACTIVE,
                            ),
                        )
                        .values(
                            status=ACTIVE,
                            attempts=job.attempts + 1,
                            started_at=int(now),
                            updated_at=int(now),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    # The update only counts once it is committed
                    await session.commit()
                    if claimed.rowcount == 1:
                        job.status = ACTIVE
                        job.attempts += 1
                        job.started_at = int(now)
                        return job
                return None

        async with self._claim_lock:
            now = self._clock()
            return await retry_db_operation(lambda: claim_next(now), operation_type="update")

    async def complete(
        self, job: PipelineJob, result: str | None = None, duration: float | None = None
    ) -> None:
        now = int(self._clock())
        await self._set(
            job.id,
            status=COMPLETED,
            result=result,
            error=None,
            completed_at=now,
            updated_at=now,
        )
        jobs_completed_total.labels(job_type=job.job_type).inc()
        logger.info(
            "Job completed",
            job_id=job.id,
            job_type=job.job_type,
            attempts=job.attempts,
            result=result,
            duration=round(duration, 3) if duration is not None else None,
        )
        await self._emit(
            JobEvent(
                job_id=job.id,
                job_type=job.job_type,
                status=COMPLETED,
                attempts=job.attempts,
                duration=duration,
                result=result,
            )
        )

    async def fail(
        self, job: PipelineJob, error: BaseException, duration: float | None = None
    ) -> str:
        """Record a failed attempt; schedule a retry or dead-letter the job.

        Returns the job's new status (``retrying`` or ``failed``).
        """
        policy = self.policy_for(job.job_type)
        message = _describe(error)
        now = self._clock()
        permanent = isinstance(error, PermanentJobError)

        if not permanent and job.attempts < job.max_attempts:
            delay = policy.delay_for(job.attempts)
            await self._set(
                job.id,
                status=RETRYING,
                error=message,
                next_run_at=now + delay,
                updated_at=int(now),
            )
            jobs_retried_total.labels(job_type=job.job_type).inc()
            logger.warning(
                "Job attempt failed, will retry",
                job_id=job.id,
                job_type=job.job_type,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                retry_in=delay,
                error=message,
            )
            status = RETRYING
        else:
            await self._set(
                job.id,
                status=FAILED,
                error=message,
                completed_at=int(now),
                updated_at=int(now),
            )
            jobs_failed_total.labels(job_type=job.job_type).inc()
            logger.error(
                "Job failed permanently",
                job_id=job.id,
                job_type=job.job_type,
                attempts=job.attempts,
                permanent=permanent,
                error=message,
                payload=job.payload,
            )
            status = FAILED

        await self._emit(
            JobEvent(
                job_id=job.id,
                job_type=job.job_type,
                status=status,
                attempts=job.attempts,
                duration=duration,
                error=message,
            )
        )
        return status

    async def recover_active_jobs(self) -> int:
        """Return jobs left active by a crash to the queue.

        A job that already used its last attempt is failed instead.
        """
        now = self._clock()

        async def recover() -> int:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(PipelineJob).where(PipelineJob.status == ACTIVE)
                )
                jobs = result.all()
                for job in jobs:
                    if job.attempts >= job.max_attempts:
                        job.status = FAILED
                        job.error = "Interrupted during final attempt"
                        job.completed_at = int(now)
                    else:
                        job.status = RETRYING
                        job.next_run_at = now
                    job.updated_at = int(now)
                    session.add(job)
                await session.commit()
                return len(jobs)

        count = await retry_db_operation(recover, operation_type="update")
        if count:
            logger.info("Recovered interrupted jobs", count=count)
        return count

    async def requeue(self, job_id: str) -> PipelineJob | None:
        """Give a dead-lettered job a fresh set of attempts.

        Returns None if the job does not exist or is not failed.
        """
        now = self._clock()

        async def reset() -> PipelineJob | None:
            async with self._session_factory() as session:
                job = await session.get(PipelineJob, job_id)
                if job is None or job.status != FAILED:
                    return None
                job.status = QUEUED
                job.attempts = 0
                job.max_attempts = self.policy_for(job.job_type).max_attempts
                job.next_run_at = now
                job.error = None
                job.completed_at = None
                job.updated_at = int(now)
                session.add(job)
                await session.commit()
                return job

        job = await retry_db_operation(reset, operation_type="update")
        if job is None:
            return None

        jobs_enqueued_total.labels(job_type=job.job_type).inc()
        logger.info("Failed job requeued", job_id=job_id, job_type=job.job_type)
        return job

    async def get_job(self, job_id: str) -> PipelineJob | None:
        async with self._session_factory() as session:
            return await session.get(PipelineJob, job_id)

    async def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[PipelineJob], int]:
        """Return a page of jobs, newest first, and the total matching count."""
        async with self._session_factory() as session:
            query = select(PipelineJob)
            count_query = select(func.count()).select_from(PipelineJob)
            if status:
                query = query.where(PipelineJob.status == status)
                count_query = count_query.where(PipelineJob.status == status)
            if job_type:
                query = query.where(PipelineJob.job_type == job_type)
                count_query = count_query.where(PipelineJob.job_type == job_type)

            query = query.order_by(col(PipelineJob.created_at).desc()).limit(limit).offset(offset)
            jobs = (await session.exec(query)).all()
            total = (await session.exec(count_query)).one()
            return list(jobs), total

    async def _set(self, job_id: str, **values: object) -> None:
        async def write() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    update(PipelineJob).where(PipelineJob.id == job_id).values(**values)
                )
                await session.commit()

        await retry_db_operation(write, operation_type="update")

    async def _emit(self, event: JobEvent) -> None:
        for listener in self._listeners:
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    "Job event listener failed", job_id=event.job_id, status=event.status
                )
