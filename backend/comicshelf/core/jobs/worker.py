"""Asyncio worker pool that drains the job queue."""

from __future__ import annotations

import asyncio
import contextlib
import time

import structlog
from pydantic import ValidationError

from comicshelf.core.exceptions import PermanentJobError
from comicshelf.core.jobs.payloads import parse_payload
from comicshelf.core.jobs.queue import JobEvent, JobQueue
from comicshelf.core.metrics import job_duration_seconds, jobs_in_progress
from comicshelf.core.tracing import trace_context
from comicshelf.db.models import PipelineJob

logger = structlog.get_logger("comicshelf.jobs.worker")


class WorkerPool:
    """Run ``concurrency`` workers, each claiming and handling one job at a time.

    A failing handler only fails its own job; workers keep running until
    ``stop()`` is called.
    """

    def __init__(
        self,
        queue: JobQueue,
        concurrency: int = 4,
        poll_interval: float = 1.0,
        job_timeout: float | None = None,
    ) -> None:
        self.queue = queue
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        queue.add_listener(self._on_event)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"ingest-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Workers started", concurrency=self.concurrency)

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._stopping.set()
        self._wakeup.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Workers stopped")

    def notify(self) -> None:
        """Wake idle workers early, e.g. right after enqueueing."""
        self._wakeup.set()

    async def run_once(self) -> bool:
        """Claim and handle a single job. Returns False when nothing was runnable."""
        job = await self.queue.claim()
        if job is None:
            return False
        await self.process(job)
        return True

    async def drain(self, max_jobs: int = 1000) -> int:
        """Handle runnable jobs until none are left. Returns the number handled."""
        handled = 0
        while handled < max_jobs and await self.run_once():
            handled += 1
        return handled

    async def process(self, job: PipelineJob) -> None:
        with trace_context(job.id, job_id=job.id, job_type=job.job_type):
            started = time.perf_counter()
            jobs_in_progress.inc()
            try:
                result = await self._dispatch(job)
            except Exception as e:
                duration = time.perf_counter() - started
                await self.queue.fail(job, e, duration)
            else:
                duration = time.perf_counter() - started
                await self.queue.complete(job, result, duration)
            finally:
                jobs_in_progress.dec()
                job_duration_seconds.labels(job_type=job.job_type).observe(
                    time.perf_counter() - started
                )

    async def _dispatch(self, job: PipelineJob) -> str | None:
        try:
            payload = parse_payload(job.payload)
        except ValidationError as e:
            raise PermanentJobError(f"Invalid payload for {job.job_type}: {e}") from e

        handler = self.queue.handler_for(payload.job_type)
        if handler is None:
            raise PermanentJobError(f"No handler registered for {payload.job_type}")

        logger.debug("Handling job", attempt=job.attempts)
        if self.job_timeout:
            async with asyncio.timeout(self.job_timeout):
                return await handler(payload)
        return await handler(payload)

    async def _run(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                worked = await self.run_once()
            except Exception:
                # Queue bookkeeping failed (database unavailable); back off and retry
                logger.exception("Worker loop error", worker=index)
                worked = False

            if not worked:
                self._wakeup.clear()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)

    def _on_event(self, event: JobEvent) -> None:
        # A retry or a spawned follow-up job may already be runnable
        self._wakeup.set()
