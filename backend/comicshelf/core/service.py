"""Ingestion service: owns the queue, workers, watcher, scanner and scheduler.

Everything is constructed explicitly from settings and a session factory so
tests can build as many independent services as they need.
"""

from __future__ import annotations

import asyncio

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from comicshelf.core.catalog import CatalogStore, LibrarySource
from comicshelf.core.config import Settings
from comicshelf.core.database import SessionFactory
from comicshelf.core.hashing import HashingPool
from comicshelf.core.jobs.payloads import NewComicFile
from comicshelf.core.jobs.pipeline import IngestionPipeline
from comicshelf.core.jobs.queue import JobQueue
from comicshelf.core.jobs.worker import WorkerPool
from comicshelf.core.scanner import LibraryScanner, ScanResult
from comicshelf.core.tracing import trace_context
from comicshelf.core.watcher import LibraryWatcher

logger = structlog.get_logger("comicshelf.service")

RECONCILE_JOB_ID = "reconcile_libraries"
SCAN_JOB_ID = "scan_libraries"


class IngestionService:
    def __init__(self, settings: Settings, session_factory: SessionFactory) -> None:
        self.settings = settings
        policy = settings.retry_policy()

        self.catalog = CatalogStore(session_factory)
        self.libraries = LibrarySource(session_factory)
        self.queue = JobQueue(session_factory, policy=policy)
        self.hashing = HashingPool(size=settings.hash_pool_size, chunk_size=settings.hash_chunk_size)

        self.pipeline = IngestionPipeline(self.catalog, self.libraries, self.queue, self.hashing)
        self.pipeline.register(policy)

        self.workers = WorkerPool(
            self.queue,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.worker_poll_interval_seconds,
            job_timeout=settings.job_timeout_seconds or None,
        )
        self.scanner = LibraryScanner(
            self.libraries,
            self.queue,
            self.hashing,
            extensions=settings.comic_extensions,
            ignore_hidden=settings.watcher_ignore_hidden,
        )
        self.watcher: LibraryWatcher | None = None
        if settings.watcher_enabled:
            self.watcher = LibraryWatcher(
                self.libraries,
                on_file_ready=self.on_file_ready,
                on_file_removed=self.on_file_removed,
                quiet_period=settings.watcher_quiet_period_seconds,
                extensions=settings.comic_extensions,
                ignore_hidden=settings.watcher_ignore_hidden,
            )
        self.scheduler = AsyncIOScheduler()
        self._startup_scan: asyncio.Task[list[ScanResult]] | None = None

    async def start(self) -> None:
        """Recover interrupted jobs, then start workers, watcher and schedules."""
        recovered = await self.queue.recover_active_jobs()
        if recovered:
            logger.info("Recovered interrupted jobs", count=recovered)

        await self.workers.start()
        if self.watcher is not None:
            await self.watcher.start()

        self._schedule_jobs()
        self.scheduler.start()
        logger.info("Scheduler started")

        if self.settings.scan_on_startup:
            self._startup_scan = asyncio.create_task(self.scan_libraries(), name="startup-scan")

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

        if self._startup_scan is not None and not self._startup_scan.done():
            self._startup_scan.cancel()
            await asyncio.gather(self._startup_scan, return_exceptions=True)
        self._startup_scan = None

        if self.watcher is not None:
            await self.watcher.stop()
        await self.workers.stop()

    async def on_file_ready(self, file_path: str) -> None:
        """A file was added or changed and has stopped being written."""
        with trace_context(file_path=file_path):
            await self.queue.enqueue(NewComicFile(file_path=file_path))
        self.workers.notify()

    async def on_file_removed(self, file_path: str) -> None:
        with trace_context(file_path=file_path):
            await self.catalog.mark_comic_missing(file_path)

    async def reconcile_libraries(self) -> None:
        if self.watcher is not None:
            await self.watcher.reconcile()

    async def scan_libraries(self, force: bool = False) -> list[ScanResult]:
        with trace_context():
            results = await self.scanner.scan_all(force=force)
        if any(result.enqueued for result in results):
            self.workers.notify()
        return results

    def _schedule_jobs(self) -> None:
        if self.watcher is not None:
            self.scheduler.add_job(
                self._run_scheduled(self.reconcile_libraries),
                trigger=IntervalTrigger(seconds=self.settings.watcher_reconcile_interval_seconds),
                id=RECONCILE_JOB_ID,
                name="Re-read library configuration",
                replace_existing=True,
            )
            logger.info(
                "Scheduled library reconcile",
                interval_seconds=self.settings.watcher_reconcile_interval_seconds,
            )

        if self.settings.scan_interval_minutes > 0:
            self.scheduler.add_job(
                self._run_scheduled(self.scan_libraries),
                trigger=IntervalTrigger(minutes=self.settings.scan_interval_minutes),
                id=SCAN_JOB_ID,
                name="Fingerprint scan of all libraries",
                replace_existing=True,
            )
            logger.info(
                "Scheduled library scans", interval_minutes=self.settings.scan_interval_minutes
            )
        else:
            logger.info("Periodic library scans are disabled")

    @staticmethod
    def _run_scheduled(task):  # noqa: ANN001, ANN205
        async def scheduled_task() -> None:
            try:
                await task()
            except Exception as e:
                logger.error("Scheduled task failed", task=task.__name__, error=str(e), exc_info=True)

        return scheduled_task
