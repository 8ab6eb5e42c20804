"""Ingestion job routes: inspect the job store and retry dead-lettered jobs."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from comicshelf.core.jobs.queue import FAILED, JOB_STATUSES, JobQueue
from comicshelf.db.models import PipelineJob

logger = structlog.get_logger("comicshelf.routes.jobs")


class JobResponse(BaseModel):
    """Job response model."""

    id: str
    job_type: str
    status: str
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    next_run_at: float
    error: str | None = None
    result: str | None = None
    created_at: int
    updated_at: int
    started_at: int | None = None
    completed_at: int | None = None


class JobListResponse(BaseModel):
    """Response model for listing jobs."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


def _to_response(job: PipelineJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        job_type=job.job_type,
        status=job.status,
        payload=job.payload,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        next_run_at=job.next_run_at,
        error=job.error,
        result=job.result,
        created_at=job.created_at,
        updated_at=job.updated_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def create_jobs_router(
    queue: JobQueue,
    on_requeued: Callable[[], None] | None = None,
) -> APIRouter:
    """Create jobs router.

    Args:
        queue: Job queue backing the routes
        on_requeued: Called after a job was requeued (wakes the workers)

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter(prefix="/api", tags=["jobs"])

    @router.get("/jobs", response_model=JobListResponse)
    async def list_jobs(
        job_status: str | None = Query(default=None, alias="status"),
        job_type: str | None = Query(default=None),
        limit: int = Query(default=100, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
    ) -> JobListResponse:
        """List jobs, newest first. ``status=failed`` lists the dead letters."""
        if job_status is not None and job_status not in JOB_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid job status: {job_status}",
            )

        jobs, total = await queue.list_jobs(
            status=job_status, job_type=job_type, limit=limit, offset=offset
        )
        return JobListResponse(
            jobs=[_to_response(job) for job in jobs],
            total=total,
            limit=limit,
            offset=offset,
        )

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str) -> JobResponse:
        """Get a single job by ID."""
        job = await queue.get_job(job_id)
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Job {job_id} not found",
            )
        return _to_response(job)

    @router.post("/jobs/{job_id}/retry", response_model=JobResponse)
    async def retry_job(job_id: str) -> JobResponse:
        """Requeue a failed job with a fresh attempt budget."""
        job = await queue.get_job(job_id)
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Job {job_id} not found",
            )
        if job.status != FAILED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Only failed jobs can be retried (job is {job.status})",
            )

        requeued = await queue.requeue(job_id)
        if requeued is None:
            # Another request requeued it first
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Job {job_id} is no longer failed",
            )

        if on_requeued is not None:
            on_requeued()
        logger.info("Job retry requested", job_id=job_id, job_type=requeued.job_type)
        return _to_response(requeued)

    return router
