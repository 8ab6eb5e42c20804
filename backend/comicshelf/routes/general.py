"""General API routes."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from comicshelf.core.tracing import get_trace_id

router = APIRouter(prefix="/api")
logger = structlog.get_logger("comicshelf.routes.general")


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Health check endpoint.

    Reports whether the ingestion service's workers and watcher are running.
    The endpoint itself always answers 200 so it can be used as a liveness probe.
    """
    trace_id = get_trace_id()
    logger.debug("Health check", trace_id=trace_id)

    service = getattr(request.app.state, "ingestion", None)
    return JSONResponse(
        {
            "status": "healthy",
            "workers_running": bool(service and service.workers.running),
            "watcher_running": bool(service and service.watcher is not None and service.watcher.running),
            "trace_id": trace_id,
        }
    )
