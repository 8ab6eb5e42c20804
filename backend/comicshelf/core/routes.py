"""Application routes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import structlog
from fastapi import APIRouter
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from comicshelf.core.service import IngestionService
from comicshelf.routes import general
from comicshelf.routes.jobs import create_jobs_router
from comicshelf.routes.libraries import create_libraries_router

logger = structlog.get_logger("comicshelf.routes")


def create_app_router(
    service: IngestionService,
    get_db_session: Callable[[], AsyncIterator[SQLModelAsyncSession]],
) -> APIRouter:
    """Create and configure main application router.

    Args:
        service: Ingestion service the job and library routes operate on
        get_db_session: Dependency function for database sessions

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter()

    router.include_router(general.router, tags=["general"])

    jobs_router = create_jobs_router(service.queue, on_requeued=service.workers.notify)
    router.include_router(jobs_router)
    logger.debug("Included jobs router in app_router")

    libraries_router = create_libraries_router(
        get_db_session, service.scanner, on_change=service.reconcile_libraries
    )
    router.include_router(libraries_router)
    logger.debug("Included libraries router in app_router")

    return router
