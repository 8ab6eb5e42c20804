"""Application entry point for Comicshelf."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from comicshelf.core.config import Settings, get_settings
from comicshelf.core.database import (
    create_database_engine,
    create_session_factory,
    init_database,
)
from comicshelf.core.logging import setup_logging
from comicshelf.core.metrics import setup_metrics
from comicshelf.core.middleware import TracingMiddleware
from comicshelf.core.routes import create_app_router
from comicshelf.core.service import IngestionService

logger = structlog.get_logger("comicshelf.app")

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting Comicshelf application",
        version=APP_VERSION,
        env=settings.env,
        host=settings.host_bind_address,
        port=settings.host_port,
    )

    engine = app.state.engine
    await init_database(engine)
    logger.info("Database schema ready", database_file=str(settings.database_file))

    service: IngestionService = app.state.ingestion
    await service.start()

    yield

    logger.info("Shutting down Comicshelf application")
    await service.stop()
    await engine.dispose()
    logger.info("Database engine disposed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    if settings is None:
        settings = get_settings()

    # Setup logging first (use settings)
    setup_logging(debug=settings.is_debug, logs_dir=settings.logs_dir)

    app = FastAPI(
        title="Comicshelf",
        description="Comic library ingestion service",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    engine = create_database_engine(settings.database_file, echo=False)
    async_session_factory = create_session_factory(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.async_session_factory = async_session_factory
    app.state.ingestion = IngestionService(settings, async_session_factory)
    logger.info("Database engine and ingestion service created")

    async def get_db_session() -> AsyncIterator[SQLModelAsyncSession]:
        """FastAPI dependency for database sessions."""
        async with async_session_factory() as session:
            yield session

    # Add tracing middleware (before other middleware to capture all requests)
    app.add_middleware(TracingMiddleware)

    # Setup metrics (before routes to instrument all routes)
    setup_metrics(app, APP_VERSION)

    app.include_router(create_app_router(app.state.ingestion, get_db_session))

    return app


def main() -> None:
    """Main entry point."""
    from comicshelf.core.config import reload_settings

    current_settings = reload_settings()
    logger.info(
        "Starting server with settings",
        host=current_settings.host_bind_address,
        port=current_settings.host_port,
    )

    app = create_app(current_settings)

    import uvicorn

    uvicorn.run(
        app,
        host=current_settings.host_bind_address,
        port=current_settings.host_port,
        log_config=None,  # We use structlog
        reload=False,
    )


if __name__ == "__main__":
    main()
