"""Library routes for managing watched library roots."""

from __future__ import annotations

import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from comicshelf.core.catalog import LibraryRoot
from comicshelf.core.scanner import LibraryScanner
from comicshelf.db.models import ComicBook, Library

logger = structlog.get_logger("comicshelf.routes.libraries")


# Request/Response Models
class LibraryResponse(BaseModel):
    """Library response model."""

    id: str
    name: str
    path: str
    enabled: bool
    fingerprint: str | None = None
    last_scanned_at: int | None = None
    created_at: int
    updated_at: int
    comic_count: int = 0


class LibraryCreate(BaseModel):
    """Request model for creating a library."""

    name: str = Field(..., min_length=1, description="Library name")
    path: str = Field(..., min_length=1, description="Absolute root directory of the library")
    enabled: bool = Field(default=True, description="Watch and scan this library")


class LibraryUpdate(BaseModel):
    """Request model for updating a library."""

    name: str | None = Field(default=None, min_length=1, description="Library name")
    path: str | None = Field(default=None, min_length=1, description="Root directory")
    enabled: bool | None = Field(default=None, description="Watch and scan this library")


class LibraryListResponse(BaseModel):
    """Response model for listing libraries."""

    libraries: list[LibraryResponse]


class ScanResponse(BaseModel):
    """Result of a forced library scan."""

    library_id: str
    changed: bool
    enqueued: int
    fingerprint: str | None = None


def _normalize_root(path: str) -> str:
    if not os.path.isabs(path):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Library path must be absolute: {path}",
        )
    return os.path.normpath(path)


async def _comic_count(session: SQLModelAsyncSession, library_id: str) -> int:
    result = await session.exec(
        select(func.count()).select_from(ComicBook).where(ComicBook.library_id == library_id)
    )
    return result.one()


def _to_response(library: Library, comic_count: int) -> LibraryResponse:
    return LibraryResponse(
        id=library.id,
        name=library.name,
        path=library.path,
        enabled=library.enabled,
        fingerprint=library.fingerprint,
        last_scanned_at=library.last_scanned_at,
        created_at=library.created_at,
        updated_at=library.updated_at,
        comic_count=comic_count,
    )


def create_libraries_router(
    get_db_session: Callable[[], AsyncIterator[SQLModelAsyncSession]],
    scanner: LibraryScanner,
    on_change: Callable[[], Awaitable[None]] | None = None,
) -> APIRouter:
    """Create libraries router.

    Args:
        get_db_session: Dependency function for database sessions
        scanner: Scanner used by the forced-scan endpoint
        on_change: Awaited after a library was created, updated or deleted so
            the watcher can pick up the new configuration without waiting
            for its next reconcile

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter(prefix="/api", tags=["libraries"])

    async def _changed() -> None:
        if on_change is not None:
            await on_change()

    async def _get_or_404(session: SQLModelAsyncSession, library_id: str) -> Library:
        library = await session.get(Library, library_id)
        if not library:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Library {library_id} not found",
            )
        return library

    @router.get("/libraries", response_model=LibraryListResponse)
    async def list_libraries(
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> LibraryListResponse:
        """List all libraries with comic counts."""
        result = await session.exec(select(Library).order_by(Library.name))
        libraries = result.all()
        return LibraryListResponse(
            libraries=[
                _to_response(library, await _comic_count(session, library.id))
                for library in libraries
            ]
        )

    @router.post("/libraries", status_code=status.HTTP_201_CREATED, response_model=LibraryResponse)
    async def create_library(
        payload: LibraryCreate,
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> LibraryResponse:
        """Create a new library."""
        library = Library(
            name=payload.name,
            path=_normalize_root(payload.path),
            enabled=payload.enabled,
        )
        session.add(library)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"A library already exists at {payload.path}",
            )
        await session.refresh(library)

        logger.info("Library created", library_id=library.id, name=library.name, path=library.path)
        await _changed()
        return _to_response(library, 0)

    @router.get("/libraries/{library_id}", response_model=LibraryResponse)
    async def get_library(
        library_id: str,
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> LibraryResponse:
        """Get a single library by ID."""
        library = await _get_or_404(session, library_id)
        return _to_response(library, await _comic_count(session, library.id))

    @router.put("/libraries/{library_id}", response_model=LibraryResponse)
    async def update_library(
        library_id: str,
        payload: LibraryUpdate,
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> LibraryResponse:
        """Update a library. Moving its root forgets the stored fingerprint."""
        library = await _get_or_404(session, library_id)

        if payload.name is not None:
            library.name = payload.name
        if payload.path is not None:
            new_path = _normalize_root(payload.path)
            if new_path != library.path:
                library.path = new_path
                library.fingerprint = None
        if payload.enabled is not None:
            library.enabled = payload.enabled
        library.updated_at = int(time.time())

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"A library already exists at {payload.path}",
            )
        await session.refresh(library)

        logger.info("Library updated", library_id=library.id, name=library.name)
        await _changed()
        return _to_response(library, await _comic_count(session, library.id))

    @router.delete("/libraries/{library_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_library(
        library_id: str,
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> None:
        """Delete a library.

        Note: This will fail if comics are catalogued under it. Disable the
        library instead to stop watching it and keep its catalog.
        """
        library = await _get_or_404(session, library_id)

        comic_count = await _comic_count(session, library_id)
        if comic_count:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot delete library with {comic_count} comics. Disable it instead.",
            )

        await session.delete(library)
        await session.commit()

        logger.info("Library deleted", library_id=library_id)
        await _changed()

    @router.post("/libraries/{library_id}/scan", response_model=ScanResponse)
    async def scan_library(
        library_id: str,
        session: SQLModelAsyncSession = Depends(get_db_session),
    ) -> ScanResponse:
        """Enqueue every comic in the library, ignoring the stored fingerprint."""
        library = await _get_or_404(session, library_id)
        if not library.enabled:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Library {library_id} is disabled",
            )

        result = await scanner.scan_library(LibraryRoot(id=library.id, path=library.path), force=True)
        return ScanResponse(
            library_id=result.library_id,
            changed=result.changed,
            enqueued=result.enqueued,
            fingerprint=result.fingerprint,
        )

    return router
