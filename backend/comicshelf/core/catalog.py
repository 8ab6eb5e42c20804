"""Catalog store and library configuration source.

The pipeline only talks to the database through these two classes. Each
method opens its own short session so workers never share a session.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, fields
from typing import Any

import structlog
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from comicshelf.core.database import SessionFactory, retry_db_operation
from comicshelf.core.exceptions import CatalogConflictError
from comicshelf.core.utils import is_within
from comicshelf.db.models import (
    ComicBook,
    ComicCredit,
    ComicSeries,
    ComicSeriesBook,
    ComicTaxonomy,
    Library,
)

logger = structlog.get_logger("comicshelf.catalog")


@dataclass(frozen=True)
class LibraryRoot:
    id: str
    path: str


@dataclass
class ComicRecord:
    """Everything the pipeline knows about one archive, ready to upsert."""

    file_path: str
    file_name: str
    library_id: str
    hash: str
    file_size: int = 0
    title: str | None = None
    series: str | None = None
    issue_number: str | None = None
    volume: str | None = None
    year: int | None = None
    month: int | None = None
    day: int | None = None
    issue_count: int | None = None
    page_count: int | None = None
    summary: str | None = None
    publisher: str | None = None
    imprint: str | None = None
    language_iso: str | None = None
    format: str | None = None
    age_rating: str | None = None
    community_rating: float | None = None
    black_and_white: bool | None = None
    manga: bool | None = None
    reading_direction: str | None = None
    web: str | None = None
    tags: list[str] = field(default_factory=list)
    pages: list[dict[str, Any]] = field(default_factory=list)
    metadata_source: str | None = None
    # Stored in their own tables, not on comic_books
    credits: list[tuple[str, str]] = field(default_factory=list)
    taxonomy: list[tuple[str, str]] = field(default_factory=list)

    def column_values(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("credits", "taxonomy")
        }


@dataclass
class SeriesRecord:
    folder_path: str
    name: str
    library_id: str
    year: int | None = None
    volume: str | None = None
    tags: list[str] = field(default_factory=list)


class CatalogStore:
    """Upsert and lookup operations on comics and series."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_comic_by_file_path(self, file_path: str) -> ComicBook | None:
        async with self._session_factory() as session:
            result = await session.exec(select(ComicBook).where(ComicBook.file_path == file_path))
            return result.one_or_none()

    async def get_comic(self, comic_id: str) -> ComicBook | None:
        async with self._session_factory() as session:
            return await session.get(ComicBook, comic_id)

    async def upsert_comic(self, record: ComicRecord) -> str:
        """Insert the comic if its path is new, otherwise update it in place.

        Credits and taxonomy rows are replaced in the same transaction.

        Raises:
            CatalogConflictError: A uniqueness constraint was violated (e.g. a
                concurrent insert of the same path won the race).
        """
        now = int(time.time())

        async def write() -> tuple[str, str]:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(ComicBook).where(ComicBook.file_path == record.file_path)
                )
                comic = result.one_or_none()
                if comic is None:
                    comic = ComicBook(**record.column_values())
                    action = "insert"
                else:
                    for key, value in record.column_values().items():
                        setattr(comic, key, value)
                    comic.missing = False
                    comic.missing_since = None
                    comic.updated_at = now
                    action = "update"
                session.add(comic)
                await session.flush()
                await self._replace_relations(session, comic.id, record.credits, record.taxonomy)
                await session.commit()
                return comic.id, action

        try:
            comic_id, action = await retry_db_operation(write, operation_type="upsert")
        except IntegrityError as e:
            raise CatalogConflictError(
                f"Could not upsert comic {record.file_path}: {e.orig}"
            ) from e

        logger.debug("Comic upserted", comic_id=comic_id, file_path=record.file_path, action=action)
        return comic_id

    async def replace_comic_relations(
        self,
        comic_id: str,
        credits: list[tuple[str, str]],
        taxonomy: list[tuple[str, str]],
    ) -> None:
        """Replace a comic's credit and taxonomy rows with the given pairs."""

        async def write() -> None:
            async with self._session_factory() as session:
                await self._replace_relations(session, comic_id, credits, taxonomy)
                await session.commit()

        await retry_db_operation(write, operation_type="commit")

    async def _replace_relations(
        self,
        session: Any,
        comic_id: str,
        credits: list[tuple[str, str]],
        taxonomy: list[tuple[str, str]],
    ) -> None:
        await session.execute(delete(ComicCredit).where(ComicCredit.comic_book_id == comic_id))
        await session.execute(delete(ComicTaxonomy).where(ComicTaxonomy.comic_book_id == comic_id))
        for role, name in dict.fromkeys(credits):
            session.add(ComicCredit(comic_book_id=comic_id, role=role, name=name))
        for kind, name in dict.fromkeys(taxonomy):
            session.add(ComicTaxonomy(comic_book_id=comic_id, kind=kind, name=name))

    async def mark_comic_missing(self, file_path: str) -> bool:
        """Flag a catalogued file as missing from disk. The record is kept."""

        async def write() -> str | None:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(ComicBook).where(ComicBook.file_path == file_path)
                )
                comic = result.one_or_none()
                if comic is None or comic.missing:
                    return None
                comic.missing = True
                comic.missing_since = int(time.time())
                session.add(comic)
                await session.commit()
                return comic.id

        comic_id = await retry_db_operation(write, operation_type="update")
        if comic_id is None:
            return False
        logger.info("Comic marked missing", comic_id=comic_id, file_path=file_path)
        return True

    async def clear_comic_missing(self, comic_id: str) -> None:
        async def write() -> str | None:
            async with self._session_factory() as session:
                comic = await session.get(ComicBook, comic_id)
                if comic is None or not comic.missing:
                    return None
                comic.missing = False
                comic.missing_since = None
                session.add(comic)
                await session.commit()
                return comic.file_path

        file_path = await retry_db_operation(write, operation_type="update")
        if file_path is not None:
            logger.info("Missing comic reappeared", comic_id=comic_id, file_path=file_path)

    async def get_series_by_folder_path(self, folder_path: str) -> ComicSeries | None:
        async with self._session_factory() as session:
            result = await session.exec(
                select(ComicSeries).where(ComicSeries.folder_path == folder_path)
            )
            return result.one_or_none()

    async def get_series_ids_for_comic(self, comic_id: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(ComicSeriesBook.series_id).where(ComicSeriesBook.comic_book_id == comic_id)
            )
            return list(result.all())

    async def upsert_series(self, record: SeriesRecord) -> str:
        """Create the series for a folder, or return the existing one's id.

        An existing series keeps its name; only gaps (year, volume, tags) are filled.
        """

        async def write() -> tuple[str, str]:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(ComicSeries).where(ComicSeries.folder_path == record.folder_path)
                )
                series = result.one_or_none()
                if series is None:
                    series = ComicSeries(
                        folder_path=record.folder_path,
                        name=record.name,
                        library_id=record.library_id,
                        year=record.year,
                        volume=record.volume,
                        tags=list(record.tags),
                    )
                    action = "insert"
                else:
                    series.year = series.year or record.year
                    series.volume = series.volume or record.volume
                    series.tags = series.tags or list(record.tags)
                    series.updated_at = int(time.time())
                    action = "update"
                session.add(series)
                await session.commit()
                return series.id, action

        try:
            series_id, action = await retry_db_operation(write, operation_type="upsert")
        except IntegrityError as e:
            raise CatalogConflictError(
                f"Could not upsert series {record.folder_path}: {e.orig}"
            ) from e
        if action == "insert":
            logger.info(
                "Series created",
                series_id=series_id,
                folder_path=record.folder_path,
                name=record.name,
            )
        return series_id

    async def link_comic_to_series(self, comic_id: str, series_id: str) -> bool:
        """Link a comic to a series. Returns False when the link already exists."""

        async def write() -> bool:
            async with self._session_factory() as session:
                result = await session.exec(
                    select(ComicSeriesBook).where(
                        ComicSeriesBook.series_id == series_id,
                        ComicSeriesBook.comic_book_id == comic_id,
                    )
                )
                if result.one_or_none() is not None:
                    return False
                session.add(ComicSeriesBook(series_id=series_id, comic_book_id=comic_id))
                await session.commit()
                return True

        try:
            linked = await retry_db_operation(write, operation_type="insert")
        except IntegrityError:
            # A concurrent link of the same pair won
            return False
        if linked:
            logger.debug("Comic linked to series", comic_id=comic_id, series_id=series_id)
        return linked

    async def count_comics(self) -> int:
        async with self._session_factory() as session:
            result = await session.exec(select(func.count()).select_from(ComicBook))
            return result.one()

    async def count_series(self) -> int:
        async with self._session_factory() as session:
            result = await session.exec(select(func.count()).select_from(ComicSeries))
            return result.one()


class LibrarySource:
    """Read access to library configuration, plus fingerprint bookkeeping."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def list_enabled_library_roots(self) -> list[LibraryRoot]:
        async with self._session_factory() as session:
            result = await session.exec(select(Library).where(Library.enabled == True))  # noqa: E712
            return [LibraryRoot(id=lib.id, path=lib.path) for lib in result.all()]

    async def get_library_last_changed_time(self, library_id: str) -> int | None:
        async with self._session_factory() as session:
            library = await session.get(Library, library_id)
            return library.updated_at if library else None

    async def find_library_for_path(self, file_path: str) -> LibraryRoot | None:
        """Return the enabled library with the deepest root containing ``file_path``."""
        candidates = [
            root
            for root in await self.list_enabled_library_roots()
            if is_within(file_path, root.path)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda root: len(os.path.normpath(root.path)))

    async def get_fingerprint(self, library_id: str) -> str | None:
        async with self._session_factory() as session:
            library = await session.get(Library, library_id)
            return library.fingerprint if library else None

    async def update_fingerprint(self, library_id: str, fingerprint: str) -> None:
        async def write() -> None:
            async with self._session_factory() as session:
                library = await session.get(Library, library_id)
                if library is None:
                    return
                library.fingerprint = fingerprint
                library.last_scanned_at = int(time.time())
                session.add(library)
                await session.commit()

        await retry_db_operation(write, operation_type="update")
