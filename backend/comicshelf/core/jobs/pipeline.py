"""Handlers for the two ingestion job types.

NewComicFile: hash the file, skip it if the catalog already has this
content, otherwise parse names, read embedded metadata, upsert the comic and
either link it to the folder's series or spawn ProcessComicSeries.

ProcessComicSeries: resolve or create the series for a folder and link the
comic to it.

Both handlers are safe to run again for the same payload.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import assert_never

import structlog

from comicshelf.core.catalog import CatalogStore, LibrarySource, SeriesRecord
from comicshelf.core.exceptions import (
    HashFileNotFoundError,
    LibraryNotFoundError,
    MetadataReadError,
    PermanentJobError,
)
from comicshelf.core.hashing import HashingPool
from comicshelf.core.jobs.payloads import (
    JOB_TYPES,
    NewComicFile,
    ProcessComicSeries,
    SeriesHint,
)
from comicshelf.core.jobs.policy import RetryPolicy
from comicshelf.core.jobs.queue import JobQueue
from comicshelf.core.metadata import (
    RawMetadata,
    StandardizedMetadata,
    build_comic_record,
    merge_parsed_names,
    read_embedded_metadata,
    standardize_embedded,
)
from comicshelf.core.parsing import (
    ParsedFileProperties,
    ParsedFolderProperties,
    parse_file_name,
    parse_folder_name,
)
from comicshelf.core.utils import to_int

logger = structlog.get_logger("comicshelf.jobs.pipeline")

MetadataReader = Callable[[str], RawMetadata | None]

# Handler results, stored on the job row
RESULT_CREATED = "created"
RESULT_UPDATED = "updated"
RESULT_UNCHANGED = "unchanged"
RESULT_SKIPPED = "skipped"
RESULT_LINKED = "linked"
RESULT_ALREADY_LINKED = "already_linked"


class IngestionPipeline:
    """Job handlers wired to the catalog, the library source and the queue."""

    def __init__(
        self,
        catalog: CatalogStore,
        libraries: LibrarySource,
        queue: JobQueue,
        hashing: HashingPool,
        metadata_reader: MetadataReader = read_embedded_metadata,
    ) -> None:
        self.catalog = catalog
        self.libraries = libraries
        self.queue = queue
        self.hashing = hashing
        self.metadata_reader = metadata_reader

    def register(self, policy: RetryPolicy | None = None) -> None:
        """Register this pipeline as the handler of every job type."""
        for job_type in JOB_TYPES:
            self.queue.on_job(job_type, self.handle, policy)

    async def handle(self, payload: NewComicFile | ProcessComicSeries) -> str:
        if isinstance(payload, NewComicFile):
            return await self.process_new_comic_file(payload)
        elif isinstance(payload, ProcessComicSeries):
            return await self.process_comic_series(payload)
        else:
            assert_never(payload)

    async def process_new_comic_file(self, payload: NewComicFile) -> str:
        file_path = payload.file_path
        existing = await self.catalog.get_comic_by_file_path(file_path)

        try:
            content_hash = await self.hashing.hash_file(file_path)
        except HashFileNotFoundError:
            # Deleted or renamed before we got to it; the remove event covers it
            logger.info("File no longer exists, skipping", file_path=file_path)
            return RESULT_SKIPPED

        folder_path = os.path.dirname(file_path)
        parsed_file = parse_file_name(os.path.basename(file_path))
        parsed_folder = parse_folder_name(os.path.basename(folder_path))

        if existing is not None and existing.hash == content_hash:
            if existing.missing:
                await self.catalog.clear_comic_missing(existing.id)
            if await self.catalog.get_series_ids_for_comic(existing.id):
                logger.debug(
                    "Content unchanged, nothing to do", file_path=file_path, comic_id=existing.id
                )
                return RESULT_UNCHANGED

            # An earlier attempt catalogued the comic but never reached the series step
            logger.info(
                "Content unchanged but comic has no series",
                file_path=file_path,
                comic_id=existing.id,
            )
            embedded, metadata = await self._read_metadata(file_path, parsed_file, parsed_folder)
            await self._attach_series(
                existing.id, folder_path, existing.library_id, embedded, metadata
            )
            return RESULT_UNCHANGED

        library = await self.libraries.find_library_for_path(file_path)
        if library is None:
            raise LibraryNotFoundError(file_path)

        embedded, metadata = await self._read_metadata(file_path, parsed_file, parsed_folder)

        try:
            file_size = os.path.getsize(file_path)
        except OSError:
            file_size = 0

        record = build_comic_record(
            file_path=file_path,
            library_id=library.id,
            content_hash=content_hash,
            file_size=file_size,
            parsed_file=parsed_file,
            parsed_folder=parsed_folder,
            metadata=metadata,
        )
        comic_id = await self.catalog.upsert_comic(record)
        result = RESULT_CREATED if existing is None else RESULT_UPDATED
        logger.info(
            "Comic catalogued",
            file_path=file_path,
            comic_id=comic_id,
            action=result,
            series=record.series,
            issue_number=record.issue_number,
            metadata_source=record.metadata_source,
        )

        await self._attach_series(comic_id, folder_path, library.id, embedded, metadata)
        return result

    async def _read_metadata(
        self,
        file_path: str,
        parsed_file: ParsedFileProperties,
        parsed_folder: ParsedFolderProperties,
    ) -> tuple[StandardizedMetadata | None, StandardizedMetadata | None]:
        """Return the embedded metadata alone and merged with the parsed names."""
        raw: RawMetadata | None = None
        try:
            raw = await asyncio.to_thread(self.metadata_reader, file_path)
        except MetadataReadError as e:
            logger.warning(
                "Embedded metadata unreadable, using names only",
                file_path=file_path,
                reason=e.reason,
            )

        embedded = standardize_embedded(raw)
        metadata = (
            merge_parsed_names(embedded, parsed_file, parsed_folder) if embedded else None
        )
        return embedded, metadata

    async def _attach_series(
        self,
        comic_id: str,
        folder_path: str,
        library_id: str,
        embedded: StandardizedMetadata | None,
        metadata: StandardizedMetadata | None,
    ) -> None:
        """Link to the folder's series if it exists, otherwise spawn ProcessComicSeries."""
        series = await self.catalog.get_series_by_folder_path(folder_path)
        if series is not None:
            await self.catalog.link_comic_to_series(comic_id, series.id)
            return

        await self.queue.enqueue(
            ProcessComicSeries(
                series_path=folder_path,
                comic_id=comic_id,
                metadata=SeriesHint(
                    library_id=library_id,
                    series=embedded.series if embedded else None,
                    year=metadata.year if metadata else None,
                    volume=metadata.volume if metadata else None,
                ),
            )
        )

    async def process_comic_series(self, payload: ProcessComicSeries) -> str:
        folder_path = payload.series_path
        hint = payload.metadata

        if await self.catalog.get_comic(payload.comic_id) is None:
            raise PermanentJobError(f"Comic {payload.comic_id} no longer exists")

        library_id = hint.library_id
        if library_id is None:
            library = await self.libraries.find_library_for_path(folder_path)
            if library is None:
                raise LibraryNotFoundError(folder_path)
            library_id = library.id

        folder_name = os.path.basename(folder_path.rstrip(os.sep)) or folder_path
        parsed_folder = parse_folder_name(folder_name)

        series_id = await self.catalog.upsert_series(
            SeriesRecord(
                folder_path=folder_path,
                name=hint.series or parsed_folder.series_name or folder_name,
                library_id=library_id,
                year=to_int(parsed_folder.series_year) or hint.year,
                volume=parsed_folder.series_volume or hint.volume,
                tags=parsed_folder.series_tags,
            )
        )

        linked = await self.catalog.link_comic_to_series(payload.comic_id, series_id)
        logger.info(
            "Comic linked to series" if linked else "Comic already linked to series",
            comic_id=payload.comic_id,
            series_id=series_id,
            folder_path=folder_path,
        )
        return RESULT_LINKED if linked else RESULT_ALREADY_LINKED
