"""Whole-library scans gated by a directory fingerprint.

The watcher only sees changes made while it runs. A scan catches up on
everything else (startup, missed events, trees moved in as a whole). It is
skipped entirely when the library's aggregate fingerprint is unchanged.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import structlog

from comicshelf.core.catalog import LibraryRoot, LibrarySource
from comicshelf.core.config import DEFAULT_COMIC_EXTENSIONS
from comicshelf.core.hashing import HashingPool
from comicshelf.core.jobs.payloads import NewComicFile
from comicshelf.core.jobs.queue import JobQueue
from comicshelf.core.metrics import library_scans_total
from comicshelf.core.utils import is_comic_file

logger = structlog.get_logger("comicshelf.scanner")


@dataclass(frozen=True)
class ScanResult:
    library_id: str
    changed: bool
    enqueued: int = 0
    fingerprint: str | None = None


def iter_comic_files(
    root: str, extensions: Iterable[str] = DEFAULT_COMIC_EXTENSIONS, ignore_hidden: bool = True
) -> Iterator[str]:
    """Yield comic archives under ``root`` in a stable order, skipping dot paths."""
    extensions = tuple(extensions)
    for dirpath, dirnames, filenames in os.walk(root):
        if ignore_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
        dirnames.sort()
        for filename in sorted(filenames):
            if ignore_hidden and filename.startswith("."):
                continue
            if is_comic_file(filename, extensions):
                yield os.path.join(dirpath, filename)


class LibraryScanner:
    def __init__(
        self,
        libraries: LibrarySource,
        queue: JobQueue,
        hashing: HashingPool,
        extensions: Iterable[str] = DEFAULT_COMIC_EXTENSIONS,
        ignore_hidden: bool = True,
    ) -> None:
        self.libraries = libraries
        self.queue = queue
        self.hashing = hashing
        self.extensions = tuple(extensions)
        self.ignore_hidden = ignore_hidden

    async def scan_library(self, root: LibraryRoot, force: bool = False) -> ScanResult:
        """Enqueue every comic in the library if its fingerprint changed.

        Already-catalogued files with unchanged content finish as no-ops in
        the pipeline, so a changed fingerprint only costs hashing.
        """
        if not os.path.isdir(root.path):
            library_scans_total.labels(outcome="error").inc()
            logger.warning("Library root missing, scan skipped", library_id=root.id, path=root.path)
            return ScanResult(library_id=root.id, changed=False)

        fingerprint = await self.hashing.hash_directory(root.path)
        previous = await self.libraries.get_fingerprint(root.id)
        if not force and previous == fingerprint:
            library_scans_total.labels(outcome="unchanged").inc()
            logger.info("Library unchanged since last scan", library_id=root.id, path=root.path)
            return ScanResult(library_id=root.id, changed=False, fingerprint=fingerprint)

        enqueued = 0
        for file_path in iter_comic_files(root.path, self.extensions, self.ignore_hidden):
            await self.queue.enqueue(NewComicFile(file_path=file_path))
            enqueued += 1

        await self.libraries.update_fingerprint(root.id, fingerprint)
        library_scans_total.labels(outcome="changed").inc()
        logger.info(
            "Library scanned",
            library_id=root.id,
            path=root.path,
            enqueued=enqueued,
            forced=force,
        )
        return ScanResult(library_id=root.id, changed=True, enqueued=enqueued, fingerprint=fingerprint)

    async def scan_all(self, force: bool = False) -> list[ScanResult]:
        """Scan every enabled library. A failing library does not stop the rest."""
        results: list[ScanResult] = []
        for root in await self.libraries.list_enabled_library_roots():
            try:
                results.append(await self.scan_library(root, force=force))
            except Exception:
                library_scans_total.labels(outcome="error").inc()
                logger.exception("Library scan failed", library_id=root.id, path=root.path)
        return results
