"""Content hashing for change detection.

``hash_file`` fingerprints a single archive; ``hash_directory`` fingerprints a
whole library tree so an unchanged library can skip a rescan entirely.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog

from comicshelf.core.exceptions import (
    HashFileNotFoundError,
    HashingError,
    HashPermissionError,
)
from comicshelf.core.metrics import files_hashed_total, hashing_errors_total

logger = structlog.get_logger("comicshelf.hashing")

DEFAULT_CHUNK_SIZE = 1024 * 1024


def hash_file(path: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Return the SHA-256 hex digest of a file, read in fixed-size chunks.

    Raises:
        HashFileNotFoundError: The file does not exist (or vanished mid-read).
        HashPermissionError: The file is not readable by this process.
        HashingError: Any other I/O failure while opening or reading.
    """
    path_str = str(path)
    digest = hashlib.sha256()
    try:
        with open(path_str, "rb") as f:
            while chunk := f.read(chunk_size):
                digest.update(chunk)
    except FileNotFoundError as e:
        hashing_errors_total.labels(kind=HashFileNotFoundError.kind).inc()
        raise HashFileNotFoundError(path_str, "File not found") from e
    except PermissionError as e:
        hashing_errors_total.labels(kind=HashPermissionError.kind).inc()
        raise HashPermissionError(path_str, "Permission denied") from e
    except IsADirectoryError as e:
        hashing_errors_total.labels(kind=HashingError.kind).inc()
        raise HashingError(path_str, "Is a directory") from e
    except OSError as e:
        hashing_errors_total.labels(kind=HashingError.kind).inc()
        raise HashingError(path_str, e.strerror or str(e)) from e

    files_hashed_total.inc()
    return digest.hexdigest()


def _file_token(root: str, path: str, chunk_size: int) -> str:
    """Build the fingerprint token of one file, or an ERROR token if it cannot be read."""
    try:
        stat = os.stat(path)
        digest = hash_file(path, chunk_size)
    except OSError as e:
        message = e.message if isinstance(e, HashingError) else (e.strerror or str(e))
        return f"ERROR:{path}:{message}"

    relative = Path(os.path.relpath(path, root)).as_posix()
    return f"{relative}:{stat.st_size}:{int(stat.st_mtime * 1000)}:{digest}"


def hash_directory(
    root: str | Path,
    max_workers: int = 4,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Return an aggregate SHA-256 fingerprint for every file under ``root``.

    Each file contributes ``<relpath>:<size>:<mtime_ms>:<digest>``. Files that
    vanish or cannot be read mid-walk contribute ``ERROR:<path>:<message>``
    instead of aborting the walk. Tokens are sorted before hashing so the
    result does not depend on enumeration order.
    """
    root_str = str(root)
    paths: list[str] = []

    def on_walk_error(error: OSError) -> None:
        # A directory that vanished or is unreadable still contributes a token
        paths.append(f"ERROR:{error.filename}:{error.strerror or error}")

    for dirpath, _dirnames, filenames in os.walk(root_str, onerror=on_walk_error):
        for filename in filenames:
            paths.append(os.path.join(dirpath, filename))

    tokens = [p for p in paths if p.startswith("ERROR:")]
    files = [p for p in paths if not p.startswith("ERROR:")]

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hash") as pool:
        tokens.extend(pool.map(lambda p: _file_token(root_str, p, chunk_size), files))

    tokens.sort()
    errors = sum(1 for t in tokens if t.startswith("ERROR:"))
    if errors:
        logger.warning("Some files could not be fingerprinted", root=root_str, errors=errors)
    logger.debug("Directory fingerprinted", root=root_str, files=len(files))

    return hashlib.sha256("\n".join(tokens).encode("utf-8")).hexdigest()


class HashingPool:
    """Async facade over the hashers that bounds how many run at once.

    Hashing runs in worker threads; the semaphore caps open file descriptors
    when many jobs hash at the same time.
    """

    def __init__(self, size: int = 4, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.size = size
        self.chunk_size = chunk_size
        self._semaphore = asyncio.Semaphore(size)

    async def hash_file(self, path: str | Path) -> str:
        async with self._semaphore:
            return await asyncio.to_thread(hash_file, path, self.chunk_size)

    async def hash_directory(self, root: str | Path) -> str:
        async with self._semaphore:
            return await asyncio.to_thread(hash_directory, root, self.size, self.chunk_size)
