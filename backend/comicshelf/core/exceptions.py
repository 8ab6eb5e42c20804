"""Error kinds raised by the ingestion pipeline."""

from __future__ import annotations


class HashingError(OSError):
    """A file could not be opened or read while computing its digest."""

    kind = "io"

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path
        self.message = message


class HashFileNotFoundError(HashingError):
    """The file disappeared before or while it was being hashed."""

    kind = "not_found"


class HashPermissionError(HashingError):
    """The process is not allowed to read the file."""

    kind = "permission"


class MetadataReadError(Exception):
    """Embedded metadata could not be read (corrupt archive, malformed XML)."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot read embedded metadata from {path}: {reason}")
        self.path = path
        self.reason = reason


class CatalogConflictError(Exception):
    """An upsert violated a catalog uniqueness constraint."""


class PermanentJobError(Exception):
    """A job failure that retrying cannot fix; the job is failed immediately."""


class LibraryNotFoundError(PermanentJobError):
    """A file path does not belong to any enabled library."""

    def __init__(self, path: str) -> None:
        super().__init__(f"No enabled library contains {path}")
        self.path = path
