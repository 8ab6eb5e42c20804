"""Database models for the comic catalog and the ingestion job store.

All SQLModel models should be defined here and imported in db/__init__.py.

Models follow these patterns:
- Use singular nouns: ComicBook, ComicSeries
- Table names use plural, snake_case: comic_books, comic_series
- Use uuid.uuid4().hex for IDs (32 character hex strings)
- Include created_at and updated_at timestamps (epoch seconds)
- Unique constraints carry the catalog invariants (one record per file path,
  one series per folder path, one link per comic/series pair)
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from sqlalchemy import JSON, Column, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

metadata = SQLModel.metadata


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> int:
    return int(time.time())


class Library(SQLModel, table=True):
    """A library root the watcher and scanner observe."""

    __tablename__ = "libraries"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    path: str = Field(unique=True)  # Absolute root path (e.g., "/comics")
    enabled: bool = Field(default=True, index=True)

    # Aggregate fingerprint of the tree from the last scan (hash_directory)
    fingerprint: str | None = Field(default=None)
    last_scanned_at: int | None = Field(default=None)

    created_at: int = Field(default_factory=_now)
    updated_at: int = Field(default_factory=_now)


class ComicBook(SQLModel, table=True):
    """One catalogued archive file."""

    __tablename__ = "comic_books"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    library_id: str = Field(foreign_key="libraries.id", index=True)
    file_path: str = Field(unique=True)
    file_name: str
    file_size: int = Field(default=0)
    hash: str = Field(index=True)  # SHA-256 of file content

    title: str | None = Field(default=None)
    series: str | None = Field(default=None)
    issue_number: str | None = Field(default=None)
    volume: str | None = Field(default=None)
    year: int | None = Field(default=None)
    month: int | None = Field(default=None)
    day: int | None = Field(default=None)
    issue_count: int | None = Field(default=None)
    page_count: int | None = Field(default=None)
    summary: str | None = Field(default=None, sa_column=Column(Text))
    publisher: str | None = Field(default=None)
    imprint: str | None = Field(default=None)
    language_iso: str | None = Field(default=None)
    format: str | None = Field(default=None)
    age_rating: str | None = Field(default=None)
    community_rating: float | None = Field(default=None)
    black_and_white: bool | None = Field(default=None)
    manga: bool | None = Field(default=None)
    reading_direction: str | None = Field(default=None)
    web: str | None = Field(default=None)

    # Tags from the file name, pages from embedded metadata
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    pages: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    # Which embedded document supplied metadata: "comicinfo", "comet" or None
    metadata_source: str | None = Field(default=None)

    # Removal policy: the watcher flags records, it never deletes them
    missing: bool = Field(default=False, index=True)
    missing_since: int | None = Field(default=None)

    created_at: int = Field(default_factory=_now)
    updated_at: int = Field(default_factory=_now)

    __table_args__ = (Index("idx_comic_books_series_issue", "series", "issue_number"),)


class ComicSeries(SQLModel, table=True):
    """A series, keyed by the folder its issues live in."""

    __tablename__ = "comic_series"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    library_id: str = Field(foreign_key="libraries.id", index=True)
    folder_path: str = Field(unique=True)
    name: str
    year: int | None = Field(default=None)
    volume: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: int = Field(default_factory=_now)
    updated_at: int = Field(default_factory=_now)


class ComicSeriesBook(SQLModel, table=True):
    """Link between a series and a comic book."""

    __tablename__ = "comic_series_books"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    series_id: str = Field(foreign_key="comic_series.id", index=True)
    comic_book_id: str = Field(foreign_key="comic_books.id", index=True)
    created_at: int = Field(default_factory=_now)

    __table_args__ = (
        UniqueConstraint("series_id", "comic_book_id", name="uq_comic_series_books_pair"),
    )


class ComicCredit(SQLModel, table=True):
    """A creator credited on a comic book (writer, penciller, ...)."""

    __tablename__ = "comic_credits"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    comic_book_id: str = Field(foreign_key="comic_books.id", index=True)
    role: str
    name: str

    __table_args__ = (
        UniqueConstraint("comic_book_id", "role", "name", name="uq_comic_credits_entry"),
        Index("idx_comic_credits_name", "name"),
    )


class ComicTaxonomy(SQLModel, table=True):
    """Genre, character, team, location, story arc or series group of a comic."""

    __tablename__ = "comic_taxonomy"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    comic_book_id: str = Field(foreign_key="comic_books.id", index=True)
    kind: str
    name: str

    __table_args__ = (
        UniqueConstraint("comic_book_id", "kind", "name", name="uq_comic_taxonomy_entry"),
        Index("idx_comic_taxonomy_kind_name", "kind", "name"),
    )


class PipelineJob(SQLModel, table=True):
    """Durable ingestion job.

    Status lifecycle: queued -> active -> completed | retrying | failed.
    Failed jobs are kept as dead letters until requeued by an operator.
    """

    __tablename__ = "pipeline_jobs"  # type: ignore[assignment]

    id: str = Field(default_factory=_new_id, primary_key=True)
    job_type: str = Field(index=True)  # new_comic_file, process_comic_series
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    # Jobs sharing a serial key never run concurrently (file path or folder path)
    serial_key: str = Field(index=True)
    status: str = Field(default="queued", index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    next_run_at: float = Field(default_factory=time.time, index=True)
    error: str | None = Field(default=None, sa_column=Column(Text))
    result: str | None = Field(default=None)  # e.g. "created", "updated", "unchanged"
    created_at: int = Field(default_factory=_now)
    updated_at: int = Field(default_factory=_now)
    started_at: int | None = Field(default=None)
    completed_at: int | None = Field(default=None)

    __table_args__ = (Index("idx_pipeline_jobs_status_next_run", "status", "next_run_at"),)
