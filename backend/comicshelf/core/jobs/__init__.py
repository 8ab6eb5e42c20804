"""Durable ingestion jobs: payloads, retry policy, queue, workers and handlers."""

from __future__ import annotations

from comicshelf.core.jobs.payloads import (
    JOB_TYPES,
    NEW_COMIC_FILE,
    PROCESS_COMIC_SERIES,
    NewComicFile,
    ProcessComicSeries,
    SeriesHint,
    parse_payload,
)
from comicshelf.core.jobs.policy import RetryPolicy
from comicshelf.core.jobs.queue import JobEvent, JobQueue

__all__ = [
    "JOB_TYPES",
    "NEW_COMIC_FILE",
    "PROCESS_COMIC_SERIES",
    "JobEvent",
    "JobQueue",
    "NewComicFile",
    "ProcessComicSeries",
    "RetryPolicy",
    "SeriesHint",
    "parse_payload",
]
