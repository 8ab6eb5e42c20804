"""Database models and utilities.

This module exports all database models.
"""

from __future__ import annotations

from comicshelf.db.models import (
    ComicBook,
    ComicCredit,
    ComicSeries,
    ComicSeriesBook,
    ComicTaxonomy,
    Library,
    PipelineJob,
    metadata,
)

__all__ = [
    "metadata",
    "Library",
    "ComicBook",
    "ComicSeries",
    "ComicSeriesBook",
    "ComicCredit",
    "ComicTaxonomy",
    "PipelineJob",
]
