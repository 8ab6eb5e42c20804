"""Embedded metadata reading and standardization."""

from __future__ import annotations

from comicshelf.core.metadata.models import (
    MetadataPage,
    RawMetadata,
    StandardizedMetadata,
)
from comicshelf.core.metadata.reader import read_embedded_metadata
from comicshelf.core.metadata.standardize import (
    build_comic_record,
    merge_parsed_names,
    standardize,
    standardize_embedded,
)

__all__ = [
    "MetadataPage",
    "RawMetadata",
    "StandardizedMetadata",
    "build_comic_record",
    "merge_parsed_names",
    "read_embedded_metadata",
    "standardize",
    "standardize_embedded",
]
