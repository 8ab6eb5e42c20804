"""Turn embedded ComicInfo / CoMet documents into canonical metadata.

Precedence, per field: embedded value (present and non-empty) > value parsed
from the file name > value parsed from the folder name > absent.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Iterable
from typing import Any

import structlog

from comicshelf.core.catalog import ComicRecord
from comicshelf.core.metadata.models import (
    MetadataPage,
    RawMetadata,
    StandardizedMetadata,
    XmlDocument,
)
from comicshelf.core.parsing import ParsedFileProperties, ParsedFolderProperties
from comicshelf.core.utils import to_float, to_int

logger = structlog.get_logger("comicshelf.metadata.standardize")

READING_RIGHT_TO_LEFT = "RightToLeft"
READING_LEFT_TO_RIGHT = "LeftToRight"


def _text(document: XmlDocument, key: str) -> str | None:
    value = document.get(key)
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, str) and v.strip()), None)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _split(values: Iterable[Any]) -> list[str]:
    """Split comma-separated strings into trimmed, de-duplicated, non-empty names."""
    names: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        for name in value.split(","):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return names


def _list(document: XmlDocument, key: str) -> list[str]:
    value = document.get(key)
    if value is None:
        return []
    if isinstance(value, list):
        return _split(value)
    return _split([value])


def yes_no(value: str | None) -> bool | None:
    """Map the Yes/No/Unknown convention to True/False/None."""
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in ("yes", "yesandrighttoleft"):
        return True
    if normalized == "no":
        return False
    return None


def _reading_direction(manga: str | None) -> str | None:
    if manga is None:
        return None
    normalized = manga.strip().lower()
    if normalized == "yesandrighttoleft":
        return READING_RIGHT_TO_LEFT
    if normalized in ("yes", "no"):
        return READING_LEFT_TO_RIGHT
    return None


def _double_page(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in ("true", "yes", "1"):
        return True
    if normalized in ("false", "no", "0"):
        return False
    return None


def _pages(document: XmlDocument) -> list[MetadataPage]:
    pages = document.get("Pages")
    if not isinstance(pages, list):
        return []
    return [
        MetadataPage(
            image=to_int(page.get("Image")),
            type=page.get("Type") or None,
            double_page=_double_page(page.get("DoublePage")),
            width=to_int(page.get("ImageWidth")),
            height=to_int(page.get("ImageHeight")),
            image_size=to_int(page.get("ImageSize")),
        )
        for page in pages
        if isinstance(page, dict)
    ]


def from_comic_info(document: XmlDocument) -> StandardizedMetadata:
    """Standardize a ComicInfo.xml document."""
    manga = _text(document, "Manga")
    return StandardizedMetadata(
        source="comicinfo",
        title=_text(document, "Title"),
        series=_text(document, "Series"),
        issue_number=_text(document, "Number"),
        volume=_text(document, "Volume"),
        count=to_int(_text(document, "Count")),
        alternate_series=_text(document, "AlternateSeries"),
        alternate_number=_text(document, "AlternateNumber"),
        alternate_count=to_int(_text(document, "AlternateCount")),
        page_count=to_int(_text(document, "PageCount")),
        summary=_text(document, "Summary"),
        notes=_text(document, "Notes"),
        year=to_int(_text(document, "Year")),
        month=to_int(_text(document, "Month")),
        day=to_int(_text(document, "Day")),
        scan_information=_text(document, "ScanInformation"),
        language_iso=_text(document, "LanguageISO"),
        format=_text(document, "Format"),
        black_and_white=yes_no(_text(document, "BlackAndWhite")),
        manga=yes_no(manga),
        reading_direction=_reading_direction(manga),
        review=_text(document, "Review"),
        publisher=_text(document, "Publisher"),
        imprint=_text(document, "Imprint"),
        web=_text(document, "Web"),
        main_character_or_team=_text(document, "MainCharacterOrTeam"),
        age_rating=_text(document, "AgeRating"),
        community_rating=to_float(_text(document, "CommunityRating")),
        writers=_list(document, "Writer"),
        pencillers=_list(document, "Penciller"),
        inkers=_list(document, "Inker"),
        colorists=_list(document, "Colorist"),
        letterers=_list(document, "Letterer"),
        editors=_list(document, "Editor"),
        cover_artists=_list(document, "CoverArtist"),
        genres=_list(document, "Genre"),
        characters=_list(document, "Characters"),
        teams=_list(document, "Teams"),
        locations=_list(document, "Locations"),
        story_arcs=_list(document, "StoryArc"),
        series_groups=_list(document, "SeriesGroup"),
        pages=_pages(document),
    )


def _split_date(value: str | None) -> tuple[int | None, int | None, int | None]:
    """Split "YYYY", "YYYY-MM" or "YYYY-MM-DD" into parts."""
    if not value:
        return None, None, None
    parts = [to_int(part) for part in value.strip()[:10].split("-")]
    parts += [None] * (3 - len(parts))
    return parts[0], parts[1], parts[2]


def from_comet(document: XmlDocument) -> StandardizedMetadata:
    """Standardize a CoMet.xml document.

    CoMet has no reading-direction concept, so reading_direction stays None.
    """
    year, month, day = _split_date(_text(document, "date"))
    return StandardizedMetadata(
        source="comet",
        title=_text(document, "title"),
        series=_text(document, "series"),
        issue_number=_text(document, "issue"),
        volume=_text(document, "volume"),
        page_count=to_int(_text(document, "pages")),
        summary=_text(document, "description"),
        year=year,
        month=month,
        day=day,
        language_iso=_text(document, "language"),
        format=_text(document, "format"),
        publisher=_text(document, "publisher"),
        web=_text(document, "identifier"),
        age_rating=_text(document, "rating"),
        writers=_list(document, "writer"),
        pencillers=_list(document, "penciller"),
        inkers=_list(document, "inker"),
        colorists=_list(document, "colorist"),
        letterers=_list(document, "letterer"),
        editors=_list(document, "editor"),
        cover_artists=_list(document, "coverDesigner"),
        genres=_list(document, "genre"),
        characters=_list(document, "character"),
    )


def standardize_embedded(raw: RawMetadata | None) -> StandardizedMetadata | None:
    """Standardize the embedded documents alone. ComicInfo wins when both exist."""
    if raw is None:
        return None
    if raw.comic_info is not None:
        return from_comic_info(raw.comic_info)
    if raw.comet is not None:
        return from_comet(raw.comet)
    return None


def merge_parsed_names(
    metadata: StandardizedMetadata,
    parsed_file: ParsedFileProperties,
    parsed_folder: ParsedFolderProperties,
) -> StandardizedMetadata:
    """Fill series, issue, volume and year gaps from the parsed names."""
    return dataclasses.replace(
        metadata,
        series=metadata.series or parsed_file.series_name or parsed_folder.series_name or None,
        issue_number=metadata.issue_number or parsed_file.issue_number or None,
        volume=metadata.volume or parsed_file.volume_number or parsed_folder.series_volume or None,
        year=metadata.year or to_int(parsed_file.year) or to_int(parsed_folder.series_year),
    )


def standardize(
    raw: RawMetadata | None,
    parsed_file: ParsedFileProperties,
    parsed_folder: ParsedFolderProperties,
) -> StandardizedMetadata | None:
    """Standardize embedded metadata and fill gaps from the parsed names.

    Returns None when the archive carries no embedded metadata; callers then
    use the parsed names alone.
    """
    metadata = standardize_embedded(raw)
    if metadata is None:
        return None
    return merge_parsed_names(metadata, parsed_file, parsed_folder)


def build_comic_record(
    *,
    file_path: str,
    library_id: str,
    content_hash: str,
    file_size: int,
    parsed_file: ParsedFileProperties,
    parsed_folder: ParsedFolderProperties,
    metadata: StandardizedMetadata | None,
) -> ComicRecord:
    """Merge standardized metadata (if any) and parsed names into a catalog record."""
    if metadata is None:
        series = parsed_file.series_name or parsed_folder.series_name or None
        issue_number = parsed_file.issue_number or None
        volume = parsed_file.volume_number or parsed_folder.series_volume or None
        year = to_int(parsed_file.year) or to_int(parsed_folder.series_year)
    else:
        series = metadata.series
        issue_number = metadata.issue_number
        volume = metadata.volume
        year = metadata.year

    if series is None:
        logger.debug("No series name from metadata or names", file_path=file_path)
    if issue_number is None:
        logger.debug("No issue number from metadata or names", file_path=file_path)

    record = ComicRecord(
        file_path=file_path,
        file_name=os.path.basename(file_path),
        library_id=library_id,
        hash=content_hash,
        file_size=file_size,
        series=series,
        issue_number=issue_number,
        volume=volume,
        year=year,
        tags=list(parsed_file.tags),
    )
    if metadata is None:
        return record

    return dataclasses.replace(
        record,
        title=metadata.title,
        month=metadata.month,
        day=metadata.day,
        issue_count=metadata.count,
        page_count=metadata.page_count or (len(metadata.pages) or None),
        summary=metadata.summary,
        publisher=metadata.publisher,
        imprint=metadata.imprint,
        language_iso=metadata.language_iso,
        format=metadata.format,
        age_rating=metadata.age_rating,
        community_rating=metadata.community_rating,
        black_and_white=metadata.black_and_white,
        manga=metadata.manga,
        reading_direction=metadata.reading_direction,
        web=metadata.web,
        pages=[dataclasses.asdict(page) for page in metadata.pages],
        metadata_source=metadata.source,
        credits=metadata.credits(),
        taxonomy=metadata.taxonomy(),
    )
