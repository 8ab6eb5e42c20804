"""Embedded and standardized comic metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

# Parsed XML document: element name -> text, list of texts for repeated
# elements, or list of attribute dicts for ComicInfo <Pages>
XmlDocument = dict[str, Any]

MetadataSource = Literal["comicinfo", "comet"]

CREATOR_ROLES = (
    "writer",
    "penciller",
    "inker",
    "colorist",
    "letterer",
    "editor",
    "cover_artist",
)

TAXONOMY_KINDS = (
    "genre",
    "character",
    "team",
    "location",
    "story_arc",
    "series_group",
)


@dataclass
class RawMetadata:
    """Documents found inside an archive. At least one of them is set."""

    comic_info: XmlDocument | None = None
    comet: XmlDocument | None = None


@dataclass
class MetadataPage:
    image: int | None = None
    type: str | None = None
    double_page: bool | None = None
    width: int | None = None
    height: int | None = None
    image_size: int | None = None


@dataclass
class StandardizedMetadata:
    """Canonical metadata independent of the embedded format it came from."""

    source: MetadataSource
    title: str | None = None
    series: str | None = None
    issue_number: str | None = None
    volume: str | None = None
    count: int | None = None
    alternate_series: str | None = None
    alternate_number: str | None = None
    alternate_count: int | None = None
    page_count: int | None = None
    summary: str | None = None
    notes: str | None = None
    year: int | None = None
    month: int | None = None
    day: int | None = None
    scan_information: str | None = None
    language_iso: str | None = None
    format: str | None = None
    black_and_white: bool | None = None
    manga: bool | None = None
    # "LeftToRight" / "RightToLeft"; only ComicInfo can express it
    reading_direction: str | None = None
    review: str | None = None
    publisher: str | None = None
    imprint: str | None = None
    web: str | None = None
    main_character_or_team: str | None = None
    age_rating: str | None = None
    community_rating: float | None = None

    writers: list[str] = field(default_factory=list)
    pencillers: list[str] = field(default_factory=list)
    inkers: list[str] = field(default_factory=list)
    colorists: list[str] = field(default_factory=list)
    letterers: list[str] = field(default_factory=list)
    editors: list[str] = field(default_factory=list)
    cover_artists: list[str] = field(default_factory=list)

    genres: list[str] = field(default_factory=list)
    characters: list[str] = field(default_factory=list)
    teams: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    story_arcs: list[str] = field(default_factory=list)
    series_groups: list[str] = field(default_factory=list)

    pages: list[MetadataPage] = field(default_factory=list)

    def credits(self) -> list[tuple[str, str]]:
        """(role, name) pairs for every creator list."""
        by_role = {
            "writer": self.writers,
            "penciller": self.pencillers,
            "inker": self.inkers,
            "colorist": self.colorists,
            "letterer": self.letterers,
            "editor": self.editors,
            "cover_artist": self.cover_artists,
        }
        return [(role, name) for role in CREATOR_ROLES for name in by_role[role]]

    def taxonomy(self) -> list[tuple[str, str]]:
        """(kind, name) pairs for genres, characters, teams and the like."""
        by_kind = {
            "genre": self.genres,
            "character": self.characters,
            "team": self.teams,
            "location": self.locations,
            "story_arc": self.story_arcs,
            "series_group": self.series_groups,
        }
        return [(kind, name) for kind in TAXONOMY_KINDS for name in by_kind[kind]]
