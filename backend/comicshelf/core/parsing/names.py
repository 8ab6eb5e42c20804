"""Heuristic parsers for comic file names and series folder names.

Both parsers run a fixed sequence of extraction steps; the order matters
because every step sees the residue of the ones before it. A pattern that is
not found yields an empty value, never an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from comicshelf.core.parsing import patterns


@dataclass(frozen=True)
class ParsedFileProperties:
    """Fields recovered from an archive's file name."""

    series_name: str = ""
    issue_number: str = ""
    volume_number: str = ""
    year: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedFolderProperties:
    """Fields recovered from a series folder name."""

    series_name: str = ""
    series_year: str = ""
    series_volume: str = ""
    series_tags: list[str] = field(default_factory=list)


def parse_file_name(filename: str) -> ParsedFileProperties:
    """Parse e.g. "Batman 001 (2011) (DC Comics).cbr".

    >>> parse_file_name("Batman 001 (2011) (DC Comics).cbr")
    ParsedFileProperties(series_name='Batman', issue_number='1', volume_number='', year='2011', tags=['DC Comics'])
    """
    name, _ = patterns.strip_extension(filename)

    working, issue = patterns.take_limited_run_issue(name)
    # Tags are read from the name minus "(of N)", before the year cut drops them
    untagged_source = working

    working, year = patterns.take_paren_year(working)
    tags = patterns.paren_tags(untagged_source, exclude=year)
    working, _ = patterns.drop_paren_groups(working)

    working, volume = patterns.take_short_volume(working)

    if not issue:
        working, issue = patterns.take_trailing_issue(working)

    return ParsedFileProperties(
        series_name=patterns.clean(working),
        issue_number=issue,
        volume_number=volume,
        year=year,
        tags=tags,
    )


def parse_folder_name(foldername: str) -> ParsedFolderProperties:
    """Parse e.g. "Green Lantern (2005) [DC] [Ongoing]".

    >>> parse_folder_name("Daredevil v4 [Mature Readers]")
    ParsedFolderProperties(series_name='Daredevil', series_year='', series_volume='4', series_tags=['Mature Readers'])
    """
    working, tags = patterns.bracket_tags(foldername)
    working, year = patterns.take_folder_year(working)
    working, volume = patterns.take_long_volume(working)

    return ParsedFolderProperties(
        series_name=patterns.clean(working),
        series_year=year,
        series_volume=volume,
        series_tags=tags,
    )
