"""Extraction steps shared by the file and folder name parsers.

Every step is a pure function over the working string that returns
``(residue, extracted)``. An empty ``extracted`` means the pattern was not
found and the residue is returned unchanged.
"""

from __future__ import annotations

import re

EXTENSION = re.compile(r"\.[^.\s]+$")

# "11 (of 12)": a numbered limited series
LIMITED_RUN_ISSUE = re.compile(r"(\d{1,4})\s*\(of\s*\d{1,4}\)", re.IGNORECASE)

YEAR_PAREN = re.compile(r"\((\d{4})\)")
# Folder names also allow "Batman - 2011" and "Batman 2011"
YEAR_BARE_SUFFIX = re.compile(r"(?:\s-\s|\s)(\d{4})\s*$")

TAG_PAREN = re.compile(r"\(([^)]+)\)")
TAG_BRACKET = re.compile(r"\[([^\]]+)\]")

VOLUME_SHORT = re.compile(r"\bv(\d{1,3})\b", re.IGNORECASE)
VOLUME_LONG = re.compile(r"\b(?:vol(?:ume|\.)?|v)\s*(\d{1,3})\b", re.IGNORECASE)

TRAILING_ISSUE = re.compile(r"(?:^|\s)(\d{1,4})$")

WHITESPACE = re.compile(r"\s+")

StepResult = tuple[str, str]


def strip_number(digits: str) -> str:
    """Drop leading zeros while keeping a lone "0"."""
    return str(int(digits))


def clean(text: str) -> str:
    """Collapse whitespace and trim dangling separators."""
    return WHITESPACE.sub(" ", text).strip(" -_")


def strip_extension(name: str) -> StepResult:
    match = EXTENSION.search(name)
    if not match:
        return name, ""
    return name[: match.start()], match.group(0)


def take_limited_run_issue(text: str) -> StepResult:
    match = LIMITED_RUN_ISSUE.search(text)
    if not match:
        return text, ""
    return text[: match.start()] + " " + text[match.end() :], strip_number(match.group(1))


def take_paren_year(text: str) -> StepResult:
    """Take the first "(YYYY)" and cut the working name at it.

    Everything after the year is release information (tags), not title.
    """
    match = YEAR_PAREN.search(text)
    if not match:
        return text, ""
    return text[: match.start()], match.group(1)


def take_folder_year(text: str) -> StepResult:
    match = YEAR_PAREN.search(text) or YEAR_BARE_SUFFIX.search(text)
    if not match:
        return text, ""
    return text[: match.start()] + " " + text[match.end() :], match.group(1)


def drop_paren_groups(text: str) -> StepResult:
    return TAG_PAREN.sub(" ", text), ""


def take_short_volume(text: str) -> StepResult:
    match = VOLUME_SHORT.search(text)
    if not match:
        return text, ""
    return text[: match.start()] + " " + text[match.end() :], match.group(1)


def take_long_volume(text: str) -> StepResult:
    match = VOLUME_LONG.search(text)
    if not match:
        return text, ""
    return text[: match.start()] + " " + text[match.end() :], match.group(1)


def take_trailing_issue(text: str) -> StepResult:
    match = TRAILING_ISSUE.search(text.strip())
    if not match:
        return text, ""
    trimmed = text.strip()
    return trimmed[: match.start()], strip_number(match.group(1))


def paren_tags(text: str, exclude: str = "") -> list[str]:
    """All "(...)" groups left to right, raw casing, minus one equal to ``exclude``."""
    return [tag for tag in TAG_PAREN.findall(text) if not exclude or tag != exclude]


def bracket_tags(text: str) -> tuple[str, list[str]]:
    """All "[...]" groups, de-duplicated in first-seen order, removed from the text."""
    tags: list[str] = []
    for tag in TAG_BRACKET.findall(text):
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return TAG_BRACKET.sub(" ", text), tags
