"""File and folder name parsing."""

from __future__ import annotations

from comicshelf.core.parsing.names import (
    ParsedFileProperties,
    ParsedFolderProperties,
    parse_file_name,
    parse_folder_name,
)

__all__ = [
    "ParsedFileProperties",
    "ParsedFolderProperties",
    "parse_file_name",
    "parse_folder_name",
]
