"""Shared path and value helpers."""

from __future__ import annotations

import math
import os
from collections.abc import Iterable
from pathlib import PurePath

from comicshelf.core.config import DEFAULT_COMIC_EXTENSIONS

_SQLITE_INT_MAX = 2**63 - 1
_SQLITE_INT_MIN = -(2**63)


def is_comic_file(path: str, extensions: Iterable[str] = DEFAULT_COMIC_EXTENSIONS) -> bool:
    """Check whether a path has one of the comic archive extensions (case-insensitive)."""
    return os.path.splitext(path)[1].lower() in set(extensions)


def is_hidden_path(path: str, root: str | None = None) -> bool:
    """Check whether any component of ``path`` starts with a dot.

    When ``root`` is given only the components below it are considered, so a
    library living under a dot directory is still watched.
    """
    if root:
        try:
            path = os.path.relpath(path, root)
        except ValueError:
            pass
    return any(part.startswith(".") and part not in (".", "..") for part in PurePath(path).parts)


def is_within(path: str, root: str) -> bool:
    """Check whether ``path`` is ``root`` or lies below it."""
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def to_int(value: object) -> int | None:
    """Convert a metadata value to int, returning None for blanks and garbage.

    Values that do not fit a 64-bit SQLite INTEGER (including "inf" and
    "1e999") count as garbage.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = int(text)
        except ValueError:
            try:
                number = int(float(text))
            except (ValueError, OverflowError):
                return None
    return number if _SQLITE_INT_MIN <= number <= _SQLITE_INT_MAX else None


def to_float(value: object) -> float | None:
    """Convert a metadata value to float, returning None for blanks and garbage."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
