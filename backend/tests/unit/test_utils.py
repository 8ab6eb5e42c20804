"""Tests for the path and metadata value helpers."""

from __future__ import annotations

import pytest

from comicshelf.core.utils import is_comic_file, is_hidden_path, is_within, to_float, to_int


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("", None),
        ("  42 ", 42),
        ("007", 7),
        ("3.0", 3),
        (True, 1),
        (12, 12),
        ("abc", None),
        ("nan", None),
        ("inf", None),
        ("-inf", None),
        ("1e999", None),
        ("1" + "0" * 30, None),
        (2**70, None),
    ],
)
def test_to_int(value: object, expected: int | None) -> None:
    assert to_int(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("", None),
        ("4.5", 4.5),
        ("3", 3.0),
        ("five", None),
        ("nan", None),
        ("inf", None),
        ("1e999", None),
    ],
)
def test_to_float(value: object, expected: float | None) -> None:
    assert to_float(value) == expected


def test_is_comic_file() -> None:
    assert is_comic_file("/comics/Batman 001.CBZ")
    assert not is_comic_file("/comics/cover.jpg")
    assert not is_comic_file("/comics/README")


def test_is_hidden_path_only_checks_below_root() -> None:
    assert is_hidden_path("/comics/.incoming/Batman 001.cbz", "/comics")
    assert not is_hidden_path("/home/.library/Batman 001.cbz", "/home/.library")


def test_is_within_does_not_match_prefix_siblings() -> None:
    assert is_within("/comics/Batman/Batman 001.cbz", "/comics")
    assert is_within("/comics", "/comics/")
    assert not is_within("/comics-old/Batman 001.cbz", "/comics")
