"""Read ComicInfo.xml / CoMet.xml out of comic archives."""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
import zipfile
from typing import Any, Protocol

import rarfile
import structlog

from comicshelf.core.exceptions import MetadataReadError
from comicshelf.core.metadata.models import RawMetadata, XmlDocument

logger = structlog.get_logger("comicshelf.metadata.reader")

COMIC_INFO_NAME = "comicinfo.xml"
COMET_NAME = "comet.xml"


class _Archive(Protocol):
    def namelist(self) -> list[str]: ...

    def read(self, name: str) -> bytes: ...


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()
    if _local_name(element.tag) == "Pages":
        return [dict(child.attrib) for child in children]
    return _elements_to_dict(children)


def _elements_to_dict(elements: list[ET.Element]) -> XmlDocument:
    document: XmlDocument = {}
    for element in elements:
        key = _local_name(element.tag)
        value = _element_to_value(element)
        if key in document:
            existing = document[key]
            if isinstance(existing, list) and key != "Pages":
                existing.append(value)
            else:
                document[key] = [existing, value]
        else:
            document[key] = value
    return document


def parse_metadata_xml(data: bytes) -> XmlDocument:
    """Parse a ComicInfo or CoMet document into a plain dict.

    Namespaces are dropped and repeated elements become lists.

    Raises:
        ET.ParseError: The document is not well-formed XML.
    """
    root = ET.fromstring(data)
    return _elements_to_dict(list(root))


def _find_member(names: list[str], wanted: str) -> str | None:
    """Find an archive member by base name, case-insensitively, preferring the shallowest."""
    matches = [n for n in names if os.path.basename(n.rstrip("/")).lower() == wanted]
    if not matches:
        return None
    return min(matches, key=lambda n: n.count("/"))


def _read_documents(archive: _Archive) -> RawMetadata | None:
    names = archive.namelist()
    raw = RawMetadata()

    comic_info_name = _find_member(names, COMIC_INFO_NAME)
    if comic_info_name:
        raw.comic_info = parse_metadata_xml(archive.read(comic_info_name))

    comet_name = _find_member(names, COMET_NAME)
    if comet_name:
        raw.comet = parse_metadata_xml(archive.read(comet_name))

    if raw.comic_info is None and raw.comet is None:
        return None
    return raw


def read_embedded_metadata(file_path: str) -> RawMetadata | None:
    """Return the embedded metadata documents of a comic archive.

    Zip-based archives (.cbz/.zip, and .cbr files that are really zips) are
    read with zipfile, RAR archives with rarfile. Other containers are not
    supported and yield None, as do archives without metadata documents.

    Raises:
        MetadataReadError: The archive is corrupt or a document is malformed.
    """
    # is_zipfile/is_rarfile report a missing file as "not an archive"
    if not os.path.isfile(file_path):
        raise MetadataReadError(file_path, "file not found")

    try:
        if zipfile.is_zipfile(file_path):
            with zipfile.ZipFile(file_path, "r") as archive:
                raw = _read_documents(archive)
        elif rarfile.is_rarfile(file_path):
            with rarfile.RarFile(file_path, "r") as archive:
                raw = _read_documents(archive)
        else:
            logger.debug("Unsupported archive container", file_path=file_path)
            return None
    except (zipfile.BadZipFile, rarfile.Error) as e:
        raise MetadataReadError(file_path, f"corrupt archive ({e})") from e
    except ET.ParseError as e:
        raise MetadataReadError(file_path, f"malformed XML ({e})") from e
    except OSError as e:
        raise MetadataReadError(file_path, e.strerror or str(e)) from e

    if raw is None:
        logger.debug("No embedded metadata", file_path=file_path)
    return raw
