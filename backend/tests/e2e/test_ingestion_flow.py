"""A file dropped into a watched library ends up catalogued."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

from fastapi.testclient import TestClient

COMIC_INFO = b"""<?xml version="1.0"?>
<ComicInfo>
  <Series>Batman</Series>
  <Number>1</Number>
  <Year>2016</Year>
  <Writer>Tom King</Writer>
</ComicInfo>
"""


def _make_cbz(path: Path) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("ComicInfo.xml", COMIC_INFO)
        archive.writestr("page001.jpg", b"\xff\xd8\xff")
    path.write_bytes(buffer.getvalue())


def test_dropped_file_is_ingested(live_client: TestClient, library_dir: Path, wait_for) -> None:
    created = live_client.post("/api/libraries", json={"name": "Comics", "path": str(library_dir)})
    assert created.status_code == 201
    assert live_client.get("/api/health").json()["watcher_running"] is True

    series_dir = library_dir / "Batman (2016)"
    series_dir.mkdir()
    _make_cbz(series_dir / "Batman 001 (2016).cbz")

    def series_job_done() -> bool:
        jobs = live_client.get(
            "/api/jobs", params={"job_type": "process_comic_series", "status": "completed"}
        ).json()
        return jobs["total"] >= 1

    wait_for(series_job_done)

    file_jobs = live_client.get("/api/jobs", params={"job_type": "new_comic_file"}).json()
    assert file_jobs["total"] >= 1
    file_path = str(series_dir / "Batman 001 (2016).cbz")
    assert {job["payload"]["file_path"] for job in file_jobs["jobs"]} == {file_path}

    library = live_client.get(f"/api/libraries/{created.json()['id']}").json()
    assert library["comic_count"] == 1
