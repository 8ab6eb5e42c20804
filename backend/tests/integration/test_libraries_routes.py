"""Tests for the library management routes."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from comicshelf.core.config import Settings
from comicshelf.core.database import create_database_engine, create_session_factory
from comicshelf.db.models import ComicBook


@pytest.fixture
def library_payload(library_dir: Path) -> dict:
    return {"name": "Comics", "path": str(library_dir)}


def _create(client: TestClient, payload: dict) -> dict:
    response = client.post("/api/libraries", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestLibraryRoutes:
    def test_create_and_list(self, client: TestClient, library_payload: dict) -> None:
        created = _create(client, library_payload)

        assert created["name"] == "Comics"
        assert created["path"] == library_payload["path"]
        assert created["enabled"] is True
        assert created["fingerprint"] is None
        assert created["comic_count"] == 0

        response = client.get("/api/libraries")
        assert response.status_code == 200
        assert [lib["id"] for lib in response.json()["libraries"]] == [created["id"]]

    def test_path_is_normalized(self, client: TestClient, library_dir: Path) -> None:
        created = _create(client, {"name": "Comics", "path": f"{library_dir}/./"})

        assert created["path"] == str(library_dir)

    def test_relative_path_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/libraries", json={"name": "Comics", "path": "comics"})

        assert response.status_code == 400

    def test_duplicate_path_conflicts(self, client: TestClient, library_payload: dict) -> None:
        _create(client, library_payload)

        response = client.post("/api/libraries", json={**library_payload, "name": "Again"})

        assert response.status_code == 409

    def test_get_missing_library(self, client: TestClient) -> None:
        assert client.get("/api/libraries/nope").status_code == 404

    def test_update_path_forgets_fingerprint(
        self, client: TestClient, library_payload: dict, library_dir: Path, tmp_path: Path
    ) -> None:
        (library_dir / "Batman 001.cbz").write_bytes(b"issue one")
        created = _create(client, library_payload)
        scanned = client.post(f"/api/libraries/{created['id']}/scan").json()
        assert scanned["fingerprint"] is not None
        stored = client.get(f"/api/libraries/{created['id']}").json()
        assert stored["fingerprint"] == scanned["fingerprint"]

        moved = tmp_path / "moved"
        moved.mkdir()
        response = client.put(f"/api/libraries/{created['id']}", json={"path": str(moved)})

        assert response.status_code == 200
        data = response.json()
        assert data["path"] == str(moved)
        assert data["fingerprint"] is None

    def test_update_name_and_enabled(self, client: TestClient, library_payload: dict) -> None:
        created = _create(client, library_payload)

        response = client.put(
            f"/api/libraries/{created['id']}", json={"name": "Archive", "enabled": False}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Archive"
        assert data["enabled"] is False
        assert data["path"] == library_payload["path"]

    def test_update_to_taken_path_conflicts(
        self, client: TestClient, library_payload: dict, tmp_path: Path
    ) -> None:
        _create(client, library_payload)
        other = _create(client, {"name": "Manga", "path": str(tmp_path / "manga")})

        response = client.put(f"/api/libraries/{other['id']}", json={"path": library_payload["path"]})

        assert response.status_code == 409

    def test_delete_library(self, client: TestClient, library_payload: dict) -> None:
        created = _create(client, library_payload)

        response = client.delete(f"/api/libraries/{created['id']}")

        assert response.status_code == 204
        assert client.get(f"/api/libraries/{created['id']}").status_code == 404

    async def test_delete_refuses_library_with_comics(
        self, client: TestClient, library_payload: dict, settings: Settings
    ) -> None:
        created = _create(client, library_payload)
        engine = create_database_engine(settings.database_file)
        try:
            async with create_session_factory(engine)() as session:
                session.add(
                    ComicBook(
                        library_id=created["id"],
                        file_path=f"{library_payload['path']}/Batman 001.cbz",
                        file_name="Batman 001.cbz",
                        file_size=3,
                        hash="abc",
                    )
                )
                await session.commit()
        finally:
            await engine.dispose()

        response = client.delete(f"/api/libraries/{created['id']}")

        assert response.status_code == 409
        assert client.get(f"/api/libraries/{created['id']}").json()["comic_count"] == 1

    def test_forced_scan_enqueues_files(
        self, client: TestClient, library_payload: dict, library_dir: Path
    ) -> None:
        (library_dir / "Batman").mkdir()
        (library_dir / "Batman" / "Batman 001.cbz").write_bytes(b"one")
        (library_dir / "Batman" / "Batman 002.cbz").write_bytes(b"two")
        created = _create(client, library_payload)

        first = client.post(f"/api/libraries/{created['id']}/scan")
        second = client.post(f"/api/libraries/{created['id']}/scan")

        assert first.status_code == 200
        assert first.json()["enqueued"] == 2
        assert first.json()["changed"] is True
        # Forced scans ignore the stored fingerprint
        assert second.json()["enqueued"] == 2

        jobs = client.get("/api/jobs", params={"job_type": "new_comic_file"}).json()
        assert jobs["total"] >= 1

    def test_scan_disabled_library_conflicts(self, client: TestClient, library_payload: dict) -> None:
        created = _create(client, {**library_payload, "enabled": False})

        response = client.post(f"/api/libraries/{created['id']}/scan")

        assert response.status_code == 409
