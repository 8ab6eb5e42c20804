"""Fixtures for API tests against a fully wired application."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from comicshelf.app import create_app
from comicshelf.core.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Settings for a quiet app: no watcher thread, no scans behind the test's back."""
    return Settings(
        env="testing",
        watcher_enabled=False,
        scan_on_startup=False,
        scan_interval_minutes=0,
        job_backoff_base_seconds=0,
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
