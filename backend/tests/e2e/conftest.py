"""Fixtures for end-to-end runs with the real watchdog observer."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from comicshelf.app import create_app
from comicshelf.core.config import Settings


@pytest.fixture
def live_client() -> Iterator[TestClient]:
    settings = Settings(
        env="testing",
        watcher_enabled=True,
        watcher_quiet_period_seconds=0.2,
        scan_on_startup=False,
        scan_interval_minutes=0,
        worker_poll_interval_seconds=0.1,
    )
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def wait_for() -> Callable[..., object]:
    def _wait_for(check: Callable[[], object], timeout: float = 10.0, interval: float = 0.1) -> object:
        deadline = time.monotonic() + timeout
        while True:
            value = check()
            if value:
                return value
            if time.monotonic() > deadline:
                raise AssertionError("Condition not met before timeout")
            time.sleep(interval)

    return _wait_for
