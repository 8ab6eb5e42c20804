"""Tests for metrics setup and the ingestion counters."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from comicshelf.core.database import SessionFactory
from comicshelf.core.exceptions import HashFileNotFoundError, PermanentJobError
from comicshelf.core.hashing import hash_file
from comicshelf.core.jobs import JobQueue, NewComicFile, RetryPolicy
from comicshelf.core.metrics import (
    app_info,
    hashing_errors_total,
    jobs_completed_total,
    jobs_enqueued_total,
    jobs_failed_total,
    setup_metrics,
)


def test_setup_metrics_exposes_endpoint_once() -> None:
    app = FastAPI()

    @app.get("/ping")
    async def ping() -> dict[str, str]:
        return {"pong": "ok"}

    setup_metrics(app, "9.9.9")
    setup_metrics(app, "9.9.9")

    client = TestClient(app)
    client.get("/ping")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "/ping" in response.text
    assert [route.path for route in app.routes].count("/metrics") == 1
    assert app_info.labels(version="9.9.9")._value.get() == 1


async def test_job_counters(session_factory: SessionFactory) -> None:
    queue = JobQueue(session_factory, policy=RetryPolicy(max_attempts=1))
    label = "new_comic_file"
    enqueued = jobs_enqueued_total.labels(job_type=label)._value.get()
    completed = jobs_completed_total.labels(job_type=label)._value.get()
    failed = jobs_failed_total.labels(job_type=label)._value.get()

    await queue.enqueue(NewComicFile(file_path="/comics/a.cbz"))
    await queue.enqueue(NewComicFile(file_path="/comics/b.cbz"))
    await queue.complete(await queue.claim())
    await queue.fail(await queue.claim(), PermanentJobError("nope"))

    assert jobs_enqueued_total.labels(job_type=label)._value.get() == enqueued + 2
    assert jobs_completed_total.labels(job_type=label)._value.get() == completed + 1
    assert jobs_failed_total.labels(job_type=label)._value.get() == failed + 1


def test_hashing_errors_are_counted(tmp_path: Path) -> None:
    before = hashing_errors_total.labels(kind="not_found")._value.get()

    with pytest.raises(HashFileNotFoundError):
        hash_file(tmp_path / "missing.cbz")

    assert hashing_errors_total.labels(kind="not_found")._value.get() == before + 1
