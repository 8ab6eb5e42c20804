"""Tests for middleware functionality."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from comicshelf.core.middleware import TRACE_HEADER, TracingMiddleware
from comicshelf.routes import general


@pytest.fixture
def client() -> TestClient:
    """Create a test client for a bare app carrying only the general routes."""
    app = FastAPI()
    app.add_middleware(TracingMiddleware)
    app.include_router(general.router)
    return TestClient(app)


def test_trace_id_header_added_to_response(client: TestClient) -> None:
    """Test that X-Trace-ID header is added to responses."""
    response = client.get("/api/health")

    assert response.status_code == 200
    trace_id = response.headers[TRACE_HEADER]
    assert len(trace_id) == 32


def test_trace_id_header_preserved(client: TestClient) -> None:
    """Test that an incoming X-Trace-ID header is reused."""
    response = client.get("/api/health", headers={TRACE_HEADER: "custom-trace-id"})

    assert response.headers[TRACE_HEADER] == "custom-trace-id"
    assert response.json()["trace_id"] == "custom-trace-id"


def test_trace_id_consistent_across_request(client: TestClient) -> None:
    """The header and the body carry the same trace ID."""
    response = client.get("/api/health")

    assert response.headers[TRACE_HEADER] == response.json()["trace_id"]


def test_trace_id_different_for_each_request(client: TestClient) -> None:
    response1 = client.get("/api/health")
    response2 = client.get("/api/health")

    assert response1.headers[TRACE_HEADER] != response2.headers[TRACE_HEADER]


def test_health_without_ingestion_service(client: TestClient) -> None:
    data = client.get("/api/health").json()

    assert data["status"] == "healthy"
    assert data["workers_running"] is False
    assert data["watcher_running"] is False
