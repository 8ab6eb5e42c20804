"""Tests for tracing functionality."""

from __future__ import annotations

import structlog

from comicshelf.core.tracing import generate_trace_id, get_trace_id, trace_context


def test_generate_trace_id() -> None:
    """Test trace ID generation."""
    trace_id = generate_trace_id()

    assert isinstance(trace_id, str)
    assert len(trace_id) == 32  # UUID4 hex = 32 characters
    assert trace_id.isalnum()

    ids = {generate_trace_id() for _ in range(100)}
    assert len(ids) == 100, "Trace IDs should be unique"


def test_get_trace_id_when_not_set() -> None:
    structlog.contextvars.clear_contextvars()

    assert get_trace_id() is None


def test_trace_context_generates_id() -> None:
    structlog.contextvars.clear_contextvars()

    with trace_context() as trace_id:
        assert len(trace_id) == 32
        assert get_trace_id() == trace_id

    assert get_trace_id() is None


def test_trace_context_binds_extra_fields() -> None:
    structlog.contextvars.clear_contextvars()

    with trace_context("job-1", job_id="job-1", job_type="new_comic_file") as trace_id:
        assert trace_id == "job-1"
        context = structlog.contextvars.get_contextvars()
        assert context["job_id"] == "job-1"
        assert context["job_type"] == "new_comic_file"

    assert structlog.contextvars.get_contextvars() == {}


def test_nested_trace_context_restores_outer() -> None:
    """A job traced inside a request does not leak into the request's context."""
    structlog.contextvars.clear_contextvars()

    with trace_context("outer"):
        with trace_context("inner", job_type="process_comic_series"):
            assert get_trace_id() == "inner"
        assert get_trace_id() == "outer"
        assert "job_type" not in structlog.contextvars.get_contextvars()

    assert get_trace_id() is None
