"""Trace context for requests and background jobs using structlog contextvars."""

from __future__ import annotations

import uuid
from collections.abc import Generator
from contextlib import contextmanager

import structlog.contextvars as contextvars


def generate_trace_id() -> str:
    """Generate a unique trace ID (32 hex characters)."""
    return uuid.uuid4().hex


def get_trace_id() -> str | None:
    """Get the current trace ID from context, if any."""
    return contextvars.get_contextvars().get("trace_id")


@contextmanager
def trace_context(trace_id: str | None = None, **extra: str | int) -> Generator[str]:
    """Bind a trace ID (and any extra fields) for the duration of the block.

    The previous context is restored on exit, so nested contexts (a job run
    from inside a request) do not leak into each other.

    Example:
        >>> with trace_context(job.id, job_type=job.job_type):
        ...     logger.info("Handling job")  # includes trace_id and job_type
    """
    old_context = dict(contextvars.get_contextvars())

    if trace_id is None:
        trace_id = generate_trace_id()

    contextvars.clear_contextvars()
    contextvars.bind_contextvars(trace_id=trace_id, **extra)

    try:
        yield trace_id
    finally:
        contextvars.clear_contextvars()
        if old_context:
            contextvars.bind_contextvars(**old_context)
