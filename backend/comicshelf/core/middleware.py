"""FastAPI middleware for request/response handling."""

from __future__ import annotations

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from comicshelf.core.tracing import trace_context

logger = structlog.get_logger("comicshelf.middleware")

TRACE_HEADER = "X-Trace-ID"


class TracingMiddleware(BaseHTTPMiddleware):
    """Bind a trace ID to every request and echo it back in the response."""

    async def dispatch(self, request: Request, call_next):
        # Reuse the caller's trace ID when one is supplied
        with trace_context(request.headers.get(TRACE_HEADER)) as trace_id:
            logger.debug("Processing request", method=request.method, path=request.url.path)

            response = await call_next(request)
            response.headers[TRACE_HEADER] = trace_id

            logger.debug(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
