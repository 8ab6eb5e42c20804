"""Prometheus metrics configuration."""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

logger = structlog.get_logger("comicshelf.metrics")

# Application info
app_info = Gauge(
    "app_info",
    "Application information",
    ["version"],
)

# Database connection pool metrics
db_connections_active = Gauge(
    "db_connections_active",
    "Number of active database connections",
)
db_connections_idle = Gauge(
    "db_connections_idle",
    "Number of idle database connections in pool",
)
db_pool_size = Gauge(
    "db_pool_size",
    "Configured database connection pool size",
)

# Database retry operation metrics
db_retry_attempts_total = Counter(
    "db_retry_attempts_total",
    "Total number of database operation retry attempts",
    ["operation_type"],
)
db_lock_errors_total = Counter(
    "db_lock_errors_total",
    "Total number of database lock errors encountered",
)
db_retries_succeeded_total = Counter(
    "db_retries_succeeded_total",
    "Total number of database operations that succeeded after retry",
    ["operation_type"],
)
db_retries_failed_total = Counter(
    "db_retries_failed_total",
    "Total number of database operations that failed after all retries",
    ["operation_type"],
)
db_retry_duration_seconds = Histogram(
    "db_retry_duration_seconds",
    "Duration of database retry operations in seconds",
    ["operation_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Job queue metrics
jobs_enqueued_total = Counter(
    "ingest_jobs_enqueued_total",
    "Total number of ingestion jobs enqueued",
    ["job_type"],
)
jobs_completed_total = Counter(
    "ingest_jobs_completed_total",
    "Total number of ingestion jobs completed",
    ["job_type"],
)
jobs_retried_total = Counter(
    "ingest_jobs_retried_total",
    "Total number of failed job attempts scheduled for retry",
    ["job_type"],
)
jobs_failed_total = Counter(
    "ingest_jobs_failed_total",
    "Total number of jobs that exhausted their attempts (dead-lettered)",
    ["job_type"],
)
job_duration_seconds = Histogram(
    "ingest_job_duration_seconds",
    "Duration of a single job attempt in seconds",
    ["job_type"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)
jobs_in_progress = Gauge(
    "ingest_jobs_in_progress",
    "Number of jobs currently being handled by workers",
)

# Watcher / scanner / hashing metrics
watcher_events_total = Counter(
    "watcher_events_total",
    "Stabilized filesystem events emitted by the library watcher",
    ["kind"],  # kind: add, change, remove
)
watcher_watched_paths = Gauge(
    "watcher_watched_paths",
    "Number of library roots currently watched",
)
files_hashed_total = Counter(
    "files_hashed_total",
    "Total number of files hashed",
)
hashing_errors_total = Counter(
    "hashing_errors_total",
    "Total number of files that could not be hashed",
    ["kind"],  # kind: not_found, permission, io
)
library_scans_total = Counter(
    "library_scans_total",
    "Library fingerprint scans by outcome",
    ["outcome"],  # outcome: unchanged, changed, error
)


def setup_metrics(app: FastAPI, app_version: str) -> None:
    """Setup Prometheus metrics using prometheus-fastapi-instrumentator.

    Args:
        app: FastAPI application instance
        app_version: Application version
    """
    if getattr(app.state, "_metrics_initialized", False):
        logger.debug("Metrics already initialized for this app instance, skipping")
        return

    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/docs", "/openapi.json", "/redoc"],
    )
    instrumentator.instrument(app).expose(app, endpoint="/metrics")

    app.state._metrics_initialized = True
    app_info.labels(version=app_version).set(1)

    logger.info("Metrics initialized", version=app_version)
