"""Tests for logging functionality."""

from __future__ import annotations

import io
import json
import logging
import sys
from pathlib import Path

import pytest
import structlog

from comicshelf.core.logging import (
    APP_LOG_FILE,
    DB_LOG_FILE,
    ExcInfo,
    JSONFormatter,
    format_exception_for_json,
    setup_logging,
)


@pytest.fixture
def captured_stdout(monkeypatch: pytest.MonkeyPatch) -> io.StringIO:
    buffer = io.StringIO()
    monkeypatch.setattr(sys, "stdout", buffer)
    return buffer


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.strip().split("\n") if line.strip().startswith("{")]


def test_format_exception_for_json_with_exception() -> None:
    """Test format_exception_for_json with a real exception."""
    try:
        raise ValueError("Test error message")
    except ValueError:
        exc_info: ExcInfo = sys.exc_info()  # type: ignore[assignment]

    result = format_exception_for_json(exc_info)

    assert result["exception_type"] == "ValueError"
    assert result["exception_message"] == "Test error message"
    assert result["exception_module"] == "builtins"
    assert len(result["traceback_frames"]) > 0

    frame = result["traceback_frames"][0]
    assert isinstance(frame["filename"], str)
    assert isinstance(frame["lineno"], int)
    assert isinstance(frame["function"], str)
    assert "ValueError: Test error message" in result["traceback_text"]


def test_format_exception_for_json_with_none() -> None:
    """Test format_exception_for_json with None and an empty tuple."""
    assert format_exception_for_json(None) == {}
    assert format_exception_for_json((None, None, None)) == {}


def test_exception_logging_in_json(captured_stdout: io.StringIO) -> None:
    """Test that exceptions are logged in structured JSON format."""
    setup_logging(debug=False)
    logger = structlog.get_logger("test.logger")

    try:
        raise ValueError("Test error")
    except ValueError:
        logger.exception("An error occurred", extra="context")

    log_data = _json_lines(captured_stdout.getvalue())[-1]

    assert log_data["event"] == "An error occurred"
    assert log_data["exception"]["exception_type"] == "ValueError"
    assert log_data["exception"]["exception_message"] == "Test error"
    assert "ValueError: Test error" in log_data["exception_summary"]


def test_logging_with_trace_context(captured_stdout: io.StringIO) -> None:
    """Test that logging includes trace_id and job fields from context."""
    setup_logging(debug=False)
    structlog.contextvars.bind_contextvars(trace_id="test-trace-123", job_type="new_comic_file")

    try:
        structlog.get_logger("test.logger").info("Test message", key="value")
    finally:
        structlog.contextvars.clear_contextvars()

    log_data = _json_lines(captured_stdout.getvalue())[-1]
    assert log_data["trace_id"] == "test-trace-123"
    assert log_data["job_type"] == "new_comic_file"
    assert log_data["key"] == "value"
    assert log_data["level"] == "info"


def test_setup_logging_with_logs_dir(tmp_path: Path) -> None:
    """Application logs go to a JSON file; database logs to their own file."""
    setup_logging(debug=False, logs_dir=tmp_path)

    structlog.get_logger("comicshelf.test").info("Written to file", answer=42)
    logging.getLogger("sqlalchemy.engine").warning("Slow query")
    for handler in logging.getLogger().handlers + logging.getLogger("sqlalchemy.engine").handlers:
        handler.flush()

    app_lines = _json_lines((tmp_path / APP_LOG_FILE).read_text())
    assert app_lines[-1]["event"] == "Written to file"
    assert app_lines[-1]["answer"] == 42

    db_lines = _json_lines((tmp_path / DB_LOG_FILE).read_text())
    assert db_lines[-1]["message"] == "Slow query"
    assert db_lines[-1]["logger"] == "sqlalchemy.engine"


def test_noisy_libraries_quieted() -> None:
    setup_logging(debug=True)

    assert logging.getLogger("watchdog").level == logging.WARNING
    assert logging.getLogger("apscheduler").level == logging.WARNING


def test_json_formatter() -> None:
    record = logging.LogRecord(
        name="aiosqlite",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg="Connection %s failed",
        args=("db",),
        exc_info=None,
    )

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "ERROR"
    assert data["message"] == "Connection db failed"
    assert data["timestamp"].endswith("Z")
