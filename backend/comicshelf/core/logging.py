"""Logging configuration."""

from __future__ import annotations

import json
import linecache
import logging
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.types import EventDict

ExcInfo = tuple[type[BaseException] | None, BaseException | None, TracebackType | None]

TracebackFrame = dict[str, str | int | None]

ExceptionDetails = dict[
    str,
    None | str | list[TracebackFrame],
]

APP_LOG_FILE = "comicshelf.json.log"
DB_LOG_FILE = "comicshelf.db.json.log"

# Third-party loggers that are too chatty for the application log
_DB_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
    "sqlite3",
    "aiosqlite",
)
_QUIET_LOGGERS = ("watchdog", "watchdog.observers", "apscheduler", "rarfile")


def format_exception_for_json(
    exc_info: ExcInfo | None,
) -> ExceptionDetails:
    """Format exception information for JSON logging.

    Args:
        exc_info: Exception info tuple from sys.exc_info() or None

    Returns:
        Dictionary with exception_type, exception_message, exception_module,
        traceback_frames and traceback_text. Empty when there is no exception.
    """
    if exc_info is None or exc_info == (None, None, None):
        return {}

    exc_type, exc_value, exc_tb = exc_info

    exception_details: ExceptionDetails = {
        "exception_type": exc_type.__name__ if exc_type else None,
        "exception_message": str(exc_value) if exc_value else None,
        "exception_module": exc_type.__module__ if exc_type else None,
    }

    if exc_tb:
        tb_frames: list[TracebackFrame] = []
        current_tb: TracebackType | None = exc_tb

        while current_tb is not None:
            frame = current_tb.tb_frame
            frame_info: TracebackFrame = {
                "filename": frame.f_code.co_filename,
                "lineno": current_tb.tb_lineno,
                "function": frame.f_code.co_name,
            }
            line = linecache.getline(frame.f_code.co_filename, current_tb.tb_lineno)
            if line:
                frame_info["source_line"] = line.strip()

            tb_frames.append(frame_info)
            current_tb = current_tb.tb_next

        exception_details["traceback_frames"] = tb_frames
        exception_details["traceback_text"] = "".join(
            traceback.format_exception(exc_type, exc_value, exc_tb)
        )

    return exception_details


def exception_processor(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Turn exc_info into structured exception fields.

    Handles ``logger.exception(...)``, ``exc_info=True``, an explicit exc_info
    tuple, and an exception instance passed as ``exception=``.
    """
    exc_info = event_dict.pop("exc_info", None)

    if exc_info is True:
        exc_info = sys.exc_info()
    elif isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)

    if exc_info and exc_info != (None, None, None):
        exception_details = format_exception_for_json(exc_info)  # type: ignore[arg-type]
        if exception_details:
            event_dict["exception"] = exception_details
            exc_type = exception_details.get("exception_type")
            exc_msg = exception_details.get("exception_message")
            if exc_type and exc_msg:
                event_dict["exception_summary"] = f"{exc_type}: {exc_msg}"

    if "exception" in event_dict and isinstance(event_dict["exception"], BaseException):
        exc = event_dict.pop("exception")
        exception_details = format_exception_for_json((type(exc), exc, exc.__traceback__))
        if exception_details:
            event_dict["exception"] = exception_details

    return event_dict


class JSONFormatter(logging.Formatter):
    """JSON formatter for standard library logging (used for database logs)."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = format_exception_for_json(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def _route_logger(name: str, level: int, handler: logging.Handler | None) -> None:
    """Give a third-party logger its own level and (optionally) a dedicated handler."""
    target = logging.getLogger(name)
    target.setLevel(level)
    if handler is None:
        return
    target.propagate = False
    for existing in target.handlers[:]:
        existing.close()
    target.handlers.clear()
    target.addHandler(handler)


def setup_logging(debug: bool = False, logs_dir: Path | None = None) -> None:
    """Setup structured logging with structlog.

    Configures:
    - Application logs: stdout (pretty in debug, JSON otherwise), or a JSON
      file when logs_dir is given
    - Database logs (SQLite/SQLAlchemy): separate JSON file, WARNING level
      unless debugging
    - watchdog/apscheduler: WARNING level so filesystem churn does not flood
      the application log

    Args:
        debug: Enable debug logging
        logs_dir: Optional directory for JSON log files
    """
    log_level = logging.DEBUG if debug else logging.INFO

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)

    app_file_handler: logging.Handler | None = None
    db_file_handler: logging.Handler | None = None
    if logs_dir:
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)

            app_file_handler = logging.FileHandler(logs_dir / APP_LOG_FILE, encoding="utf-8")
            app_file_handler.setLevel(log_level)

            db_file_handler = logging.FileHandler(logs_dir / DB_LOG_FILE, encoding="utf-8")
            db_file_handler.setLevel(logging.DEBUG)
            db_file_handler.setFormatter(JSONFormatter())
        except OSError as e:
            # If file logging fails, log to stderr but don't crash
            sys.stderr.write(f"Warning: Failed to setup file logging: {e}\n")
            app_file_handler = None
            db_file_handler = None

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[app_file_handler or stdout_handler],
        force=True,
    )

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        _route_logger(name, log_level, stdout_handler)

    db_log_level = logging.INFO if debug else logging.WARNING
    for name in _DB_LOGGERS:
        _route_logger(name, db_log_level, db_file_handler)

    for name in _QUIET_LOGGERS:
        _route_logger(name, logging.WARNING, None)

    processors = [
        structlog.contextvars.merge_contextvars,  # trace_id, job_id, job_type
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        exception_processor,
    ]

    if app_file_handler or not debug:
        final_processors = processors + [structlog.processors.JSONRenderer()]
    else:
        final_processors = processors + [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=final_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.getLogger().setLevel(log_level)

    structlog.get_logger("comicshelf.logging").info(
        "Logging configured",
        level=logging.getLevelName(log_level),
        debug=debug,
        app_log_file=str(logs_dir / APP_LOG_FILE) if app_file_handler and logs_dir else None,
        db_log_file=str(logs_dir / DB_LOG_FILE) if db_file_handler and logs_dir else None,
        db_log_level=logging.getLevelName(db_log_level),
    )
