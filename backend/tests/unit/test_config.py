"""Tests for configuration functionality."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from comicshelf.core.config import (
    DEFAULT_COMIC_EXTENSIONS,
    Settings,
    get_settings,
    reload_settings,
)


def test_settings_defaults(data_dir: Path) -> None:
    """Test that settings have correct defaults."""
    settings = Settings()

    assert settings.env == "development"
    assert settings.host_bind_address == "127.0.0.1"
    assert settings.host_port == 8000
    assert settings.is_debug is True
    assert settings.is_testing is False

    assert settings.watcher_enabled is True
    assert settings.watcher_quiet_period_seconds == 2.0
    assert settings.watcher_reconcile_interval_seconds == 60
    assert settings.worker_concurrency == 4
    assert settings.job_max_attempts == 3
    assert settings.job_backoff_base_seconds == 5.0
    assert settings.job_backoff_strategy == "exponential"
    assert settings.job_timeout_seconds == 600.0
    assert settings.comic_extensions == DEFAULT_COMIC_EXTENSIONS

    # Directory properties
    assert settings.data_dir == data_dir.resolve()
    assert settings.config_dir == settings.data_dir / "config"
    assert settings.database_dir == settings.data_dir / "database"
    assert settings.logs_dir == settings.data_dir / "logs"
    assert settings.database_file == settings.database_dir / "comicshelf.db"


def test_settings_from_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that settings can be loaded from environment variables."""
    monkeypatch.setenv("COMICSHELF_ENV", "production")
    monkeypatch.setenv("COMICSHELF_WORKER_CONCURRENCY", "8")
    monkeypatch.setenv("COMICSHELF_WATCHER_QUIET_PERIOD_SECONDS", "0.5")

    settings = reload_settings()

    assert settings.env == "production"
    assert settings.worker_concurrency == 8
    assert settings.watcher_quiet_period_seconds == 0.5
    assert settings.is_debug is False


def test_settings_from_json_file(data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Nested sections in settings.json are flattened to prefixed field names."""
    config_dir = data_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "settings.json").write_text(
        json.dumps(
            {
                "watcher": {"quiet_period_seconds": 5, "ignore_hidden": False},
                "job": {"max_attempts": 7},
                "host_port": 9001,
            }
        )
    )

    settings = reload_settings()

    assert settings.watcher_quiet_period_seconds == 5
    assert settings.watcher_ignore_hidden is False
    assert settings.job_max_attempts == 7
    assert settings.host_port == 9001

    # Env vars win over the JSON file
    monkeypatch.setenv("COMICSHELF_JOB_MAX_ATTEMPTS", "2")
    assert reload_settings().job_max_attempts == 2


def test_unreadable_json_file_is_ignored(data_dir: Path) -> None:
    config_dir = data_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "settings.json").write_text("{not json")

    settings = reload_settings()

    assert settings.job_max_attempts == 3


def test_comic_extensions_normalized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COMICSHELF_COMIC_EXTENSIONS", '["CBZ", ".cbr", "pdf"]')

    settings = reload_settings()

    assert settings.comic_extensions == (".cbz", ".cbr", ".pdf")
    assert Settings(comic_extensions="cbz, cb7").comic_extensions == (".cbz", ".cb7")


def test_settings_validation() -> None:
    """Test that field validation works."""
    with pytest.raises(ValidationError):
        Settings(host_port=0)

    with pytest.raises(ValidationError):
        Settings(env="invalid")

    with pytest.raises(ValidationError):
        Settings(worker_concurrency=0)

    with pytest.raises(ValidationError):
        Settings(job_backoff_strategy="linear")


def test_retry_policy_from_settings() -> None:
    settings = Settings(job_max_attempts=5, job_backoff_base_seconds=2, job_backoff_strategy="fixed")

    policy = settings.retry_policy()

    assert policy.max_attempts == 5
    assert policy.backoff_base == 2
    assert policy.backoff_strategy == "fixed"


def test_get_settings_singleton() -> None:
    """Test that get_settings() returns a singleton until reloaded."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2
    assert reload_settings() is not settings1


def test_data_dir_creation(tmp_path: Path) -> None:
    """Test that data directories are created automatically."""
    data_dir = tmp_path / "elsewhere"

    settings = Settings(data_dir=str(data_dir))

    assert settings.data_dir.is_dir()
    assert settings.config_dir.is_dir()
    assert settings.database_dir.is_dir()
    assert settings.logs_dir.is_dir()
