"""Application configuration using Pydantic Settings."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

if TYPE_CHECKING:
    from comicshelf.core.jobs.policy import RetryPolicy

logger = structlog.get_logger("comicshelf.config")

DEFAULT_COMIC_EXTENSIONS = (".cbz", ".cbr", ".cb7", ".cbt", ".zip", ".rar")


def _default_data_dir() -> Path:
    if Path("/config").exists():
        # Container environment
        return Path("/config")
    # __file__ is backend/comicshelf/core/config.py, so go up to backend/ and add data
    return (Path(__file__).parent.parent.parent / "data").resolve()


def json_config_settings_source(
    settings: BaseSettings | None = None,
) -> dict[str, Any]:  # noqa: ANN001
    """Load settings from settings.json file.

    This source has lowest priority - env vars will override JSON values.
    Nested sections (``{"watcher": {"quiet_period_seconds": 5}}``) are
    flattened to ``watcher_quiet_period_seconds``.

    Returns:
        Dictionary with setting keys (lowercase) and values from JSON file.
    """
    data_dir_env = os.environ.get("COMICSHELF_DATA_DIR", "")
    if data_dir_env and Path(data_dir_env).exists():
        data_dir = Path(data_dir_env)
    else:
        data_dir = _default_data_dir()

    settings_file = data_dir / "config" / "settings.json"
    if not settings_file.exists():
        return {}

    try:
        with settings_file.open("r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable settings.json", path=str(settings_file), error=str(e))
        return {}

    if not isinstance(data, dict):
        return {}

    flattened: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                flattened[f"{key}_{sub_key}"] = sub_value
        else:
            flattened[key] = value

    return {k.lower(): v for k, v in flattened.items()}


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from:
    1. JSON file (settings.json in config directory) - lowest priority
    2. .env file
    3. Environment variables - highest priority (override JSON/.env)

    All settings are prefixed with COMICSHELF_ (e.g., COMICSHELF_WORKER_CONCURRENCY=8).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMICSHELF_",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority (lowest to highest): JSON file, .env, env vars, init settings."""
        return (  # type: ignore[return-value]
            json_config_settings_source,
            dotenv_settings,
            env_settings,
            init_settings,
        )

    # Application
    env: Literal["development", "production", "testing"] = Field(
        default="development",
        description="Application environment (development, production, testing)",
    )

    host_bind_address: str = Field(default="127.0.0.1")
    host_port: int = Field(default=8000, ge=1, le=65535)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Base directory for all application data (config, database, logs)",
    )

    # Watcher
    watcher_enabled: bool = Field(default=True)
    watcher_quiet_period_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Seconds a file must stay untouched before it is treated as written",
    )
    watcher_reconcile_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="How often library configuration is re-read by the watcher",
    )
    watcher_ignore_hidden: bool = Field(default=True)

    # Scanner
    scan_on_startup: bool = Field(default=True)
    scan_interval_minutes: int = Field(default=60, ge=0, description="0 disables periodic scans")

    # Workers and jobs
    worker_concurrency: int = Field(default=4, ge=1, le=64)
    worker_poll_interval_seconds: float = Field(default=1.0, gt=0)
    job_max_attempts: int = Field(default=3, ge=1)
    job_backoff_base_seconds: float = Field(default=5.0, ge=0)
    job_backoff_strategy: Literal["exponential", "fixed"] = Field(default="exponential")
    job_timeout_seconds: float = Field(
        default=600.0,
        ge=0,
        description="Per-attempt handler timeout; 0 disables it",
    )

    # Hashing
    hash_chunk_size: int = Field(default=1024 * 1024, ge=4096)
    hash_pool_size: int = Field(default=4, ge=1)

    comic_extensions: tuple[str, ...] = Field(default=DEFAULT_COMIC_EXTENSIONS)

    @field_validator("comic_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: object) -> object:
        if isinstance(value, str):
            value = [part for part in value.replace(",", " ").split() if part]
        if isinstance(value, (list, tuple)):
            normalized = []
            for ext in value:
                ext = str(ext).strip().lower()
                if ext and not ext.startswith("."):
                    ext = f".{ext}"
                if ext:
                    normalized.append(ext)
            return tuple(normalized)
        return value

    @property
    def config_dir(self) -> Path:
        """Directory for configuration files (settings.json, etc.)."""
        return self.data_dir / "config"

    @property
    def database_dir(self) -> Path:
        """Directory for database files."""
        return self.data_dir / "database"

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        return self.data_dir / "logs"

    @property
    def database_file(self) -> Path:
        """SQLite catalog and job store."""
        return self.database_dir / "comicshelf.db"

    @property
    def is_debug(self) -> bool:
        return self.env == "development" or self.log_level == "DEBUG"

    @property
    def is_testing(self) -> bool:
        return self.env == "testing"

    def retry_policy(self) -> RetryPolicy:
        """Build the job retry policy from the job_* settings."""
        from comicshelf.core.jobs.policy import RetryPolicy

        return RetryPolicy(
            max_attempts=self.job_max_attempts,
            backoff_base=self.job_backoff_base_seconds,
            backoff_strategy=self.job_backoff_strategy,
        )

    def model_post_init(self, __context: object) -> None:
        """Post-initialization: create data directories if they don't exist."""
        self.data_dir = self.data_dir.resolve()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.database_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings instance.

    The cache is cleared when reload_settings() is called.
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from all sources (JSON, .env, env vars)."""
    get_settings.cache_clear()
    return get_settings()
