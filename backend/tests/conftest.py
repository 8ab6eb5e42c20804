"""Shared fixtures: an isolated data directory and a fresh SQLite database per test."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError
from sqlmodel.ext.asyncio.session import AsyncSession

from comicshelf.core.config import reload_settings
from comicshelf.core.database import (
    SessionFactory,
    create_database_engine,
    create_session_factory,
    init_database,
)
from comicshelf.db.models import Library


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point COMICSHELF_DATA_DIR at a temporary directory for every test."""
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("COMICSHELF_DATA_DIR", str(data))
    reload_settings()
    yield data
    monkeypatch.delenv("COMICSHELF_DATA_DIR", raising=False)
    reload_settings()


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[SessionFactory]:
    engine = create_database_engine(tmp_path / "test.db")
    await init_database(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    root = tmp_path / "comics"
    root.mkdir()
    return root


@pytest.fixture
async def library(session_factory: SessionFactory, library_dir: Path) -> Library:
    """An enabled library rooted at ``library_dir``."""
    async with session_factory() as session:
        lib = Library(name="Comics", path=str(library_dir))
        session.add(lib)
        await session.commit()
        await session.refresh(lib)
        return lib


@pytest.fixture(autouse=True)
def reset_prometheus_registry() -> Iterator[None]:
    """Reset the Prometheus registry around each test.

    setup_metrics() registers the HTTP instrumentation in the global registry,
    so every test that builds an app would otherwise hit "Duplicated timeseries".
    Metric objects stay usable after being unregistered.
    """
    for collector in list(REGISTRY._collector_to_names.keys()):
        REGISTRY.unregister(collector)
    yield
    for collector in list(REGISTRY._collector_to_names.keys()):
        REGISTRY.unregister(collector)


@pytest.fixture
def lock_commits(monkeypatch: pytest.MonkeyPatch) -> Callable[[int], list[str]]:
    """Make the next ``times`` session commits fail with "database is locked".

    Returns the list the failed commits are recorded in.
    """

    def arm(times: int = 1) -> list[str]:
        failed: list[str] = []
        original = AsyncSession.commit

        async def commit(self: AsyncSession) -> None:
            if len(failed) < times:
                failed.append("locked")
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            await original(self)

        monkeypatch.setattr(AsyncSession, "commit", commit)
        return failed

    return arm
