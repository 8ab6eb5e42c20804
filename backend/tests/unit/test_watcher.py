"""Tests for the library watcher, driven through a fake observer."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from comicshelf.core.catalog import LibrarySource
from comicshelf.core.database import SessionFactory
from comicshelf.core.watcher import EVENT_ADD, EVENT_CHANGE, EVENT_REMOVE, LibraryWatcher
from comicshelf.db.models import Library

QUIET = 0.05


class FakeObserver:
    def __init__(self) -> None:
        self.scheduled: dict[str, object] = {}
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):  # noqa: ANN001
        watch = object()
        self.scheduled[path] = watch
        return watch

    def unschedule(self, watch) -> None:  # noqa: ANN001
        for path, value in list(self.scheduled.items()):
            if value is watch:
                del self.scheduled[path]
                return
        raise KeyError(watch)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout=None) -> None:  # noqa: ANN001
        return None


class Recorder:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def __call__(self, path: str) -> None:
        self.calls.append(path)


@pytest.fixture
def observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
def ready() -> Recorder:
    return Recorder()


@pytest.fixture
def removed() -> Recorder:
    return Recorder()


@pytest.fixture
async def watcher(session_factory: SessionFactory, library: Library, observer, ready, removed):
    w = LibraryWatcher(
        LibrarySource(session_factory),
        on_file_ready=ready,
        on_file_removed=removed,
        quiet_period=QUIET,
        observer_factory=lambda: observer,
    )
    await w.start()
    yield w
    await w.stop()


def _write(path: Path, data: bytes = b"data") -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return str(path)


async def test_start_watches_enabled_libraries(
    watcher: LibraryWatcher, observer: FakeObserver, library: Library
):
    assert observer.started
    assert watcher.running
    assert list(observer.scheduled) == [library.path]
    state = watcher.watched_paths()[library.path]
    assert state.library_id == library.id
    assert state.last_seen_change is not None
    assert watcher.last_reconciled_at is not None


async def test_burst_of_events_is_reported_once(
    watcher: LibraryWatcher, ready: Recorder, library_dir: Path
):
    path = _write(library_dir / "Batman" / "Batman 001.cbz")
    root = str(library_dir)

    watcher.handle_event(root, EVENT_ADD, path)
    watcher.handle_event(root, EVENT_CHANGE, path)
    watcher.handle_event(root, EVENT_CHANGE, path)
    assert watcher.pending_paths() == [path]

    await asyncio.sleep(QUIET * 6)

    assert ready.calls == [path]
    assert watcher.pending_paths() == []


async def test_ignores_hidden_and_non_comic_files(
    watcher: LibraryWatcher, ready: Recorder, library_dir: Path
):
    root = str(library_dir)
    hidden = _write(library_dir / ".incoming" / "Batman 001.cbz")
    dotfile = _write(library_dir / "._Batman 001.cbz")
    cover = _write(library_dir / "cover.jpg")

    for path in (hidden, dotfile, cover):
        watcher.handle_event(root, EVENT_ADD, path)

    assert watcher.pending_paths() == []
    await asyncio.sleep(QUIET * 4)
    assert ready.calls == []


async def test_removal_is_reported_immediately_and_cancels_pending(
    watcher: LibraryWatcher, ready: Recorder, removed: Recorder, library_dir: Path
):
    path = _write(library_dir / "Saga 001.cbz")
    root = str(library_dir)

    watcher.handle_event(root, EVENT_ADD, path)
    watcher.handle_event(root, EVENT_REMOVE, path)
    await asyncio.sleep(0)
    await asyncio.sleep(QUIET * 4)

    assert removed.calls == [path]
    assert ready.calls == []


async def test_file_that_vanishes_before_settling_is_dropped(
    watcher: LibraryWatcher, ready: Recorder, library_dir: Path
):
    target = library_dir / "Saga 002.cbz"
    path = _write(target)

    watcher.handle_event(str(library_dir), EVENT_ADD, path)
    target.unlink()
    await asyncio.sleep(QUIET * 4)

    assert ready.calls == []


async def test_failing_callback_does_not_break_watcher(
    session_factory: SessionFactory, library: Library, library_dir: Path, observer: FakeObserver
):
    calls: list[str] = []

    async def broken(path: str) -> None:
        calls.append(path)
        raise RuntimeError("queue unavailable")

    w = LibraryWatcher(
        LibrarySource(session_factory),
        on_file_ready=broken,
        on_file_removed=broken,
        quiet_period=QUIET,
        observer_factory=lambda: observer,
    )
    await w.start()
    try:
        path = _write(library_dir / "Batman 001.cbz")
        w.handle_event(str(library_dir), EVENT_REMOVE, path)
        w.handle_event(str(library_dir), EVENT_ADD, path)
        await asyncio.sleep(QUIET * 4)
        assert calls == [path, path]
    finally:
        await w.stop()


async def test_reconcile_follows_library_configuration(
    watcher: LibraryWatcher,
    observer: FakeObserver,
    session_factory: SessionFactory,
    library: Library,
    tmp_path: Path,
):
    manga_dir = tmp_path / "manga"
    manga_dir.mkdir()
    async with session_factory() as session:
        session.add(Library(name="Manga", path=str(manga_dir)))
        db_library = await session.get(Library, library.id)
        db_library.enabled = False
        session.add(db_library)
        await session.commit()

    await watcher.reconcile()

    assert list(observer.scheduled) == [str(manga_dir)]
    assert list(watcher.watched_paths()) == [str(manga_dir)]


async def test_missing_root_is_retried_on_reconcile(
    watcher: LibraryWatcher, observer: FakeObserver, session_factory: SessionFactory, tmp_path: Path
):
    later = tmp_path / "later"
    async with session_factory() as session:
        session.add(Library(name="Later", path=str(later)))
        await session.commit()

    await watcher.reconcile()
    assert watcher.watched_paths()[str(later)].watch is None
    assert str(later) not in observer.scheduled

    later.mkdir()
    await watcher.reconcile()
    assert watcher.watched_paths()[str(later)].watch is not None
    assert str(later) in observer.scheduled


async def test_get_changed_paths(watcher: LibraryWatcher, library: Library):
    state = watcher.watched_paths()[library.path]

    assert watcher.get_changed_paths(state.last_seen_change - 1) == [library.path]
    assert watcher.get_changed_paths(state.last_seen_change) == []


async def test_stop_drops_pending_files(
    session_factory: SessionFactory,
    library: Library,
    library_dir: Path,
    observer: FakeObserver,
    ready: Recorder,
):
    w = LibraryWatcher(
        LibrarySource(session_factory),
        on_file_ready=ready,
        on_file_removed=ready,
        quiet_period=QUIET,
        observer_factory=lambda: observer,
    )
    await w.start()
    path = _write(library_dir / "Batman 001.cbz")
    w.handle_event(str(library_dir), EVENT_ADD, path)

    await w.stop()
    await asyncio.sleep(QUIET * 4)

    assert observer.stopped
    assert not w.running
    assert w.pending_paths() == []
    assert w.watched_paths() == {}
    assert ready.calls == []
