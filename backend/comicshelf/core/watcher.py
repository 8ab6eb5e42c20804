"""Library watcher.

Each enabled library root is watched recursively with watchdog. Observer
callbacks arrive on watchdog's thread and are handed to the event loop, where
a per-file debounce waits for write activity to settle before the file is
reported. Removals are reported immediately.

Per root: unwatched -> watching -> removed -> unwatched. ``reconcile()``
brings the watched set in line with library configuration.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog
from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from comicshelf.core.catalog import LibraryRoot, LibrarySource
from comicshelf.core.config import DEFAULT_COMIC_EXTENSIONS
from comicshelf.core.metrics import watcher_events_total, watcher_watched_paths
from comicshelf.core.utils import is_comic_file, is_hidden_path, is_within

logger = structlog.get_logger("comicshelf.watcher")

FileCallback = Callable[[str], Awaitable[Any]]

EVENT_ADD = "add"
EVENT_CHANGE = "change"
EVENT_REMOVE = "remove"


@dataclass
class WatchedPathState:
    library_id: str
    last_seen_change: int | None = None
    watch: Any = None  # watchdog ObservedWatch


@dataclass
class _PendingFile:
    handle: asyncio.TimerHandle
    kind: str
    signature: tuple[int, int] | None


def _stat_signature(path: str) -> tuple[int, int] | None:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_size, stat.st_mtime_ns


class _LibraryEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one library root to the watcher's loop."""

    def __init__(self, watcher: LibraryWatcher, root: str) -> None:
        super().__init__()
        self._watcher = watcher
        self._root = root

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.dispatch_threadsafe(self._root, EVENT_ADD, str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.dispatch_threadsafe(self._root, EVENT_CHANGE, str(event.src_path))

    def on_closed(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.dispatch_threadsafe(self._root, EVENT_CHANGE, str(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.dispatch_threadsafe(self._root, EVENT_REMOVE, str(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._watcher.dispatch_threadsafe(self._root, EVENT_REMOVE, str(event.src_path))
        if is_within(str(event.dest_path), self._root):
            self._watcher.dispatch_threadsafe(self._root, EVENT_ADD, str(event.dest_path))


class LibraryWatcher:
    """Watches enabled library roots and reports stabilized file events.

    ``on_file_ready`` gets files that were added or changed and then left
    alone for ``quiet_period`` seconds; ``on_file_removed`` gets files that
    were deleted or moved away. Both run on the event loop and should only do
    light work such as enqueueing a job.
    """

    def __init__(
        self,
        libraries: LibrarySource,
        on_file_ready: FileCallback,
        on_file_removed: FileCallback,
        quiet_period: float = 2.0,
        extensions: Iterable[str] = DEFAULT_COMIC_EXTENSIONS,
        ignore_hidden: bool = True,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.libraries = libraries
        self.on_file_ready = on_file_ready
        self.on_file_removed = on_file_removed
        self.quiet_period = quiet_period
        self.extensions = tuple(extensions)
        self.ignore_hidden = ignore_hidden
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._watched: dict[str, WatchedPathState] = {}
        self._pending: dict[str, _PendingFile] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_reconciled_at: float | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    @property
    def last_reconciled_at(self) -> float | None:
        return self._last_reconciled_at

    async def start(self) -> None:
        """Start the observer and watch every enabled library."""
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._observer = self._observer_factory()
        self._observer.start()
        logger.info("Library watcher started", quiet_period=self.quiet_period)
        await self.reconcile()

    async def stop(self) -> None:
        """Stop watching. Pending debounced files are dropped."""
        if self._observer is None:
            return
        for pending in self._pending.values():
            pending.handle.cancel()
        self._pending.clear()

        observer = self._observer
        self._observer = None
        observer.stop()
        await asyncio.to_thread(observer.join)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._watched.clear()
        watcher_watched_paths.set(0)
        logger.info("Library watcher stopped")

    async def reconcile(self) -> None:
        """Re-read library configuration and adjust the watched set.

        Newly enabled libraries are watched, disabled or deleted ones are
        unwatched, and each root's last change time is refreshed.
        """
        if self._observer is None:
            return
        roots = await self.libraries.list_enabled_library_roots()
        wanted = {os.path.normpath(root.path): root for root in roots}

        for path in list(self._watched):
            if path not in wanted:
                self._unwatch(path)

        for path, root in wanted.items():
            changed_at = await self.libraries.get_library_last_changed_time(root.id)
            state = self._watched.get(path)
            if state is None:
                self._watch(path, root, changed_at)
            elif state.watch is None:
                # Scheduling failed earlier; try again
                self._schedule(path, state)
                state.last_seen_change = changed_at
            else:
                state.library_id = root.id
                state.last_seen_change = changed_at

        self._last_reconciled_at = time.time()
        watcher_watched_paths.set(sum(1 for s in self._watched.values() if s.watch is not None))

    def watched_paths(self) -> dict[str, WatchedPathState]:
        return dict(self._watched)

    def get_changed_paths(self, since: int) -> list[str]:
        """Watched roots whose library configuration changed after ``since``."""
        return [
            path
            for path, state in self._watched.items()
            if state.last_seen_change is not None and state.last_seen_change > since
        ]

    def pending_paths(self) -> list[str]:
        return list(self._pending)

    def _watch(self, path: str, root: LibraryRoot, changed_at: int | None) -> None:
        state = WatchedPathState(library_id=root.id, last_seen_change=changed_at)
        self._watched[path] = state
        self._schedule(path, state)

    def _schedule(self, path: str, state: WatchedPathState) -> None:
        if not os.path.isdir(path):
            logger.warning("Library root is not a directory, will retry", path=path)
            return
        try:
            state.watch = self._observer.schedule(
                _LibraryEventHandler(self, path), path, recursive=True
            )
        except Exception:
            # One bad root must not stop the others; the next reconcile retries
            logger.exception("Failed to watch library root", path=path, library_id=state.library_id)
            return
        logger.info("Watching library", path=path, library_id=state.library_id)

    def _unwatch(self, path: str) -> None:
        state = self._watched.pop(path)
        for pending_path in [p for p in self._pending if is_within(p, path)]:
            self._pending.pop(pending_path).handle.cancel()
        if state.watch is not None:
            try:
                self._observer.unschedule(state.watch)
            except (KeyError, OSError):
                logger.warning("Library root was already unwatched", path=path)
        logger.info("Stopped watching library", path=path, library_id=state.library_id)

    def dispatch_threadsafe(self, root: str, kind: str, path: str) -> None:
        """Called from the observer thread; hands the event to the loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.handle_event, root, kind, path)

    def accepts(self, root: str, path: str) -> bool:
        if self.ignore_hidden and is_hidden_path(path, root):
            return False
        return is_comic_file(path, self.extensions)

    def handle_event(self, root: str, kind: str, path: str) -> None:
        """Debounce add/change events; report removals right away. Runs on the loop."""
        if self._observer is None or not self.accepts(root, path):
            return

        pending = self._pending.pop(path, None)
        if pending is not None:
            pending.handle.cancel()

        if kind == EVENT_REMOVE:
            watcher_events_total.labels(kind=EVENT_REMOVE).inc()
            logger.info("File removed", file_path=path)
            self._spawn(self.on_file_removed, path)
            return

        # A burst that started with a create is still an add
        if pending is not None and pending.kind == EVENT_ADD:
            kind = EVENT_ADD
        self._arm(path, kind)

    def _arm(self, path: str, kind: str) -> None:
        assert self._loop is not None
        handle = self._loop.call_later(self.quiet_period, self._on_quiet, path)
        self._pending[path] = _PendingFile(handle=handle, kind=kind, signature=_stat_signature(path))

    def _on_quiet(self, path: str) -> None:
        pending = self._pending.pop(path, None)
        if pending is None:
            return
        signature = _stat_signature(path)
        if signature is None:
            logger.debug("File vanished before it settled", file_path=path)
            return
        if signature != pending.signature:
            # Still being written without events (e.g. network filesystems)
            self._arm(path, pending.kind)
            return

        watcher_events_total.labels(kind=pending.kind).inc()
        logger.info("File ready", file_path=path, kind=pending.kind)
        self._spawn(self.on_file_ready, path)

    def _spawn(self, callback: FileCallback, path: str) -> None:
        assert self._loop is not None
        task = self._loop.create_task(self._run_callback(callback, path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_callback(self, callback: FileCallback, path: str) -> None:
        try:
            await callback(path)
        except Exception:
            logger.exception("Watcher callback failed", file_path=path)
