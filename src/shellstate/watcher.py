"""Reference-counted file watching.

Call ``watch`` to watch a file and ``unwatch`` to stop; calls have to
balance before the underlying watch goes away.  Changes are published on
the bus as the changed file's absolute path.  Nothing is debounced here.

watchdog watches directories, so the OS-level watches are kept per parent
directory and shared by every watched file in it.  A parent that does not
exist yet is covered by a watch on its nearest existing ancestor until it
appears.  Observer callbacks run on watchdog's thread and are handed to
the event loop before publishing.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from shellstate.bus import ChangeBus
from shellstate.config import StoreConfig
from shellstate.exceptions import WatchMisuseError

_logger = logging.getLogger(__name__)


class ObserverLike(Protocol):
    """The slice of ``watchdog.observers.Observer`` this service uses."""

    def schedule(self, event_handler: FileSystemEventHandler, path: str, recursive: bool = False) -> Any: ...

    def unschedule(self, watch: Any) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def join(self, timeout: float | None = None) -> None: ...


@dataclass
class WatchEntry:
    """A watched file and how many callers are watching it."""

    path: str
    refcount: int = 1


@dataclass
class _OsWatch:
    handle: Any
    users: int = 0


@dataclass
class _DirectoryWatch:
    # Directory actually scheduled: the directory itself, an existing
    # ancestor while it is missing, or None when scheduling failed.
    scheduled: str | None
    files: int = 0


def normalize_path(path: str | os.PathLike[str]) -> str:
    return os.path.abspath(os.fsdecode(path))


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, on_path: Callable[[str], None], on_directory: Callable[[], None]) -> None:
        super().__init__()
        self._on_path = on_path
        self._on_directory = on_directory

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._on_path(os.fsdecode(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._on_directory()
        else:
            self._on_path(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save by rename show up as a move onto the watched path.
        if event.is_directory:
            self._on_directory()
        else:
            self._on_path(os.fsdecode(event.dest_path))


class FileWatchService:
    """Deduplicated, reference-counted watches with bus notifications.

    The first ``watch`` binds the service to the running event loop (or
    to *loop*, when given); observer callbacks are delivered there.
    """

    def __init__(
        self,
        *,
        bus: ChangeBus | None = None,
        topic: str | None = None,
        config: StoreConfig | None = None,
        observer_factory: Callable[[], ObserverLike] = Observer,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        config = config if config is not None else StoreConfig()
        self._bus = bus if bus is not None else ChangeBus()
        self._topic = topic if topic is not None else config.file_change_topic
        self._observer_factory = observer_factory
        self._loop = loop
        self._observer: ObserverLike | None = None
        self._handler = _ChangeHandler(self._on_observer_event, self._on_directory_event)
        self._entries: dict[str, WatchEntry] = {}
        self._directories: dict[str, _DirectoryWatch] = {}
        self._os_watches: dict[str, _OsWatch] = {}

    @property
    def bus(self) -> ChangeBus:
        return self._bus

    @property
    def topic(self) -> str:
        return self._topic

    def set_topic(self, topic: str) -> None:
        """Change the topic future notifications are published on."""
        self._topic = topic

    def is_watching(self, path: str | os.PathLike[str]) -> bool:
        return normalize_path(path) in self._entries

    def refcount(self, path: str | os.PathLike[str]) -> int:
        entry = self._entries.get(normalize_path(path))
        return entry.refcount if entry is not None else 0

    def watched_paths(self) -> list[str]:
        return list(self._entries)

    def _require_observer(self) -> ObserverLike:
        if self._observer is None:
            if self._loop is None:
                try:
                    self._loop = asyncio.get_running_loop()
                except RuntimeError as exc:
                    raise RuntimeError(
                        "FileWatchService.watch() needs a running event loop; "
                        "call it from async code or pass loop= to FileWatchService"
                    ) from exc
            observer = self._observer_factory()
            observer.start()
            self._observer = observer
            _logger.debug("File observer started")
        return self._observer

    # ------------------------------------------------------------------
    # OS-level watches
    # ------------------------------------------------------------------

    def _acquire_os_watch(self, directory: str) -> None:
        os_watch = self._os_watches.get(directory)
        if os_watch is None:
            handle = self._require_observer().schedule(self._handler, directory, recursive=False)
            os_watch = _OsWatch(handle=handle)
            self._os_watches[directory] = os_watch
            _logger.debug("Scheduled OS watch directory=%s", directory)
        os_watch.users += 1

    def _release_os_watch(self, directory: str) -> None:
        os_watch = self._os_watches[directory]
        os_watch.users -= 1
        if os_watch.users > 0:
            return
        del self._os_watches[directory]
        if self._observer is not None:
            self._observer.unschedule(os_watch.handle)
        _logger.debug("Unscheduled OS watch directory=%s", directory)

    def _place(self, directory: str) -> str | None:
        """Schedule *directory*, falling back to its nearest existing ancestor."""
        candidate = directory
        while True:
            try:
                self._acquire_os_watch(candidate)
                return candidate
            except OSError as exc:
                parent = os.path.dirname(candidate)
                if os.path.isdir(candidate) or parent == candidate:
                    _logger.warning("Cannot watch directory %s: %s", candidate, exc)
                    return None
                candidate = parent

    def watch(self, path: str | os.PathLike[str]) -> int:
        """Start (or share) a watch on *path*.  Returns the new refcount.

        *path* need not exist, nor its directory.  Raises ``RuntimeError``
        when no event loop is available to deliver notifications on.
        """
        normalized = normalize_path(path)
        entry = self._entries.get(normalized)
        if entry is not None:
            entry.refcount += 1
            return entry.refcount

        self._require_observer()
        directory = os.path.dirname(normalized)
        dir_watch = self._directories.get(directory)
        if dir_watch is None:
            dir_watch = _DirectoryWatch(scheduled=self._place(directory))
            self._directories[directory] = dir_watch
            if dir_watch.scheduled is not None and dir_watch.scheduled != directory:
                _logger.warning(
                    "Directory %s does not exist yet; watching %s until it does", directory, dir_watch.scheduled
                )
        dir_watch.files += 1
        self._entries[normalized] = WatchEntry(path=normalized)
        _logger.debug("Watching file=%s", normalized)
        return 1

    def unwatch(self, path: str | os.PathLike[str], *, strict: bool = False) -> int:
        """Release one watch on *path*.  Returns the remaining refcount.

        Releasing a path that is not watched logs a warning and returns
        0, or raises :class:`WatchMisuseError` when *strict* is set.
        """
        normalized = normalize_path(path)
        entry = self._entries.get(normalized)
        if entry is None:
            if strict:
                raise WatchMisuseError(f"Not watching file {normalized}")
            _logger.warning("Not watching file %s", normalized)
            return 0

        entry.refcount -= 1
        if entry.refcount > 0:
            return entry.refcount

        del self._entries[normalized]
        directory = os.path.dirname(normalized)
        dir_watch = self._directories[directory]
        dir_watch.files -= 1
        if dir_watch.files == 0:
            del self._directories[directory]
            if dir_watch.scheduled is not None:
                self._release_os_watch(dir_watch.scheduled)
        _logger.debug("Stopped watching file=%s", normalized)
        return 0

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _call_on_loop(self, callback: Callable[..., None], *args: Any) -> None:
        # Runs on the observer thread.
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            _logger.debug("Dropped file event: event loop closed")

    def _on_observer_event(self, path: str) -> None:
        self._call_on_loop(self._dispatch, normalize_path(path))

    def _on_directory_event(self) -> None:
        self._call_on_loop(self._settle_directories)

    def _dispatch(self, path: str) -> None:
        if path not in self._entries:
            return
        _logger.debug("File changed path=%s", path)
        self._bus.publish(self._topic, path)

    def _settle_directories(self) -> None:
        """Move watches of missing directories down to whatever now exists."""
        if self._observer is None:
            return
        for directory, dir_watch in list(self._directories.items()):
            previous = dir_watch.scheduled
            if previous == directory:
                continue
            dir_watch.scheduled = self._place(directory)
            if previous is not None:
                self._release_os_watch(previous)
            if dir_watch.scheduled != directory:
                continue
            _logger.info("Directory %s appeared; watching it", directory)
            # Files created before the watch moved down were not reported.
            for path in [p for p in self._entries if os.path.dirname(p) == directory]:
                if os.path.exists(path):
                    self._dispatch(path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _detach(self) -> ObserverLike | None:
        observer = self._observer
        self._observer = None
        self._entries.clear()
        self._directories.clear()
        self._os_watches.clear()
        return observer

    @staticmethod
    def _stop_observer(observer: ObserverLike) -> None:
        try:
            observer.stop()
        finally:
            observer.join()
        _logger.debug("File observer stopped")

    def close(self) -> None:
        """Stop the observer and forget every watch.

        Blocks until the observer thread has exited; from async code
        prefer :meth:`aclose`.
        """
        observer = self._detach()
        if observer is not None:
            self._stop_observer(observer)

    async def aclose(self) -> None:
        """Like :meth:`close`, with the stop and join run in the default executor."""
        observer = self._detach()
        if observer is None:
            return
        await asyncio.get_running_loop().run_in_executor(None, self._stop_observer, observer)
