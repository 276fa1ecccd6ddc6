"""Backed stores: observable stores that persist themselves.

Owns:
- restoring a store from its driver at construction
- debouncing broadcast mutations into a single save
- serializing saves per store (never two in flight)
- the save marker used to recognise our own writes when the watcher
  reports the backing file as changed
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Coroutine, Mapping, MutableMapping
from enum import StrEnum
from typing import Any

from shellstate.backing import BackingDriver, EphemeralDriver, FileDriver, KeyedDriver
from shellstate.bus import ChangeBus
from shellstate.config import StoreConfig
from shellstate.exceptions import RestoreError, SaveError
from shellstate.state.events import Snapshot
from shellstate.state.observed import ObservableStore

_logger = logging.getLogger(__name__)


class SaveState(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    SAVING = "saving"


class PersistenceCoordinator:
    """Debounce/serialize state machine between a store and its driver.

    ``IDLE -> PENDING`` when a mutation arms the debounce timer,
    ``PENDING -> SAVING`` when the timer fires and no save is in flight
    (otherwise one poller waits, re-checking every retry interval), and
    ``SAVING -> IDLE`` when the driver returns.  The snapshot is taken
    when the save actually starts, so it always reflects every mutation
    made before that point.

    The event loop is picked up lazily on the first scheduled save, so a
    coordinator can be built (and its store restored) outside a loop.
    """

    def __init__(
        self,
        driver: BackingDriver,
        snapshot: Callable[[], Snapshot],
        *,
        config: StoreConfig,
    ) -> None:
        self._driver = driver
        self._snapshot = snapshot
        self._config = config
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._saving = False
        self._queued = False
        self._marker_active = False
        self._marker_clear: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def driver(self) -> BackingDriver:
        return self._driver

    @property
    def state(self) -> SaveState:
        if self._saving:
            return SaveState.SAVING
        if self._timer is not None or self._queued:
            return SaveState.PENDING
        return SaveState.IDLE

    @property
    def save_marker_active(self) -> bool:
        """Whether a save is in flight or finished within the grace window."""
        return self._marker_active

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self._require_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self) -> None:
        """Arm the debounce timer unless one is already pending."""
        if self._timer is not None:
            return
        try:
            self._timer = self._require_loop().call_later(self._config.debounce_delay, self._on_timer)
        except RuntimeError:
            _logger.warning("No usable event loop; save of %s deferred until flush()", self._driver.target)
            return
        _logger.debug("Save scheduled target=%s delay=%.3fs", self._driver.target, self._config.debounce_delay)

    def _on_timer(self) -> None:
        self._timer = None
        self.request_save()

    def request_save(self) -> None:
        """Save as soon as no other save is in flight.

        At most one request waits at a time; since the snapshot is taken
        when the save starts, a second waiter would only write the same
        data again.
        """
        if self._queued:
            return
        self._queued = True
        self._spawn(self._save_when_free())

    async def _save_when_free(self) -> None:
        try:
            while self._saving:
                await asyncio.sleep(self._config.save_retry_interval)
        finally:
            self._queued = False
        await self._save_now()

    async def _save_now(self) -> bool:
        target = self._driver.target
        self._saving = True
        self._set_marker()
        try:
            await self._driver.save(self._snapshot())
        except SaveError as exc:
            _logger.warning("Save failed target=%s: %s", target, exc)
            self._clear_marker()
            return False
        except Exception:
            _logger.warning("Save failed target=%s", target, exc_info=True)
            self._clear_marker()
            return False
        finally:
            self._saving = False
        self._arm_marker_clear()
        _logger.debug("Save complete target=%s", target)
        return True

    # ------------------------------------------------------------------
    # Save marker
    # ------------------------------------------------------------------

    def _set_marker(self) -> None:
        if self._marker_clear is not None:
            self._marker_clear.cancel()
            self._marker_clear = None
        self._marker_active = True

    def _arm_marker_clear(self) -> None:
        loop = self._require_loop()
        self._marker_clear = loop.call_later(self._config.save_marker_grace, self._clear_marker)

    def _clear_marker(self) -> None:
        if self._marker_clear is not None:
            self._marker_clear.cancel()
            self._marker_clear = None
        self._marker_active = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def flush(self) -> bool:
        """Persist the current snapshot now.

        Cancels a pending debounce timer and waits for an in-flight save
        first.  Returns whether the write succeeded.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._require_loop()
        while self._saving:
            await asyncio.sleep(self._config.save_retry_interval)
        return await self._save_now()

    async def wait_idle(self) -> None:
        """Wait until no timer, queued save or in-flight save remains."""
        while True:
            if self._tasks:
                await asyncio.wait(set(self._tasks))
            elif self._timer is not None:
                await asyncio.sleep(self._config.debounce_delay)
            elif self._saving:
                await asyncio.sleep(self._config.save_retry_interval)
            else:
                return


class BackedStore(ObservableStore):
    """Observable store restored from, and saved to, a backing driver.

    Restored top-level keys replace the corresponding defaults in
    *initial* wholesale; nested defaults under a restored key are not
    merged back in.

    Usage::

        async with BackedStore.keyed({"recentFiles": []}, storage, "file-settings") as store:
            store["recentFiles"].append("/tmp/a.R")
    """

    def __init__(
        self,
        initial: Mapping[str, Any] | None,
        driver: BackingDriver,
        *,
        config: StoreConfig | None = None,
        bus: ChangeBus | None = None,
        topic: str | None = None,
    ) -> None:
        self._config = config if config is not None else StoreConfig()
        super().__init__(initial, topic if topic is not None else self._config.topic, bus=bus)
        self._driver = driver
        self._persistence = PersistenceCoordinator(driver, self.snapshot, config=self._config)
        self._restore()

    @classmethod
    def ephemeral(cls, initial: Mapping[str, Any] | None = None, **kwargs: Any) -> BackedStore:
        return cls(initial, EphemeralDriver(), **kwargs)

    @classmethod
    def keyed(
        cls,
        initial: Mapping[str, Any] | None,
        storage: MutableMapping[str, str],
        key: str,
        **kwargs: Any,
    ) -> BackedStore:
        config: StoreConfig | None = kwargs.get("config")
        pretty = config.pretty if config is not None else False
        return cls(initial, KeyedDriver(storage, key, pretty=pretty), **kwargs)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def driver(self) -> BackingDriver:
        return self._driver

    @property
    def persistence(self) -> PersistenceCoordinator:
        return self._persistence

    def _restore(self) -> None:
        try:
            data = self._driver.restore()
        except RestoreError as exc:
            _logger.warning("Restore failed target=%s, keeping defaults: %s", self._driver.target, exc)
            data = {}
        with self.silenced():
            for key, value in data.items():
                self[key] = value
        _logger.debug("Restored target=%s keys=%d", self._driver.target, len(data))

    def _on_change(self, path: str, value: Any) -> None:
        self._persistence.schedule()
        self.publish(path, value)

    async def flush(self) -> bool:
        return await self._persistence.flush()

    async def wait_idle(self) -> None:
        await self._persistence.wait_idle()

    async def __aenter__(self) -> BackedStore:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.flush()


class FileBackedStore(BackedStore):
    """Backed store over a JSON file; the file is what the watcher tracks."""

    def __init__(
        self,
        initial: Mapping[str, Any] | None,
        path: str | os.PathLike[str],
        *,
        config: StoreConfig | None = None,
        bus: ChangeBus | None = None,
        topic: str | None = None,
    ) -> None:
        config = config if config is not None else StoreConfig()
        self._file = FileDriver(path, pretty=config.pretty, encoding=config.encoding)
        super().__init__(initial, self._file, config=config, bus=bus, topic=topic)

    @property
    def path(self) -> str:
        return self._file.path

    @property
    def file_driver(self) -> FileDriver:
        return self._file
