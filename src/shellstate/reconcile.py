"""Absorb external edits of a store's backing file.

When the watcher reports the file as changed we must not simply reload:
the reload would publish a bulk change, trigger a save, and the save
would be reported as another change.  Instead:

1. notifications that arrive while our own save marker is up are echoes
   of our write and are dropped;
2. the file is loaded; if it cannot be parsed nothing is touched;
3. the in-memory snapshot is cloned *before* anything is replaced, and
   diffed against the loaded data;
4. the loaded data replaces the store contents silently (no save);
5. one event per diff entry is published.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from shellstate.bus import Subscription
from shellstate.exceptions import ReconciliationError
from shellstate.persistence import FileBackedStore
from shellstate.state.diff import diff_snapshots
from shellstate.state.events import ChangeEvent
from shellstate.watcher import FileWatchService

_logger = logging.getLogger(__name__)


class Reconciler:
    """Keeps a :class:`FileBackedStore` in sync with edits made by others.

    Usage::

        async with Reconciler(settings, watcher):
            ...  # external edits of settings.path now show up as events
    """

    def __init__(self, store: FileBackedStore, watcher: FileWatchService) -> None:
        self._store = store
        self._watcher = watcher
        self._subscription: Subscription | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> FileBackedStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._watcher.watch(self._store.path)
        self._subscription = self._watcher.bus.subscribe(self._watcher.topic, self._on_file_change)

    def stop(self) -> None:
        subscription = self._subscription
        if subscription is None:
            return
        self._subscription = None
        self._watcher.bus.unsubscribe(subscription)
        self._watcher.unwatch(self._store.path)

    async def __aenter__(self) -> Reconciler:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.stop()
        await self.wait_idle()

    def _on_file_change(self, _topic: str, path: str) -> None:
        if path != self._store.path:
            return
        if self._store.persistence.save_marker_active:
            _logger.debug("Ignoring change to %s: our own save", path)
            return
        task = asyncio.get_running_loop().create_task(self.reconcile())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def reconcile(self) -> list[ChangeEvent]:
        """Apply the on-disk file to the store; returns the events published."""
        try:
            loaded = await self._store.file_driver.load()
        except ReconciliationError as exc:
            _logger.warning("Not reconciling %s: %s", self._store.path, exc)
            return []

        original = self._store.snapshot()
        changes = diff_snapshots(original, loaded)
        if not changes:
            _logger.debug("No changes in %s", self._store.path)
            return []

        _logger.info("Reconciling %s: %d changed field(s)", self._store.path, len(changes))
        self._store.replace(loaded)
        for change in changes:
            self._store.publish(change.path, change.value)
        return changes

    async def wait_idle(self) -> None:
        """Wait for reconciliations already triggered by notifications."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))
