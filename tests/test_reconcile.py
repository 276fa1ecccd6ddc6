from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import pytest
from watchdog.events import DirCreatedEvent, FileModifiedEvent

from shellstate.bus import ChangeBus
from shellstate.config import StoreConfig
from shellstate.persistence import FileBackedStore, SaveState
from shellstate.reconcile import Reconciler
from shellstate.watcher import FileWatchService

from .conftest import ObserverFactory

_CONFIG = StoreConfig(
    topic="settings-change",
    debounce_delay=0.01,
    save_retry_interval=0.005,
    save_marker_grace=0.5,
)


class _Harness:
    def __init__(self, tmp_path: Path, observer_factory: ObserverFactory, initial_file: dict[str, Any]) -> None:
        self.path = tmp_path / "settings.json"
        self.path.write_text(json.dumps(initial_file), encoding="utf-8")
        self.bus = ChangeBus()
        self.events: list[tuple[str, Any]] = []
        self.bus.subscribe("settings-change", lambda _topic, payload: self.events.append(payload))
        self.store = FileBackedStore({}, self.path, config=_CONFIG, bus=self.bus)
        self.watcher = FileWatchService(bus=self.bus, observer_factory=observer_factory)
        self.reconciler = Reconciler(self.store, self.watcher)

    def edit_externally(self, data: dict[str, Any] | str) -> None:
        text = data if isinstance(data, str) else json.dumps(data)
        self.path.write_text(text, encoding="utf-8")

    async def notify(self) -> None:
        self.bus.publish(self.watcher.topic, self.store.path)
        await self.reconciler.wait_idle()


@pytest.mark.asyncio
async def test_external_edit_emits_one_event_per_changed_leaf(
    tmp_path: Path, observer_factory: ObserverFactory
) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1, "b": {"c": 2}})
    harness.reconciler.start()

    harness.edit_externally({"a": 1, "b": {"c": 3, "d": 4}})
    await harness.notify()

    assert harness.events == [("b.c", 3), ("b.d", 4)]
    assert harness.store.base == {"a": 1, "b": {"c": 3, "d": 4}}
    # Replacement was silent: nothing scheduled a save of the file we just read.
    assert harness.store.persistence.state is SaveState.IDLE


@pytest.mark.asyncio
async def test_removed_keys_are_deleted_and_reported(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(
        tmp_path,
        observer_factory,
        {"layout": {"direction": "horizontal"}, "shell": {"theme": "dark", "wrap": True}},
    )

    harness.edit_externally({"layout": {"direction": "vertical"}, "shell": {"theme": "dark"}})
    changes = await harness.reconciler.reconcile()

    assert [change.as_payload() for change in changes] == [("layout.direction", "vertical"), ("shell.wrap", None)]
    assert harness.events == [("layout.direction", "vertical"), ("shell.wrap", None)]
    assert harness.store.base == {"layout": {"direction": "vertical"}, "shell": {"theme": "dark"}}


@pytest.mark.asyncio
async def test_dropped_top_level_key_is_removed(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1, "editor": {"tabSize": 2}})

    harness.edit_externally({"a": 1})
    await harness.reconciler.reconcile()

    assert "editor" not in harness.store
    assert harness.events == [("editor.tabSize", None)]


@pytest.mark.asyncio
async def test_reconciling_an_unchanged_file_is_a_noop(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1, "b": {"c": 2}})

    harness.edit_externally({"a": 1, "b": {"c": 5}})
    first = await harness.reconciler.reconcile()
    second = await harness.reconciler.reconcile()

    assert len(first) == 1
    assert second == []
    assert harness.events == [("b.c", 5)]


@pytest.mark.asyncio
async def test_own_save_is_not_reconciled(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1, "b": {"c": 2}})
    harness.reconciler.start()

    harness.store["b"]["c"] = 9
    await harness.store.wait_idle()
    assert harness.store.persistence.save_marker_active is True
    harness.events.clear()

    await harness.notify()

    assert harness.events == []
    assert json.loads(harness.path.read_text(encoding="utf-8")) == {"a": 1, "b": {"c": 9}}


@pytest.mark.asyncio
async def test_change_after_grace_window_is_reconciled(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    config = StoreConfig(topic="settings-change", debounce_delay=0.01, save_retry_interval=0.005, save_marker_grace=0.02)
    harness = _Harness(tmp_path, observer_factory, {"a": 1})
    harness.store = FileBackedStore({}, harness.path, config=config, bus=harness.bus)
    harness.reconciler = Reconciler(harness.store, harness.watcher)
    harness.reconciler.start()

    harness.store["a"] = 2
    await harness.store.wait_idle()
    await asyncio.sleep(0.05)
    harness.events.clear()

    harness.edit_externally({"a": 3})
    await harness.notify()

    assert harness.events == [("a", 3)]


@pytest.mark.asyncio
async def test_corrupt_file_leaves_store_untouched(
    tmp_path: Path, observer_factory: ObserverFactory, caplog: pytest.LogCaptureFixture
) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1, "b": {"c": 2}})
    harness.reconciler.start()

    harness.edit_externally('{"a": 5, "b": ')
    with caplog.at_level(logging.WARNING, logger="shellstate.reconcile"):
        await harness.notify()

    assert harness.events == []
    assert harness.store.base == {"a": 1, "b": {"c": 2}}
    assert "Not reconciling" in caplog.text


@pytest.mark.asyncio
async def test_notifications_for_other_files_are_ignored(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1})
    harness.reconciler.start()

    harness.edit_externally({"a": 2})
    harness.bus.publish(harness.watcher.topic, str(tmp_path / "user.css"))
    await harness.reconciler.wait_idle()

    assert harness.events == []
    assert harness.store.base == {"a": 1}


@pytest.mark.asyncio
async def test_start_and_stop_manage_the_watch(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"a": 1})

    async with harness.reconciler:
        assert harness.reconciler.running is True
        assert harness.watcher.refcount(harness.path) == 1

    assert harness.reconciler.running is False
    assert harness.watcher.is_watching(harness.path) is False
    assert harness.bus.subscribers(harness.watcher.topic) == 0


@pytest.mark.asyncio
async def test_observer_event_drives_reconciliation(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    harness = _Harness(tmp_path, observer_factory, {"layout": {"split": [50, 50]}})
    harness.reconciler.start()

    harness.edit_externally({"layout": {"split": [30, 70]}})
    observer_factory.observer.handler().dispatch(FileModifiedEvent(str(harness.path)))
    await asyncio.sleep(0)
    await harness.reconciler.wait_idle()

    assert harness.events == [("layout.split.0", 30), ("layout.split.1", 70)]
    assert harness.store.get_path("layout.split.1") == 70


@pytest.mark.asyncio
async def test_first_run_in_a_missing_config_directory(tmp_path: Path, observer_factory: ObserverFactory) -> None:
    config = StoreConfig(topic="settings-change", debounce_delay=0.01, save_retry_interval=0.005, save_marker_grace=0.02)
    path = tmp_path / "conf" / "settings.json"
    bus = ChangeBus()
    events: list[tuple[str, Any]] = []
    bus.subscribe("settings-change", lambda _topic, payload: events.append(payload))
    store = FileBackedStore({"b": {"c": 2}}, path, config=config, bus=bus)
    watcher = FileWatchService(bus=bus, config=config, observer_factory=observer_factory)
    reconciler = Reconciler(store, watcher)

    reconciler.start()
    assert watcher.refcount(path) == 1

    # The first save creates the directory; its creation event arrives while the marker is up.
    store["b"]["c"] = 9
    await store.wait_idle()
    observer = observer_factory.observer
    observer.handler().dispatch(DirCreatedEvent(str(path.parent)))
    await asyncio.sleep(0)
    await reconciler.wait_idle()

    assert [directory for _handler, directory in observer.watches.values()] == [str(path.parent)]
    assert events == [("b.c", 9)]

    await asyncio.sleep(0.05)
    path.write_text(json.dumps({"b": {"c": 3, "d": 4}}), encoding="utf-8")
    observer.handler().dispatch(FileModifiedEvent(str(path)))
    await asyncio.sleep(0)
    await reconciler.wait_idle()

    assert events == [("b.c", 9), ("b.c", 3), ("b.d", 4)]
    reconciler.stop()
    assert observer.watches == {}
