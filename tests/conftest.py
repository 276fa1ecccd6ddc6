from __future__ import annotations

import os
from typing import Any

import pytest
from watchdog.events import FileSystemEventHandler


class FakeObserver:
    """Stands in for ``watchdog.observers.Observer``; records OS-level watches."""

    def __init__(self) -> None:
        self.watches: dict[int, tuple[FileSystemEventHandler, str]] = {}
        self.unscheduled: list[int] = []
        self.started = False
        self.stopped = False
        self.joined = False
        self._next = 0

    def schedule(self, event_handler: FileSystemEventHandler, path: str, recursive: bool = False) -> int:
        if not os.path.isdir(path):
            raise FileNotFoundError(2, "No such file or directory", path)
        self._next += 1
        self.watches[self._next] = (event_handler, path)
        return self._next

    def unschedule(self, watch: Any) -> None:
        self.unscheduled.append(watch)
        del self.watches[watch]

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        self.joined = True

    def handler(self) -> FileSystemEventHandler:
        return next(iter(self.watches.values()))[0]


class ObserverFactory:
    def __init__(self) -> None:
        self.created: list[FakeObserver] = []

    def __call__(self) -> FakeObserver:
        observer = FakeObserver()
        self.created.append(observer)
        return observer

    @property
    def observer(self) -> FakeObserver:
        assert len(self.created) == 1
        return self.created[0]


@pytest.fixture
def observer_factory() -> ObserverFactory:
    return ObserverFactory()
