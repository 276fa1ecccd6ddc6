"""Observable store: a nested mapping whose every mutation is published.

Reads hand out lightweight wrappers over nested containers so writes at
any depth are seen.  Wrappers are built per access and never cached; they
hold no state besides a reference to the root store, their dotted path,
and the raw container they view.

Write semantics, at any level:

- a value identical to the stored one is a no-op (no event, no save);
- ``None`` deletes the key (list slots, which cannot be deleted without
  shifting, store ``None``);
- anything else is stored and ``(path, value)`` is published on the
  store topic unless broadcast is off.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
from collections.abc import Awaitable, Callable, Iterator, Mapping, MutableMapping, MutableSequence
from typing import Any, TypeVar

from shellstate.bus import ChangeBus
from shellstate.config import DEFAULT_TOPIC
from shellstate.exceptions import ReservedFieldError
from shellstate.state.events import Snapshot, join_path, split_path

T = TypeVar("T")

#: Reserved control keys.  Never stored, never enumerated.
BROADCAST_FIELD = "__broadcast__"
BASE_FIELD = "__base__"

_MISSING: Any = object()


def unwrap(value: Any) -> Any:
    """Return the raw container behind an observed wrapper (or *value*)."""
    if isinstance(value, (ObservedMapping, ObservedSequence)):
        return value.base
    return value


def _is_unchanged(current: Any, value: Any) -> bool:
    if current is value:
        return True
    if isinstance(current, (dict, list)) or isinstance(value, (dict, list)):
        return False
    # Scalars compare by value, but 1 and True are different settings.
    return type(current) is type(value) and current == value


def _wrap(root: ObservableStore, path: str, value: Any) -> Any:
    if isinstance(value, dict):
        return ObservedMapping(root, path, value)
    if isinstance(value, list):
        return ObservedSequence(root, path, value)
    return value


class ObservedMapping(MutableMapping[str, Any]):
    """Observed view over one (possibly nested) mapping of the store."""

    def __init__(self, root: ObservableStore, path: str, data: dict[str, Any]) -> None:
        self._root = root
        self._path = path
        self._data = data

    @property
    def path(self) -> str:
        return self._path

    @property
    def base(self) -> dict[str, Any]:
        """The raw, unwrapped mapping."""
        return self._data

    def __getitem__(self, key: str) -> Any:
        if key == BASE_FIELD:
            return self._data
        if key == BROADCAST_FIELD:
            return self._root.broadcast
        return _wrap(self._root, join_path(self._path, key), self._data[key])

    def __setitem__(self, key: str, value: Any) -> None:
        if key == BROADCAST_FIELD:
            self._root.broadcast = bool(value)
            return
        if key == BASE_FIELD:
            raise ReservedFieldError(f"{BASE_FIELD} is read-only")

        value = unwrap(value)
        current = self._data.get(key, _MISSING)
        if value is None:
            if current is _MISSING:
                return
            del self._data[key]
        else:
            if current is not _MISSING and _is_unchanged(current, value):
                return
            self._data[key] = value
        self._root._mutated(join_path(self._path, key), value)

    def __delitem__(self, key: str) -> None:
        if key in (BASE_FIELD, BROADCAST_FIELD):
            raise ReservedFieldError(f"{key} cannot be deleted")
        if key not in self._data:
            raise KeyError(key)
        self[key] = None

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return self._data == unwrap(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path={self._path!r}, {self._data!r})"


class ObservedSequence(MutableSequence[Any]):
    """Observed view over a list; element paths use the numeric index."""

    def __init__(self, root: ObservableStore, path: str, data: list[Any]) -> None:
        self._root = root
        self._path = path
        self._data = data

    @property
    def path(self) -> str:
        return self._path

    @property
    def base(self) -> list[Any]:
        return self._data

    def _index(self, index: int) -> int:
        size = len(self._data)
        normalized = index + size if index < 0 else index
        if not 0 <= normalized < size:
            raise IndexError("list index out of range")
        return normalized

    def __getitem__(self, index: int | slice) -> Any:  # type: ignore[override]
        if isinstance(index, slice):
            return self._data[index]
        position = self._index(index)
        return _wrap(self._root, join_path(self._path, position), self._data[position])

    def __setitem__(self, index: int | slice, value: Any) -> None:  # type: ignore[override]
        if isinstance(index, slice):
            before = list(self._data)
            self._data[index] = [unwrap(v) for v in value]
            self._emit_shifted(before, 0)
            return
        position = self._index(index)
        value = unwrap(value)
        if _is_unchanged(self._data[position], value):
            return
        self._data[position] = value
        self._root._mutated(join_path(self._path, position), value)

    def __delitem__(self, index: int | slice) -> None:  # type: ignore[override]
        before = list(self._data)
        if isinstance(index, slice):
            del self._data[index]
            self._emit_shifted(before, 0)
            return
        position = self._index(index)
        del self._data[position]
        self._emit_shifted(before, position)

    def insert(self, index: int, value: Any) -> None:
        before = list(self._data)
        self._data.insert(index, unwrap(value))
        start = min(max(index + len(before) if index < 0 else index, 0), len(before))
        self._emit_shifted(before, start)

    def _emit_shifted(self, before: list[Any], start: int) -> None:
        # One event per slot whose content changed; vacated tail slots report None.
        for position in range(start, max(len(before), len(self._data))):
            old = before[position] if position < len(before) else _MISSING
            new = self._data[position] if position < len(self._data) else None
            if old is not _MISSING and _is_unchanged(old, new):
                continue
            self._root._mutated(join_path(self._path, position), new)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (ObservedSequence, list)):
            return self._data == unwrap(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path={self._path!r}, {self._data!r})"


class ObservableStore(ObservedMapping):
    """Root of an observed tree.

    Usage::

        bus = ChangeBus()
        settings = ObservableStore({"layout": {"direction": "horizontal"}}, "settings-change", bus=bus)
        bus.subscribe("settings-change", lambda topic, event: print(event))
        settings["layout"]["direction"] = "vertical"   # ("layout.direction", "vertical")
    """

    def __init__(
        self,
        initial: Mapping[str, Any] | None = None,
        topic: str = DEFAULT_TOPIC,
        *,
        bus: ChangeBus | None = None,
    ) -> None:
        data = unwrap(initial) if initial is not None else {}
        if not isinstance(data, dict):
            data = dict(data)
        super().__init__(self, "", data)
        self._topic = topic
        self._bus = bus if bus is not None else ChangeBus()
        self._broadcast = True

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def bus(self) -> ChangeBus:
        return self._bus

    @property
    def broadcast(self) -> bool:
        return self._broadcast

    @broadcast.setter
    def broadcast(self, enabled: bool) -> None:
        self._broadcast = enabled

    # ------------------------------------------------------------------
    # Change emission
    # ------------------------------------------------------------------

    def _mutated(self, path: str, value: Any) -> None:
        if not self._broadcast:
            return
        self._on_change(path, value)

    def _on_change(self, path: str, value: Any) -> None:
        """Hook for a broadcast mutation.  Subclasses add persistence."""
        self.publish(path, value)

    def publish(self, path: str, value: Any) -> int:
        """Publish ``(path, value)`` on the store topic, unless silenced."""
        if not self._broadcast:
            return 0
        return self._bus.publish(self._topic, (path, value))

    # ------------------------------------------------------------------
    # Silent scopes
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def silenced(self) -> Iterator[None]:
        """Suppress broadcast for the duration of a ``with`` block."""
        previous = self._broadcast
        self._broadcast = False
        try:
            yield
        finally:
            self._broadcast = previous

    def run_silently(self, fn: Callable[[], T]) -> T | asyncio.Task[Any]:
        """Call *fn* with broadcast disabled.

        If *fn* returns an awaitable, broadcast stays disabled until it
        settles (either way) and a task wrapping it is returned; await
        the task for the result.  Otherwise broadcast is restored as soon
        as *fn* returns.
        """
        previous = self._broadcast
        self._broadcast = False
        try:
            result = fn()
        except BaseException:
            self._broadcast = previous
            raise
        if inspect.isawaitable(result):
            settle = self._settle_silently(result, previous)
            try:
                return asyncio.ensure_future(settle)
            except RuntimeError:
                settle.close()
                self._broadcast = previous
                raise
        self._broadcast = previous
        return result

    async def _settle_silently(self, awaitable: Awaitable[Any], previous: bool) -> Any:
        try:
            return await awaitable
        finally:
            self._broadcast = previous

    # ------------------------------------------------------------------
    # Whole-tree helpers
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Deep copy of the raw tree."""
        return copy.deepcopy(self._data)

    def replace(self, data: Mapping[str, Any]) -> None:
        """Silently make the top-level keys exactly those of *data*."""
        with self.silenced():
            for key in [k for k in self._data if k not in data]:
                del self[key]
            for key, value in data.items():
                self[key] = value

    def get_path(self, path: str) -> Any:
        """Resolve a dotted path (``"layout.split.0"``); ``None`` if absent."""
        node: Any = self
        for segment in split_path(path):
            if isinstance(node, ObservedMapping):
                if segment not in node:
                    return None
                node = node[segment]
            elif isinstance(node, ObservedSequence):
                try:
                    node = node[int(segment)]
                except (ValueError, IndexError):
                    return None
            else:
                return None
        return node

    def set_path(self, path: str, value: Any, *, create: bool = False) -> None:
        """Assign through the observed wrappers so the usual events fire.

        With ``create=True`` missing intermediate mappings are created;
        otherwise a missing segment raises ``KeyError``.
        """
        segments = split_path(path)
        if not segments:
            raise KeyError(path)
        node: Any = self
        for segment in segments[:-1]:
            child = self._child(node, segment)
            if not isinstance(child, (ObservedMapping, ObservedSequence)):
                if not (create and isinstance(node, ObservedMapping)):
                    raise KeyError(path)
                node[segment] = {}
                child = node[segment]
            node = child
        last = segments[-1]
        if isinstance(node, ObservedSequence):
            node[int(last)] = value
        else:
            node[last] = value

    @staticmethod
    def _child(node: Any, segment: str) -> Any:
        if isinstance(node, ObservedMapping):
            return node[segment] if segment in node else None
        if isinstance(node, ObservedSequence):
            try:
                return node[int(segment)]
            except (ValueError, IndexError):
                return None
        return None
