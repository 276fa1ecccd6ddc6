"""Structural snapshot diff.

Produces one :class:`ChangeEvent` per leaf that was added, removed or
changed between two snapshots, so an external edit can be replayed to
subscribers as the individual fields it touched.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from shellstate.state.events import ChangeEvent, Snapshot, join_path

_MISSING: Any = object()


def _same_scalar(old: Any, new: Any) -> bool:
    return type(old) is type(new) and old == new


def _walk(path: str, old: Any, new: Any) -> Iterator[ChangeEvent]:
    # A container that appears or disappears is expanded against an empty
    # container of the same kind, so subscribers bound to its leaves hear about it.
    if old is _MISSING and isinstance(new, (dict, list)):
        old = type(new)()
        if not new:
            yield ChangeEvent(path=path, value=new)
            return
    elif new is _MISSING and isinstance(old, (dict, list)):
        new = type(old)()
        if not old:
            yield ChangeEvent(path=path, value=None)
            return

    if isinstance(old, dict) and isinstance(new, dict):
        for key in old:
            yield from _walk(join_path(path, key), old[key], new.get(key, _MISSING))
        for key in new:
            if key not in old:
                yield from _walk(join_path(path, key), _MISSING, new[key])
        return

    if isinstance(old, list) and isinstance(new, list):
        for index in range(max(len(old), len(new))):
            yield from _walk(
                join_path(path, index),
                old[index] if index < len(old) else _MISSING,
                new[index] if index < len(new) else _MISSING,
            )
        return

    if new is _MISSING:
        yield ChangeEvent(path=path, value=None)
    elif old is _MISSING or not _same_scalar(old, new):
        yield ChangeEvent(path=path, value=new)


def diff_snapshots(old: Snapshot, new: Snapshot) -> list[ChangeEvent]:
    """Leaf-level differences from *old* to *new*, in traversal order.

    Removed leaves carry ``None``.  A field that switches between a
    container and a scalar (or between mapping and list) is reported
    once, at its own path, with the new value.
    """
    events: list[ChangeEvent] = []
    for key in old:
        events.extend(_walk(key, old[key], new.get(key, _MISSING)))
    for key in new:
        if key not in old:
            events.extend(_walk(key, _MISSING, new[key]))
    return events
