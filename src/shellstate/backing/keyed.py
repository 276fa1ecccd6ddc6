"""Driver over a simple key-value store."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping

from shellstate.backing._base import decode_snapshot, encode_snapshot
from shellstate.exceptions import RestoreError, SaveError
from shellstate.state.events import Snapshot

_logger = logging.getLogger(__name__)


class KeyedDriver:
    """Keeps the encoded snapshot under one key of a string mapping.

    *storage* is anything that behaves like ``MutableMapping[str, str]``:
    a plain dict shared between stores, or a ``shelve`` handle for
    something that outlives the process.
    """

    def __init__(self, storage: MutableMapping[str, str], key: str, *, pretty: bool = False) -> None:
        if not key:
            raise ValueError("key must be non-empty")
        self._storage = storage
        self._key = key
        self._pretty = pretty

    @property
    def key(self) -> str:
        return self._key

    @property
    def target(self) -> str:
        return f"key:{self._key}"

    def restore(self) -> Snapshot:
        try:
            item = self._storage.get(self._key)
        except Exception as exc:
            raise RestoreError(f"Could not read key {self._key!r}: {exc}", target=self.target) from exc
        if not item:
            return {}
        try:
            return decode_snapshot(item)
        except ValueError as exc:
            raise RestoreError(f"Malformed data under key {self._key!r}: {exc}", target=self.target) from exc

    async def save(self, snapshot: Snapshot) -> None:
        try:
            self._storage[self._key] = encode_snapshot(snapshot, pretty=self._pretty)
        except (TypeError, ValueError, OSError) as exc:
            raise SaveError(f"Could not store key {self._key!r}: {exc}", target=self.target) from exc
        _logger.debug("Stored snapshot under key=%s", self._key)
