"""Driver interface and the persisted document codec."""

from __future__ import annotations

import json
from typing import Any, Protocol

from shellstate.state.events import SNAPSHOT_ADAPTER, Snapshot


class BackingDriver(Protocol):
    """Structural interface a backed store persists through.

    ``restore`` is called once, synchronously, while the store is being
    built; ``save`` is awaited by the persistence coordinator, never by
    the code that mutated the store.
    """

    @property
    def target(self) -> str:
        """Identifier of the backing location, for logs and save markers."""
        ...

    def restore(self) -> Snapshot:
        """Return the stored snapshot, ``{}`` if nothing is stored.

        Raises :class:`~shellstate.exceptions.RestoreError` on unreadable
        or malformed data.
        """
        ...

    async def save(self, snapshot: Snapshot) -> None:
        """Persist *snapshot*; raises :class:`~shellstate.exceptions.SaveError`."""
        ...


def encode_snapshot(snapshot: Snapshot, *, pretty: bool = False) -> str:
    """Serialize a snapshot to a JSON document, compact or two-space indented."""
    if pretty:
        return json.dumps(snapshot, indent=2, ensure_ascii=False)
    return json.dumps(snapshot, separators=(",", ":"), ensure_ascii=False)


def decode_snapshot(text: str) -> Snapshot:
    """Parse a JSON document; empty text is an empty snapshot.

    Raises ``ValueError`` (including pydantic's ``ValidationError``) when
    the text is not JSON or its top level is not an object.
    """
    if not text.strip():
        return {}
    parsed: Any = json.loads(text)
    return SNAPSHOT_ADAPTER.validate_python(parsed, strict=True)
