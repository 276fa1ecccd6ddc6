"""Driver that keeps nothing."""

from __future__ import annotations

from shellstate.state.events import Snapshot


class EphemeralDriver:
    """Restores an empty snapshot and discards saves."""

    @property
    def target(self) -> str:
        return "<ephemeral>"

    def restore(self) -> Snapshot:
        return {}

    async def save(self, snapshot: Snapshot) -> None:
        return None
