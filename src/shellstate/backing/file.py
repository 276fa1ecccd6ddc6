"""Driver over a JSON file on disk."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from shellstate._redact import summarize_for_log
from shellstate.backing._base import decode_snapshot, encode_snapshot
from shellstate.exceptions import ReconciliationError, RestoreError, SaveError
from shellstate.state.events import Snapshot

_logger = logging.getLogger(__name__)


class FileDriver:
    """Reads and writes one file; the path is made absolute on construction.

    Parameters
    ----------
    path : str or Path
        Backing file.  It does not have to exist yet.
    pretty : bool
        Write two-space indented JSON instead of compact JSON.
    encoding : str
        Text encoding of the file.
    """

    def __init__(self, path: str | os.PathLike[str], *, pretty: bool = False, encoding: str = "utf-8") -> None:
        self._path = Path(os.path.abspath(os.fspath(path)))
        self._pretty = pretty
        self._encoding = encoding

    @property
    def path(self) -> str:
        return str(self._path)

    @property
    def target(self) -> str:
        return str(self._path)

    def _read_text(self) -> str:
        return self._path.read_text(encoding=self._encoding)

    def restore(self) -> Snapshot:
        try:
            text = self._read_text()
        except FileNotFoundError:
            _logger.debug("No backing file at %s; starting from defaults", self._path)
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            raise RestoreError(f"Could not read {self._path}: {exc}", target=self.target) from exc
        try:
            return decode_snapshot(text)
        except ValueError as exc:
            raise RestoreError(f"Malformed settings file {self._path}: {exc}", target=self.target) from exc

    async def load(self) -> Snapshot:
        """Read and parse the file off the event loop.

        Unlike :meth:`restore` a missing file is an error here: the file
        was just reported as changed, so absence means we cannot trust
        what is on disk.
        """
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, self._read_text)
        except (OSError, UnicodeDecodeError) as exc:
            raise ReconciliationError(f"Could not read {self._path}: {exc}", target=self.target) from exc
        try:
            return decode_snapshot(text)
        except ValueError as exc:
            raise ReconciliationError(f"Malformed settings file {self._path}: {exc}", target=self.target) from exc

    def _write_text(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(text, encoding=self._encoding)

    async def save(self, snapshot: Snapshot) -> None:
        try:
            text = encode_snapshot(snapshot, pretty=self._pretty)
        except (TypeError, ValueError) as exc:
            raise SaveError(f"Snapshot is not serializable: {exc}", target=self.target) from exc

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Writing %s snapshot=%s", self._path, summarize_for_log(snapshot))

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write_text, text)
        except OSError as exc:
            raise SaveError(f"Could not write {self._path}: {exc}", target=self.target) from exc
