"""Backing drivers.

A driver is what a backed store restores from and saves to: nothing
(ephemeral), a key in a key-value store, or a file on disk.
"""

from shellstate.backing._base import BackingDriver, decode_snapshot, encode_snapshot
from shellstate.backing.ephemeral import EphemeralDriver
from shellstate.backing.file import FileDriver
from shellstate.backing.keyed import KeyedDriver

__all__ = [
    "BackingDriver",
    "EphemeralDriver",
    "FileDriver",
    "KeyedDriver",
    "decode_snapshot",
    "encode_snapshot",
]
