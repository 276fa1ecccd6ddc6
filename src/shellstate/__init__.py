"""shellstate - observable, persisted settings store for interactive shells."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("shellstate")
except PackageNotFoundError:
    __version__ = "0+local"
from shellstate.backing import BackingDriver, EphemeralDriver, FileDriver, KeyedDriver
from shellstate.bus import ChangeBus, Subscription
from shellstate.config import DEFAULT_FILE_CHANGE_TOPIC, DEFAULT_TOPIC, StoreConfig
from shellstate.exceptions import (
    ReconciliationError,
    ReservedFieldError,
    RestoreError,
    SaveError,
    StoreError,
    WatchMisuseError,
)
from shellstate.persistence import BackedStore, FileBackedStore, PersistenceCoordinator, SaveState
from shellstate.reconcile import Reconciler
from shellstate.state.diff import diff_snapshots
from shellstate.state.events import ChangeEvent, Snapshot
from shellstate.state.observed import (
    BASE_FIELD,
    BROADCAST_FIELD,
    ObservableStore,
    ObservedMapping,
    ObservedSequence,
)
from shellstate.watcher import FileWatchService, WatchEntry

__all__ = [
    "__version__",
    "BASE_FIELD",
    "BROADCAST_FIELD",
    "BackedStore",
    "BackingDriver",
    "ChangeBus",
    "ChangeEvent",
    "DEFAULT_FILE_CHANGE_TOPIC",
    "DEFAULT_TOPIC",
    "EphemeralDriver",
    "FileBackedStore",
    "FileDriver",
    "FileWatchService",
    "KeyedDriver",
    "ObservableStore",
    "ObservedMapping",
    "ObservedSequence",
    "PersistenceCoordinator",
    "ReconciliationError",
    "Reconciler",
    "ReservedFieldError",
    "RestoreError",
    "SaveError",
    "SaveState",
    "Snapshot",
    "StoreConfig",
    "StoreError",
    "Subscription",
    "WatchEntry",
    "WatchMisuseError",
    "diff_snapshots",
]
