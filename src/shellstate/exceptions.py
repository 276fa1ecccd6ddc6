"""Custom exception hierarchy for shellstate."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all shellstate errors."""


class RestoreError(StoreError):
    """Backing data missing, unreadable, or malformed at load time."""

    def __init__(self, message: str, *, target: str = "") -> None:
        self.target = target
        super().__init__(message)


class SaveError(StoreError):
    """Write failure while persisting a snapshot."""

    def __init__(self, message: str, *, target: str = "") -> None:
        self.target = target
        super().__init__(message)


class ReconciliationError(StoreError):
    """External file unreadable or unparseable at reconciliation time.

    The in-memory store is left exactly as it was when this is raised.
    """

    def __init__(self, message: str, *, target: str = "") -> None:
        self.target = target
        super().__init__(message)


class WatchMisuseError(StoreError):
    """Unwatch requested for a path that is not being watched.

    Only raised when the caller asks for strict behaviour; by default
    the watch service logs a warning instead.
    """


class ReservedFieldError(StoreError):
    """Attempt to overwrite the raw-mapping control field of a store."""
