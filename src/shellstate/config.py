"""Store configuration for shellstate."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

DEFAULT_TOPIC = "model-update"
DEFAULT_FILE_CHANGE_TOPIC = "file-change-event"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Store and persistence configuration.

    Parameters
    ----------
    topic : str
        Change Bus topic on which store mutations are published.
    file_change_topic : str
        Topic on which the file watch service publishes changed paths.
    debounce_delay : float
        Seconds between the first unsaved mutation and the save that
        captures it.  Mutations inside the window ride the same save.
    save_retry_interval : float
        Poll interval (seconds) used by a save that is waiting for an
        in-flight save of the same store to finish.
    save_marker_grace : float
        Seconds a completed save keeps its echo-suppression marker, so
        the watcher notification caused by our own write is discarded.
    pretty : bool
        Pretty-print persisted documents (two-space indent).
    encoding : str
        Text encoding of persisted files.
    """

    topic: str = DEFAULT_TOPIC
    file_change_topic: str = DEFAULT_FILE_CHANGE_TOPIC
    debounce_delay: float = 0.1
    save_retry_interval: float = 0.1
    save_marker_grace: float = 0.1
    pretty: bool = False
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        for name in ("debounce_delay", "save_retry_interval", "save_marker_grace"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.save_retry_interval == 0:
            raise ValueError("save_retry_interval must be > 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create configuration from ``SHELLSTATE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "SHELLSTATE_TOPIC": "topic",
            "SHELLSTATE_FILE_CHANGE_TOPIC": "file_change_topic",
            "SHELLSTATE_ENCODING": "encoding",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "SHELLSTATE_DEBOUNCE_DELAY": "debounce_delay",
            "SHELLSTATE_SAVE_RETRY_INTERVAL": "save_retry_interval",
            "SHELLSTATE_SAVE_MARKER_GRACE": "save_marker_grace",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        if "pretty" not in overrides:
            config_kwargs["pretty"] = _env_bool(env.get("SHELLSTATE_PRETTY"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
