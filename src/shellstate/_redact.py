"""Helpers for safe debug logging.

Settings snapshots can be large and occasionally hold credentials (an
interpreter password, an API token for a package mirror).  This module
turns a snapshot into something reasonable to emit in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "secret",
        "token",
        "apikey",
        "api_key",
        "accesstoken",
        "authorization",
        "cookie",
    }
)


def summarize_for_log(
    value: Any,
    *,
    max_string: int = 256,
    max_items: int = 50,
    _depth: int = 0,
) -> Any:
    """Return a redacted, size-capped copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        summarized: dict[str, Any] = {}
        for index, (k, v) in enumerate(value.items()):
            if index >= max_items:
                summarized["…"] = f"<{len(value) - max_items} more>"
                break
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                summarized[key] = "<redacted>"
            else:
                summarized[key] = summarize_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
        return summarized

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        items = [
            summarize_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for v in list(value)[:max_items]
        ]
        if len(value) > max_items:
            items.append(f"<{len(value) - max_items} more>")
        return items

    return repr(value)
