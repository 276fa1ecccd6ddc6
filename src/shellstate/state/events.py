"""Change events and snapshot typing.

A change event is the unit every store mutation (and every reconciled
external edit) is reported as: the dotted path of the field and its new
value.  On the bus it travels as a plain ``(path, value)`` pair.
"""

from __future__ import annotations

from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

Snapshot: TypeAlias = dict[str, Any]

#: Validates that a decoded document is a string-keyed mapping.
SNAPSHOT_ADAPTER: TypeAdapter[dict[str, Any]] = TypeAdapter(dict[str, Any])

PATH_SEPARATOR = "."


class ChangeEvent(BaseModel):
    """A single field change.

    ``value`` is ``None`` when the field was removed.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: str = Field(..., description="Dot-joined key sequence from the root")
    value: Any = None

    @field_validator("path")
    @classmethod
    def _non_empty_path(cls, value: str) -> str:
        if not value:
            raise ValueError("path must be non-empty")
        return value

    def as_payload(self) -> tuple[str, Any]:
        """The ``(path, value)`` pair published on the bus."""
        return (self.path, self.value)


def join_path(prefix: str, key: str | int) -> str:
    return f"{prefix}{PATH_SEPARATOR}{key}" if prefix else str(key)


def split_path(path: str) -> list[str]:
    return path.split(PATH_SEPARATOR) if path else []
