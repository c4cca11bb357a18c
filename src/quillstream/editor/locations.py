"""Output location intents."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Location(Enum):
    """Where in the document a finished result is written."""

    START = "start"
    END = "end"
    AFTER_SELECTION = "after_selection"
    EXTERNAL_TARGET = "external_target"
    REPLACE_SELECTION = "replace_selection"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @classmethod
    def parse(cls, value: "Location | str") -> "Location":
        if isinstance(value, Location):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls[normalized.upper()]


_DESCRIPTIONS = {
    Location.START: "Insert at the beginning of the document",
    Location.END: "Append to the end of the document",
    Location.AFTER_SELECTION: "Append to the end of current selection",
    Location.EXTERNAL_TARGET: "Append to a named target",
    Location.REPLACE_SELECTION: "Replace the current selection",
}


@dataclass(slots=True, frozen=True)
class LocationExtra:
    """Extra data for :attr:`Location.EXTERNAL_TARGET`."""

    target: str


__all__ = ["Location", "LocationExtra"]
