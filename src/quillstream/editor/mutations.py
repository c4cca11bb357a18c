"""Document-mutation contract: write a finished result at a location."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from .document_model import DocumentState
from .locations import Location, LocationExtra
from .selection import SelectionSnapshot

LOGGER = logging.getLogger(__name__)

ApplyAt = Callable[[Location, str, SelectionSnapshot, LocationExtra | None], Awaitable[None]]
"""Signature of the mutation callable handed to the result router."""


class ExternalTargetStore(Protocol):
    """Named destinations outside the active document."""

    def append(self, name: str, text: str) -> None:
        ...


class FileTargetStore:
    """Appends results to text files below ``root``, creating them on demand."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, name: str) -> Path:
        candidate = (self._root / name).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise ValueError(f"Target {name!r} is outside {self._root}")
        return candidate

    def append(self, name: str, text: str) -> None:
        path = self.resolve(name)
        if path.exists() and not path.is_file():
            raise ValueError(f"Target {name!r} is not a file")
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(text)
        LOGGER.debug("Appended %d chars to %s", len(text), path)


class DocumentEditor:
    """Applies results to a :class:`DocumentState`.

    Offsets come from the request-time :class:`SelectionSnapshot` and are
    clamped to the current text, so a document that shrank while the
    response streamed never raises on out-of-range offsets.
    """

    def __init__(self, document: DocumentState, *, targets: ExternalTargetStore | None = None) -> None:
        self._document = document
        self._targets = targets

    @property
    def document(self) -> DocumentState:
        return self._document

    async def apply_at(
        self,
        location: Location,
        text: str,
        selection: SelectionSnapshot,
        extra: LocationExtra | None = None,
    ) -> None:
        document = self._document
        current = document.text
        start, end = selection.clamp(len(current))

        if location is Location.START:
            self._splice(0, 0, text)
        elif location is Location.END:
            self._splice(len(current), len(current), text)
        elif location is Location.AFTER_SELECTION:
            selected = current[start:end]
            self._splice(start, end, selected + "\n\n" + text)
        elif location is Location.REPLACE_SELECTION:
            self._splice(start, end, text)
        elif location is Location.EXTERNAL_TARGET:
            target = extra.target if extra is not None else ""
            if not target or self._targets is None:
                LOGGER.warning("No external target configured; result for %s dropped", location.value)
                return
            self._targets.append(target, text)
        else:  # pragma: no cover - exhaustive enum
            raise ValueError(f"Unsupported location: {location!r}")

    def _splice(self, start: int, end: int, replacement: str) -> None:
        document = self._document
        document.update_text(document.text[:start] + replacement + document.text[end:])
        caret = start + len(replacement)
        document.select(caret, caret)


__all__ = ["ApplyAt", "DocumentEditor", "ExternalTargetStore", "FileTargetStore"]
