"""In-memory document buffer used as the editing surface."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class SelectionRange:
    """Current selection as absolute character offsets."""

    start: int = 0
    end: int = 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


@dataclass(slots=True)
class DocumentState:
    """Text of one document together with its live selection.

    ``version_id`` increases on every text change so callers can tell
    whether the buffer moved under a request-time snapshot.
    """

    text: str = ""
    selection: SelectionRange = field(default_factory=SelectionRange)
    path: Path | None = None
    dirty: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    @classmethod
    def from_path(cls, path: Path) -> "DocumentState":
        return cls(text=path.read_text(encoding="utf-8"), path=path)

    def update_text(self, new_text: str) -> None:
        self.text = new_text
        self.dirty = True
        self.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def select(self, start: int, end: int) -> None:
        """Move the live selection, clamped to the document bounds."""

        length = len(self.text)
        start = max(0, min(int(start), length))
        end = max(0, min(int(end), length))
        if end < start:
            start, end = end, start
        self.selection = SelectionRange(start, end)

    def selected_text(self) -> str:
        start, end = self.selection.as_tuple()
        return self.text[start:end]

    def save(self) -> Path | None:
        if self.path is None:
            return None
        self.path.write_text(self.text, encoding="utf-8")
        self.dirty = False
        return self.path


__all__ = ["DocumentState", "SelectionRange"]
