"""Request-time selection snapshots.

Results are written at the selection captured when the request was built,
not at the live cursor, which may move while the response streams in.
"""

from __future__ import annotations

from dataclasses import dataclass

from .document_model import DocumentState


@dataclass(slots=True, frozen=True)
class SelectionSnapshot:
    """Read-only copy of a document selection."""

    start: int = 0
    end: int = 0
    document_id: str | None = None
    version_id: int = 0

    @property
    def cursor_offset(self) -> int:
        """Offset used to anchor the live display (the selection end)."""

        return self.end

    @property
    def is_caret(self) -> bool:
        return self.start == self.end

    def clamp(self, length: int) -> tuple[int, int]:
        """Return ``(start, end)`` limited to a document of ``length`` characters."""

        start = max(0, min(self.start, length))
        end = max(0, min(self.end, length))
        if end < start:
            start, end = end, start
        return start, end


def capture_selection(document: DocumentState) -> SelectionSnapshot:
    start, end = document.selection.as_tuple()
    length = len(document.text)
    start = max(0, min(start, length))
    end = max(0, min(end, length))
    if end < start:
        start, end = end, start
    return SelectionSnapshot(
        start=start,
        end=end,
        document_id=document.document_id,
        version_id=document.version_id,
    )


__all__ = ["SelectionSnapshot", "capture_selection"]
