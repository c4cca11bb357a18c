"""Document buffer, selection snapshots and the mutation contract."""

from .document_model import DocumentState, SelectionRange
from .formatting import apply_format_template, format_for_display, strip_thinking_tags
from .locations import Location, LocationExtra
from .mutations import DocumentEditor, FileTargetStore
from .selection import SelectionSnapshot, capture_selection

__all__ = [
    "DocumentEditor",
    "DocumentState",
    "FileTargetStore",
    "Location",
    "LocationExtra",
    "SelectionRange",
    "SelectionSnapshot",
    "apply_format_template",
    "capture_selection",
    "format_for_display",
    "strip_thinking_tags",
]
