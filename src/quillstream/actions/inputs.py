"""Reading the text a request operates on."""

from __future__ import annotations

import logging
from typing import Callable

from ..editor.document_model import DocumentState
from ..errors import InputSourceError
from .models import InputSource

LOGGER = logging.getLogger(__name__)

ClipboardReader = Callable[[], str]


def resolve_input(
    source: InputSource,
    document: DocumentState,
    *,
    clipboard: ClipboardReader | None = None,
) -> str:
    """Return the input text for ``source``.

    Raises:
        InputSourceError: The clipboard is unavailable, unreadable, or holds
            only whitespace.
    """

    if source is InputSource.ALL:
        return document.text
    if source is InputSource.SELECTION:
        return document.selected_text()
    if source is InputSource.CLIPBOARD:
        if clipboard is None:
            raise InputSourceError("Clipboard access is not available.")
        try:
            content = clipboard()
        except Exception as exc:
            LOGGER.debug("Clipboard read failed", exc_info=True)
            raise InputSourceError(
                "Failed to read clipboard. Please ensure clipboard permissions are granted."
            ) from exc
        if not content or not content.strip():
            raise InputSourceError("Clipboard is empty or contains only whitespace.")
        return content
    raise InputSourceError(f"Input source not implemented: {source!r}")


__all__ = ["ClipboardReader", "resolve_input"]
