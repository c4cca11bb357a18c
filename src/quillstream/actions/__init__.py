"""Instruction presets, requests and input sources."""

from .inputs import ClipboardReader, resolve_input
from .models import Action, InputSource, OutputMode, Request, next_input_source

__all__ = [
    "Action",
    "ClipboardReader",
    "InputSource",
    "OutputMode",
    "Request",
    "next_input_source",
    "resolve_input",
]
