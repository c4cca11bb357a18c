"""Pure text helpers for result templates and the live display."""

from __future__ import annotations

from dataclasses import dataclass

RESULT_PLACEHOLDER = "{{result}}"
INPUT_PLACEHOLDER = "{{input}}"
_THINK_OPEN = "<think>"
_THINK_CLOSE = "</think>"


@dataclass(slots=True, frozen=True)
class ThinkingState:
    """Outcome of scanning text for ``<think>`` blocks.

    Attributes:
        is_thinking: True when an unclosed ``<think>`` tag was found, i.e.
            the model is still reasoning.
        display_text: Text with every reasoning block removed.
    """

    is_thinking: bool
    display_text: str


def process_thinking_tags(text: str) -> ThinkingState:
    display = text
    start = display.find(_THINK_OPEN)
    while start != -1:
        end = display.find(_THINK_CLOSE, start + len(_THINK_OPEN))
        if end == -1:
            return ThinkingState(is_thinking=True, display_text=display[:start].strip())
        display = display[:start] + display[end + len(_THINK_CLOSE):]
        start = display.find(_THINK_OPEN, start)
    return ThinkingState(is_thinking=False, display_text=display)


def strip_thinking_tags(text: str) -> str:
    return process_thinking_tags(text).display_text


def apply_format_template(result: str, template: str | None) -> str:
    """Render ``template`` with the cleaned result.

    Every ``{{result}}`` is replaced with the trimmed result. A template
    without the placeholder is returned verbatim and the result is dropped.
    An empty template yields the result without reasoning blocks.
    """

    if not template or not template.strip():
        return strip_thinking_tags(result)
    cleaned = strip_thinking_tags(result).strip()
    return template.replace(RESULT_PLACEHOLDER, cleaned)


def format_for_display(text: str) -> str:
    """Render accumulated text for the inline live display."""

    visible = strip_thinking_tags(text)
    if not visible.strip():
        return ""
    return "\n" + visible.strip() + "\n"


def render_instruction(instruction: str, input_text: str) -> str:
    """Substitute ``{{input}}`` in a one-shot instruction."""

    return instruction.replace(INPUT_PLACEHOLDER, input_text, 1)


__all__ = [
    "RESULT_PLACEHOLDER",
    "INPUT_PLACEHOLDER",
    "ThinkingState",
    "process_thinking_tags",
    "strip_thinking_tags",
    "apply_format_template",
    "format_for_display",
    "render_instruction",
]
