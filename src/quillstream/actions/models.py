"""Actions (reusable instruction presets) and the requests built from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from ..editor.locations import Location, LocationExtra
from ..editor.selection import SelectionSnapshot


class InputSource(Enum):
    """Where the text sent to the model comes from."""

    SELECTION = "selection"
    CLIPBOARD = "clipboard"
    ALL = "all"

    @property
    def description(self) -> str:
        return _INPUT_DESCRIPTIONS[self]


_INPUT_DESCRIPTIONS = {
    InputSource.SELECTION: "Input selected text by cursor",
    InputSource.CLIPBOARD: "Input text from clipboard",
    InputSource.ALL: "Select the whole document",
}


def next_input_source(current: InputSource) -> InputSource:
    """Cycle SELECTION -> CLIPBOARD -> ALL -> SELECTION."""

    if current is InputSource.SELECTION:
        return InputSource.CLIPBOARD
    if current is InputSource.CLIPBOARD:
        return InputSource.ALL
    return InputSource.SELECTION


class OutputMode(Enum):
    """Output choice offered by quick prompts."""

    REPLACE = "replace"
    APPEND = "append"

    def toggle(self) -> "OutputMode":
        return OutputMode.APPEND if self is OutputMode.REPLACE else OutputMode.REPLACE

    def to_location(self) -> Location:
        if self is OutputMode.APPEND:
            return Location.AFTER_SELECTION
        return Location.REPLACE_SELECTION


@dataclass(slots=True, frozen=True)
class Request:
    """One unit of work submitted to the stream controller.

    Attributes:
        instruction: System instruction sent to the model.
        input_text: Raw document text the instruction operates on.
        model_id: Identifier resolved by the backend factory.
        location: Where the finished result is written.
        selection: Selection captured when the request was built.
        format_template: Template wrapped around the result; ``{{result}}``
            marks where the result goes.
        deferred: Hold the result in a review surface instead of applying it.
        temperature: Optional sampling temperature.
        max_output_tokens: Optional output length cap.
        extra_prompt: Optional extra user prompt sent before the input.
        location_extra: Target name for :attr:`Location.EXTERNAL_TARGET`.
        streaming: Ask the backend for incremental fragments.
        action_name: Name of the action the request came from, if any.
    """

    instruction: str
    input_text: str
    model_id: str
    location: Location = Location.REPLACE_SELECTION
    selection: SelectionSnapshot = field(default_factory=SelectionSnapshot)
    format_template: str = "{{result}}"
    deferred: bool = False
    temperature: float | None = None
    max_output_tokens: int | None = None
    extra_prompt: str | None = None
    location_extra: LocationExtra | None = None
    streaming: bool = True
    action_name: str | None = None

    @property
    def has_external_target(self) -> bool:
        return self.location is Location.EXTERNAL_TARGET and bool(
            self.location_extra and self.location_extra.target
        )


@dataclass(slots=True)
class Action:
    """A named instruction preset configured by the user."""

    name: str
    prompt: str
    model_id: str
    input_source: InputSource = InputSource.SELECTION
    location: Location = Location.REPLACE_SELECTION
    format_template: str = "{{result}}"
    temperature: float | None = None
    max_output_tokens: int | None = None
    location_extra: LocationExtra | None = None
    show_review: bool = True

    def to_request(
        self,
        input_text: str,
        selection: SelectionSnapshot,
        *,
        extra_prompt: str | None = None,
        output_mode: OutputMode | None = None,
        streaming: bool = True,
    ) -> Request:
        """Build a request; passing ``output_mode`` marks a quick prompt.

        Quick prompts are always applied immediately at the location implied
        by their output mode.
        """

        location = self.location
        deferred = self.show_review
        if output_mode is not None:
            location = output_mode.to_location()
            deferred = False
        return Request(
            instruction=self.prompt,
            input_text=input_text,
            model_id=self.model_id,
            location=location,
            selection=selection,
            format_template=self.format_template,
            deferred=deferred,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            extra_prompt=extra_prompt,
            location_extra=self.location_extra,
            streaming=streaming,
            action_name=self.name,
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Action":
        if isinstance(payload, Action):
            return payload
        extra = payload.get("location_extra") or payload.get("target")
        if isinstance(extra, Mapping):
            extra = extra.get("target")
        return cls(
            name=str(payload["name"]),
            prompt=str(payload.get("prompt", "")),
            model_id=str(payload.get("model_id", "")),
            input_source=InputSource(payload.get("input_source", InputSource.SELECTION.value)),
            location=Location.parse(payload.get("location", Location.REPLACE_SELECTION.value)),
            format_template=str(payload.get("format_template", "{{result}}")),
            temperature=payload.get("temperature"),
            max_output_tokens=payload.get("max_output_tokens"),
            location_extra=LocationExtra(str(extra)) if extra else None,
            show_review=bool(payload.get("show_review", True)),
        )


__all__ = [
    "Action",
    "InputSource",
    "OutputMode",
    "Request",
    "next_input_source",
]
