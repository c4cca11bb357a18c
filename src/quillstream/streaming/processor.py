"""Glue between the stream controller, the result router and the document."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol

from ..actions.inputs import ClipboardReader, resolve_input
from ..actions.models import Action, InputSource, OutputMode, Request
from ..ai.backends import ModelBackend
from ..editor.document_model import DocumentState
from ..editor.formatting import render_instruction
from ..editor.mutations import DocumentEditor, ExternalTargetStore
from ..editor.selection import capture_selection
from ..errors import InputSourceError, ResultApplicationError
from ..events import EventBus, NoticePosted
from ..services.settings import Settings
from .controller import StreamController
from .models import Cancelled, Completed, LiveDisplay, StreamSinks, TerminalOutcome
from .review import ReviewSurface
from .router import ResultRouter

LOGGER = logging.getLogger(__name__)


class SupportsApplyAt(Protocol):
    async def apply_at(self, location, text, selection, extra=None) -> None:
        ...


class BackendSource(Protocol):
    def resolve(self, model_id: str) -> ModelBackend:
        ...


class PromptProcessor:
    """Runs requests end to end: stream, then write or defer the result.

    Display and result state held by the controller is released on every
    path that does not hand the result to a review surface. Starting a new
    request drops a review still pending from an earlier one.
    """

    def __init__(
        self,
        controller: StreamController,
        router: ResultRouter,
        factory: BackendSource,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
        clipboard: ClipboardReader | None = None,
        targets: ExternalTargetStore | None = None,
    ) -> None:
        self._controller = controller
        self._router = router
        self._factory = factory
        self._settings = settings or Settings()
        self._event_bus = event_bus
        self._clipboard = clipboard
        self._targets = targets
        self._review_surface: ReviewSurface | None = None

    @property
    def controller(self) -> StreamController:
        return self._controller

    async def process(
        self,
        request: Request,
        editor: SupportsApplyAt,
        *,
        display: LiveDisplay | None = None,
        review_surface: ReviewSurface | None = None,
        sinks: StreamSinks | None = None,
    ) -> TerminalOutcome:
        """Stream ``request`` and route its outcome.

        Raises:
            ConcurrencyError: A request is already streaming.
            ResultApplicationError: The result could not be written.
        """

        sinks = replace(sinks, display=display or sinks.display) if sinks else StreamSinks(display=display)
        sinks.cursor_offset = request.selection.cursor_offset
        if not self._controller.is_streaming():
            self._preempt_review(review_surface)
        outcome = await self._controller.start(request, sinks)

        if isinstance(outcome, Cancelled):
            LOGGER.debug("Request cancelled; releasing display")
            self._controller.release()
            return outcome
        if not isinstance(outcome, Completed):
            self._controller.release()
            return outcome
        if not outcome.text.strip():
            LOGGER.info("Model returned an empty result")
            self._controller.release()
            return outcome

        if request.deferred and review_surface is not None:
            self._controller.apply_final_format_to_display(self._router.template_for(request))

        try:
            await self._router.route(outcome, request, editor.apply_at, review_surface)
        except ResultApplicationError as exc:
            LOGGER.error("Failed to apply result: %s", exc)
            self._controller.release()
            self._notify(str(exc))
            raise
        if request.deferred and review_surface is not None:
            self._review_surface = review_surface
        return outcome

    async def run_action(
        self,
        action: Action,
        document: DocumentState,
        *,
        editor: SupportsApplyAt | None = None,
        extra_prompt: str | None = None,
        output_mode: OutputMode | None = None,
        streaming: bool = True,
        display: LiveDisplay | None = None,
        review_surface: ReviewSurface | None = None,
    ) -> TerminalOutcome:
        """Build a request from ``action`` and the document, then process it.

        Raises:
            InputSourceError: The action's input could not be read.
        """

        if not action.model_id and self._settings.default_model_id:
            action = replace(action, model_id=self._settings.default_model_id)
        if action.input_source is InputSource.ALL:
            document.select(0, len(document.text))
        try:
            input_text = resolve_input(action.input_source, document, clipboard=self._clipboard)
        except InputSourceError as exc:
            self._notify(str(exc))
            raise
        selection = capture_selection(document)
        request = action.to_request(
            input_text,
            selection,
            extra_prompt=extra_prompt,
            output_mode=output_mode,
            streaming=streaming,
        )
        LOGGER.debug(
            "Running action %r (input=%s, location=%s, deferred=%s)",
            action.name,
            action.input_source.value,
            request.location.value,
            request.deferred,
        )
        editor = editor or DocumentEditor(document, targets=self._targets)
        return await self.process(request, editor, display=display, review_surface=review_surface)

    async def complete(self, action: Action, input_text: str) -> str:
        """One-shot completion of ``action`` without streaming or routing."""

        model_id = action.model_id or self._settings.default_model_id or ""
        backend = self._factory.resolve(model_id)
        instruction = render_instruction(action.prompt, input_text)
        result = await backend.generate(
            instruction,
            input_text,
            temperature=action.temperature,
            max_output_tokens=action.max_output_tokens,
            streaming=False,
        )
        return result or ""

    def _preempt_review(self, review_surface: ReviewSurface | None) -> None:
        """Drop any review still pending from an earlier request."""

        for surface in (self._review_surface, review_surface):
            drop = getattr(surface, "drop", None)
            if drop is not None:
                drop()
        self._review_surface = None

    def _notify(self, message: str) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(NoticePosted(message, self._settings.error_notice_ms))


__all__ = ["PromptProcessor"]
