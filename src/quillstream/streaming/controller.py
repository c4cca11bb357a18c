"""Runs one streaming request at a time and owns its session state."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Protocol

from ..actions.models import Request
from ..ai.backends import ModelBackend
from ..editor.formatting import apply_format_template, format_for_display
from ..errors import BackendError, ConcurrencyError, classify_error
from ..events import (
    Event,
    EventBus,
    NoticePosted,
    StreamCanceled,
    StreamChunk,
    StreamCompleted,
    StreamFailed,
    StreamStarted,
)
from ..services.settings import Settings
from .models import LiveDisplay, StreamSession, StreamSinks, TerminalOutcome
from .side_channels import (
    bind_cancel_key,
    lookup_provider_name,
    release_listener,
    restore_focus,
    schedule_keyboard_dismissal,
)

LOGGER = logging.getLogger(__name__)


class BackendResolver(Protocol):
    def resolve(self, model_id: str) -> ModelBackend:
        ...


class StreamController:
    """Single-flight streaming of model output into caller-supplied sinks.

    ``start()`` rejects a second request while one is active instead of
    queueing it. ``cancel()`` flips the session state synchronously; the
    backend task is cancelled in the background and anything it still
    delivers is discarded.

    The host is optional and checked for ``focus_editor``,
    ``list_commands``/``execute_command`` and ``add_key_listener``.
    """

    def __init__(
        self,
        factory: BackendResolver,
        *,
        event_bus: EventBus | None = None,
        host: object | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._factory = factory
        self._event_bus = event_bus
        self._host = host
        self._settings = settings or Settings()
        self._session: StreamSession | None = None
        self._display: LiveDisplay | None = None
        self._display_visible = False

    # ------------------------------------------------------------------
    # Public accessors
    # ------------------------------------------------------------------
    @property
    def session(self) -> StreamSession | None:
        return self._session

    def is_streaming(self) -> bool:
        return self._session is not None and self._session.active

    def get_current_result(self) -> str:
        return self._session.text if self._session is not None else ""

    def clear_results(self) -> None:
        if self._session is not None:
            self._session.text = ""

    def hide_display(self) -> None:
        display = self._display
        if display is None or not self._display_visible:
            return
        self._display_visible = False
        try:
            display.hide()
        except Exception:
            LOGGER.debug("Live display hide failed", exc_info=True)

    def apply_final_format_to_display(self, template: str | None) -> None:
        """Re-render the live display with the formatted final result."""

        display = self._display
        if display is None or self._session is None:
            return
        text = apply_format_template(self._session.text, template)
        try:
            display.update(format_for_display(text))
        except Exception:
            LOGGER.debug("Live display update failed", exc_info=True)

    def release(self) -> None:
        """Hide the live display and drop the accumulated result."""

        self.hide_display()
        self.clear_results()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self, request: Request, sinks: StreamSinks | None = None) -> TerminalOutcome:
        """Run ``request`` and return its terminal outcome.

        Raises:
            ConcurrencyError: Another session is still active.
        """

        if self.is_streaming():
            raise ConcurrencyError()

        sinks = sinks or StreamSinks()
        self.hide_display()
        session = StreamSession(request=request, sinks=sinks)
        self._session = session
        self._display = sinks.display
        session.mark_active()

        lookup = getattr(self._factory, "provider_name", None)
        session.provider_name = lookup_provider_name(lookup, request.model_id).value
        LOGGER.info(
            "Stream %s started (model=%s, provider=%s, streaming=%s)",
            session.session_id,
            request.model_id,
            session.provider_name,
            request.streaming,
        )
        self._post_notice(f"Querying {session.provider_name} API...", self._settings.info_notice_ms)
        self._publish(StreamStarted(session.session_id, request.model_id, session.provider_name))
        self._show_display(sinks.cursor_offset)

        binding = bind_cancel_key(self._host, self.cancel)
        if binding.ok:
            session.remove_cancel_listener = binding.value
        schedule_keyboard_dismissal(self._host, self._settings.keyboard_dismiss_delay)

        try:
            return await self._run(session)
        except asyncio.CancelledError:
            self._cancel_session(session)
            raise
        finally:
            self._cleanup(session)

    def cancel(self) -> None:
        """Cancel the active session; a no-op when idle."""

        session = self._session
        if session is None or not session.active:
            return
        self._cancel_session(session)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _run(self, session: StreamSession) -> TerminalOutcome:
        request = session.request
        try:
            backend = self._factory.resolve(request.model_id)
        except Exception as exc:
            return self._fail(session, exc)

        on_token = functools.partial(self._handle_token, session) if request.streaming else None
        task = asyncio.ensure_future(
            backend.generate(
                request.instruction,
                request.input_text,
                on_token=on_token,
                temperature=request.temperature,
                max_output_tokens=request.max_output_tokens,
                extra_user_prompt=request.extra_prompt,
                streaming=request.streaming,
            )
        )
        cancel_wait = asyncio.ensure_future(session.cancel_event.wait())
        try:
            await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_discard_late_result)
            raise
        finally:
            cancel_wait.cancel()

        if session.cancelled or not task.done():
            if not task.done():
                task.cancel()
            task.add_done_callback(_discard_late_result)
            return session.outcome or session.mark_cancelled()

        if task.cancelled():
            # Only the backend itself can have cancelled the task at this point.
            return self._fail(session, BackendError("Model request was cancelled by the backend"))
        try:
            result = task.result()
        except Exception as exc:
            return self._fail(session, exc)

        if isinstance(result, str) and result and (not request.streaming or not session.text):
            self._handle_token(session, result)

        text = session.text
        try:
            session.sinks.on_complete(text)
        except Exception as exc:
            LOGGER.debug("on_complete raised for stream %s", session.session_id, exc_info=True)
            return self._fail(session, exc)
        if session.cancelled:
            return session.outcome or session.mark_cancelled()

        outcome = session.mark_completed(text)
        LOGGER.info("Stream %s completed (%d chars)", session.session_id, len(text))
        self._publish(StreamCompleted(session.session_id, len(text)))
        return outcome

    def _handle_token(self, session: StreamSession, fragment: str) -> None:
        if session.cancelled or not session.active or session is not self._session:
            return
        if not fragment:
            return
        session.text += fragment
        try:
            session.sinks.on_token(fragment)
        except Exception:
            LOGGER.debug("on_token raised; continuing stream %s", session.session_id, exc_info=True)
        self._publish(StreamChunk(session.session_id, fragment))
        display = session.sinks.display
        if display is not None:
            try:
                display.update(format_for_display(session.text))
            except Exception:
                LOGGER.debug("Live display update failed", exc_info=True)

    def _fail(self, session: StreamSession, error: BaseException) -> TerminalOutcome:
        report = classify_error(error, session.provider_name)
        outcome = session.mark_failed(error, report)
        LOGGER.warning("Stream %s failed (%s): %s", session.session_id, report.category.value, report.detail)
        self._post_notice(report.message, self._settings.error_notice_ms)
        self._publish(StreamFailed(session.session_id, report.category.value, report.message))
        if session is self._session:
            self.hide_display()
        try:
            session.sinks.on_error(error)
        except Exception:
            LOGGER.debug("on_error raised for stream %s", session.session_id, exc_info=True)
        return outcome

    def _cancel_session(self, session: StreamSession) -> None:
        if session.cancelled or session.phase.is_terminal:
            return
        session.cancelled = True
        session.text = ""
        session.mark_cancelled()
        LOGGER.info("Stream %s cancelled", session.session_id)
        self._publish(StreamCanceled(session.session_id))
        if not session.cancel_notified:
            session.cancel_notified = True
            try:
                session.sinks.on_cancel()
            except Exception:
                LOGGER.debug("on_cancel raised for stream %s", session.session_id, exc_info=True)
        if session is self._session:
            self.hide_display()
        self._cleanup(session)
        session.cancel_event.set()

    def _cleanup(self, session: StreamSession) -> None:
        if session.cleaned:
            return
        session.cleaned = True
        release_listener(session.remove_cancel_listener)
        session.remove_cancel_listener = None
        session.active = False
        focus = restore_focus(self._host)
        if focus.error is not None:
            LOGGER.debug("Ignoring focus restoration failure for stream %s", session.session_id)

    def _show_display(self, offset: int) -> None:
        display = self._display
        if display is None:
            return
        try:
            display.show(offset)
        except Exception:
            LOGGER.debug("Live display show failed", exc_info=True)
            return
        self._display_visible = True

    def _post_notice(self, message: str, duration_ms: int) -> None:
        self._publish(NoticePosted(message=message, duration_ms=duration_ms))

    def _publish(self, event: Event) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        LOGGER.debug("Discarded failure from abandoned backend call: %s", error)


__all__ = ["BackendResolver", "StreamController"]
