"""Tests for StreamController."""

from __future__ import annotations

import asyncio

import pytest

from quillstream.errors import ConcurrencyError, ErrorCategory
from quillstream.events import EventBus, StreamCanceled, StreamChunk, StreamCompleted, StreamFailed, StreamStarted
from quillstream.editor.formatting import format_for_display
from quillstream.streaming.controller import StreamController
from quillstream.streaming.models import Cancelled, Completed, Failed, SessionPhase, StreamSinks
from tests.helpers import RecordingDisplay, RecordingHost, ScriptedBackend, StaticFactory


class SinkRecorder:
    def __init__(self) -> None:
        self.tokens: list[str] = []
        self.completed: list[str] = []
        self.errors: list[BaseException] = []
        self.cancels = 0

    def sinks(self, **overrides) -> StreamSinks:
        payload = {
            "on_token": self.tokens.append,
            "on_complete": self.completed.append,
            "on_error": self.errors.append,
            "on_cancel": self._cancel,
        }
        payload.update(overrides)
        return StreamSinks(**payload)

    def _cancel(self) -> None:
        self.cancels += 1


@pytest.fixture
def recorder() -> SinkRecorder:
    return SinkRecorder()


@pytest.fixture
def host() -> RecordingHost:
    return RecordingHost(commands=["editor:save", "app:toggle-keyboard"])


def _controller(backend, event_bus, settings, host=None, provider="TestProvider") -> StreamController:
    return StreamController(
        StaticFactory(backend, provider=provider),
        event_bus=event_bus,
        host=host,
        settings=settings,
    )


# =============================================================================
# Completion
# =============================================================================


class TestCompletion:
    @pytest.mark.asyncio
    async def test_accumulates_tokens_in_order(self, event_bus, settings, make_request, recorder) -> None:
        backend = ScriptedBackend(["Hel", "lo", " wor", "ld"])
        controller = _controller(backend, event_bus, settings)

        outcome = await controller.start(make_request(), recorder.sinks())

        assert outcome == Completed("Hello world")
        assert controller.get_current_result() == "Hello world"
        assert recorder.tokens == ["Hel", "lo", " wor", "ld"]
        assert recorder.completed == ["Hello world"]
        assert recorder.errors == []
        assert controller.is_streaming() is False
        assert controller.session.phase is SessionPhase.COMPLETED

    @pytest.mark.asyncio
    async def test_on_token_failure_does_not_abort_stream(self, event_bus, settings, make_request, recorder) -> None:
        backend = ScriptedBackend(["a", "b", "c"])
        controller = _controller(backend, event_bus, settings)

        def _explode(_token: str) -> None:
            raise RuntimeError("sink broke")

        outcome = await controller.start(make_request(), recorder.sinks(on_token=_explode))

        assert outcome == Completed("abc")
        assert recorder.completed == ["abc"]

    @pytest.mark.asyncio
    async def test_on_complete_failure_becomes_failed_outcome(self, event_bus, settings, make_request, recorder) -> None:
        backend = ScriptedBackend(["done"])
        controller = _controller(backend, event_bus, settings)
        error = RuntimeError("completion handler broke")

        def _explode(_text: str) -> None:
            raise error

        outcome = await controller.start(make_request(), recorder.sinks(on_complete=_explode))

        assert isinstance(outcome, Failed)
        assert outcome.error is error
        assert recorder.errors == [error]
        assert controller.is_streaming() is False

    @pytest.mark.asyncio
    async def test_non_streaming_request_delivers_single_fragment(
        self, event_bus, settings, make_request, recorder
    ) -> None:
        backend = ScriptedBackend(result="whole answer")
        controller = _controller(backend, event_bus, settings)

        outcome = await controller.start(make_request(streaming=False), recorder.sinks())

        assert outcome == Completed("whole answer")
        assert backend.calls[0]["streaming"] is False
        assert backend.calls[0]["on_token"] is None
        assert recorder.tokens == ["whole answer"]

    @pytest.mark.asyncio
    async def test_request_parameters_reach_backend(self, event_bus, settings, make_request) -> None:
        backend = ScriptedBackend(["x"])
        controller = _controller(backend, event_bus, settings)

        await controller.start(
            make_request(temperature=0.2, max_output_tokens=50, extra_prompt="be brief"),
        )

        call = backend.calls[0]
        assert call["system_instruction"] == "Summarize"
        assert call["input"] == "some text"
        assert call["temperature"] == 0.2
        assert call["max_output_tokens"] == 50
        assert call["extra_user_prompt"] == "be brief"
        assert call["streaming"] is True

    @pytest.mark.asyncio
    async def test_publishes_lifecycle_events(self, event_bus, settings, make_request) -> None:
        received: list[object] = []
        for event_type in (StreamStarted, StreamChunk, StreamCompleted):
            event_bus.subscribe(event_type, received.append)
        controller = _controller(ScriptedBackend(["a", "b"]), event_bus, settings)

        await controller.start(make_request())

        assert [type(event) for event in received] == [StreamStarted, StreamChunk, StreamChunk, StreamCompleted]
        assert received[-1].text_length == 2

    @pytest.mark.asyncio
    async def test_new_start_allowed_after_completion(self, event_bus, settings, make_request) -> None:
        controller = _controller(ScriptedBackend(["one"]), event_bus, settings)

        first = await controller.start(make_request())
        second = await controller.start(make_request())

        assert first == Completed("one")
        assert second == Completed("one")

    @pytest.mark.asyncio
    async def test_clear_results_keeps_session_idle(self, event_bus, settings, make_request) -> None:
        controller = _controller(ScriptedBackend(["kept"]), event_bus, settings)
        await controller.start(make_request())

        controller.clear_results()

        assert controller.get_current_result() == ""
        assert controller.is_streaming() is False


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_start_rejected_without_side_effects(
        self, event_bus, settings, make_request, recorder
    ) -> None:
        backend = ScriptedBackend(["first", "second"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        other = SinkRecorder()
        with pytest.raises(ConcurrencyError, match="Streaming is already active"):
            await controller.start(make_request(instruction="other"), other.sinks())

        assert controller.get_current_result() == "first"
        assert controller.is_streaming() is True
        assert other.tokens == other.completed == []
        assert other.errors == [] and other.cancels == 0
        assert len(backend.calls) == 1

        backend.release.set()
        assert await task == Completed("firstsecond")


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, event_bus, settings, make_request, recorder) -> None:
        cancelled_events: list[StreamCanceled] = []
        event_bus.subscribe(StreamCanceled, cancelled_events.append)
        backend = ScriptedBackend(["partial", " more"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        controller.cancel()

        assert controller.is_streaming() is False
        assert controller.get_current_result() == ""
        assert recorder.cancels == 1
        outcome = await task
        assert isinstance(outcome, Cancelled)
        assert recorder.completed == []
        assert len(cancelled_events) == 1

    @pytest.mark.asyncio
    async def test_orphaned_tokens_are_discarded(self, event_bus, settings, make_request, recorder) -> None:
        display = RecordingDisplay()
        backend = ScriptedBackend(["partial", " more"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks(display=display)))
        await backend.paused.wait()
        controller.cancel()
        await task
        updates_before = list(display.updates)

        assert backend.on_token is not None
        backend.on_token("late token")

        assert recorder.tokens == ["partial"]
        assert controller.get_current_result() == ""
        assert display.updates == updates_before

    @pytest.mark.asyncio
    async def test_backend_task_is_cancelled(self, event_bus, settings, make_request) -> None:
        backend = ScriptedBackend(["a", "b"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request()))
        await backend.paused.wait()

        controller.cancel()
        await task
        await asyncio.sleep(0)

        assert backend.was_cancelled is True

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, event_bus, settings, make_request, recorder) -> None:
        backend = ScriptedBackend(["a", "b"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        controller.cancel()
        controller.cancel()
        await task
        controller.cancel()

        assert recorder.cancels == 1

    def test_cancel_when_idle_is_noop(self, event_bus, settings) -> None:
        controller = _controller(ScriptedBackend(), event_bus, settings)

        controller.cancel()

        assert controller.is_streaming() is False
        assert controller.get_current_result() == ""

    @pytest.mark.asyncio
    async def test_backend_failure_after_cancel_is_ignored(
        self, event_bus, settings, make_request, recorder, notices
    ) -> None:
        backend = ScriptedBackend(["a"], pause_after=1, error=RuntimeError("network down"))
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        controller.cancel()
        outcome = await task

        assert isinstance(outcome, Cancelled)
        assert recorder.errors == []
        assert all("Network" not in notice.message for notice in notices)

    @pytest.mark.asyncio
    async def test_escape_key_cancels(self, event_bus, settings, make_request, recorder, host) -> None:
        backend = ScriptedBackend(["a", "b"], pause_after=1)
        controller = _controller(backend, event_bus, settings, host=host)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        host.press("Escape")

        assert isinstance(await task, Cancelled)
        assert recorder.cancels == 1
        assert host.listeners["Escape"] == []

    @pytest.mark.asyncio
    async def test_outer_task_cancellation_cancels_session(self, event_bus, settings, make_request, recorder) -> None:
        backend = ScriptedBackend(["a", "b"], pause_after=1)
        controller = _controller(backend, event_bus, settings)
        task = asyncio.create_task(controller.start(make_request(), recorder.sinks()))
        await backend.paused.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.is_streaming() is False
        assert recorder.cancels == 1


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_network_error_is_classified_and_surfaced(
        self, event_bus, settings, make_request, recorder, notices
    ) -> None:
        failures: list[StreamFailed] = []
        event_bus.subscribe(StreamFailed, failures.append)
        error = RuntimeError("network unreachable")
        controller = _controller(ScriptedBackend(["a"], error=error), event_bus, settings)

        outcome = await controller.start(make_request(), recorder.sinks())

        assert isinstance(outcome, Failed)
        assert outcome.report.category is ErrorCategory.CONNECTIVITY
        assert recorder.errors == [error]
        assert controller.is_streaming() is False
        error_notice = notices[-1]
        assert "Network error connecting to TestProvider" in error_notice.message
        assert error_notice.duration_ms == 8000
        assert failures[0].category == "connectivity"

    @pytest.mark.asyncio
    async def test_on_error_failure_does_not_mask_outcome(self, event_bus, settings, make_request, recorder) -> None:
        controller = _controller(ScriptedBackend(error=RuntimeError("quota exceeded")), event_bus, settings)

        def _explode(_error: BaseException) -> None:
            raise ValueError("handler broke")

        outcome = await controller.start(make_request(), recorder.sinks(on_error=_explode))

        assert isinstance(outcome, Failed)
        assert outcome.report.category is ErrorCategory.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_resolution_failure_is_failed_outcome(self, event_bus, settings, make_request, recorder) -> None:
        class _Unresolvable:
            def resolve(self, model_id: str):
                raise LookupError(f"Model not found: {model_id}")

        controller = StreamController(_Unresolvable(), event_bus=event_bus, settings=settings)

        outcome = await controller.start(make_request(), recorder.sinks())

        assert isinstance(outcome, Failed)
        assert "Model not found" in outcome.report.message
        assert controller.is_streaming() is False

    @pytest.mark.asyncio
    async def test_backend_cancelling_itself_fails_without_cancelling_caller(
        self, event_bus, settings, make_request, recorder
    ) -> None:
        class _SelfCancelling:
            async def generate(self, *args, **kwargs):
                await asyncio.sleep(0)
                raise asyncio.CancelledError()

        controller = _controller(_SelfCancelling(), event_bus, settings)

        outcome = await controller.start(make_request(), recorder.sinks())

        assert isinstance(outcome, Failed)
        assert "cancelled by the backend" in outcome.report.message
        assert recorder.cancels == 0
        assert len(recorder.errors) == 1
        assert controller.is_streaming() is False
        assert controller.session.phase is SessionPhase.FAILED


# =============================================================================
# Side channels
# =============================================================================


class TestSideChannels:
    @pytest.mark.asyncio
    async def test_start_notice_uses_provider_name(self, event_bus, settings, make_request, notices) -> None:
        controller = _controller(ScriptedBackend(["a"]), event_bus, settings)

        await controller.start(make_request())

        assert notices[0].message == "Querying TestProvider API..."
        assert notices[0].duration_ms == settings.info_notice_ms

    @pytest.mark.asyncio
    async def test_provider_lookup_failure_falls_back(self, event_bus, settings, make_request, notices) -> None:
        controller = _controller(ScriptedBackend(["a"]), event_bus, settings, provider=None)

        outcome = await controller.start(make_request())

        assert outcome == Completed("a")
        assert notices[0].message == "Querying AI API..."

    @pytest.mark.asyncio
    async def test_cleanup_releases_listener_and_restores_focus(
        self, event_bus, settings, make_request, host
    ) -> None:
        controller = _controller(ScriptedBackend(["a"]), event_bus, settings, host=host)

        await controller.start(make_request())

        assert host.removed == ["Escape"]
        assert host.focus_calls == 1

    @pytest.mark.asyncio
    async def test_focus_failure_never_masks_outcome(self, event_bus, settings, make_request) -> None:
        host = RecordingHost(focus_error=RuntimeError("no editor"))
        controller = _controller(ScriptedBackend(["fine"]), event_bus, settings, host=host)

        outcome = await controller.start(make_request())

        assert outcome == Completed("fine")
        assert host.focus_calls == 1

    @pytest.mark.asyncio
    async def test_keyboard_dismissal_runs_after_delay(self, event_bus, settings, make_request, host) -> None:
        controller = _controller(ScriptedBackend(["a"]), event_bus, settings, host=host)

        await controller.start(make_request())
        await asyncio.sleep(0.01)

        assert host.executed == ["app:toggle-keyboard"]

    @pytest.mark.asyncio
    async def test_keyboard_dismissal_failure_is_swallowed(self, event_bus, settings, make_request, host) -> None:
        host.execute_error = RuntimeError("no keyboard")
        controller = _controller(ScriptedBackend(["a"]), event_bus, settings, host=host)

        outcome = await controller.start(make_request())
        await asyncio.sleep(0.01)

        assert outcome == Completed("a")
        assert host.executed == []


# =============================================================================
# Live display
# =============================================================================


class TestLiveDisplay:
    @pytest.mark.asyncio
    async def test_display_follows_accumulated_text(self, event_bus, settings, make_request) -> None:
        display = RecordingDisplay()
        controller = _controller(ScriptedBackend(["Hello", " world"]), event_bus, settings)

        await controller.start(make_request(), StreamSinks(cursor_offset=6, display=display))

        assert display.calls[0] == ("show", 6)
        assert display.updates == [format_for_display("Hello"), format_for_display("Hello world")]
        assert display.hidden is False

    @pytest.mark.asyncio
    async def test_release_hides_and_clears(self, event_bus, settings, make_request) -> None:
        display = RecordingDisplay()
        controller = _controller(ScriptedBackend(["text"]), event_bus, settings)
        await controller.start(make_request(), StreamSinks(display=display))

        controller.release()

        assert display.hidden is True
        assert controller.get_current_result() == ""

    @pytest.mark.asyncio
    async def test_final_format_rendered_on_display(self, event_bus, settings, make_request) -> None:
        display = RecordingDisplay()
        controller = _controller(ScriptedBackend(["hello"]), event_bus, settings)
        await controller.start(make_request(), StreamSinks(display=display))

        controller.apply_final_format_to_display("> {{result}}")

        assert display.updates[-1] == "\n> hello\n"

    @pytest.mark.asyncio
    async def test_failure_hides_display(self, event_bus, settings, make_request) -> None:
        display = RecordingDisplay()
        controller = _controller(ScriptedBackend(["x"], error=RuntimeError("boom")), event_bus, settings)

        await controller.start(make_request(), StreamSinks(display=display))

        assert display.hidden is True

    @pytest.mark.asyncio
    async def test_display_errors_are_ignored(self, event_bus, settings, make_request) -> None:
        class _BrokenDisplay(RecordingDisplay):
            def update(self, display_text: str) -> None:
                raise RuntimeError("render failed")

        controller = _controller(ScriptedBackend(["ok"]), event_bus, settings)

        outcome = await controller.start(make_request(), StreamSinks(display=_BrokenDisplay()))

        assert outcome == Completed("ok")


def test_event_bus_fixture_is_fresh(event_bus: EventBus) -> None:
    assert event_bus.handler_count() == 0
