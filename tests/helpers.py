"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Sequence

from quillstream.editor.locations import Location, LocationExtra
from quillstream.editor.selection import SelectionSnapshot


class ScriptedBackend:
    """Backend stub that emits a fixed token script.

    ``pause_after`` stops the script after that many tokens until
    :attr:`release` is set, which lets tests cancel mid-stream.
    """

    def __init__(
        self,
        tokens: Sequence[str] = (),
        *,
        error: BaseException | None = None,
        result: str | None = None,
        pause_after: int | None = None,
    ) -> None:
        self.tokens = list(tokens)
        self.error = error
        self.result = result
        self.pause_after = pause_after
        self.calls: list[dict[str, Any]] = []
        self.on_token: Callable[[str], None] | None = None
        self.paused = asyncio.Event()
        self.release = asyncio.Event()
        self.was_cancelled = False

    async def generate(
        self,
        system_instruction: str,
        input_text: str,
        on_token: Callable[[str], None] | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        extra_user_prompt: str | None = None,
        streaming: bool = False,
    ) -> str | None:
        self.calls.append(
            {
                "system_instruction": system_instruction,
                "input": input_text,
                "on_token": on_token,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
                "extra_user_prompt": extra_user_prompt,
                "streaming": streaming,
            }
        )
        self.on_token = on_token
        try:
            for index, token in enumerate(self.tokens):
                if self.pause_after is not None and index == self.pause_after:
                    self.paused.set()
                    await self.release.wait()
                if on_token is not None and streaming:
                    on_token(token)
                await asyncio.sleep(0)
            if self.pause_after is not None and self.pause_after >= len(self.tokens):
                self.paused.set()
                await self.release.wait()
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        if self.error is not None:
            raise self.error
        if not streaming:
            return self.result if self.result is not None else "".join(self.tokens)
        return self.result


class StaticFactory:
    """Backend resolver returning the same backend for every model id."""

    def __init__(self, backend: Any, *, provider: str | None = "TestProvider") -> None:
        self.backend = backend
        self.provider = provider
        self.resolved: list[str] = []

    def resolve(self, model_id: str) -> Any:
        self.resolved.append(model_id)
        return self.backend

    def provider_name(self, model_id: str) -> str:
        if self.provider is None:
            raise LookupError(f"no provider for {model_id}")
        return self.provider


class RecordingDisplay:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def show(self, offset: int) -> None:
        self.calls.append(("show", offset))

    def update(self, display_text: str) -> None:
        self.calls.append(("update", display_text))

    def hide(self) -> None:
        self.calls.append(("hide", None))

    @property
    def updates(self) -> list[str]:
        return [value for name, value in self.calls if name == "update"]

    @property
    def hidden(self) -> bool:
        hides = [index for index, (name, _) in enumerate(self.calls) if name == "hide"]
        shows = [index for index, (name, _) in enumerate(self.calls) if name == "show"]
        return bool(hides) and (not shows or hides[-1] > shows[-1])


class RecordingHost:
    """Host exposing every optional capability, with failure switches."""

    def __init__(self, commands: Iterable[str] = (), *, focus_error: Exception | None = None) -> None:
        self.commands = list(commands)
        self.focus_error = focus_error
        self.execute_error: Exception | None = None
        self.focus_calls = 0
        self.executed: list[str] = []
        self.listeners: dict[str, list[Callable[[], None]]] = {}
        self.removed: list[str] = []

    def focus_editor(self) -> None:
        self.focus_calls += 1
        if self.focus_error is not None:
            raise self.focus_error

    def list_commands(self) -> list[str]:
        return list(self.commands)

    def execute_command(self, command_id: str) -> None:
        if self.execute_error is not None:
            raise self.execute_error
        self.executed.append(command_id)

    def add_key_listener(self, key: str, handler: Callable[[], None]) -> Callable[[], None]:
        self.listeners.setdefault(key, []).append(handler)

        def _remove() -> None:
            self.listeners[key].remove(handler)
            self.removed.append(key)

        return _remove

    def press(self, key: str) -> None:
        for handler in list(self.listeners.get(key, [])):
            handler()


class ApplyRecorder:
    """Async ``apply_at`` stand-in that records every call."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[Location, str, SelectionSnapshot, LocationExtra | None]] = []

    async def __call__(
        self,
        location: Location,
        text: str,
        selection: SelectionSnapshot,
        extra: LocationExtra | None = None,
    ) -> None:
        self.calls.append((location, text, selection, extra))
        if self.error is not None:
            raise self.error

    async def apply_at(self, location, text, selection, extra=None) -> None:
        await self(location, text, selection, extra)


class RecordingHolder:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def hide_display(self) -> None:
        self.calls.append("hide")

    def clear_results(self) -> None:
        self.calls.append("clear")
