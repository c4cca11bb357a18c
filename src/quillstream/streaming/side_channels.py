"""Best-effort host interactions that must never affect a stream's outcome.

Each helper returns a :class:`BestEffort` describing what happened instead
of raising, so the caller decides in plain sight that a failure is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

LOGGER = logging.getLogger(__name__)

ESCAPE_KEY = "Escape"
TOGGLE_KEYBOARD_COMMAND = "app:toggle-keyboard"
_KEYBOARD_MARKERS = ("keyboard", "toggle-keyboard")


@dataclass(slots=True, frozen=True)
class BestEffort:
    """Result of a side channel that is allowed to fail.

    Attributes:
        ok: True when the side effect ran.
        error: The swallowed exception, if any.
        value: Optional payload (e.g. a looked-up name).
    """

    ok: bool
    error: BaseException | None = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "BestEffort":
        return cls(ok=True, value=value)

    @classmethod
    def skipped(cls) -> "BestEffort":
        return cls(ok=False)

    @classmethod
    def failure(cls, error: BaseException) -> "BestEffort":
        return cls(ok=False, error=error)


class FocusHost(Protocol):
    def focus_editor(self) -> None:
        ...


class CommandHost(Protocol):
    def list_commands(self) -> Iterable[str]:
        ...

    def execute_command(self, command_id: str) -> Any:
        ...


class KeyListenerHost(Protocol):
    def add_key_listener(self, key: str, handler: Callable[[], None]) -> Callable[[], None]:
        ...


def restore_focus(host: object | None) -> BestEffort:
    focus = getattr(host, "focus_editor", None)
    if focus is None:
        return BestEffort.skipped()
    try:
        focus()
    except Exception as exc:
        LOGGER.debug("Focus restoration failed", exc_info=True)
        return BestEffort.failure(exc)
    return BestEffort.success()


def is_keyboard_command(command_id: str) -> bool:
    return command_id == TOGGLE_KEYBOARD_COMMAND or any(marker in command_id for marker in _KEYBOARD_MARKERS)


def dismiss_virtual_keyboard(host: object | None) -> BestEffort:
    """Run the host's keyboard-toggle command if it has one."""

    list_commands = getattr(host, "list_commands", None)
    execute = getattr(host, "execute_command", None)
    if list_commands is None or execute is None:
        return BestEffort.skipped()
    try:
        command = next((item for item in list_commands() if is_keyboard_command(str(item))), None)
        if command is None:
            return BestEffort.skipped()
        execute(command)
    except Exception as exc:
        LOGGER.debug("Virtual keyboard dismissal failed", exc_info=True)
        return BestEffort.failure(exc)
    return BestEffort.success(command)


def schedule_keyboard_dismissal(host: object | None, delay: float) -> asyncio.TimerHandle | None:
    """Dismiss the virtual keyboard after ``delay`` seconds without blocking."""

    if host is None:
        return None
    loop = asyncio.get_running_loop()

    def _dismiss() -> None:
        result = dismiss_virtual_keyboard(host)
        if not result.ok and result.error is not None:
            LOGGER.debug("Ignoring keyboard dismissal failure: %s", result.error)

    return loop.call_later(max(0.0, delay), _dismiss)


def lookup_provider_name(lookup: Callable[[str], str] | None, model_id: str, *, fallback: str = "AI") -> BestEffort:
    if lookup is None:
        return BestEffort(ok=False, value=fallback)
    try:
        name = lookup(model_id)
    except Exception as exc:
        LOGGER.debug("Provider name lookup failed for %s", model_id, exc_info=True)
        return BestEffort(ok=False, error=exc, value=fallback)
    return BestEffort.success(name or fallback)


def bind_cancel_key(host: object | None, handler: Callable[[], None]) -> BestEffort:
    """Register ``handler`` for the Escape key; ``value`` holds the remover."""

    add_listener = getattr(host, "add_key_listener", None)
    if add_listener is None:
        return BestEffort.skipped()
    try:
        remover = add_listener(ESCAPE_KEY, handler)
    except Exception as exc:
        LOGGER.debug("Failed to bind cancel key", exc_info=True)
        return BestEffort.failure(exc)
    return BestEffort.success(remover)


def release_listener(remover: Callable[[], None] | None) -> BestEffort:
    if remover is None:
        return BestEffort.skipped()
    try:
        remover()
    except Exception as exc:
        LOGGER.debug("Failed to remove key listener", exc_info=True)
        return BestEffort.failure(exc)
    return BestEffort.success()


__all__ = [
    "BestEffort",
    "CommandHost",
    "ESCAPE_KEY",
    "FocusHost",
    "KeyListenerHost",
    "TOGGLE_KEYBOARD_COMMAND",
    "bind_cancel_key",
    "dismiss_virtual_keyboard",
    "is_keyboard_command",
    "lookup_provider_name",
    "release_listener",
    "restore_focus",
    "schedule_keyboard_dismissal",
]
