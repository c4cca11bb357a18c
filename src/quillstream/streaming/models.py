"""Stream session state, terminal outcomes, and the sinks a caller supplies.

A :class:`StreamSession` is owned exclusively by the controller; callers
observe it through the controller's accessors and the returned
:class:`TerminalOutcome`.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Protocol, Union

from ..actions.models import Request
from ..errors import ErrorReport


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionPhase(Enum):
    """Lifecycle of one stream session.

    Values:
        IDLE: Created but not yet started.
        ACTIVE: The backend call is running.
        COMPLETED: The backend finished and ``on_complete`` succeeded.
        FAILED: The backend or ``on_complete`` raised.
        CANCELLED: The user cancelled the session.
    """

    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETED, SessionPhase.FAILED, SessionPhase.CANCELLED)


@dataclass(slots=True, frozen=True)
class Completed:
    """The backend finished; ``text`` is the full accumulated result."""

    text: str


@dataclass(slots=True, frozen=True)
class Failed:
    """The backend or the completion callback raised ``error``."""

    error: BaseException
    report: ErrorReport


@dataclass(slots=True, frozen=True)
class Cancelled:
    """The session was cancelled before it finished."""


TerminalOutcome = Union[Completed, Failed, Cancelled]


class LiveDisplay(Protocol):
    """Inline "typing" affordance anchored at a document offset."""

    def show(self, offset: int) -> None:
        ...

    def update(self, display_text: str) -> None:
        ...

    def hide(self) -> None:
        ...


def _noop_token(_text: str) -> None:
    return None


def _noop_error(_error: BaseException) -> None:
    return None


def _noop() -> None:
    return None


@dataclass(slots=True)
class StreamSinks:
    """Callbacks a caller hands to ``StreamController.start``.

    Attributes:
        on_token: Receives every raw fragment; exceptions are logged and
            ignored.
        on_complete: Receives the full text once; an exception turns the
            session into a failure.
        on_error: Receives the failure; exceptions are logged and ignored.
        on_cancel: Called once when the session is cancelled.
        cursor_offset: Offset the live display is anchored at.
        display: Optional live display updated on every fragment.
    """

    on_token: Callable[[str], None] = _noop_token
    on_complete: Callable[[str], None] = _noop_token
    on_error: Callable[[BaseException], None] = _noop_error
    on_cancel: Callable[[], None] = _noop
    cursor_offset: int = 0
    display: LiveDisplay | None = None


@dataclass(slots=True)
class StreamSession:
    """Mutable state of one request while the controller runs it."""

    request: Request
    sinks: StreamSinks
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    phase: SessionPhase = SessionPhase.IDLE
    active: bool = False
    cancelled: bool = False
    cleaned: bool = False
    cancel_notified: bool = False
    text: str = ""
    provider_name: str = "AI"
    remove_cancel_listener: Callable[[], None] | None = None
    outcome: TerminalOutcome | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    def mark_active(self) -> None:
        self.phase = SessionPhase.ACTIVE
        self.active = True

    def mark_completed(self, text: str) -> Completed:
        outcome = Completed(text)
        self._finish(SessionPhase.COMPLETED, outcome)
        return outcome

    def mark_failed(self, error: BaseException, report: ErrorReport) -> Failed:
        outcome = Failed(error, report)
        self._finish(SessionPhase.FAILED, outcome)
        return outcome

    def mark_cancelled(self) -> Cancelled:
        outcome = Cancelled()
        self._finish(SessionPhase.CANCELLED, outcome)
        return outcome

    def _finish(self, phase: SessionPhase, outcome: TerminalOutcome) -> None:
        self.phase = phase
        self.outcome = outcome
        self.active = False
        self.finished_at = _utcnow()


__all__ = [
    "Cancelled",
    "Completed",
    "Failed",
    "LiveDisplay",
    "SessionPhase",
    "StreamSession",
    "StreamSinks",
    "TerminalOutcome",
]
