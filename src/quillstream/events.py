"""Event bus and the events published by the streaming pipeline.

Hosts subscribe to these events to drive notifications, status text, and
review panels without the controller knowing about any UI toolkit.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, TypeVar
from weakref import WeakMethod

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for every published event."""


# Published once per token; kept out of the debug log.
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Stream lifecycle
# =============================================================================


@dataclass(slots=True)
class StreamStarted(Event):
    """A request was accepted and its backend call is starting.

    Attributes:
        session_id: Identifier of the new stream session.
        model_id: Model identifier the request targets.
        provider_name: Display name of the provider, or a placeholder when
            the lookup failed.
    """

    session_id: str
    model_id: str
    provider_name: str


@dataclass(slots=True)
class StreamChunk(Event):
    """A fragment was accepted into the session's accumulated text."""

    session_id: str
    content: str


_QUIET_EVENT_TYPES.add(StreamChunk)


@dataclass(slots=True)
class StreamCompleted(Event):
    """The backend finished and ``on_complete`` ran without raising."""

    session_id: str
    text_length: int


@dataclass(slots=True)
class StreamFailed(Event):
    """The backend or the completion callback raised.

    Attributes:
        session_id: Identifier of the failed session.
        category: Value of the :class:`~quillstream.errors.ErrorCategory`.
        message: User-facing message built by the classifier.
    """

    session_id: str
    category: str
    message: str


@dataclass(slots=True)
class StreamCanceled(Event):
    """The user cancelled the session."""

    session_id: str


# =============================================================================
# Notices and results
# =============================================================================


@dataclass(slots=True)
class NoticePosted(Event):
    """A transient notification should be shown to the user.

    Attributes:
        message: Text of the notice.
        duration_ms: How long the notice stays visible.
    """

    message: str
    duration_ms: int = 4000


@dataclass(slots=True)
class ResultApplied(Event):
    """Formatted text was written to the document or an external target."""

    location: str
    length: int


@dataclass(slots=True)
class ReviewPresented(Event):
    """A finished result is waiting for the user's decision."""

    item_id: str
    default_location: str
    has_external_target: bool


@dataclass(slots=True)
class ReviewResolved(Event):
    """The pending review item was accepted, redirected, cancelled or dropped.

    Attributes:
        item_id: Identifier of the resolved item.
        action: One of ``"accept"``, ``"redirect"``, ``"cancel"``, ``"drop"``.
        location: Location the result was applied at, if any.
    """

    item_id: str
    action: str
    location: str | None = None


class EventBus:
    """Synchronous publish/subscribe hub.

    Bound methods are held weakly so that subscribers can be garbage
    collected without unsubscribing; plain functions and lambdas are held
    strongly. A handler that raises is logged and the remaining handlers
    still run.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        LOGGER.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                return

    def publish(self, event: Event) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        quiet = event_type in _QUIET_EVENT_TYPES
        if not handlers:
            return
        if not quiet:
            LOGGER.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead: list[int] = []
        for index, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(index)
                continue
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Handler %s raised for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for index in reversed(dead):
            handlers.pop(index)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_target", "_weak")

    def __init__(self, target, weak: bool) -> None:
        self._target = target
        self._weak = weak

    @classmethod
    def create(cls, handler: Handler) -> "_HandlerRef":
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), weak=True)
            except TypeError:
                pass
        return cls(handler, weak=False)

    def resolve(self) -> Handler | None:
        if self._weak:
            return self._target()
        return self._target

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "StreamStarted",
    "StreamChunk",
    "StreamCompleted",
    "StreamFailed",
    "StreamCanceled",
    "NoticePosted",
    "ResultApplied",
    "ReviewPresented",
    "ReviewResolved",
]
