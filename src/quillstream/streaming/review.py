"""Deferred review of finished results.

A :class:`ReviewItem` carries one finished result together with the
operations that resolve it. The item is owned by whichever
:class:`ReviewSurface` it was presented to until one operation succeeds.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from ..editor.locations import Location, LocationExtra
from ..editor.selection import SelectionSnapshot
from ..events import EventBus, ReviewPresented, ReviewResolved
from .side_channels import bind_cancel_key, release_listener

LOGGER = logging.getLogger(__name__)

ApplyOperation = Callable[[Location], Awaitable[None]]


@dataclass(slots=True)
class ReviewItem:
    """A finished result waiting for the user's decision.

    Attributes:
        text: Raw trimmed result; the format template is applied only when
            the item is accepted or redirected.
        default_location: Location the request asked for.
        has_external_target: Whether the request named an external target.
        selection: Selection captured when the request was built.
        location_extra: External target name, if any.
        item_id: Unique identifier used in events.
    """

    text: str
    default_location: Location
    has_external_target: bool
    selection: SelectionSnapshot
    location_extra: LocationExtra | None = None
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    format_preview: Callable[[str], str] | None = None
    apply_operation: ApplyOperation | None = None
    cancel_operation: Callable[[], None] | None = None
    _resolved: bool = field(default=False, init=False, repr=False)
    _busy: bool = field(default=False, init=False, repr=False)

    @property
    def resolved(self) -> bool:
        return self._resolved

    def preview(self) -> str:
        """Return the text as it would be written right now."""

        if self.format_preview is None:
            return self.text
        return self.format_preview(self.text)

    async def accept(self) -> bool:
        """Apply the result at :attr:`default_location`."""

        return await self._resolve(self.default_location)

    async def redirect(self, location: Location) -> bool:
        """Apply the result at ``location`` instead of the default."""

        return await self._resolve(location)

    def cancel(self) -> bool:
        """Discard the result without touching the document."""

        if self._resolved or self._busy:
            return False
        self._resolved = True
        if self.cancel_operation is not None:
            self.cancel_operation()
        return True

    async def _resolve(self, location: Location) -> bool:
        if self._resolved or self._busy:
            LOGGER.debug("Review item %s already resolved; ignoring", self.item_id)
            return False
        if self.apply_operation is None:
            self._resolved = True
            return True
        self._busy = True
        try:
            await self.apply_operation(location)
        except Exception:
            LOGGER.warning("Failed to apply review item %s at %s", self.item_id, location.value, exc_info=True)
            return False
        finally:
            self._busy = False
        self._resolved = True
        return True


class ReviewSurface(Protocol):
    """Anything that can hold a :class:`ReviewItem` until the user decides."""

    async def present(self, item: ReviewItem) -> None:
        ...


class ReviewManager:
    """Holds at most one pending :class:`ReviewItem`.

    Presenting a new item drops the previous one without running its cancel
    operation. While an item is pending the host's Escape key cancels it.

    Events Emitted:
        - ReviewPresented: When an item is presented.
        - ReviewResolved: When the item is accepted, redirected, cancelled
          or dropped.
    """

    def __init__(self, event_bus: EventBus | None = None, *, host: object | None = None) -> None:
        self._bus = event_bus
        self._host = host
        self._pending: ReviewItem | None = None
        self._remove_listener: Callable[[], None] | None = None

    @property
    def pending(self) -> ReviewItem | None:
        return self._pending

    def has_pending(self) -> bool:
        return self._pending is not None

    async def present(self, item: ReviewItem) -> None:
        if self._pending is not None:
            LOGGER.debug("Dropping review item %s for %s", self._pending.item_id, item.item_id)
            self.drop()
        self._pending = item
        binding = bind_cancel_key(self._host, self.cancel)
        if binding.ok:
            self._remove_listener = binding.value
        LOGGER.debug("Presented review item %s (%d chars)", item.item_id, len(item.text))
        self._publish(ReviewPresented(item.item_id, item.default_location.value, item.has_external_target))

    async def accept(self) -> bool:
        """Accept the pending item at its default location.

        Returns:
            True when the result was written; False when nothing was
            pending or the write failed (the item then stays pending).
        """

        item = self._pending
        if item is None:
            return False
        if not await item.accept():
            return False
        self._finish(item, "accept", item.default_location)
        return True

    async def redirect(self, location: Location) -> bool:
        item = self._pending
        if item is None:
            return False
        if not await item.redirect(location):
            return False
        self._finish(item, "redirect", location)
        return True

    def cancel(self) -> bool:
        item = self._pending
        if item is None:
            return False
        if not item.cancel():
            return False
        self._finish(item, "cancel", None)
        return True

    def drop(self) -> None:
        """Forget the pending item without resolving it."""

        item = self._pending
        if item is None:
            return
        self._finish(item, "drop", None)

    def _finish(self, item: ReviewItem, action: str, location: Location | None) -> None:
        if self._pending is item:
            self._pending = None
            release_listener(self._remove_listener)
            self._remove_listener = None
        self._publish(ReviewResolved(item.item_id, action, location.value if location else None))

    def _publish(self, event) -> None:
        if self._bus is not None:
            self._bus.publish(event)


__all__ = ["ApplyOperation", "ReviewItem", "ReviewManager", "ReviewSurface"]
