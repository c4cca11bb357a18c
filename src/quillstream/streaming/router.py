"""Route a terminal outcome to the document or to a review surface."""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from ..actions.models import Request
from ..editor.formatting import apply_format_template
from ..editor.locations import Location
from ..editor.mutations import ApplyAt
from ..errors import ResultApplicationError
from ..events import EventBus, NoticePosted, ResultApplied
from ..services.settings import Settings
from .models import Completed, TerminalOutcome
from .review import ReviewItem, ReviewSurface

LOGGER = logging.getLogger(__name__)

TemplateProvider = Callable[[Request], "str | None"]


class ResultHolder(Protocol):
    """State released once a result has been written or discarded.

    A holder may also expose ``session``; review items then release state
    only while the session that produced them is still the current one.
    """

    def hide_display(self) -> None:
        ...

    def clear_results(self) -> None:
        ...


class ResultRouter:
    """Writes completed results immediately or defers them for review.

    Only a :class:`Completed` outcome with non-blank text is ever written.
    The format template is applied at write time; for deferred results it
    is looked up again through ``template_provider`` so edits made while the
    result waited for review are honoured.
    """

    def __init__(
        self,
        holder: ResultHolder,
        *,
        template_provider: TemplateProvider | None = None,
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._holder = holder
        self._template_provider = template_provider
        self._event_bus = event_bus
        self._settings = settings or Settings()

    async def route(
        self,
        outcome: TerminalOutcome,
        request: Request,
        apply_at: ApplyAt,
        review_surface: ReviewSurface | None = None,
    ) -> None:
        """Write or defer ``outcome``.

        Raises:
            ResultApplicationError: Immediate application failed.
        """

        if not isinstance(outcome, Completed):
            return
        trimmed = outcome.text.strip()
        if not trimmed:
            LOGGER.debug("Completed result is blank; nothing to apply")
            return

        if not request.deferred:
            self._holder.hide_display()
            formatted = self.format(trimmed, request)
            try:
                await apply_at(request.location, formatted, request.selection, request.location_extra)
            except Exception as exc:
                raise ResultApplicationError(f"Failed to apply result: {exc}") from exc
            self._holder.clear_results()
            self._publish_applied(request.location, formatted)
            return

        if review_surface is None:
            LOGGER.warning("Deferred result for %s has no review surface; discarding", request.model_id)
            self._release()
            return

        item = self._build_review_item(trimmed, request, apply_at)
        await review_surface.present(item)

    def format(self, text: str, request: Request) -> str:
        return apply_format_template(text, self.template_for(request))

    def template_for(self, request: Request) -> str:
        if self._template_provider is not None:
            try:
                template = self._template_provider(request)
            except Exception:
                LOGGER.debug("Template provider failed; using request template", exc_info=True)
            else:
                if template is not None:
                    return template
        return request.format_template

    def _build_review_item(self, trimmed: str, request: Request, apply_at: ApplyAt) -> ReviewItem:
        origin = getattr(self._holder, "session", None)

        async def _apply(location: Location) -> None:
            formatted = self.format(trimmed, request)
            try:
                await apply_at(location, formatted, request.selection, request.location_extra)
            except Exception as exc:
                self._notify(f"Failed to apply result: {exc}")
                raise ResultApplicationError(f"Failed to apply result: {exc}") from exc
            self._release(origin)
            self._publish_applied(location, formatted)

        def _cancel() -> None:
            self._release(origin)

        return ReviewItem(
            text=trimmed,
            default_location=request.location,
            has_external_target=request.has_external_target,
            selection=request.selection,
            location_extra=request.location_extra,
            format_preview=lambda text: self.format(text, request),
            apply_operation=_apply,
            cancel_operation=_cancel,
        )

    def _release(self, origin: object | None = None) -> None:
        """Release display and result state unless a newer stream now owns it."""

        if origin is not None and getattr(self._holder, "session", None) is not origin:
            LOGGER.debug("Review item outlived its stream; leaving the current stream alone")
            return
        self._holder.hide_display()
        self._holder.clear_results()

    def _publish_applied(self, location: Location, text: str) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(ResultApplied(location.value, len(text)))

    def _notify(self, message: str) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(NoticePosted(message, self._settings.error_notice_ms))


__all__ = ["ResultHolder", "ResultRouter", "TemplateProvider"]
