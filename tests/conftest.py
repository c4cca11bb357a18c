"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from quillstream.actions.models import Request
from quillstream.editor.locations import Location
from quillstream.editor.selection import SelectionSnapshot
from quillstream.events import EventBus, NoticePosted
from quillstream.services.settings import Settings


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def notices(event_bus: EventBus) -> list[NoticePosted]:
    received: list[NoticePosted] = []
    event_bus.subscribe(NoticePosted, received.append)
    return received


@pytest.fixture
def settings() -> Settings:
    return Settings(keyboard_dismiss_delay=0.0)


@pytest.fixture
def make_request():
    def _make(**overrides) -> Request:
        payload = {
            "instruction": "Summarize",
            "input_text": "some text",
            "model_id": "test-model",
            "location": Location.REPLACE_SELECTION,
            "selection": SelectionSnapshot(start=2, end=6),
        }
        payload.update(overrides)
        return Request(**payload)

    return _make
