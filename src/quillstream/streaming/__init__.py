"""Streaming control, result routing and deferred review."""

from .controller import StreamController
from .models import (
    Cancelled,
    Completed,
    Failed,
    LiveDisplay,
    SessionPhase,
    StreamSession,
    StreamSinks,
    TerminalOutcome,
)
from .processor import PromptProcessor
from .review import ReviewItem, ReviewManager, ReviewSurface
from .router import ResultRouter
from .side_channels import BestEffort

__all__ = [
    "BestEffort",
    "Cancelled",
    "Completed",
    "Failed",
    "LiveDisplay",
    "PromptProcessor",
    "ResultRouter",
    "ReviewItem",
    "ReviewManager",
    "ReviewSurface",
    "SessionPhase",
    "StreamController",
    "StreamSession",
    "StreamSinks",
    "TerminalOutcome",
]
