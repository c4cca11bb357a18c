"""Error hierarchy and user-facing classification for streaming failures.

Classification only shapes the message shown to the user; it never changes
how a failure flows through the controller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import httpx
from openai import APIConnectionError, APITimeoutError, AuthenticationError, RateLimitError


class StreamingError(Exception):
    """Base class for errors raised by the streaming pipeline."""


class ConcurrencyError(StreamingError):
    """Raised when ``start()`` is called while a session is already active."""

    def __init__(self, message: str = "Streaming is already active") -> None:
        super().__init__(message)


class BackendResolutionError(StreamingError):
    """Raised when a model id cannot be mapped to a usable backend."""


class BackendError(StreamingError):
    """Raised by backends for failures that are not transport exceptions."""


class StreamInterruptedError(BackendError):
    """Raised when a stream fails after it already emitted tokens."""


class ResultApplicationError(StreamingError):
    """Raised when a finished result cannot be written to the document."""


class InputSourceError(StreamingError):
    """Raised when the requested input text cannot be read."""


class ErrorCategory(Enum):
    """Origin-based buckets used for user-facing messaging."""

    CONNECTIVITY = "connectivity"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class ErrorReport:
    """Classified failure ready to be shown to the user."""

    category: ErrorCategory
    message: str
    detail: str


# Checked in order; timeout types precede connectivity because
# APITimeoutError subclasses APIConnectionError.
_TYPE_RULES: tuple[tuple[tuple[type[BaseException], ...], ErrorCategory], ...] = (
    ((APITimeoutError, httpx.TimeoutException, TimeoutError), ErrorCategory.TIMEOUT),
    ((APIConnectionError, httpx.ConnectError, httpx.NetworkError), ErrorCategory.CONNECTIVITY),
    ((AuthenticationError,), ErrorCategory.AUTHENTICATION),
    ((RateLimitError,), ErrorCategory.RATE_LIMIT),
)

_SUBSTRING_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("network", "fetch", "connection"), ErrorCategory.CONNECTIVITY),
    (("api key", "authentication", "unauthorized"), ErrorCategory.AUTHENTICATION),
    (("rate limit", "quota"), ErrorCategory.RATE_LIMIT),
    (("timeout", "timed out"), ErrorCategory.TIMEOUT),
)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Return the messaging bucket for ``error``."""

    for types, category in _TYPE_RULES:
        if isinstance(error, types):
            return category
    text = str(error).lower()
    for needles, category in _SUBSTRING_RULES:
        if any(needle in text for needle in needles):
            return category
    return ErrorCategory.UNKNOWN


def classify_error(error: BaseException, provider_name: str = "Provider") -> ErrorReport:
    """Build the user-facing report for a backend or callback failure."""

    detail = str(error) or error.__class__.__name__
    category = categorize_error(error)
    if category is ErrorCategory.CONNECTIVITY:
        message = f"Network error connecting to {provider_name}. Please check your connection and try again."
    elif category is ErrorCategory.AUTHENTICATION:
        message = f"Authentication error with {provider_name}. Please check your API key in settings."
    elif category is ErrorCategory.RATE_LIMIT:
        message = f"Rate limit exceeded for {provider_name}. Please wait and try again."
    elif category is ErrorCategory.TIMEOUT:
        message = f"Request timeout for {provider_name}. Please try again."
    else:
        message = f"{provider_name} error: {detail}"
    return ErrorReport(category=category, message=message, detail=detail)


__all__ = [
    "StreamingError",
    "ConcurrencyError",
    "BackendResolutionError",
    "BackendError",
    "StreamInterruptedError",
    "ResultApplicationError",
    "InputSourceError",
    "ErrorCategory",
    "ErrorReport",
    "categorize_error",
    "classify_error",
]
