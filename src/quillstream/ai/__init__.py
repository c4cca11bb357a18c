"""Model clients, backends and backend resolution."""

from .backends import DummyBackend, ModelBackend, OpenAICompatibleBackend
from .client import AIClient, ClientSettings
from .factory import BackendFactory, ProviderFamily

__all__ = [
    "AIClient",
    "BackendFactory",
    "ClientSettings",
    "DummyBackend",
    "ModelBackend",
    "OpenAICompatibleBackend",
    "ProviderFamily",
]
