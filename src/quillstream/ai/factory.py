"""Resolve model identifiers to concrete backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

from ..errors import BackendResolutionError
from ..services.settings import ModelSettings, ProviderSettings, Settings
from .backends import DummyBackend, ModelBackend, OpenAICompatibleBackend
from .client import AIClient, ClientSettings

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientSettings], AIClient]


class ProviderFamily(Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    GROQ = "groq"
    OPENROUTER = "openrouter"
    LMSTUDIO = "lmstudio"
    DUMMY = "dummy"

    @classmethod
    def parse(cls, value: str) -> "ProviderFamily":
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise BackendResolutionError(f"Unknown provider family: {value!r}")


@dataclass(slots=True, frozen=True)
class _FamilyProfile:
    default_base_url: str
    requires_api_key: bool = True


_FAMILY_PROFILES: Dict[ProviderFamily, _FamilyProfile] = {
    ProviderFamily.OPENAI: _FamilyProfile("https://api.openai.com/v1"),
    ProviderFamily.GEMINI: _FamilyProfile("https://generativelanguage.googleapis.com/v1beta/openai/"),
    ProviderFamily.ANTHROPIC: _FamilyProfile("https://api.anthropic.com/v1/"),
    ProviderFamily.OLLAMA: _FamilyProfile("http://localhost:11434/v1", requires_api_key=False),
    ProviderFamily.GROQ: _FamilyProfile("https://api.groq.com/openai/v1"),
    ProviderFamily.OPENROUTER: _FamilyProfile("https://openrouter.ai/api/v1"),
    ProviderFamily.LMSTUDIO: _FamilyProfile("http://localhost:1234/v1", requires_api_key=False),
}

# Local servers ignore the key but the OpenAI client refuses an empty one.
_PLACEHOLDER_API_KEY = "not-needed"


class BackendFactory:
    """Builds and caches one backend per model id.

    In testing mode every resolution failure falls back to a
    :class:`DummyBackend` so the application stays usable offline.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client_factory: ClientFactory | None = None,
        dummy_delay: float = 0.02,
    ) -> None:
        self._settings = settings
        self._client_factory: ClientFactory = client_factory or AIClient
        self._dummy_delay = dummy_delay
        self._cache: Dict[str, ModelBackend] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    def resolve(self, model_id: str) -> ModelBackend:
        cached = self._cache.get(model_id)
        if cached is not None:
            return cached
        try:
            backend = self._build(model_id)
        except BackendResolutionError as exc:
            if not self._settings.testing_mode:
                raise
            LOGGER.info("Using dummy backend for %s in testing mode: %s", model_id, exc)
            backend = DummyBackend(delay=self._dummy_delay)
        self._cache[model_id] = backend
        return backend

    def provider_name(self, model_id: str) -> str:
        """Return the display name of the provider serving ``model_id``."""

        model = self._settings.find_model(model_id)
        if model is None:
            raise BackendResolutionError(f"Model not found: {model_id}")
        provider = self._settings.find_provider(model.provider_id)
        if provider is None:
            raise BackendResolutionError(f"Provider not found: {model.provider_id}")
        return provider.name

    async def aclose(self) -> None:
        backends = list(self._cache.values())
        self._cache.clear()
        for backend in backends:
            close = getattr(backend, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:  # pragma: no cover - shutdown noise
                LOGGER.debug("Failed to close backend", exc_info=True)

    def _build(self, model_id: str) -> ModelBackend:
        model = self._settings.find_model(model_id)
        if model is None:
            raise BackendResolutionError(f"Model not found: {model_id}")
        provider = self._settings.find_provider(model.provider_id)
        if provider is None:
            raise BackendResolutionError(f"Provider not found: {model.provider_id}")
        family = ProviderFamily.parse(provider.family)
        if family is ProviderFamily.DUMMY:
            return DummyBackend(delay=self._dummy_delay)
        return self._build_openai_compatible(family, provider, model)

    def _build_openai_compatible(
        self,
        family: ProviderFamily,
        provider: ProviderSettings,
        model: ModelSettings,
    ) -> ModelBackend:
        profile = _FAMILY_PROFILES[family]
        api_key = (provider.api_key or "").strip()
        if not api_key:
            if profile.requires_api_key:
                raise BackendResolutionError(f"API key required for provider {provider.name}")
            api_key = _PLACEHOLDER_API_KEY
        base_url = (provider.base_url or "").strip() or profile.default_base_url
        client_settings = ClientSettings(
            base_url=base_url,
            api_key=api_key,
            model=model.model_name,
            request_timeout=self._settings.request_timeout,
            max_retries=self._settings.max_retries,
            retry_min_seconds=self._settings.retry_min_seconds,
            retry_max_seconds=self._settings.retry_max_seconds,
            default_headers=dict(provider.default_headers) or None,
            debug_logging=self._settings.debug_logging,
        )
        LOGGER.debug("Building %s backend for model %s at %s", family.value, model.id, base_url)
        return OpenAICompatibleBackend(self._client_factory(client_settings))


__all__ = ["BackendFactory", "ClientFactory", "ProviderFamily"]
