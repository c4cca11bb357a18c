"""Settings dataclasses plus JSON and environment loading.

Settings are read-only at runtime: this module loads them, it never writes
them back.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..actions.models import Action

__all__ = [
    "ProviderSettings",
    "ModelSettings",
    "Settings",
    "load_settings",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_ENV_PREFIX = "QUILLSTREAM_"
_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILLSTREAM_DEFAULT_MODEL": "default_model_id",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILLSTREAM_TESTING_MODE": "testing_mode",
    "QUILLSTREAM_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILLSTREAM_REQUEST_TIMEOUT": "request_timeout",
    "QUILLSTREAM_KEYBOARD_DISMISS_DELAY": "keyboard_dismiss_delay",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILLSTREAM_MAX_RETRIES": "max_retries",
    "QUILLSTREAM_ERROR_NOTICE_MS": "error_notice_ms",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class ProviderSettings:
    """One configured model provider (an account on some endpoint)."""

    id: str
    name: str
    family: str
    api_key: str = ""
    base_url: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ModelSettings:
    """A selectable model, bound to a provider by ``provider_id``."""

    id: str
    name: str
    provider_id: str
    model_name: str


@dataclass(slots=True)
class Settings:
    """Runtime configuration for backends, notices and the controller."""

    providers: list[ProviderSettings] = field(default_factory=list)
    models: list[ModelSettings] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    default_model_id: str | None = None
    testing_mode: bool = False
    debug_logging: bool = False
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    keyboard_dismiss_delay: float = 1.0
    error_notice_ms: int = 8000
    info_notice_ms: int = 4000

    def find_model(self, model_id: str) -> ModelSettings | None:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    def find_provider(self, provider_id: str) -> ProviderSettings | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None

    def find_action(self, name: str) -> Action | None:
        lowered = name.strip().lower()
        for action in self.actions:
            if action.name.strip().lower() == lowered:
                return action
        return None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Settings":
        """Build settings from a JSON-style mapping, ignoring unknown keys."""

        allowed = {item.name for item in fields(cls)}
        data: Dict[str, Any] = {key: value for key, value in payload.items() if key in allowed}
        data["providers"] = [_build(ProviderSettings, item) for item in data.get("providers") or []]
        data["models"] = [_build(ModelSettings, item) for item in data.get("models") or []]
        data["actions"] = [Action.from_dict(item) for item in data.get("actions") or []]
        try:
            return cls(**data)
        except TypeError as exc:
            LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            return cls()


def load_settings(
    path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Read settings from ``path`` (if given) and apply overrides.

    Precedence, lowest first: file, ``overrides`` (usually CLI flags),
    environment.
    """

    settings = Settings()
    if path is not None:
        payload = _read_payload(Path(path).expanduser())
        if payload:
            settings = Settings.from_dict(payload)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="CLI")
    return _apply_env_overrides(settings, os.environ if env is None else env)


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def _build(cls: type, payload: Any) -> Any:
    if isinstance(payload, cls):
        return payload
    if not isinstance(payload, Mapping):
        raise TypeError(f"{cls.__name__} entries must be objects")
    allowed = {item.name for item in fields(cls)}
    return cls(**{key: value for key, value in payload.items() if key in allowed})


def _read_payload(path: Path) -> Dict[str, Any]:
    if not path.exists():
        LOGGER.debug("Settings file %s does not exist; using defaults", path)
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        LOGGER.warning("Settings file %s is not valid JSON: %s", path, exc)
        return {}
    if not isinstance(payload, dict):
        LOGGER.warning("Settings file %s must contain a JSON object", path)
        return {}
    return payload


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    allowed = {item.name for item in fields(Settings)} - {"providers", "models", "actions"}
    filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def _apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> Settings:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value.strip().lower() in _TRUE_VALUES
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = int(value, 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="environment")

    # Per-provider keys: QUILLSTREAM_<PROVIDER_ID>_API_KEY
    providers: list[ProviderSettings] = []
    changed = False
    for provider in settings.providers:
        key = env.get(f"{_ENV_PREFIX}{_env_token(provider.id)}_API_KEY")
        if key:
            provider = replace(provider, api_key=key)
            changed = True
        providers.append(provider)
    if changed:
        LOGGER.debug("Applied provider API keys from environment")
        settings = replace(settings, providers=providers)
    return settings


def _env_token(value: str) -> str:
    return re.sub(r"[^A-Z0-9]+", "_", value.upper()).strip("_")
