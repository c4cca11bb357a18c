"""Configuration services."""

from .settings import ModelSettings, ProviderSettings, Settings, load_settings

__all__ = ["ModelSettings", "ProviderSettings", "Settings", "load_settings"]
