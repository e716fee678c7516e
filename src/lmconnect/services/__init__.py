"""Service layer helpers (settings persistence)."""

from .settings import DEFAULT_BASE_URL, EndpointConfig, Settings, SettingsStore, validate_endpoint

__all__ = ["DEFAULT_BASE_URL", "EndpointConfig", "Settings", "SettingsStore", "validate_endpoint"]
