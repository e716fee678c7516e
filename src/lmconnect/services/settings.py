"""Settings dataclasses, endpoint validation and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, get_type_hints

import httpx

from ..chat.message_model import DEFAULT_ATTACHMENT_LABEL
from ..errors import ConfigurationInvalid

__all__ = [
    "DEFAULT_BASE_URL",
    "EndpointConfig",
    "Settings",
    "SettingsStore",
    "parse_flag",
    "parse_setting",
    "validate_endpoint",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:1234"
_SETTINGS_DIR = Path.home() / ".lmconnect"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ALLOWED_SCHEMES = ("http", "https")
# Key used by the VS Code extension settings this tool grew out of.
_LEGACY_KEYS: Mapping[str, str] = {"apiUrl": "base_url", "lmStudioConnect.apiUrl": "base_url"}
_ENV_OVERRIDES: Mapping[str, str] = {
    "LMCONNECT_BASE_URL": "base_url",
    "LMCONNECT_REQUEST_TIMEOUT": "request_timeout",
    "LMCONNECT_ATTACHMENT_LABEL": "attachment_label",
    "LMCONNECT_DEBUG_LOGGING": "debug_logging",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


@dataclass(slots=True)
class EndpointConfig:
    """Completion endpoint base URL read by the client at call time."""

    base_url: str = DEFAULT_BASE_URL


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    attachment_label: str = DEFAULT_ATTACHMENT_LABEL
    debug_logging: bool = False

    def endpoint(self) -> EndpointConfig:
        return EndpointConfig(base_url=self.base_url)


_FIELD_TYPES: Mapping[str, type] = get_type_hints(Settings)


def validate_endpoint(url: Any) -> str:
    """Return ``url`` normalized (trimmed, no trailing slash) or raise :class:`ConfigurationInvalid`.

    A valid endpoint is a string with an ``http``/``https`` scheme, a host and
    an optional port.
    """

    if url is None:
        url = ""
    if not isinstance(url, str):
        raise ConfigurationInvalid(repr(url), f"expected a string, got {type(url).__name__}")
    candidate = url.strip()
    if not candidate:
        raise ConfigurationInvalid(candidate, "URL is empty")
    try:
        parsed = httpx.URL(candidate)
    except httpx.InvalidURL as exc:
        raise ConfigurationInvalid(candidate, str(exc)) from exc
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ConfigurationInvalid(candidate, "scheme must be http or https")
    if not parsed.host:
        raise ConfigurationInvalid(candidate, "host is missing")
    if parsed.query or parsed.fragment:
        raise ConfigurationInvalid(candidate, "query strings and fragments are not allowed")
    return candidate.rstrip("/")


def parse_flag(raw: str) -> bool:
    """Interpret an on/off string such as ``yes``, ``0`` or ``debug``."""

    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{raw!r} is not an on/off value")


def parse_setting(name: str, raw: str) -> Any:
    """Convert the text form of setting ``name`` (CLI or environment) to its field type.

    Raises ``ValueError`` for unknown settings and unparseable values.
    """

    expected = _FIELD_TYPES.get(name)
    if expected is None:
        raise ValueError(f"Unknown setting '{name}'.")
    if expected is bool:
        return parse_flag(raw)
    if expected is float:
        return float(raw.strip())
    return raw.strip()


def _check_field(name: str, value: Any) -> Any:
    """Return ``value`` as the type of field ``name``; raise ``TypeError`` on a mismatch."""

    expected = _FIELD_TYPES[name]
    if expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(value, expected):
        return value
    raise TypeError(f"{name} must be {expected.__name__}, got {type(value).__name__}")


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present.

        Values of the wrong type are dropped with a warning so a hand-edited
        file never prevents start-up.
        """

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            for legacy_key, field_name in _LEGACY_KEYS.items():
                if legacy_key in payload and field_name not in payload:
                    payload[field_name] = payload.pop(legacy_key)
                    needs_migration = True
            settings = Settings(**_filter_fields(payload, source=str(self._path)))
            LOGGER.debug("Settings loaded from %s (base_url=%s)", self._path, settings.base_url)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        self._warn_if_invalid(settings)
        return settings

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s (base_url=%s)", self._path, settings.base_url)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            loaded = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(loaded, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
            return {}
        return loaded

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        filtered = _filter_fields(
            {key: value for key, value in overrides.items() if value is not None},
            source=source,
        )
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = parse_setting(field_name, value)
            except ValueError as exc:
                LOGGER.warning("Ignoring environment override %s: %s", env_name, exc)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    @staticmethod
    def _warn_if_invalid(settings: Settings) -> None:
        try:
            validate_endpoint(settings.base_url)
        except ConfigurationInvalid as exc:
            # Kept as-is; the next request reports it as a completion failure.
            LOGGER.warning("Configured endpoint is invalid: %s", exc)


def _filter_fields(payload: Mapping[str, Any], *, source: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in _FIELD_TYPES:
            continue
        try:
            result[key] = _check_field(key, value)
        except TypeError as exc:
            LOGGER.warning("Ignoring setting from %s: %s", source, exc)
    return result
