"""Settings dataclass, JSON persistence and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

from ..ai.client import DEFAULT_BASE_URL, DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_TEMPERATURE, ClientSettings
from ..ai.rate_limiter import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_MIN_DELAY_SECONDS,
    MinIntervalRateLimiter,
    NOOP_RATE_LIMITER,
    RateLimiter,
)

__all__ = [
    "Settings",
    "SettingsStore",
    "load_settings",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".cvagent"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "CVAGENT_API_KEY": "api_key",
    "CVAGENT_BASE_URL": "base_url",
    "CVAGENT_MODEL": "model",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CVAGENT_DEBUG_LOGGING": "debug_logging",
    "CVAGENT_RATE_LIMIT": "rate_limit_enabled",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CVAGENT_TEMPERATURE": "temperature",
    "CVAGENT_REQUEST_TIMEOUT": "request_timeout",
    "CVAGENT_MIN_REQUEST_INTERVAL": "min_request_interval",
    "CVAGENT_DEFAULT_BACKOFF": "default_backoff_seconds",
    "CVAGENT_STREAM_TIMEOUT": "stream_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "CVAGENT_MAX_TOKENS": "max_tokens",
    "CVAGENT_MAX_HISTORY": "max_history",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class Settings:
    """User-configurable runtime settings."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    request_timeout: float | None = 90.0
    rate_limit_enabled: bool = True
    min_request_interval: float = DEFAULT_MIN_DELAY_SECONDS
    default_backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    max_history: int = 10
    idle_suggestions: List[str] = field(default_factory=list)
    stream_timeout: float | None = None
    debug_logging: bool = False
    default_headers: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, str] = field(default_factory=dict)

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            request_timeout=self.request_timeout,
            default_headers=dict(self.default_headers) or None,
            metadata=dict(self.metadata) or None,
            debug_logging=self.debug_logging,
        )

    def rate_limiter(self) -> RateLimiter:
        if not self.rate_limit_enabled:
            return NOOP_RATE_LIMITER
        return MinIntervalRateLimiter(
            self.min_request_interval,
            default_backoff=self.default_backoff_seconds,
        )


class SettingsStore:
    """JSON persistence adapter for :class:`Settings`.

    The API key is never written to disk; supply it through
    ``CVAGENT_API_KEY`` or an explicit override.
    """

    def __init__(self, path: Path | None = None, *, env: Mapping[str, str] | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._env = env

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply environment and explicit overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            settings = self._apply_overrides(settings, _filter_fields(payload), source="file")
        settings = self._apply_env_overrides(settings)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")
        LOGGER.debug(
            "Settings loaded from %s: model=%s base_url=%s api_key=%s",
            self._path,
            settings.model,
            settings.base_url,
            redact_secret(settings.api_key),
        )
        return settings

    def save(self, settings: Settings) -> Path:
        data = asdict(settings)
        data.pop("api_key", None)
        data["version"] = _SETTINGS_VERSION
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        for mapping_field in ("metadata", "default_headers"):
            override = filtered.get(mapping_field)
            if isinstance(override, Mapping):
                merged = dict(getattr(settings, mapping_field) or {})
                merged.update(override)
                filtered[mapping_field] = merged
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        env = os.environ if self._env is None else self._env
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
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def load_settings(
    path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Convenience wrapper around :meth:`SettingsStore.load`."""

    store = SettingsStore(Path(path) if path is not None else None, env=env)
    return store.load(overrides=overrides)


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            if key != "version":
                LOGGER.debug("Ignoring unknown settings key %r", key)
            continue
        result[key] = value
    return result


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
