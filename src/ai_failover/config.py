"""Configuration utilities for the AI failover router."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

LOGGER = logging.getLogger("ai_failover.config")

REDACTED = "***REDACTED***"
DEFAULT_PRIORITY = 999
LOG_LEVELS = {"debug", "info", "warn", "warning", "error"}

# Vendor credential variables consulted when a provider has no explicit key.
API_KEY_ENV = {
    "claude": "ANTHROPIC_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gpt": "OPENAI_API_KEY",
}

# Called as listener(section, target, changes) after a runtime update is applied.
ConfigListener = Callable[[str, Optional[str], Dict[str, Any]], None]


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


class ConfigSource(str, Enum):
    DEFAULT = "default"
    ENVIRONMENT = "environment"
    RUNTIME = "runtime"


def _as_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


@dataclass
class ProviderConfig:
    """Settings for a single backend provider."""

    provider: str
    name: str
    api_key: Optional[str] = None
    endpoint: Optional[str] = None
    model: Optional[str] = None
    enabled: bool = True
    priority: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def sort_priority(self) -> int:
        return DEFAULT_PRIORITY if self.priority is None else self.priority

    def redacted(self) -> Dict[str, Any]:
        """Return a dict view without the credential value."""
        payload = asdict(self)
        payload.pop("api_key")
        payload["has_api_key"] = bool(self.api_key)
        return payload


@dataclass
class GlobalSettings:
    """Cross-provider settings for caching, retry and logging."""

    cache_enabled: bool = True
    cache_ttl: float = 3600.0
    cache_capacity: int = 100
    log_level: str = "info"
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_multiplier: float = 2.0
    request_timeout: Optional[float] = None
    metrics_backend: str = "logging"
    metrics_port: Optional[int] = None


def default_providers() -> List[ProviderConfig]:
    return [
        ProviderConfig(
            provider="mock",
            name="Mock AI Provider",
            enabled=True,
            priority=100,
        ),
        ProviderConfig(
            provider="claude",
            name="Claude AI (Anthropic)",
            enabled=True,
            priority=1,
            model="claude-sonnet-4-5",
            options={
                "fallback_models": [
                    "claude-opus-4-1",
                    "claude-opus-4-0",
                    "claude-sonnet-4-0",
                ]
            },
        ),
        ProviderConfig(
            provider="openai",
            name="OpenAI GPT-4",
            enabled=False,
            priority=2,
            model="gpt-4o",
        ),
    ]


@dataclass
class RouterConfig:
    """Runtime configuration for the provider registry and router.

    Values are read once by :meth:`from_env`; afterwards the object is the
    single source of truth and may be changed through the ``update_*`` and
    ``set_*`` methods, which record where each setting came from and notify
    registered listeners so a running registry follows along.
    """

    active_provider: Optional[str] = "claude"
    providers: List[ProviderConfig] = field(default_factory=default_providers)
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    sources: Dict[str, ConfigSource] = field(default_factory=dict, repr=False)
    listeners: List[ConfigListener] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RouterConfig":
        """Build configuration from defaults overlaid with environment variables."""
        env = os.environ if env is None else env
        config = cls()

        active = env.get("AI_PROVIDER")
        if active:
            config.active_provider = active.strip()
            config.sources["active_provider"] = ConfigSource.ENVIRONMENT

        claude = config.get_provider_config("claude")
        if claude is not None:
            if env.get("ANTHROPIC_API_KEY"):
                claude.api_key = env["ANTHROPIC_API_KEY"]
                claude.enabled = True
                config.sources["provider.claude.api_key"] = ConfigSource.ENVIRONMENT
            if env.get("ANTHROPIC_MODEL"):
                claude.model = env["ANTHROPIC_MODEL"]
                config.sources["provider.claude.model"] = ConfigSource.ENVIRONMENT

        openai = config.get_provider_config("openai")
        if openai is not None and env.get("OPENAI_API_KEY"):
            openai.api_key = env["OPENAI_API_KEY"]
            openai.enabled = True
            config.sources["provider.openai.api_key"] = ConfigSource.ENVIRONMENT
            if env.get("OPENAI_ORG"):
                openai.options["organization"] = env["OPENAI_ORG"]
            if env.get("OPENAI_PROJECT"):
                openai.options["project"] = env["OPENAI_PROJECT"]
        if openai is not None and env.get("OPENAI_MODEL"):
            openai.model = env["OPENAI_MODEL"]
            config.sources["provider.openai.model"] = ConfigSource.ENVIRONMENT

        settings = config.settings
        try:
            if "AI_CACHE_ENABLED" in env:
                settings.cache_enabled = _as_bool(env["AI_CACHE_ENABLED"])
                config.sources["settings.cache_enabled"] = ConfigSource.ENVIRONMENT
            if "AI_CACHE_TTL" in env:
                settings.cache_ttl = float(env["AI_CACHE_TTL"])
            if "AI_RETRY_MAX" in env:
                settings.max_retries = int(env["AI_RETRY_MAX"])
            if "AI_RETRY_DELAY" in env:
                settings.retry_delay = float(env["AI_RETRY_DELAY"])
            if "AI_RETRY_BACKOFF" in env:
                settings.backoff_multiplier = float(env["AI_RETRY_BACKOFF"])
            if env.get("AI_REQUEST_TIMEOUT"):
                settings.request_timeout = float(env["AI_REQUEST_TIMEOUT"])
            metrics_port_raw = env.get("AI_METRICS_PORT")
            settings.metrics_port = int(metrics_port_raw) if metrics_port_raw else None
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        if env.get("AI_LOG_LEVEL"):
            level = env["AI_LOG_LEVEL"].strip().lower()
            if level not in LOG_LEVELS:
                raise ConfigError(f"AI_LOG_LEVEL must be one of {sorted(LOG_LEVELS)}")
            settings.log_level = level
            config.sources["settings.log_level"] = ConfigSource.ENVIRONMENT
        settings.metrics_backend = env.get("AI_METRICS_BACKEND", settings.metrics_backend).strip().lower()

        if settings.cache_ttl < 0:
            raise ConfigError("AI_CACHE_TTL must be >= 0")
        if settings.max_retries < 1:
            raise ConfigError("AI_RETRY_MAX must be >= 1")
        if settings.retry_delay < 0:
            raise ConfigError("AI_RETRY_DELAY must be >= 0")
        if settings.backoff_multiplier < 1:
            raise ConfigError("AI_RETRY_BACKOFF must be >= 1")
        if settings.request_timeout is not None and settings.request_timeout <= 0:
            raise ConfigError("AI_REQUEST_TIMEOUT must be > 0 when provided")
        if settings.metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("AI_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if settings.metrics_port is not None and settings.metrics_port < 0:
            raise ConfigError("AI_METRICS_PORT must be >= 0 when provided")

        LOGGER.info(
            "Loaded environment configuration: active_provider=%s anthropic_key=%s openai_key=%s",
            config.active_provider,
            bool(env.get("ANTHROPIC_API_KEY")),
            bool(env.get("OPENAI_API_KEY")),
        )
        return config

    def get_provider_config(self, provider_id: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.provider == provider_id:
                return provider
        return None

    def enabled_providers(self) -> List[ProviderConfig]:
        return [provider for provider in self.providers if provider.enabled]

    def update_provider_config(self, provider_id: str, **updates: Any) -> ProviderConfig:
        """Apply runtime changes to one provider's configuration."""
        provider = self.get_provider_config(provider_id)
        if provider is None:
            raise ConfigError(f"Provider {provider_id} not found")
        known = {f.name for f in fields(ProviderConfig)} - {"provider"}
        unknown = set(updates) - known
        if unknown:
            raise ConfigError(f"Unknown provider settings: {', '.join(sorted(unknown))}")
        for key, value in updates.items():
            setattr(provider, key, value)
        self.sources[f"provider.{provider_id}"] = ConfigSource.RUNTIME
        LOGGER.info("Updated provider configuration: %s (%s)", provider_id, ", ".join(sorted(updates)))
        self._notify("provider", provider_id, dict(updates))
        return provider

    def set_active_provider(self, provider_id: str) -> None:
        provider = self.get_provider_config(provider_id)
        if provider is None:
            raise ConfigError(f"Provider {provider_id} not found")
        if not provider.enabled:
            raise ConfigError(f"Provider {provider_id} is disabled")
        self.active_provider = provider_id
        self.sources["active_provider"] = ConfigSource.RUNTIME
        LOGGER.info("Set active provider: %s", provider_id)
        self._notify("active_provider", provider_id, {})

    def update_settings(self, **updates: Any) -> GlobalSettings:
        known = {f.name for f in fields(GlobalSettings)}
        unknown = set(updates) - known
        if unknown:
            raise ConfigError(f"Unknown global settings: {', '.join(sorted(unknown))}")
        for key, value in updates.items():
            setattr(self.settings, key, value)
            self.sources[f"settings.{key}"] = ConfigSource.RUNTIME
        self._notify("settings", None, dict(updates))
        return self.settings

    def source_of(self, path: str) -> ConfigSource:
        return self.sources.get(path, ConfigSource.DEFAULT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_provider": self.active_provider,
            "providers": [asdict(provider) for provider in self.providers],
            "settings": asdict(self.settings),
        }

    def export(self) -> str:
        """Serialize configuration as JSON with every credential redacted."""
        return json.dumps(_redact(self.to_dict()), indent=2, sort_keys=True)

    def validate(self) -> Tuple[bool, List[str]]:
        errors: List[str] = []
        if not self.enabled_providers():
            errors.append("No providers are enabled")

        if self.active_provider:
            active = self.get_provider_config(self.active_provider)
            if active is None:
                errors.append(f"Active provider {self.active_provider} not found")
            elif not active.enabled:
                errors.append(f"Active provider {self.active_provider} is disabled")

        for provider in self.providers:
            if not provider.provider or not provider.name:
                errors.append(f"Provider missing required fields: {provider.redacted()}")
            env_var = API_KEY_ENV.get(provider.provider)
            if provider.enabled and env_var and not (provider.api_key or os.environ.get(env_var)):
                errors.append(f"Provider {provider.provider} is enabled but has no API key")
        return not errors, errors

    def add_listener(self, listener: ConfigListener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: ConfigListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def _notify(self, section: str, target: Optional[str], changes: Dict[str, Any]) -> None:
        for listener in list(self.listeners):
            listener(section, target, changes)

    def copy(self) -> "RouterConfig":
        """Deep copy of the settings; listeners stay with the original."""
        return RouterConfig(
            active_provider=self.active_provider,
            providers=copy.deepcopy(self.providers),
            settings=copy.deepcopy(self.settings),
            sources=dict(self.sources),
        )


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if key in {"api_key", "apiKey"}:
                redacted[key] = REDACTED if item else None
            else:
                redacted[key] = _redact(item)
        return redacted
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value
