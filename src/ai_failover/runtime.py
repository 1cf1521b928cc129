"""Runtime wiring: configuration to registry, router and status facade."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, Optional

from .config import GlobalSettings, RouterConfig
from .executor import ExecutorSettings
from .metrics import LoggingMetricsCollector, MetricsCollector, PrometheusMetricsCollector
from .providers.anthropic import ClaudeProviderFactory
from .providers.base import AIResponse, BaseAIProvider, Message, ProviderFactory, RequestOptions
from .providers.mock import MockProviderFactory
from .providers.openai import OpenAIProviderFactory
from .registry import ProviderRegistry
from .router import FallbackRouter
from .status import StatusFacade

LOGGER = logging.getLogger("ai_failover.runtime")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def default_factories() -> Dict[str, ProviderFactory]:
    claude = ClaudeProviderFactory()
    openai = OpenAIProviderFactory()
    mock = MockProviderFactory()
    return {
        "claude": claude,
        "anthropic": claude,
        "openai": openai,
        "gpt": openai,
        "mock": mock,
        "test": mock,
    }


def executor_settings_for(settings: GlobalSettings) -> ExecutorSettings:
    return ExecutorSettings(
        max_attempts=settings.max_retries,
        base_delay=settings.retry_delay,
        backoff_multiplier=settings.backoff_multiplier,
        cache_enabled=settings.cache_enabled,
        cache_ttl=settings.cache_ttl,
        cache_capacity=settings.cache_capacity,
        default_timeout=settings.request_timeout,
    )


def create_registry(
    config: RouterConfig,
    factories: Optional[Mapping[str, ProviderFactory]] = None,
) -> ProviderRegistry:
    """Build a registry holding its own copy of every configured provider."""
    registry = ProviderRegistry(executor_settings=executor_settings_for(config.settings))
    for kind, factory in (factories or default_factories()).items():
        registry.register_factory(kind, factory)
    for provider in config.providers:
        registry.register_provider(copy.deepcopy(provider))
    if config.active_provider and registry.is_enabled(config.active_provider):
        registry.active_provider = config.active_provider
    elif config.active_provider:
        LOGGER.warning("Configured active provider %s is not registered or disabled", config.active_provider)
    return registry


class FailoverRuntime:
    """Own the registry, router and status facade for one application."""

    def __init__(
        self,
        *,
        config: RouterConfig,
        registry: Optional[ProviderRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        logging.getLogger("ai_failover").setLevel(_level_for(config.settings.log_level))

        self.registry = registry or create_registry(config)
        self.metrics = metrics or self._create_metrics_collector(config)
        self.router = FallbackRouter(self.registry, metrics=self.metrics)
        self.status = StatusFacade(self.registry)
        self._started = False
        config.add_listener(self._apply_config_change)

    async def start(self, *, warm: bool = True) -> None:
        """Optionally initialize the active provider ahead of the first request."""
        if self._started:
            return
        self._started = True
        if warm:
            try:
                adapter = await self.router.get_active_provider()
            except Exception as exc:
                LOGGER.warning("No provider could be initialized at startup: %s", exc)
            else:
                LOGGER.info("Runtime started with active provider %s", adapter.provider_id)

    async def stop(self) -> None:
        """Dispose every adapter and close its network client."""
        self.config.remove_listener(self._apply_config_change)
        for adapter in self.registry.dispose_all():
            try:
                await adapter.aclose()
            except Exception:  # pragma: no cover - provider cleanup best-effort
                LOGGER.debug("Provider cleanup failed for %s", adapter.provider_id, exc_info=True)
        self._started = False
        LOGGER.info("Runtime stopped")

    async def __aenter__(self) -> "FailoverRuntime":
        await self.start(warm=False)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def initialize_all(self) -> Dict[str, Optional[str]]:
        """Initialize every chain provider; map id to error text or None."""
        results: Dict[str, Optional[str]] = {}
        for provider_id in self.registry.fallback_chain:
            try:
                await self.registry.initialize_provider(provider_id)
            except Exception as exc:
                results[provider_id] = str(exc) or type(exc).__name__
            else:
                results[provider_id] = None
        return results

    async def switch_provider(self, provider_id: str) -> BaseAIProvider:
        return await self.router.switch_provider(provider_id)

    async def send_prompt(
        self,
        prompt: str,
        options: Optional[RequestOptions] = None,
    ) -> AIResponse:
        return await self.router.send_message([Message(role="user", content=prompt)], options)

    def _apply_config_change(self, section: str, target: Optional[str], changes: Dict[str, Any]) -> None:
        if section == "provider" and target is not None:
            if self.registry.get_registration(target) is not None:
                self.registry.update_provider(target, **changes)
        elif section == "settings":
            self.registry.update_settings(executor_settings_for(self.config.settings))
            if "log_level" in changes:
                logging.getLogger("ai_failover").setLevel(_level_for(self.config.settings.log_level))
        elif section == "active_provider" and target is not None:
            if self.registry.is_enabled(target):
                self.registry.active_provider = target

    def _create_metrics_collector(self, config: RouterConfig) -> MetricsCollector:
        if config.settings.metrics_backend == "prometheus":
            return PrometheusMetricsCollector(port=config.settings.metrics_port)
        return LoggingMetricsCollector()
