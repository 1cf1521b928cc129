"""Cross-provider failover for a single logical request."""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence

from .metrics import LoggingMetricsCollector, MetricsCollector, MetricsEvent
from .providers.base import AIError, AIErrorType, AIResponse, BaseAIProvider, Message, RequestOptions
from .registry import ProviderRegistry

LOGGER = logging.getLogger("ai_failover.router")


class FallbackRouter:
    """Send requests to the active provider, failing over along the chain.

    The active provider is sticky: it is tried first until it fails, then
    the chain is walked in priority order and the first provider that
    answers becomes active. Attempt bookkeeping lives on the call stack, so
    concurrent requests never influence each other's failover.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.registry = registry
        self._metrics = metrics or LoggingMetricsCollector()
        self._clock = clock

    @property
    def active_provider_id(self) -> Optional[str]:
        return self.registry.active_provider

    def _candidates(self) -> List[str]:
        candidates: List[str] = []
        active = self.registry.active_provider
        if active and self.registry.is_enabled(active):
            candidates.append(active)
        candidates.extend(pid for pid in self.registry.fallback_chain if pid not in candidates)
        return candidates

    async def send_message(
        self,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
    ) -> AIResponse:
        started = self._clock()
        attempted: List[str] = []
        last_error: Optional[BaseException] = None

        for provider_id in self._candidates():
            try:
                adapter = await self.registry.initialize_provider(provider_id)
                response = await adapter.send_message(messages, options)
            except Exception as exc:
                attempted.append(provider_id)
                last_error = exc
                LOGGER.warning("Provider %s failed, trying next: %s", provider_id, exc)
                continue

            attempted.append(provider_id)
            if self.registry.active_provider != provider_id:
                LOGGER.info(
                    "Fallback successful, switched active provider from %s to %s",
                    self.registry.active_provider,
                    provider_id,
                )
            self.registry.active_provider = provider_id
            self._record(
                "success",
                provider_id,
                started,
                attempted,
                fallback=len(attempted) > 1,
            )
            return response

        error = AIError(
            f"All providers failed. Attempted: {', '.join(attempted) or 'none'}",
            AIErrorType.API_ERROR,
            details={"attempted": attempted, "last_error": last_error},
        )
        self._record(
            "error",
            attempted[-1] if attempted else None,
            started,
            attempted,
            fallback=len(attempted) > 1,
            error=last_error,
        )
        LOGGER.error("%s", error.message)
        if last_error is not None:
            raise error from last_error
        raise error

    async def switch_provider(self, provider_id: str) -> BaseAIProvider:
        """Make ``provider_id`` the active provider after initializing it."""
        registration = self.registry.get_registration(provider_id)
        if registration is not None and not registration.config.enabled:
            raise AIError(
                f"Provider {provider_id} is disabled",
                AIErrorType.CONFIGURATION,
                provider_id,
            )
        adapter = await self.registry.initialize_provider(provider_id)
        if not adapter.available:
            raise AIError(
                f"Provider not available: {provider_id}",
                AIErrorType.INITIALIZATION,
                provider_id,
            )
        previous = self.registry.active_provider
        self.registry.active_provider = provider_id
        LOGGER.info("Switched provider from %s to %s", previous, provider_id)
        return adapter

    async def get_active_provider(self) -> BaseAIProvider:
        """Return the active adapter, activating the first usable provider if none is set."""
        active = self.registry.active_provider
        if active and self.registry.is_enabled(active):
            return await self.registry.initialize_provider(active)

        for provider_id in self.registry.fallback_chain:
            try:
                return await self.switch_provider(provider_id)
            except AIError as exc:
                LOGGER.warning("Failed to initialize provider %s, trying next: %s", provider_id, exc)
        raise AIError("No providers available", AIErrorType.PROVIDER_NOT_FOUND)

    def _record(
        self,
        status: str,
        provider: Optional[str],
        started: float,
        attempted: List[str],
        *,
        fallback: bool,
        error: Optional[BaseException] = None,
    ) -> None:
        event = MetricsEvent(
            status=status,
            provider=provider,
            duration_ms=(self._clock() - started) * 1000.0,
            attempts=len(attempted),
            attempted=list(attempted),
            fallback=fallback,
        )
        if error is not None:
            if isinstance(error, AIError):
                event.error_type = error.type.value
                event.retryable = error.retryable
            else:
                event.error_type = type(error).__name__
        self._metrics.record(event)
