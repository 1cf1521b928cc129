"""Caching, pacing and retry around a single adapter call."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence

from .cache import ResponseCache, fingerprint
from .providers.base import AIError, AIErrorType, AIResponse, Message, RequestOptions

if TYPE_CHECKING:
    from .providers.base import BaseAIProvider

SleepFn = Callable[[float], Awaitable[None]]

TRANSIENT_MARKERS = ("network", "timeout", "connection")

NO_RETRY = "none"
EXPONENTIAL = "exponential"
FIXED = "fixed"


@dataclass
class ExecutorSettings:
    """Retry and cache policy applied to every call of one adapter."""

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    cache_enabled: bool = True
    cache_ttl: float = 3600.0
    cache_capacity: int = 100
    default_timeout: Optional[float] = None


def retry_strategy(exc: BaseException) -> str:
    """Map a failure to the backoff strategy the executor applies."""
    if isinstance(exc, AIError):
        if exc.type is AIErrorType.RATE_LIMIT:
            return EXPONENTIAL
        if exc.type in (AIErrorType.TIMEOUT, AIErrorType.API_ERROR):
            return FIXED
        return NO_RETRY
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return FIXED
    message = str(exc).lower()
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return FIXED
    return NO_RETRY


class RequestExecutor:
    """Run one logical send: availability, cache, pacing, then bounded retries."""

    def __init__(
        self,
        settings: Optional[ExecutorSettings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger("ai_failover.executor")
        self._last_request_time: Optional[float] = None
        self.settings = settings or ExecutorSettings()
        self.cache = ResponseCache(
            capacity=self.settings.cache_capacity,
            ttl=self.settings.cache_ttl,
            clock=clock,
        )

    def configure(self, settings: ExecutorSettings) -> None:
        self.settings = settings
        if settings.cache_capacity != self.cache.capacity:
            self.cache = ResponseCache(capacity=settings.cache_capacity, ttl=settings.cache_ttl, clock=self._clock)
        else:
            self.cache.ttl = settings.cache_ttl

    def clear(self) -> None:
        self.cache.clear()
        self._last_request_time = None

    async def execute(
        self,
        adapter: "BaseAIProvider",
        messages: Sequence[Message],
        options: RequestOptions,
    ) -> AIResponse:
        provider_id = adapter.provider_id
        if not adapter.available:
            raise AIError(
                f"Provider {adapter.config.name} is not available",
                AIErrorType.INITIALIZATION,
                provider_id,
            )

        use_cache = self.settings.cache_enabled and options.cache is not False
        cache_key = fingerprint(provider_id, messages, options) if use_cache else None
        if cache_key is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self._logger.debug("Returning cached response for %s", provider_id)
                return cached

        timeout = options.timeout if options.timeout is not None else self.settings.default_timeout
        deadline = None if timeout is None else self._clock() + timeout

        await self._apply_rate_limit(adapter, deadline)

        # A hard token ceiling makes retried calls indistinguishable, so try once.
        max_attempts = 1 if options.max_tokens else max(1, self.settings.max_attempts)
        last_error: Optional[BaseException] = None

        for attempt in range(max_attempts):
            self._logger.debug(
                "Sending %s messages to %s (attempt %s/%s)",
                len(messages),
                provider_id,
                attempt + 1,
                max_attempts,
            )
            try:
                response = await self._call_with_deadline(adapter, messages, options, deadline)
            except Exception as exc:
                last_error = exc
                adapter.record_failure(exc)
                self._logger.warning(
                    "Request to %s failed (attempt %s/%s): %s",
                    provider_id,
                    attempt + 1,
                    max_attempts,
                    exc,
                )
                if isinstance(exc, AIError) and exc.details.get("deadline_exceeded"):
                    raise
                strategy = retry_strategy(exc)
                if strategy == NO_RETRY:
                    raise
                remaining = self._remaining(deadline)
                if remaining is not None and remaining <= 0:
                    if isinstance(exc, AIError) and exc.type is AIErrorType.TIMEOUT:
                        raise
                    raise self._deadline_error(provider_id) from exc
                if attempt >= max_attempts - 1:
                    break
                if strategy == EXPONENTIAL:
                    delay = self.settings.base_delay * (self.settings.backoff_multiplier ** attempt)
                else:
                    delay = self.settings.base_delay
                await self._backoff(delay, deadline, provider_id)
                continue

            adapter.record_success()
            if cache_key is not None:
                self.cache.put(cache_key, response)
            if response.usage:
                self._logger.info(
                    "Request completed provider=%s model=%s usage=%s",
                    provider_id,
                    response.model,
                    response.usage,
                )
            return response

        error = AIError(
            f"Failed to get response from {adapter.config.name} after {max_attempts} attempts",
            AIErrorType.API_ERROR,
            provider_id,
            details={"attempts": max_attempts, "last_error": last_error},
        )
        adapter.record_failure(error)
        raise error from last_error

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - self._clock()

    def _deadline_error(self, provider_id: str) -> AIError:
        return AIError(
            f"Request to {provider_id} exceeded its deadline",
            AIErrorType.TIMEOUT,
            provider_id,
            details={"deadline_exceeded": True},
        )

    async def _call_with_deadline(
        self,
        adapter: "BaseAIProvider",
        messages: Sequence[Message],
        options: RequestOptions,
        deadline: Optional[float],
    ) -> AIResponse:
        remaining = self._remaining(deadline)
        if remaining is None:
            return await adapter.call_backend(messages, options)
        if remaining <= 0:
            raise self._deadline_error(adapter.provider_id)
        try:
            return await asyncio.wait_for(adapter.call_backend(messages, options), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise self._deadline_error(adapter.provider_id) from exc

    async def _backoff(self, delay: float, deadline: Optional[float], provider_id: str) -> None:
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= delay:
            if remaining > 0:
                await self._sleep(remaining)
            raise self._deadline_error(provider_id)
        if delay > 0:
            await self._sleep(delay)

    async def _apply_rate_limit(self, adapter: "BaseAIProvider", deadline: Optional[float]) -> None:
        min_delay = float(adapter.config.options.get("min_request_delay") or 0)
        now = self._clock()
        if min_delay <= 0 or self._last_request_time is None:
            self._last_request_time = now
            return
        # Claim the dispatch slot before sleeping so concurrent sends queue up.
        slot = max(now, self._last_request_time + min_delay)
        self._last_request_time = slot
        if slot > now:
            await self._backoff(slot - now, deadline, adapter.provider_id)
