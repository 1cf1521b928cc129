"""Fallback across the model variants of a single vendor."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, TypeVar

T = TypeVar("T")

RECOVERY_WINDOW = 3600.0
OVERLOAD_STATUS = 529
OVERLOAD = "overload"
GENERIC = "generic"

LOGGER = logging.getLogger("ai_failover.cascade")


@dataclass
class ModelFallbackState:
    failed_model: str
    fallback_model: Optional[str]
    timestamp: float
    reason: str


def _status_code(exc: BaseException) -> Optional[int]:
    for candidate in (exc, exc.__cause__):
        if candidate is None:
            continue
        for attr in ("status_code", "status"):
            value = getattr(candidate, attr, None)
            if isinstance(value, int):
                return value
        details = getattr(candidate, "details", None)
        if isinstance(details, dict) and isinstance(details.get("status_code"), int):
            return details["status_code"]
    return None


def classify_failure(exc: BaseException) -> str:
    """Return ``overload`` for 529 responses or overload messages, else ``generic``."""
    if _status_code(exc) == OVERLOAD_STATUS:
        return OVERLOAD
    if OVERLOAD in str(exc).lower():
        return OVERLOAD
    return GENERIC


class ModelCascade:
    """Ordered model list with time-bounded fallback links.

    Each failure records a link ``failed -> next`` that stays live for
    ``recovery_window`` seconds. ``current_model`` follows live links from
    the primary model, so a primary that failed an hour ago is tried again
    without any explicit reset.
    """

    def __init__(
        self,
        models: Sequence[str],
        *,
        provider: str = "",
        recovery_window: float = RECOVERY_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        ordered: List[str] = []
        for model in models:
            if model and model not in ordered:
                ordered.append(model)
        if not ordered:
            raise ValueError("ModelCascade requires at least one model")
        self.models = ordered
        self.provider = provider
        self.recovery_window = recovery_window
        self._clock = clock
        self._states: Dict[str, ModelFallbackState] = {}

    @property
    def primary(self) -> str:
        return self.models[0]

    def _live_state(self, model: str) -> Optional[ModelFallbackState]:
        state = self._states.get(model)
        if state is None:
            return None
        if self._clock() - state.timestamp >= self.recovery_window:
            del self._states[model]
            return None
        return state

    def current_model(self) -> str:
        model = self.primary
        visited = {model}
        for _ in range(len(self.models)):
            state = self._live_state(model)
            if state is None or state.fallback_model is None:
                break
            if state.fallback_model in visited:
                LOGGER.warning(
                    "Fallback cycle detected for %s at %s -> %s",
                    self.provider,
                    model,
                    state.fallback_model,
                )
                break
            model = state.fallback_model
            visited.add(model)
        return model

    def _next_candidate(self, tried: Set[str]) -> Optional[str]:
        for model in self.models:
            if model in tried:
                continue
            if self._live_state(model) is not None:
                continue
            return model
        return None

    async def call(self, attempt: Callable[[str], Awaitable[T]]) -> T:
        return await self.call_with_model(self.current_model(), attempt)

    async def call_with_model(
        self,
        model: str,
        attempt: Callable[[str], Awaitable[T]],
        *,
        _tried: Optional[Set[str]] = None,
    ) -> T:
        """Call ``attempt(model)``, cascading to the next usable model on failure.

        When no candidate is left, the last model's own exception is
        re-raised unwrapped. Each earlier model's failure stays reachable
        through ``__context__``, back to the first model tried.
        """
        tried = set() if _tried is None else _tried
        tried.add(model)
        try:
            result = await attempt(model)
        except Exception as exc:
            reason = classify_failure(exc)
            fallback = self._next_candidate(tried)
            self._states[model] = ModelFallbackState(model, fallback, self._clock(), reason)
            if fallback is None:
                LOGGER.error(
                    "All models exhausted for %s after %s failed (%s)",
                    self.provider,
                    model,
                    reason,
                )
                raise
            LOGGER.warning(
                "Model %s failed for %s (%s), falling back to %s",
                model,
                self.provider,
                reason,
                fallback,
            )
            return await self.call_with_model(fallback, attempt, _tried=tried)
        if self._states.pop(model, None) is not None:
            LOGGER.info("Model %s recovered for %s", model, self.provider)
        return result

    def active_fallbacks(self) -> List[ModelFallbackState]:
        return [state for state in (self._live_state(m) for m in list(self._states)) if state]

    def status(self) -> Dict[str, Any]:
        now = self._clock()
        fallbacks = []
        for state in self.active_fallbacks():
            until = state.timestamp + self.recovery_window
            fallbacks.append(
                {
                    "failed_model": state.failed_model,
                    "fallback_model": state.fallback_model,
                    "reason": state.reason,
                    "since": state.timestamp,
                    "until": until,
                    "remaining_seconds": max(0.0, until - now),
                }
            )
        return {
            "current_model": self.current_model(),
            "primary_model": self.primary,
            "models": list(self.models),
            "fallbacks": fallbacks,
        }

    def reset(self) -> None:
        self._states.clear()
