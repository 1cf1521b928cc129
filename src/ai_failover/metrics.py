"""Metrics collection for routed requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


@dataclass
class MetricsEvent:
    """Outcome of one routed request."""

    status: str
    provider: Optional[str]
    duration_ms: float
    attempts: int
    attempted: List[str] = field(default_factory=list)
    fallback: bool = False
    retryable: Optional[bool] = None
    error_type: Optional[str] = None


class MetricsCollector(Protocol):
    """Anything that can receive routed-request events."""

    def record(self, event: MetricsEvent) -> None:
        """Handle one event; must not raise for ordinary payloads."""


class LoggingMetricsCollector(MetricsCollector):
    """Emits each event as a structured log record."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("ai_failover.metrics")

    def record(self, event: MetricsEvent) -> None:
        payload = {
            "status": event.status,
            "provider": event.provider,
            "duration_ms": round(event.duration_ms, 3),
            "attempts": event.attempts,
            "attempted": list(event.attempted),
            "fallback": event.fallback,
            "retryable": event.retryable,
            "error_type": event.error_type,
        }
        self._logger.info("request_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Exposes routing counters and histograms through prometheus_client."""

    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._requests = Counter(
            "ai_failover_requests_total",
            "Total routed requests",
            ["status", "provider", "fallback", "error_type"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "ai_failover_request_duration_seconds",
            "Routed request duration",
            ["status", "provider"],
            registry=self._registry,
        )
        self._attempts = Histogram(
            "ai_failover_provider_attempts",
            "Providers attempted per routed request",
            ["status"],
            registry=self._registry,
            buckets=(1, 2, 3, 4, 5, 10),
        )
        self._provider_failures = Counter(
            "ai_failover_provider_failures_total",
            "Provider failures observed while routing",
            ["provider"],
            registry=self._registry,
        )
        self._active = Gauge(
            "ai_failover_active_provider",
            "1 for the provider that served the latest request",
            ["provider"],
            registry=self._registry,
        )
        self._last_active: Optional[str] = None
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: MetricsEvent) -> None:
        provider = event.provider or "none"
        error_type = event.error_type or "none"

        self._requests.labels(
            status=event.status,
            provider=provider,
            fallback=str(bool(event.fallback)).lower(),
            error_type=error_type,
        ).inc()
        self._duration.labels(
            status=event.status,
            provider=provider,
        ).observe(max(event.duration_ms / 1000.0, 0.0))
        self._attempts.labels(status=event.status).observe(max(float(event.attempts), 0.0))

        failed = event.attempted if event.status != "success" else event.attempted[:-1]
        for failed_provider in failed:
            self._provider_failures.labels(provider=failed_provider).inc()

        if event.status == "success" and event.provider:
            if self._last_active and self._last_active != event.provider:
                self._active.labels(provider=self._last_active).set(0)
            self._active.labels(provider=event.provider).set(1)
            self._last_active = event.provider
