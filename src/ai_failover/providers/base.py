"""Provider abstractions shared by every backend adapter."""

from __future__ import annotations

import json
import logging
import math
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..config import ProviderConfig

if TYPE_CHECKING:
    from ..cascade import ModelCascade
    from ..executor import ExecutorSettings, RequestExecutor


class AIErrorType(str, Enum):
    """Stable error kinds, safe to serialize over the wire."""

    CONFIGURATION = "CONFIGURATION"
    INITIALIZATION = "INITIALIZATION"
    API_ERROR = "API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    PARSING = "PARSING"
    VALIDATION = "VALIDATION"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_TYPES = frozenset(
    {AIErrorType.RATE_LIMIT, AIErrorType.TIMEOUT, AIErrorType.API_ERROR}
)


class AIError(Exception):
    """Standard error raised by adapters and the routing layer."""

    def __init__(
        self,
        message: str,
        error_type: AIErrorType = AIErrorType.UNKNOWN,
        provider: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.type = AIErrorType(error_type)
        self.provider = provider
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.type in RETRYABLE_ERROR_TYPES

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status_code")

    def to_dict(self) -> Dict[str, Any]:
        details = {
            key: (str(value) if isinstance(value, BaseException) else value)
            for key, value in self.details.items()
        }
        return {
            "type": self.type.value,
            "message": self.message,
            "provider": self.provider,
            "retryable": self.retryable,
            "details": details,
        }

    def __repr__(self) -> str:
        return f"AIError({self.type.value}, {self.message!r}, provider={self.provider!r})"


@dataclass
class Message:
    """A single conversation turn; opaque to the routing layer."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class RequestOptions:
    """Per-request knobs understood by the executor and the adapters."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    system_prompt: Optional[str] = None
    timeout: Optional[float] = None
    cache: bool = True
    cache_key: Optional[str] = None
    provider_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AIResponse:
    """Structured provider output returned to callers."""

    content: str
    model: str
    provider: str
    usage: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None


@dataclass
class ProviderCapabilities:
    streaming: bool = False
    function_calling: bool = False
    max_context_tokens: Optional[int] = None
    max_response_tokens: Optional[int] = None
    system_messages: bool = True
    vision: bool = False
    json_mode: bool = False
    custom: Dict[str, bool] = field(default_factory=dict)


class ProviderState(str, Enum):
    CONSTRUCTED = "constructed"
    INITIALIZING = "initializing"
    AVAILABLE = "available"
    FAILED = "failed"
    DISPOSED = "disposed"


@dataclass
class FallbackSummary:
    active: bool = False
    reason: Optional[str] = None
    until: Optional[float] = None


@dataclass
class ProviderStatus:
    """Health and bookkeeping snapshot for one adapter instance."""

    available: bool = False
    state: ProviderState = ProviderState.CONSTRUCTED
    current_model: Optional[str] = None
    error: Optional[str] = None
    last_success: Optional[float] = None
    last_error: Optional[float] = None
    request_count: int = 0
    fallback: FallbackSummary = field(default_factory=FallbackSummary)
    model_fallbacks: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload


class ProviderFactory(Protocol):
    """Constructs adapters for the configurations it supports."""

    def create(self, config: ProviderConfig) -> "BaseAIProvider":
        """Build a new, uninitialized adapter."""

    def supports(self, config: ProviderConfig) -> bool:
        """Return True if this factory can build an adapter for ``config``."""


_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _now() -> float:
    return time.time()


class BaseAIProvider(ABC):
    """Common adapter behaviour: lifecycle, status and the request pipeline.

    Subclasses implement the ``_perform_*`` hooks; ``send_message`` runs every
    call through a :class:`~ai_failover.executor.RequestExecutor` and, when the
    config lists ``fallback_models``, through a
    :class:`~ai_failover.cascade.ModelCascade`.
    """

    default_model: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        capabilities: ProviderCapabilities,
        *,
        executor: Optional["RequestExecutor"] = None,
        clock: Callable[[], float] = _now,
    ) -> None:
        from ..cascade import ModelCascade
        from ..executor import RequestExecutor

        self.config = config
        self.capabilities = capabilities
        self._clock = clock
        self._logger = logging.getLogger(f"ai_failover.providers.{config.provider}")
        self._status = ProviderStatus(current_model=config.model or self.default_model or None)
        self._executor = executor or RequestExecutor()

        fallback_models = list(config.options.get("fallback_models") or [])
        primary = config.model or self.default_model
        self._cascade: Optional[ModelCascade] = None
        if fallback_models and primary:
            self._cascade = ModelCascade(
                [primary, *fallback_models],
                provider=config.provider,
                clock=clock,
            )

    @property
    def provider_id(self) -> str:
        return self.config.provider

    @property
    def status(self) -> ProviderStatus:
        return self.get_status()

    @property
    def available(self) -> bool:
        return self._status.available

    @property
    def cascade(self) -> Optional["ModelCascade"]:
        return self._cascade

    @property
    def executor(self) -> "RequestExecutor":
        return self._executor

    def configure(self, settings: "ExecutorSettings") -> None:
        """Apply registry-wide cache and retry settings to this adapter."""
        self._executor.configure(settings)

    @property
    def current_model(self) -> Optional[str]:
        if self._cascade is not None:
            return self._cascade.current_model()
        return self.config.model or self.default_model or None

    async def initialize(self) -> None:
        """Validate configuration and run provider-specific setup."""
        self._status.state = ProviderState.INITIALIZING
        try:
            self._logger.info("Initializing %s provider", self.config.name)
            if not await self.validate_config():
                raise AIError(
                    "Invalid provider configuration",
                    AIErrorType.CONFIGURATION,
                    self.provider_id,
                )
            await self._perform_initialization()
        except Exception as exc:
            self._status.available = False
            self._status.state = ProviderState.FAILED
            self._status.error = str(exc) or type(exc).__name__
            self._status.last_error = self._clock()
            self._logger.error("Failed to initialize %s provider: %s", self.config.name, exc)
            raise
        self._status.available = True
        self._status.state = ProviderState.AVAILABLE
        self._status.error = None
        self._status.last_success = self._clock()
        self._logger.info("%s provider initialized", self.config.name)

    async def send_message(
        self,
        messages: Sequence[Message],
        options: Optional[RequestOptions] = None,
    ) -> AIResponse:
        """Send a conversation through caching, pacing and retry."""
        return await self._executor.execute(self, messages, options or RequestOptions())

    async def call_backend(self, messages: Sequence[Message], options: RequestOptions) -> AIResponse:
        """Single backend call, cascading across models when configured."""
        if self._cascade is None:
            return await self._perform_send(messages, options, self.current_model or "")

        async def _attempt(model: str) -> AIResponse:
            return await self._perform_send(messages, options, model)

        return await self._cascade.call(_attempt)

    async def validate_config(self) -> bool:
        if not self.config.provider or not self.config.name:
            self._logger.error("Provider id and name are required")
            return False
        return await self._perform_config_validation()

    def get_status(self) -> ProviderStatus:
        snapshot = replace(self._status)
        snapshot.current_model = self.current_model
        snapshot.fallback = FallbackSummary()
        snapshot.model_fallbacks = []
        if self._cascade is not None:
            cascade_status = self._cascade.status()
            snapshot.model_fallbacks = cascade_status["fallbacks"]
            if cascade_status["fallbacks"]:
                first = cascade_status["fallbacks"][0]
                snapshot.fallback = FallbackSummary(
                    active=True,
                    reason=first["reason"],
                    until=first["until"],
                )
        return snapshot

    def record_success(self) -> None:
        self._status.last_success = self._clock()
        self._status.request_count += 1

    def record_failure(self, exc: BaseException) -> None:
        self._status.last_error = self._clock()
        self._status.error = str(exc) or type(exc).__name__

    def reset(self) -> None:
        """Clear cache, counters and cascade state; availability is kept."""
        self._logger.info("Resetting %s provider", self.config.name)
        self._executor.clear()
        if self._cascade is not None:
            self._cascade.reset()
        self._status = ProviderStatus(
            available=self._status.available,
            state=self._status.state,
            current_model=self._status.current_model,
        )
        self._perform_reset()

    def dispose(self) -> None:
        self._logger.info("Disposing %s provider", self.config.name)
        self._executor.clear()
        self._status.available = False
        self._status.state = ProviderState.DISPOSED
        self._perform_dispose()

    async def aclose(self) -> None:  # pragma: no cover - optional hook
        """Release network clients held by the adapter."""

    @abstractmethod
    async def _perform_initialization(self) -> None:
        """Provider-specific setup."""

    @abstractmethod
    async def _perform_send(
        self,
        messages: Sequence[Message],
        options: RequestOptions,
        model: str,
    ) -> AIResponse:
        """Issue one call to the backend with the given model."""

    @abstractmethod
    async def _perform_config_validation(self) -> bool:
        """Provider-specific configuration checks."""

    def _perform_reset(self) -> None:
        return None

    def _perform_dispose(self) -> None:
        return None

    def extract_json(self, text: str) -> Any:
        """Parse JSON from a reply, unwrapping a fenced markdown block if needed."""
        try:
            return json.loads(text)
        except ValueError:
            match = _FENCED_JSON.search(text)
            if match:
                try:
                    return json.loads(match.group(1).strip())
                except ValueError:
                    self._logger.warning("Failed to parse JSON from markdown block")
            raise AIError(
                "Failed to parse response as JSON",
                AIErrorType.PARSING,
                self.provider_id,
                details={"response": text},
            )

    @staticmethod
    def unwrap_fenced_json(text: str) -> str:
        match = _FENCED_JSON.search(text)
        if match:
            return match.group(1).strip()
        return text

    def build_system_prompt(self, options: RequestOptions) -> Optional[str]:
        return options.system_prompt or self.config.options.get("default_system_prompt")

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return math.ceil(len(text) / 4)

    def check_context_limit(self, messages: Sequence[Message]) -> bool:
        limit = self.capabilities.max_context_tokens
        if not limit:
            return True
        total = " ".join(message.content for message in messages)
        return self.estimate_tokens(total) <= limit

    def resolve_api_key(self, env_var: str) -> Optional[str]:
        return self.config.api_key or os.environ.get(env_var) or None
