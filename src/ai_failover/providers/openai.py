"""OpenAI provider adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from ..config import ProviderConfig
from .base import (
    AIError,
    AIErrorType,
    AIResponse,
    BaseAIProvider,
    Message,
    ProviderCapabilities,
    RequestOptions,
)

# USD per 1k tokens: (prompt, completion)
MODEL_PRICING: Dict[str, tuple] = {
    "gpt-4o": (0.005, 0.015),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-3.5-turbo": (0.0005, 0.0015),
}


def _build_messages(messages: Sequence[Message], system_prompt: Optional[str]) -> List[Dict[str, str]]:
    built: List[Dict[str, str]] = []
    if system_prompt:
        built.append({"role": "system", "content": system_prompt})
    for message in messages:
        if message.role in {"user", "assistant"}:
            built.append({"role": message.role, "content": str(message.content)})
    return built


def _estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    return (prompt_tokens / 1000) * pricing[0] + (completion_tokens / 1000) * pricing[1]


class OpenAIProvider(BaseAIProvider):
    """Adapter for OpenAI Chat Completions API."""

    default_model = "gpt-4o"
    api_key_env = "OPENAI_API_KEY"

    def __init__(self, config: ProviderConfig, **kwargs: Any):
        model = config.model or self.default_model
        super().__init__(
            config,
            ProviderCapabilities(
                streaming=False,
                function_calling=True,
                max_context_tokens=16385 if model.startswith("gpt-3.5") else 128000,
                max_response_tokens=4096,
                system_messages=True,
                vision="gpt-4o" in model,
                json_mode=True,
                custom={"cost_tracking": True},
            ),
            **kwargs,
        )
        self._client: Optional[AsyncOpenAI] = None

    async def _perform_config_validation(self) -> bool:
        if not self.resolve_api_key(self.api_key_env):
            self._logger.error("No OpenAI API key found")
            return False
        if self.config.model and self.config.model not in MODEL_PRICING:
            self._logger.warning("Unknown model %s, cost tracking disabled", self.config.model)
        return True

    async def _perform_initialization(self) -> None:
        api_key = self.resolve_api_key(self.api_key_env)
        if not api_key:
            raise AIError("OpenAI API key not configured", AIErrorType.CONFIGURATION, self.provider_id)
        self._client = AsyncOpenAI(
            api_key=api_key,
            organization=self.config.options.get("organization"),
            project=self.config.options.get("project"),
            base_url=self.config.endpoint,
        )
        self._logger.info("OpenAI client ready for model %s", self.current_model)

    async def _perform_send(
        self,
        messages: Sequence[Message],
        options: RequestOptions,
        model: str,
    ) -> AIResponse:
        if self._client is None:
            raise AIError("OpenAI client not initialized", AIErrorType.INITIALIZATION, self.provider_id)

        params: Dict[str, Any] = {
            "model": model,
            "messages": _build_messages(messages, self.build_system_prompt(options)),
            "temperature": 0.7 if options.temperature is None else options.temperature,
            "max_tokens": options.max_tokens or 4096,
            "top_p": 1 if options.top_p is None else options.top_p,
        }
        if options.stop_sequences:
            params["stop"] = list(options.stop_sequences)
        json_mode = bool(options.provider_options.get("json_mode"))
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        params.update({k: v for k, v in options.provider_options.items() if k != "json_mode"})

        try:
            response = await self._client.chat.completions.create(**params)
        except RateLimitError as exc:
            raise AIError(
                "Rate limit exceeded",
                AIErrorType.RATE_LIMIT,
                self.provider_id,
                details={"status_code": 429},
            ) from exc
        except APITimeoutError as exc:
            raise AIError("Request timeout", AIErrorType.TIMEOUT, self.provider_id) from exc
        except APIConnectionError as exc:
            raise AIError(
                f"Connection error: {exc}",
                AIErrorType.API_ERROR,
                self.provider_id,
            ) from exc
        except APIStatusError as exc:
            error_type = AIErrorType.TIMEOUT if exc.status_code == 408 else AIErrorType.API_ERROR
            raise AIError(
                str(exc),
                error_type,
                self.provider_id,
                details={"status_code": exc.status_code},
            ) from exc
        except APIError as exc:
            raise AIError(str(exc), AIErrorType.API_ERROR, self.provider_id) from exc

        choice = response.choices[0] if response.choices else None
        content = getattr(getattr(choice, "message", None), "content", None)
        if not content:
            raise AIError("No response content from OpenAI", AIErrorType.API_ERROR, self.provider_id)
        if json_mode or "```json" in content:
            content = self.unwrap_fenced_json(content)

        usage: Dict[str, Any] = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
                "cost": _estimate_cost(
                    model,
                    response.usage.prompt_tokens,
                    response.usage.completion_tokens,
                ),
            }

        return AIResponse(
            content=content,
            model=response.model or model,
            provider=self.provider_id,
            usage=usage,
            metadata={"request_id": response.id, "json_mode": json_mode},
            raw=response,
        )

    def available_models(self) -> List[str]:
        return list(MODEL_PRICING)

    def _perform_dispose(self) -> None:
        self._client = None

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()


class OpenAIProviderFactory:
    def create(self, config: ProviderConfig) -> OpenAIProvider:
        return OpenAIProvider(config)

    def supports(self, config: ProviderConfig) -> bool:
        return config.provider in {"openai", "gpt"}
