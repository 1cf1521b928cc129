"""Anthropic Claude provider adapter."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import anthropic

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

OVERLOADED_STATUS = 529
SERVICE_UNAVAILABLE = 503


def _split_messages(messages: Sequence[Message]) -> tuple:
    """Return ``(system_text, conversation)``; system turns are merged."""
    system_parts: List[str] = []
    conversation: List[Dict[str, str]] = []
    for message in messages:
        if message.role == "system":
            system_parts.append(str(message.content))
        elif message.role in {"user", "assistant"}:
            conversation.append({"role": message.role, "content": str(message.content)})
    return "\n\n".join(system_parts), conversation


class ClaudeProvider(BaseAIProvider):
    """Adapter for the Anthropic Messages API."""

    default_model = "claude-sonnet-4-5"
    api_key_env = "ANTHROPIC_API_KEY"

    def __init__(self, config: ProviderConfig, **kwargs: Any):
        super().__init__(
            config,
            ProviderCapabilities(
                streaming=False,
                function_calling=True,
                max_context_tokens=200000,
                max_response_tokens=8192,
                system_messages=True,
                vision=True,
                json_mode=False,
            ),
            **kwargs,
        )
        self._client: Optional[anthropic.AsyncAnthropic] = None

    async def _perform_config_validation(self) -> bool:
        if not self.resolve_api_key(self.api_key_env):
            self._logger.error("No Anthropic API key found")
            return False
        return True

    async def _perform_initialization(self) -> None:
        api_key = self.resolve_api_key(self.api_key_env)
        if not api_key:
            raise AIError("Anthropic API key not configured", AIErrorType.CONFIGURATION, self.provider_id)
        self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=self.config.endpoint)
        self._logger.info("Anthropic client ready for model %s", self.current_model)

    async def _perform_send(
        self,
        messages: Sequence[Message],
        options: RequestOptions,
        model: str,
    ) -> AIResponse:
        if self._client is None:
            raise AIError("Anthropic client not initialized", AIErrorType.INITIALIZATION, self.provider_id)

        inline_system, conversation = _split_messages(messages)
        system = "\n\n".join(part for part in (self.build_system_prompt(options), inline_system) if part)

        params: Dict[str, Any] = {
            "model": model,
            "messages": conversation,
            "max_tokens": options.max_tokens or 4096,
        }
        if system:
            params["system"] = system
        if options.temperature is not None:
            params["temperature"] = options.temperature
        if options.top_p is not None:
            params["top_p"] = options.top_p
        if options.stop_sequences:
            params["stop_sequences"] = list(options.stop_sequences)
        params.update(options.provider_options)

        try:
            response = await self._client.messages.create(**params)
        except anthropic.RateLimitError as exc:
            raise AIError(
                "Rate limit exceeded",
                AIErrorType.RATE_LIMIT,
                self.provider_id,
                details={"status_code": 429, "model": model},
            ) from exc
        except anthropic.APITimeoutError as exc:
            raise AIError("Request timeout", AIErrorType.TIMEOUT, self.provider_id, details={"model": model}) from exc
        except anthropic.APIConnectionError as exc:
            raise AIError(
                f"Connection error: {exc}",
                AIErrorType.API_ERROR,
                self.provider_id,
                details={"model": model},
            ) from exc
        except anthropic.APIStatusError as exc:
            raise self._map_status_error(exc, model) from exc

        content = "".join(
            getattr(block, "text", "")
            for block in (response.content or [])
            if getattr(block, "type", None) == "text"
        )
        if not content:
            raise AIError("No text content in Claude response", AIErrorType.API_ERROR, self.provider_id)
        if "```json" in content:
            content = self.unwrap_fenced_json(content)

        usage: Dict[str, Any] = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }

        return AIResponse(
            content=content,
            model=response.model or model,
            provider=self.provider_id,
            usage=usage,
            metadata={"request_id": response.id, "stop_reason": response.stop_reason},
            raw=response,
        )

    def _map_status_error(self, exc: anthropic.APIStatusError, model: str) -> AIError:
        status = exc.status_code
        details = {"status_code": status, "model": model}
        if status == OVERLOADED_STATUS or "overloaded" in str(exc).lower():
            details["status_code"] = OVERLOADED_STATUS
            return AIError(f"Model {model} is overloaded", AIErrorType.RATE_LIMIT, self.provider_id, details=details)
        if status == 429:
            return AIError("Rate limit exceeded", AIErrorType.RATE_LIMIT, self.provider_id, details=details)
        if status == 408:
            return AIError("Request timeout", AIErrorType.TIMEOUT, self.provider_id, details=details)
        if status in (401, 403):
            return AIError(str(exc), AIErrorType.CONFIGURATION, self.provider_id, details=details)
        if status == 400:
            return AIError(str(exc), AIErrorType.VALIDATION, self.provider_id, details=details)
        return AIError(str(exc), AIErrorType.API_ERROR, self.provider_id, details=details)

    def _perform_dispose(self) -> None:
        self._client = None

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()


class ClaudeProviderFactory:
    def create(self, config: ProviderConfig) -> ClaudeProvider:
        return ClaudeProvider(config)

    def supports(self, config: ProviderConfig) -> bool:
        return config.provider in {"claude", "anthropic"}
