"""Tests for the Anthropic Claude provider adapter."""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from ai_failover.config import ProviderConfig
from ai_failover.providers.anthropic import ClaudeProvider, ClaudeProviderFactory
from ai_failover.providers.base import AIError, AIErrorType, Message, RequestOptions

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _status_error(status, message="error"):
    return anthropic.APIStatusError(message, response=httpx.Response(status, request=REQUEST), body=None)


def _message(text="hi there", model="claude-sonnet-4-5"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=12, output_tokens=8),
        model=model,
        id="msg_1",
        stop_reason="end_turn",
    )


class _FakeMessages:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _FakeClient:
    def __init__(self, outcomes):
        self.messages = _FakeMessages(outcomes)
        self.closed = False

    async def close(self):
        self.closed = True


async def _provider(monkeypatch, outcomes, **config_kwargs):
    client = _FakeClient(outcomes)
    monkeypatch.setattr(anthropic, "AsyncAnthropic", lambda **kwargs: client)
    config = ProviderConfig(provider="claude", name="Claude", api_key="key", **config_kwargs)
    provider = ClaudeProvider(config)
    await provider.initialize()
    return provider, client


@pytest.mark.asyncio
async def test_claude_provider_success(monkeypatch):
    provider, client = await _provider(monkeypatch, [_message()])

    response = await provider.send_message(
        [Message(role="system", content="Stay in character"), Message(role="user", content="Hello")],
        RequestOptions(temperature=0.3, stop_sequences=["END"]),
    )

    assert response.content == "hi there"
    assert response.provider == "claude"
    assert response.usage == {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20}
    call = client.messages.calls[0]
    assert call["model"] == "claude-sonnet-4-5"
    assert call["system"] == "Stay in character"
    assert call["messages"] == [{"role": "user", "content": "Hello"}]
    assert call["stop_sequences"] == ["END"]
    await provider.aclose()
    assert client.closed is True


@pytest.mark.asyncio
async def test_claude_unwraps_fenced_json(monkeypatch):
    provider, _ = await _provider(monkeypatch, [_message('Here:\n```json\n{"a": 1}\n```')])

    response = await provider.send_message([Message(role="user", content="data")])

    assert provider.extract_json(response.content) == {"a": 1}


@pytest.mark.parametrize(
    "error, expected, status",
    [
        (
            anthropic.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None),
            AIErrorType.RATE_LIMIT,
            429,
        ),
        (_status_error(529, "Overloaded"), AIErrorType.RATE_LIMIT, 529),
        (anthropic.APITimeoutError(request=REQUEST), AIErrorType.TIMEOUT, None),
        (anthropic.APIConnectionError(request=REQUEST), AIErrorType.API_ERROR, None),
        (_status_error(500), AIErrorType.API_ERROR, 500),
        (_status_error(401), AIErrorType.CONFIGURATION, 401),
    ],
)
@pytest.mark.asyncio
async def test_claude_error_mapping(monkeypatch, error, expected, status):
    provider, _ = await _provider(monkeypatch, [error])

    with pytest.raises(AIError) as exc:
        await provider.call_backend([Message(role="user", content="hi")], RequestOptions())

    assert exc.value.type is expected
    assert exc.value.status_code == status
    assert exc.value.__cause__ is error


@pytest.mark.asyncio
async def test_claude_overload_cascades_to_fallback_model(monkeypatch):
    provider, client = await _provider(
        monkeypatch,
        [_status_error(529, "Overloaded"), _message(model="claude-opus-4-1")],
        model="claude-sonnet-4-5",
        options={"fallback_models": ["claude-opus-4-1", "claude-opus-4-0"]},
    )

    response = await provider.send_message([Message(role="user", content="Hello")])

    assert response.model == "claude-opus-4-1"
    assert [call["model"] for call in client.messages.calls] == ["claude-sonnet-4-5", "claude-opus-4-1"]
    status = provider.get_status()
    assert status.current_model == "claude-opus-4-1"
    assert status.fallback.active is True
    assert status.fallback.reason == "overload"


@pytest.mark.asyncio
async def test_claude_missing_key_is_configuration_error(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    provider = ClaudeProvider(ProviderConfig(provider="claude", name="Claude"))

    with pytest.raises(AIError) as exc:
        await provider.initialize()

    assert exc.value.type is AIErrorType.CONFIGURATION
    assert provider.available is False


def test_claude_factory_supports_aliases():
    factory = ClaudeProviderFactory()

    assert factory.supports(ProviderConfig(provider="anthropic", name="Anthropic"))
    assert factory.supports(ProviderConfig(provider="claude", name="Claude"))
    assert not factory.supports(ProviderConfig(provider="openai", name="OpenAI"))
