"""Provider adapter exports."""

from .anthropic import ClaudeProvider, ClaudeProviderFactory
from .base import (
    AIError,
    AIErrorType,
    AIResponse,
    BaseAIProvider,
    Message,
    ProviderCapabilities,
    ProviderFactory,
    ProviderState,
    ProviderStatus,
    RequestOptions,
)
from .mock import MockProvider, MockProviderFactory
from .openai import OpenAIProvider, OpenAIProviderFactory

__all__ = [
    "AIError",
    "AIErrorType",
    "AIResponse",
    "BaseAIProvider",
    "ClaudeProvider",
    "ClaudeProviderFactory",
    "Message",
    "MockProvider",
    "MockProviderFactory",
    "OpenAIProvider",
    "OpenAIProviderFactory",
    "ProviderCapabilities",
    "ProviderFactory",
    "ProviderState",
    "ProviderStatus",
    "RequestOptions",
]
