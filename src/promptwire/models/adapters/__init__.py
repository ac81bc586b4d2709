"""Provider adapters: one per backend, each speaking its own wire format."""

from .base import APIProviderAdapter, AsyncBaseAPIAdapter, RawProviderResponse, RequestContext
from .anthropic import AnthropicAdapter, AsyncAnthropicAdapter
from .mock import AsyncMockAdapter, MockAdapter, completion
from .ollama import AsyncOllamaAdapter, OllamaAdapter
from .openai import (
    AsyncOpenAIChatAdapter,
    AsyncOpenAIResponsesAdapter,
    OpenAIChatAdapter,
    OpenAIResponsesAdapter,
)
from .openrouter import AsyncOpenRouterAdapter, OpenRouterAdapter, ProviderPreferences
from .factory import ProviderAdapterFactory

__all__ = [
    # Base
    "APIProviderAdapter",
    "AsyncBaseAPIAdapter",
    "RawProviderResponse",
    "RequestContext",
    # Providers
    "OpenAIChatAdapter",
    "AsyncOpenAIChatAdapter",
    "OpenAIResponsesAdapter",
    "AsyncOpenAIResponsesAdapter",
    "AnthropicAdapter",
    "AsyncAnthropicAdapter",
    "OllamaAdapter",
    "AsyncOllamaAdapter",
    "OpenRouterAdapter",
    "AsyncOpenRouterAdapter",
    "ProviderPreferences",
    "MockAdapter",
    "AsyncMockAdapter",
    "completion",
    # Factory
    "ProviderAdapterFactory",
]
