import logging
from typing import Any, Dict, Optional, Tuple, Union

from promptwire.agents.exceptions import ConfigurationError
from promptwire.models.adapters.anthropic import AnthropicAdapter, AsyncAnthropicAdapter
from promptwire.models.adapters.base import APIProviderAdapter
from promptwire.models.adapters.mock import AsyncMockAdapter, MockAdapter
from promptwire.models.adapters.ollama import AsyncOllamaAdapter, OllamaAdapter
from promptwire.models.adapters.openai import (
    AsyncOpenAIChatAdapter,
    AsyncOpenAIResponsesAdapter,
    OpenAIChatAdapter,
    OpenAIResponsesAdapter,
)
from promptwire.models.adapters.openrouter import AsyncOpenRouterAdapter, OpenRouterAdapter
from promptwire.models.config import Configuration, ProviderConfig, current_configuration
from promptwire.models.retries import RetryPolicy
from promptwire.models.sanitizers import Sanitizer

logger = logging.getLogger(__name__)


class ProviderAdapterFactory:
    """Factory to create the right adapter based on provider"""

    # service -> (sync class, async class)
    ADAPTERS: Dict[str, Tuple[type, type]] = {
        "openai": (OpenAIChatAdapter, AsyncOpenAIChatAdapter),
        "openai-responses": (OpenAIResponsesAdapter, AsyncOpenAIResponsesAdapter),
        "anthropic": (AnthropicAdapter, AsyncAnthropicAdapter),
        "ollama": (OllamaAdapter, AsyncOllamaAdapter),
        "openrouter": (OpenRouterAdapter, AsyncOpenRouterAdapter),
        "mock": (MockAdapter, AsyncMockAdapter),
    }

    @staticmethod
    def resolve_config(
        provider: Union[str, ProviderConfig],
        configuration: Optional[Configuration] = None,
        **overrides: Any,
    ) -> ProviderConfig:
        """
        A ProviderConfig is used as given; a string is looked up in the
        configuration first and otherwise taken as a service name.
        """
        if isinstance(provider, ProviderConfig):
            config = provider
        else:
            configuration = configuration if configuration is not None else current_configuration()
            if provider in configuration:
                config = configuration.provider(provider)
            else:
                try:
                    config = ProviderConfig(service=provider)
                except ValueError as e:
                    raise ConfigurationError(f"Unknown provider '{provider}'", provider=str(provider)) from e
        return config.with_overrides(**overrides) if overrides else config

    @staticmethod
    def create_adapter(
        provider: Union[str, ProviderConfig],
        configuration: Optional[Configuration] = None,
        async_: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        sanitizer: Optional[Sanitizer] = None,
        **overrides: Any,
    ) -> APIProviderAdapter:
        config = ProviderAdapterFactory.resolve_config(provider, configuration, **overrides)

        key = config.service
        if key == "openai" and config.api == "responses":
            key = "openai-responses"

        sync_class, async_class = ProviderAdapterFactory.ADAPTERS[key]
        adapter_class = async_class if async_ else sync_class
        logger.debug(f"Creating {adapter_class.__name__} for service '{config.service}'")
        return adapter_class(config, configuration, retry_policy=retry_policy, sanitizer=sanitizer)
