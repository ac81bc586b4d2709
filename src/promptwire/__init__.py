"""
promptwire - provider request/response normalization and multi-turn
tool calling for OpenAI, Anthropic, Ollama and OpenRouter.

License: Apache-2.0
"""

__version__ = "0.1.0"

from .agents import (
    Action,
    ActionRegistry,
    ContentPart,
    Generation,
    GenerationProviderError,
    Message,
    Prompt,
    PromptOptions,
    Role,
    init_logging,
)
from .models import (
    Configuration,
    ParameterBuilder,
    ProviderAdapterFactory,
    ProviderConfig,
    Response,
    RetryPolicy,
    StreamChannel,
)

__all__ = [
    # Version
    "__version__",
    # Conversation
    "Message",
    "Action",
    "ContentPart",
    "Role",
    "Prompt",
    "PromptOptions",
    # Orchestration
    "Generation",
    "ActionRegistry",
    "GenerationProviderError",
    # Providers
    "Configuration",
    "ProviderConfig",
    "ProviderAdapterFactory",
    "ParameterBuilder",
    "Response",
    "RetryPolicy",
    "StreamChannel",
    # Logging
    "init_logging",
]
