"""Agents module: conversation data model, actions and the generation loop."""

from .exceptions import (
    ActionCorrelationError,
    APIErrorClassification,
    AuthenticationError,
    ConfigurationError,
    ContentTypeError,
    GenerationProviderError,
    InsufficientCreditsError,
    MaxTurnsExceededError,
    MessageError,
    PromptwireError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    SchemaValidationError,
    ServiceUnavailableError,
    ToolExecutionError,
)
from .messages import Action, ContentPart, Message, Role
from .prompt import Prompt, PromptOptions
from .utils import LogLevel, init_logging
from .actions import ActionRegistry, generate_tool_schema
from .generation import Generation, GenerationStream

__all__ = [
    # Data model
    "Action",
    "ContentPart",
    "Message",
    "Role",
    "Prompt",
    "PromptOptions",
    # Actions and orchestration
    "ActionRegistry",
    "generate_tool_schema",
    "Generation",
    "GenerationStream",
    # Logging
    "LogLevel",
    "init_logging",
    # Exceptions
    "PromptwireError",
    "ConfigurationError",
    "MessageError",
    "ContentTypeError",
    "ActionCorrelationError",
    "SchemaValidationError",
    "ToolExecutionError",
    "MaxTurnsExceededError",
    "APIErrorClassification",
    "ProviderError",
    "ProviderAPIError",
    "RateLimitError",
    "ServiceUnavailableError",
    "ProviderTimeoutError",
    "ProviderConnectionError",
    "AuthenticationError",
    "InsufficientCreditsError",
    "GenerationProviderError",
]
