"""Models module: provider configuration, wire formatting and adapters."""

from .config import Configuration, ProviderConfig, current_configuration, scoped_configuration
from .parameters import ParameterBuilder, RequestParameters
from .response_models import EmbedResponse, Response, ResponseMetadata, UsageInfo
from .retries import RetryPolicy, awith_retry, with_retry
from .sanitizers import Sanitizer
from .streaming import CallbackChannel, StreamCancelled, StreamChannel, StreamDelta
from .adapters import (
    APIProviderAdapter,
    AsyncBaseAPIAdapter,
    MockAdapter,
    AsyncMockAdapter,
    ProviderAdapterFactory,
)

__all__ = [
    # Configuration
    "Configuration",
    "ProviderConfig",
    "current_configuration",
    "scoped_configuration",
    # Parameters
    "ParameterBuilder",
    "RequestParameters",
    # Responses
    "Response",
    "EmbedResponse",
    "ResponseMetadata",
    "UsageInfo",
    # Retries
    "RetryPolicy",
    "with_retry",
    "awith_retry",
    # Sanitizer
    "Sanitizer",
    # Streaming
    "StreamChannel",
    "CallbackChannel",
    "StreamDelta",
    "StreamCancelled",
    # Adapters
    "APIProviderAdapter",
    "AsyncBaseAPIAdapter",
    "MockAdapter",
    "AsyncMockAdapter",
    "ProviderAdapterFactory",
]
