"""
promptwire Exception Hierarchy

This module defines the exception hierarchy used across the generation engine,
providing specific error types for configuration, message construction,
provider transport and orchestration failures, with rich context for
programmatic handling.

The hierarchy is designed to:
1. Classify provider failures so the retry wrapper can decide what to retry
2. Keep local recoverable conditions distinct from boundary errors
3. Surface a single exception type (GenerationProviderError) to callers
"""

import os
import time
from enum import Enum
from typing import Any, Dict, List, Optional

VERBOSE_ERRORS_ENV_VAR = "PROMPTWIRE_VERBOSE_ERRORS"


class PromptwireError(Exception):
    """
    Base exception class for all promptwire errors.

    Attributes:
        error_code: Unique error code for programmatic handling
        timestamp: When the error occurred
        context: Additional context information
        user_message: User-friendly error message
        developer_message: Detailed technical error message
        suggestion: Suggested fix or next steps (if applicable)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "PROMPTWIRE_ERROR",
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.timestamp = time.time()
        self.context = context or {}
        self.user_message = user_message or message
        self.developer_message = message
        self.suggestion = suggestion

    @property
    def message(self) -> str:
        return self.developer_message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.developer_message,
            "user_message": self.user_message,
            "timestamp": self.timestamp,
            "context": self.context,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.developer_message}"


class ConfigurationError(PromptwireError):
    """Raised when provider configuration is missing or invalid."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        self.provider = provider
        context = kwargs.pop("context", {})
        if provider:
            context["provider"] = provider
        super().__init__(
            message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            suggestion=kwargs.pop("suggestion", "Check the provider entry in your configuration."),
            **kwargs,
        )


# =============================================================================
# MESSAGE HANDLING ERRORS
# =============================================================================

class MessageError(PromptwireError):
    """Base class for message construction and validation errors."""

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "MESSAGE_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class ContentTypeError(MessageError):
    """
    Raised when a message carries a content part that no provider format
    can represent.

    Never recovered: dropping a multimodal part would silently change what
    the model sees.
    """

    def __init__(self, message: str, content_type: Optional[str] = None, **kwargs):
        self.content_type = content_type
        context = kwargs.pop("context", {})
        if content_type:
            context["content_type"] = content_type
        super().__init__(
            message,
            error_code="CONTENT_TYPE_ERROR",
            context=context,
            suggestion="Use one of the supported part types: text, image, file.",
            **kwargs,
        )


class ActionCorrelationError(MessageError):
    """
    Raised when a tool-role message answers an action id that no earlier
    assistant message requested.
    """

    def __init__(
        self,
        message: str,
        action_id: Optional[str] = None,
        known_action_ids: Optional[List[str]] = None,
        **kwargs,
    ):
        self.action_id = action_id
        self.known_action_ids = known_action_ids or []
        context = kwargs.pop("context", {})
        context["action_id"] = action_id
        context["known_action_ids"] = self.known_action_ids
        super().__init__(
            message,
            error_code="ACTION_CORRELATION_ERROR",
            context=context,
            **kwargs,
        )


class SchemaValidationError(MessageError):
    """Raised when structured output does not match its JSON schema."""

    def __init__(
        self,
        message: str,
        validation_path: Optional[str] = None,
        provided_data: Optional[Any] = None,
        **kwargs,
    ):
        self.validation_path = validation_path
        self.provided_data = provided_data
        context = kwargs.pop("context", {})
        if validation_path:
            context["validation_path"] = validation_path
        if provided_data is not None:
            preview = str(provided_data)
            context["data_preview"] = preview[:100] + "..." if len(preview) > 100 else preview
        super().__init__(
            message,
            error_code="SCHEMA_VALIDATION_ERROR",
            context=context,
            user_message="The structured output doesn't match the required schema.",
            **kwargs,
        )


class ToolExecutionError(PromptwireError):
    """
    Raised when an action handler is missing or fails.

    The orchestrator converts it into an error-bearing tool message instead
    of letting it escape the loop.
    """

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        available_tools: Optional[List[str]] = None,
        **kwargs,
    ):
        self.tool_name = tool_name
        self.available_tools = available_tools
        context = kwargs.pop("context", {})
        if tool_name:
            context["tool_name"] = tool_name
        if available_tools:
            context["available_tools"] = available_tools
        super().__init__(
            message,
            error_code="TOOL_EXECUTION_ERROR",
            context=context,
            user_message="Tool execution failed.",
            **kwargs,
        )


class MaxTurnsExceededError(PromptwireError):
    """Raised when the model keeps requesting tools past the turn ceiling."""

    def __init__(self, max_turns: int, turns_taken: Optional[int] = None, **kwargs):
        self.max_turns = max_turns
        self.turns_taken = turns_taken if turns_taken is not None else max_turns
        super().__init__(
            f"Generation stopped after {self.turns_taken} turns: the model was still requesting tools "
            f"(max_turns={max_turns})",
            error_code="MAX_TURNS_EXCEEDED",
            context={"max_turns": max_turns, "turns_taken": self.turns_taken},
            suggestion="Increase max_turns or check that the tools return what the model expects.",
            **kwargs,
        )


# =============================================================================
# API ERROR CLASSIFICATION
# =============================================================================

class APIErrorClassification(Enum):
    """Classification of API errors for retry decisions."""

    # Critical (non-retryable)
    INSUFFICIENT_CREDITS = "insufficient_credits"
    AUTHENTICATION_FAILED = "authentication_failed"
    INVALID_MODEL = "invalid_model"
    PERMISSION_DENIED = "permission_denied"

    # Temporary (retryable)
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"

    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


# =============================================================================
# PROVIDER ERRORS
# =============================================================================

class ProviderError(PromptwireError):
    """Base class for provider transport and API errors."""

    def __init__(self, message: str, **kwargs):
        error_code = kwargs.pop("error_code", "PROVIDER_ERROR")
        super().__init__(message, error_code=error_code, **kwargs)


class ProviderAPIError(ProviderError):
    """
    API error with provider-specific classification.

    ``from_provider_response`` picks the subclass matching the
    classification so retry allowlists can be expressed as classes.
    """

    default_classification = APIErrorClassification.UNKNOWN

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        api_error_code: Optional[str] = None,
        api_error_type: Optional[str] = None,
        classification: Optional[str] = None,
        is_retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
        raw_response: Optional[Any] = None,
        **kwargs,
    ):
        self.provider = provider
        self.status_code = status_code
        self.api_error_code = api_error_code
        self.api_error_type = api_error_type
        self.classification = classification or self.default_classification.value
        self.is_retryable = self.classification in _RETRYABLE_CLASSIFICATIONS if is_retryable is None else is_retryable
        self.retry_after = retry_after
        self.raw_response = raw_response

        context = kwargs.pop("context", {})
        context.update({
            "provider": provider,
            "status_code": status_code,
            "api_error_code": api_error_code,
            "api_error_type": api_error_type,
            "classification": self.classification,
            "is_retryable": self.is_retryable,
            "retry_after": retry_after,
        })

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            if self.classification == APIErrorClassification.RATE_LIMIT.value:
                suggestion = f"Wait {retry_after} seconds before retrying" if retry_after else "Wait before retrying or upgrade your plan"
            elif self.classification == APIErrorClassification.AUTHENTICATION_FAILED.value:
                suggestion = f"Check your {provider} API key configuration"
            elif self.classification == APIErrorClassification.INSUFFICIENT_CREDITS.value:
                suggestion = f"Add credits to your {provider} account"

        super().__init__(
            message,
            error_code=f"PROVIDER_API_{self.classification.upper()}_ERROR",
            context=context,
            suggestion=suggestion,
            **kwargs,
        )

    def is_critical(self) -> bool:
        """Check if this is a critical error that cannot be retried."""
        return self.classification in [
            APIErrorClassification.INSUFFICIENT_CREDITS.value,
            APIErrorClassification.AUTHENTICATION_FAILED.value,
            APIErrorClassification.PERMISSION_DENIED.value,
            APIErrorClassification.INVALID_MODEL.value,
        ]

    @classmethod
    def from_provider_response(
        cls,
        provider: str,
        response: Optional[Any] = None,
        exception: Optional[Exception] = None,
        body: Optional[Any] = None,
    ) -> "ProviderAPIError":
        """
        Build a classified error from an HTTP response and/or the exception
        raised by the transport.
        """
        if exception is not None and getattr(exception, "args", None):
            message = str(exception.args[0])
        elif exception is not None:
            message = str(exception) or type(exception).__name__
        else:
            message = "API Error"

        status_code = None
        if response is not None and hasattr(response, "status_code"):
            status_code = response.status_code
        elif response is not None and hasattr(response, "status"):
            status_code = response.status
        elif exception is not None:
            status_code = getattr(exception, "status", None)
            if status_code is None and getattr(exception, "response", None) is not None:
                status_code = getattr(exception.response, "status_code", None)

        raw_response = body
        if raw_response is None and response is not None and hasattr(response, "json"):
            try:
                raw_response = response.json()
            except ValueError:
                raw_response = None

        api_error_code = None
        api_error_type = None
        error_data = raw_response.get("error") if isinstance(raw_response, dict) else None
        if isinstance(error_data, dict):
            message = error_data.get("message", message)
            api_error_code = error_data.get("code")
            api_error_type = error_data.get("type")
        elif isinstance(error_data, str):
            message = error_data

        headers = getattr(response, "headers", None) or {}
        retry_after = _parse_retry_after(headers.get("retry-after"))

        classification = APIErrorClassification.UNKNOWN
        if status_code == 429:
            if api_error_type == "insufficient_quota":
                classification = APIErrorClassification.INSUFFICIENT_CREDITS
            else:
                classification = APIErrorClassification.RATE_LIMIT
        elif status_code == 402:
            classification = APIErrorClassification.INSUFFICIENT_CREDITS
        elif status_code == 400 and "credit balance" in str(message).lower():
            classification = APIErrorClassification.INSUFFICIENT_CREDITS
        elif status_code == 401:
            classification = APIErrorClassification.AUTHENTICATION_FAILED
        elif status_code == 403:
            classification = APIErrorClassification.PERMISSION_DENIED
        elif status_code == 404:
            classification = APIErrorClassification.INVALID_MODEL
        elif status_code == 408:
            classification = APIErrorClassification.TIMEOUT
        elif status_code is not None and (status_code >= 500 or status_code == 529):
            classification = APIErrorClassification.SERVICE_UNAVAILABLE
        elif status_code is not None and 400 <= status_code < 500:
            classification = APIErrorClassification.INVALID_REQUEST

        error_class = _CLASSIFICATION_ERRORS.get(classification, ProviderAPIError)
        return error_class(
            message=message,
            provider=provider,
            status_code=status_code,
            api_error_code=api_error_code,
            api_error_type=api_error_type,
            classification=classification.value,
            retry_after=retry_after,
            raw_response=raw_response,
        )


class RateLimitError(ProviderAPIError):
    """The provider throttled the request (HTTP 429)."""

    default_classification = APIErrorClassification.RATE_LIMIT


class ServiceUnavailableError(ProviderAPIError):
    """The provider failed server-side (5xx, 529 overloaded)."""

    default_classification = APIErrorClassification.SERVICE_UNAVAILABLE


class ProviderTimeoutError(ProviderAPIError):
    """The request timed out before the provider answered."""

    default_classification = APIErrorClassification.TIMEOUT


class ProviderConnectionError(ProviderAPIError):
    """The connection to the provider could not be established."""

    default_classification = APIErrorClassification.NETWORK_ERROR


class AuthenticationError(ProviderAPIError):
    default_classification = APIErrorClassification.AUTHENTICATION_FAILED


class InsufficientCreditsError(ProviderAPIError):
    default_classification = APIErrorClassification.INSUFFICIENT_CREDITS


_RETRYABLE_CLASSIFICATIONS = {
    APIErrorClassification.RATE_LIMIT.value,
    APIErrorClassification.SERVICE_UNAVAILABLE.value,
    APIErrorClassification.TIMEOUT.value,
    APIErrorClassification.NETWORK_ERROR.value,
}

_CLASSIFICATION_ERRORS = {
    APIErrorClassification.RATE_LIMIT: RateLimitError,
    APIErrorClassification.SERVICE_UNAVAILABLE: ServiceUnavailableError,
    APIErrorClassification.TIMEOUT: ProviderTimeoutError,
    APIErrorClassification.NETWORK_ERROR: ProviderConnectionError,
    APIErrorClassification.AUTHENTICATION_FAILED: AuthenticationError,
    APIErrorClassification.INSUFFICIENT_CREDITS: InsufficientCreditsError,
}


def _parse_retry_after(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def verbose_errors_enabled(*flags: Optional[bool]) -> bool:
    """
    Resolve verbose-error mode: the first explicit flag wins, then the
    PROMPTWIRE_VERBOSE_ERRORS environment variable.
    """
    for flag in flags:
        if flag is not None:
            return bool(flag)
    return os.getenv(VERBOSE_ERRORS_ENV_VAR, "").lower() == "true"


class GenerationProviderError(ProviderError):
    """
    The single error type raised at the generation boundary.

    Wraps whatever the transport raised once retries are exhausted (or when
    the error was not retryable). In verbose mode the message is prefixed
    with the original exception class name and the context carries the
    provider, model and attempt count.
    """

    def __init__(
        self,
        message: str,
        original_exception: Optional[BaseException] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        attempts: Optional[int] = None,
        verbose: bool = False,
        **kwargs,
    ):
        self.original_exception = original_exception
        self.provider = provider
        self.model = model
        self.attempts = attempts
        self.verbose = verbose

        if verbose and original_exception is not None:
            message = f"[{type(original_exception).__name__}] {message}"
            detail = ", ".join(
                f"{key}={value}"
                for key, value in (("provider", provider), ("model", model), ("attempts", attempts))
                if value is not None
            )
            if detail:
                message = f"{message} ({detail})"

        context = kwargs.pop("context", {})
        context.update({"provider": provider, "model": model, "attempts": attempts})
        if original_exception is not None:
            context["original_error_type"] = type(original_exception).__name__

        super().__init__(
            message,
            error_code="GENERATION_PROVIDER_ERROR",
            context=context,
            **kwargs,
        )

    @classmethod
    def from_exception(
        cls,
        exception: BaseException,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        attempts: Optional[int] = None,
        verbose: bool = False,
    ) -> "GenerationProviderError":
        if isinstance(exception, PromptwireError):
            message = exception.developer_message
        else:
            message = str(exception) or type(exception).__name__
        return cls(
            message,
            original_exception=exception,
            provider=provider,
            model=model,
            attempts=attempts,
            verbose=verbose,
        )
