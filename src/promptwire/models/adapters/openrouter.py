"""
OpenRouter adapter.

OpenRouter speaks the Chat Completions dialect and layers routing on top:
an ordered fallback model list, a ``provider`` preferences object and
plugins/transforms passthrough.
"""

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from promptwire.agents.exceptions import APIErrorClassification, ProviderAPIError
from promptwire.agents.messages import Message
from promptwire.agents.prompt import validate_data_collection
from promptwire.models.adapters import openai_wire as wire
from promptwire.models.adapters.base import (
    APIProviderAdapter,
    AsyncBaseAPIAdapter,
    RawProviderResponse,
    RequestContext,
)
from promptwire.models.parameters import RequestParameters
from promptwire.models.response_models import EmbedResponse, Response
from promptwire.models.streaming import ChatStreamAccumulator

logger = logging.getLogger(__name__)

DEFAULT_DATA_COLLECTION = "allow"

Quantization = Literal["int4", "int8", "fp4", "fp6", "fp8", "fp16", "bf16", "fp32", "unknown"]

NO_PROVIDER_MARKERS = ("no endpoints found", "no available provider", "no allowed providers")


class ProviderPreferences(BaseModel):
    """
    OpenRouter provider routing preferences.

    ``data_collection`` is "allow", "deny" or an explicit list of provider
    names that may see the data.
    """

    order: Optional[List[str]] = None
    only: Optional[List[str]] = None
    ignore: Optional[List[str]] = None
    allow_fallbacks: Optional[bool] = Field(None, alias="enable_fallbacks")
    require_parameters: Optional[bool] = None
    data_collection: Union[str, List[str]] = DEFAULT_DATA_COLLECTION
    zdr: Optional[bool] = None
    quantizations: Optional[List[Quantization]] = None
    sort: Optional[Literal["price", "throughput", "latency"]] = None
    max_price: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    @field_validator("data_collection", mode="before")
    @classmethod
    def check_data_collection(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_DATA_COLLECTION
        return validate_data_collection(value)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def build_provider_preferences(params: RequestParameters) -> ProviderPreferences:
    """
    Preferences for one request. The resolved ``data_collection`` beats the
    nested ``provider.data_collection`` key, which beats "allow".
    """
    nested = params.extra.get("provider")
    preferences = dict(nested) if isinstance(nested, Mapping) else {}
    if params.data_collection is not None:
        preferences["data_collection"] = params.data_collection
    return ProviderPreferences.model_validate(preferences)


def _convert_file_parts(wire_messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # OpenRouter routes inline file data through the image_url part
    for message in wire_messages:
        content = message.get("content")
        if not isinstance(content, list):
            continue
        for i, part in enumerate(content):
            if not isinstance(part, Mapping) or part.get("type") != "file":
                continue
            file_data = (part.get("file") or {}).get("file_data")
            if file_data:
                content[i] = {"type": "image_url", "image_url": {"url": file_data}}
    return wire_messages


class OpenRouterAdapter(APIProviderAdapter):
    """Adapter for OpenRouter API"""

    provider_name = "openrouter"
    default_model = "openrouter/auto"

    VALID_PARAMS = frozenset({
        "top_p",
        "top_k",
        "frequency_penalty",
        "presence_penalty",
        "repetition_penalty",
        "min_p",
        "top_a",
        "seed",
        "stop",
        "logit_bias",
        "logprobs",
        "top_logprobs",
        "tool_choice",
        "parallel_tool_calls",
        "prediction",
        "reasoning",
        "usage",
        "user",
        "transforms",
        "plugins",
        "route",
    })

    # Handled by the adapter, not copied verbatim
    ROUTING_PARAMS = frozenset({"provider", "models", "fallback_models"})

    def get_headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.credential or ''}",
            "Content-Type": "application/json",
        }
        if self.config.site_url:
            headers["HTTP-Referer"] = self.config.site_url
        if self.config.app_name:
            headers["X-Title"] = self.config.app_name
        return headers

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        wire_messages = _convert_file_parts(wire.format_messages(messages))
        payload = wire.build_chat_payload(messages, params, model, wire_messages=wire_messages)
        payload["provider"] = build_provider_preferences(params).to_payload()

        fallback_models = params.extra.get("models") or params.extra.get("fallback_models")
        if fallback_models:
            payload["models"] = list(fallback_models)
            payload["route"] = params.extra.get("route") or "fallback"

        passthrough = {k: v for k, v in params.extra.items() if k not in self.ROUTING_PARAMS}
        return wire.apply_passthrough(payload, passthrough, self.VALID_PARAMS, "OpenRouter")

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        body = raw.body
        message, finish_reason = wire.harmonize_chat_completion(body, context.params)
        headers = raw.headers or {}

        model_used = body.get("model") or headers.get("x-model")
        fallback_used = body.get("fallback_used")
        if fallback_used is None and context.payload.get("models") and model_used:
            fallback_used = model_used != context.model

        return self.build_response(
            message,
            raw,
            context,
            wire.usage_from_body(body),
            finish_reason=finish_reason,
            model_used=model_used,
            fallback_used=fallback_used,
            provider_used=body.get("provider") or headers.get("x-provider"),
        )

    def handle_api_error(self, error: Exception, response: Any = None, body: Any = None) -> ProviderAPIError:
        classified = super().handle_api_error(error, response, body)
        message = self._friendly_message(classified)
        if message is None:
            return classified
        return type(classified)(
            message,
            provider=classified.provider,
            status_code=classified.status_code,
            api_error_code=classified.api_error_code,
            api_error_type=classified.api_error_type,
            classification=classified.classification,
            retry_after=classified.retry_after,
            raw_response=classified.raw_response,
        )

    @staticmethod
    def _friendly_message(error: ProviderAPIError) -> Optional[str]:
        text = error.developer_message.lower()
        if any(marker in text for marker in NO_PROVIDER_MARKERS):
            return "No available provider for the requested model."
        if error.classification == APIErrorClassification.RATE_LIMIT.value:
            return "OpenRouter rate limit exceeded. Please retry later."
        if error.classification == APIErrorClassification.INSUFFICIENT_CREDITS.value or "payment required" in text:
            return "OpenRouter account has insufficient credits."
        if error.classification == APIErrorClassification.TIMEOUT.value:
            return "OpenRouter request timed out."
        return None

    def timeout_message(self) -> str:
        return "OpenRouter request timed out."

    # Streaming
    def new_stream_state(self, context: RequestContext) -> ChatStreamAccumulator:
        return ChatStreamAccumulator()

    def process_stream_line(self, state: ChatStreamAccumulator, line: Any, context: RequestContext) -> None:
        content_type = "application/json" if context.params.wants_json else "text"
        wire.process_chat_stream_line(
            state, line, lambda m, d, f: self.emit(context, m, d, f), content_type
        )

    def finish_stream(self, state: ChatStreamAccumulator, context: RequestContext) -> Dict[str, Any]:
        content_type = "application/json" if context.params.wants_json else "text"
        return wire.finish_chat_stream(state, lambda m, d, f: self.emit(context, m, d, f), content_type)

    # Embeddings
    def get_embeddings_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/embeddings"

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        return wire.build_embeddings_payload(inputs, options, model)

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        return self.build_embed_response(
            wire.parse_embeddings(raw.body), raw, context, wire.usage_from_body(raw.body)
        )


class AsyncOpenRouterAdapter(AsyncBaseAPIAdapter, OpenRouterAdapter):
    """Async version of OpenRouter adapter using aiohttp."""
