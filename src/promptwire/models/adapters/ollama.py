"""
Ollama adapter.

Generation goes through Ollama's OpenAI-compatible ``/v1/chat/completions``
endpoint using the shared Chat Completions wire functions. Embeddings are
where Ollama diverges: depending on the endpoint and server version the
body is the OpenAI list shape, the native ``{embedding: [...]}`` shape or
the ``/api/embed`` ``{embeddings: [[...]]}`` shape. All three are
normalized.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from promptwire.agents.messages import Message
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


def _api_root(base_url: str) -> str:
    # Accept both "http://host:11434" and "http://host:11434/v1"
    root = base_url.rstrip("/")
    return root[: -len("/v1")] if root.endswith("/v1") else root


class OllamaAdapter(APIProviderAdapter):
    """Adapter for a local Ollama server"""

    provider_name = "ollama"
    default_model = "llama3.2"
    default_embedding_model = "nomic-embed-text"

    VALID_PARAMS = frozenset({
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "seed",
        "stop",
        "tool_choice",
        "keep_alive",
    })

    def get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        # Ollama ignores the key; proxies in front of it may not
        if self.config.credential:
            headers["Authorization"] = f"Bearer {self.config.credential}"
        return headers

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return f"{_api_root(self.config.base_url)}/v1/chat/completions"

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        payload = wire.build_chat_payload(messages, params, model)
        return wire.apply_passthrough(payload, params.extra, self.VALID_PARAMS, "Ollama")

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        message, finish_reason = wire.harmonize_chat_completion(raw.body, context.params)
        return self.build_response(
            message, raw, context, wire.usage_from_body(raw.body), finish_reason=finish_reason
        )

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
        return f"{_api_root(self.config.base_url)}/v1/embeddings"

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        return wire.build_embeddings_payload(inputs, options, model)

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        body = raw.body
        usage: Optional[Dict[str, Any]] = wire.usage_from_body(body) if isinstance(body, Mapping) else None
        if usage is None and isinstance(body, Mapping) and body.get("prompt_eval_count") is not None:
            usage = {"prompt_tokens": body["prompt_eval_count"]}
        return self.build_embed_response(wire.parse_embeddings(body), raw, context, usage)


class AsyncOllamaAdapter(AsyncBaseAPIAdapter, OllamaAdapter):
    """Async version of Ollama adapter using aiohttp."""
