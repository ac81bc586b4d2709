"""
OpenAI adapters.

Chat Completions and Responses are two distinct wire protocols over the
same model family. ``ProviderConfig.api`` picks one; a chat adapter hands a
call over to its Responses counterpart when the tool list contains a
built-in (provider-hosted) tool, which only the Responses API accepts.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from promptwire.agents.messages import Action, Message, Role
from promptwire.models.adapters import openai_wire as wire
from promptwire.models.adapters.base import (
    APIProviderAdapter,
    AsyncBaseAPIAdapter,
    RawProviderResponse,
    RequestContext,
)
from promptwire.models.formatting import decode_params, extract_tool_name, format_content, format_tools, parse_content
from promptwire.models.parameters import RequestParameters, has_builtin_tools
from promptwire.models.response_models import EmbedResponse, Response
from promptwire.models.streaming import ChatStreamAccumulator, StreamChannel, parse_sse_line

logger = logging.getLogger(__name__)


def _strip_provider_prefix(model: str) -> str:
    # OpenRouter-style names ("openai/gpt-4o") are sent bare to OpenAI
    return model[len("openai/"):] if model.startswith("openai/") else model


def _instructions(messages: Sequence[Message], params: RequestParameters) -> Optional[str]:
    if params.instructions:
        return params.instructions
    for message in reversed(messages):
        if message.role is Role.SYSTEM:
            return message.text
    return None


class OpenAIChatAdapter(APIProviderAdapter):
    """Adapter for the OpenAI Chat Completions API"""

    provider_name = "openai"
    default_model = "gpt-4o-mini"

    VALID_PARAMS = frozenset({
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "seed",
        "stop",
        "user",
        "n",
        "logit_bias",
        "logprobs",
        "top_logprobs",
        "tool_choice",
        "parallel_tool_calls",
        "reasoning_effort",
        "max_completion_tokens",
        "service_tier",
        "store",
        "metadata",
        "prediction",
        "modalities",
        "audio",
    })

    responses_adapter_class: Optional[type] = None

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Built-in tools only exist on the Responses API
        responses_class = type(self).responses_adapter_class or OpenAIResponsesAdapter
        self.responses_adapter = responses_class(
            self.config,
            self.configuration,
            retry_policy=self.retry_policy,
            sanitizer=self.sanitizer,
        )

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.credential}",
            "Content-Type": "application/json",
        }

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def resolve_model(self, params: Optional[RequestParameters] = None) -> str:
        return _strip_provider_prefix(super().resolve_model(params))

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        payload = wire.build_chat_payload(messages, params, model)
        return wire.apply_passthrough(payload, params.extra, self.VALID_PARAMS, "OpenAI")

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        message, finish_reason = wire.harmonize_chat_completion(raw.body, context.params)
        return self.build_response(
            message, raw, context, wire.usage_from_body(raw.body), finish_reason=finish_reason
        )

    def generate(
        self,
        messages: Sequence[Message],
        params: Optional[RequestParameters] = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        if params is not None and has_builtin_tools(params.tools):
            logger.debug("Built-in tools requested, using the Responses API")
            return self.responses_adapter.generate(messages, params, channel)
        return super().generate(messages, params, channel)

    # Streaming
    def new_stream_state(self, context: RequestContext) -> ChatStreamAccumulator:
        return ChatStreamAccumulator()

    def process_stream_line(self, state: ChatStreamAccumulator, line: Any, context: RequestContext) -> None:
        wire.process_chat_stream_line(state, line, self._emitter(context), self._stream_content_type(context))

    def finish_stream(self, state: ChatStreamAccumulator, context: RequestContext) -> Dict[str, Any]:
        return wire.finish_chat_stream(state, self._emitter(context), self._stream_content_type(context))

    def _emitter(self, context: RequestContext):
        return lambda message, delta, finished: self.emit(context, message, delta, finished)

    @staticmethod
    def _stream_content_type(context: RequestContext) -> str:
        return "application/json" if context.params.wants_json else "text"

    # Embeddings
    def get_embeddings_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/embeddings"

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        return wire.build_embeddings_payload(inputs, options, model)

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        return self.build_embed_response(wire.parse_embeddings(raw.body), raw, context, wire.usage_from_body(raw.body))


# =============================================================================
# Responses API
# =============================================================================

def format_responses_message(message: Message) -> List[Dict[str, Any]]:
    """
    Responses ``input`` items for one message. System messages produce none:
    they travel in ``instructions``.
    """
    if message.role is Role.SYSTEM:
        return []
    if message.role is Role.TOOL:
        return [{"type": "function_call_output", "call_id": message.action_id, "output": message.text}]

    items = []
    content = format_content(message, "responses")
    if message.role is Role.ASSISTANT and isinstance(content, list):
        # Assistant history is replayed as text
        content = message.text
    if content or not message.requested_actions:
        items.append({"role": message.role.value, "content": content if content is not None else ""})
    for action in message.requested_actions:
        items.append({
            "type": "function_call",
            "call_id": action.id,
            "name": action.name,
            "arguments": action.arguments,
        })
    return items


def format_responses_input(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    items = []
    for message in messages:
        items.extend(format_responses_message(message))
    return items


def parse_responses_input(items: Sequence[Mapping[str, Any]]) -> List[Message]:
    """Inverse of format_responses_input; function calls attach to the assistant turn before them."""
    messages: List[Message] = []
    pending_actions: List[Action] = []
    pending_content: Any = None

    def flush():
        nonlocal pending_actions, pending_content
        if pending_content is not None or pending_actions:
            messages.append(
                Message(
                    role=Role.ASSISTANT,
                    content=pending_content if pending_content is not None else "",
                    requested_actions=tuple(pending_actions),
                )
            )
        pending_actions, pending_content = [], None

    for item in items:
        item_type = item.get("type")
        if item_type == "function_call":
            name = extract_tool_name(item)
            if name is None:
                logger.warning(f"Dropping function_call item without a name: {str(item)[:200]}")
                continue
            pending_actions.append(
                Action(id=item.get("call_id", ""), name=name, params=decode_params(item.get("arguments")))
            )
        elif item_type == "function_call_output":
            flush()
            messages.append(Message(role=Role.TOOL, content=item.get("output", ""), action_id=item.get("call_id")))
        elif item.get("role") == "assistant":
            flush()
            pending_content, _ = parse_content(item.get("content"))
        else:
            flush()
            content, content_type = parse_content(item.get("content"))
            messages.append(Message(role=item["role"], content=content, content_type=content_type))
    flush()
    return messages


def _text_format(params: RequestParameters) -> Optional[Dict[str, Any]]:
    if params.output_schema is not None:
        return {"type": "json_schema", **params.output_schema}
    if params.response_format is not None:
        response_format = params.response_format
        if response_format.get("type") == "json_schema" and "json_schema" in response_format:
            return {"type": "json_schema", **response_format["json_schema"]}
        return dict(response_format)
    return None


class OpenAIResponsesAdapter(APIProviderAdapter):
    """Adapter for the OpenAI Responses API (/v1/responses)"""

    provider_name = "openai"
    default_model = "gpt-4o-mini"

    VALID_PARAMS = frozenset({
        "top_p",
        "tool_choice",
        "parallel_tool_calls",
        "max_tool_calls",
        "reasoning",
        "store",
        "previous_response_id",
        "include",
        "metadata",
        "truncation",
        "user",
        "service_tier",
        "background",
        "prompt_cache_key",
        "safety_identifier",
    })

    def get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.credential}",
            "Content-Type": "application/json",
        }

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return f"{self.config.base_url.rstrip('/')}/responses"

    def resolve_model(self, params: Optional[RequestParameters] = None) -> str:
        return _strip_provider_prefix(super().resolve_model(params))

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": model, "input": format_responses_input(messages)}

        instructions = _instructions(messages, params)
        if instructions:
            payload["instructions"] = instructions

        if params.temperature is not None:
            if wire.is_reasoning_model(model):
                logger.debug(f"{model} is a reasoning model, omitting temperature")
            else:
                payload["temperature"] = params.temperature

        if params.max_tokens is not None:
            payload["max_output_tokens"] = params.max_tokens

        tools = format_tools(params.tools, "responses")
        if tools:
            payload["tools"] = tools

        text_format = _text_format(params)
        if text_format is not None:
            payload["text"] = {"format": text_format}

        extra = dict(params.extra)
        reasoning_effort = extra.pop("reasoning_effort", None)
        if isinstance(reasoning_effort, str) and reasoning_effort.lower() in ("minimal", "low", "medium", "high"):
            payload["reasoning"] = {"effort": reasoning_effort.lower()}
        if "max_completion_tokens" in extra:
            payload.setdefault("max_output_tokens", extra.pop("max_completion_tokens"))

        if params.stream:
            payload["stream"] = True

        return wire.apply_passthrough(payload, extra, self.VALID_PARAMS, "OpenAI Responses")

    def _parse_output(self, body: Mapping[str, Any], params: RequestParameters) -> Tuple[Message, Optional[str]]:
        text_parts = []
        actions = []
        finish_reason = None
        for item in body.get("output") or ():
            item_type = item.get("type")
            if item_type == "message":
                status = item.get("status")
                if status == "completed":
                    finish_reason = "stop"
                elif status == "incomplete":
                    finish_reason = "length"
                elif status:
                    finish_reason = status
                for content_item in item.get("content") or ():
                    if isinstance(content_item, Mapping) and content_item.get("type") == "output_text":
                        text_parts.append(content_item.get("text", ""))
                    elif isinstance(content_item, str):
                        text_parts.append(content_item)
            elif item_type == "function_call" and item.get("name"):
                actions.append(
                    Action(
                        id=item.get("call_id", item.get("id", "")),
                        name=item["name"],
                        params=decode_params(item.get("arguments")),
                    )
                )
        if actions:
            finish_reason = "tool_calls"
        content_type = "application/json" if params.wants_json and not actions else "text"
        message = Message(
            role=Role.ASSISTANT,
            content="".join(text_parts),
            content_type=content_type,
            requested_actions=tuple(actions),
            generation_id=body.get("id"),
        )
        return message, finish_reason

    @staticmethod
    def _usage(body: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        usage = body.get("usage")
        if not isinstance(usage, Mapping):
            return None
        details = usage.get("output_tokens_details") or {}
        return {
            "prompt_tokens": usage.get("input_tokens", usage.get("prompt_tokens")),
            "completion_tokens": usage.get("output_tokens", usage.get("completion_tokens")),
            "total_tokens": usage.get("total_tokens"),
            "reasoning_tokens": details.get("reasoning_tokens"),
        }

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        message, finish_reason = self._parse_output(raw.body, context.params)
        return self.build_response(message, raw, context, self._usage(raw.body), finish_reason=finish_reason)

    # Streaming: response.output_text.delta events, then response.completed
    def new_stream_state(self, context: RequestContext) -> Dict[str, Any]:
        return {"text": "", "response": None}

    def process_stream_line(self, state: Dict[str, Any], line: Any, context: RequestContext) -> None:
        event = parse_sse_line(line)
        if event is None:
            return
        event_type = event.get("type")
        if event_type == "response.output_text.delta":
            delta = event.get("delta") or ""
            state["text"] += delta
            if delta:
                self.emit(context, Message(role=Role.ASSISTANT, content=state["text"]), delta)
        elif event_type in ("response.completed", "response.incomplete"):
            state["response"] = event.get("response")

    def finish_stream(self, state: Dict[str, Any], context: RequestContext) -> Dict[str, Any]:
        body = state["response"] or {
            "output": [{"type": "message", "status": "completed", "content": [{"type": "output_text", "text": state["text"]}]}]
        }
        message, _ = self._parse_output(body, context.params)
        self.emit(context, message, None, True)
        return body

    # Embeddings share the /embeddings endpoint with the chat adapter
    def get_embeddings_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/embeddings"

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        return wire.build_embeddings_payload(inputs, options, model)

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        return self.build_embed_response(wire.parse_embeddings(raw.body), raw, context, wire.usage_from_body(raw.body))


class AsyncOpenAIResponsesAdapter(AsyncBaseAPIAdapter, OpenAIResponsesAdapter):
    """Async version of the Responses adapter using aiohttp."""


class AsyncOpenAIChatAdapter(AsyncBaseAPIAdapter, OpenAIChatAdapter):
    """Async version of the Chat Completions adapter using aiohttp."""

    responses_adapter_class = AsyncOpenAIResponsesAdapter

    async def agenerate(
        self,
        messages: Sequence[Message],
        params: Optional[RequestParameters] = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        if params is not None and has_builtin_tools(params.tools):
            return await self.responses_adapter.agenerate(messages, params, channel)
        return await super().agenerate(messages, params, channel)

    async def cleanup(self):
        await self.responses_adapter.cleanup()
        await super().cleanup()
