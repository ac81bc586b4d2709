"""
OpenAI Chat Completions wire format.

Plain functions shared by every adapter that speaks the Chat Completions
dialect (OpenAI chat, Ollama, OpenRouter and the mock provider). Each
adapter composes these with its own deltas instead of inheriting from
another provider's adapter.
"""

import dataclasses
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from promptwire.agents.exceptions import MessageError, ProviderAPIError
from promptwire.agents.messages import Message, Role
from promptwire.models.formatting import format_content, format_tool_call, format_tools, parse_content, parse_tool_calls
from promptwire.models.parameters import RequestParameters
from promptwire.models.streaming import ChatStreamAccumulator, parse_sse_line

logger = logging.getLogger(__name__)

# GPT-5+, o-series: no temperature on the wire
REASONING_MODEL_PATTERNS = (
    re.compile(r"^gpt-([5-9]|\d{2,})"),
    re.compile(r"^o[1-9]\d*(-|$)"),
)


def is_reasoning_model(model: Optional[str]) -> bool:
    if not model:
        return False
    name = model.lower().split("/")[-1]
    return any(pattern.match(name) for pattern in REASONING_MODEL_PATTERNS)


# =============================================================================
# Messages
# =============================================================================

def format_message(message: Message) -> Dict[str, Any]:
    """Chat Completions wire message for one canonical message."""
    role = message.role.value
    if message.role is Role.TOOL:
        content = format_content(message, "openai")
        return {
            "role": role,
            "tool_call_id": message.action_id,
            "content": content if content is not None else "",
        }

    wire = {"role": role, "content": format_content(message, "openai")}
    if wire["content"] is None:
        wire["content"] = ""
    if message.requested_actions:
        wire["tool_calls"] = [format_tool_call(action) for action in message.requested_actions]
    return wire


def format_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    return [format_message(message) for message in messages]


def parse_message(raw: Mapping[str, Any], content_type: Optional[str] = None) -> Message:
    """Canonical message for one Chat Completions wire message."""
    if not isinstance(raw, Mapping) or "role" not in raw:
        raise MessageError(f"Cannot parse wire message without a role: {str(raw)[:200]}")
    content, parsed_type = parse_content(raw.get("content"))
    role = raw["role"]
    actions = parse_tool_calls(raw.get("tool_calls")) if role == Role.ASSISTANT.value else []
    if content_type and not isinstance(content, tuple) and not actions:
        parsed_type = content_type
    return Message(
        role=role,
        content=content,
        content_type=parsed_type,
        requested_actions=tuple(actions),
        action_id=raw.get("tool_call_id"),
        action_name=raw.get("name") if role == Role.TOOL.value else None,
    )


def parse_messages(payload: Any) -> List[Message]:
    """
    Messages from a list of wire messages, a request body (``messages``) or
    a completion (``choices``).
    """
    if isinstance(payload, Mapping):
        if "choices" in payload:
            return [parse_message(choice["message"]) for choice in payload["choices"] if choice.get("message")]
        payload = payload.get("messages") or []
    return [parse_message(raw) for raw in payload or ()]


# =============================================================================
# Requests
# =============================================================================

def build_chat_payload(
    messages: Sequence[Message],
    params: RequestParameters,
    model: str,
    wire_messages: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Base Chat Completions body. ``wire_messages`` lets an adapter supply
    messages it has already adjusted for its provider.
    """
    payload: Dict[str, Any] = {
        "model": model,
        "messages": wire_messages if wire_messages is not None else format_messages(messages),
    }

    if params.temperature is not None:
        if is_reasoning_model(model):
            logger.debug(f"{model} is a reasoning model, omitting temperature")
        else:
            payload["temperature"] = params.temperature

    if params.max_tokens is not None:
        payload["max_tokens"] = params.max_tokens

    tools = format_tools(params.tools, "openai")
    if tools:
        payload["tools"] = tools

    if params.response_format is not None:
        payload["response_format"] = params.response_format

    if params.stream:
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

    return payload


def apply_passthrough(
    payload: Dict[str, Any],
    extra: Mapping[str, Any],
    valid_params: Sequence[str],
    provider: str,
) -> Dict[str, Any]:
    """Copy known provider keys from ``extra`` into the payload; warn about the rest."""
    import warnings

    for key, value in extra.items():
        if value is None:
            continue
        if key in valid_params:
            payload.setdefault(key, value)
        else:
            warnings.warn(f"Unknown parameter '{key}' passed to {provider} API - this parameter will be ignored")
    return payload


# =============================================================================
# Responses
# =============================================================================

def usage_from_body(body: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    usage = body.get("usage")
    if not isinstance(usage, Mapping):
        return None
    details = usage.get("completion_tokens_details") or {}
    return {
        "prompt_tokens": usage.get("prompt_tokens"),
        "completion_tokens": usage.get("completion_tokens"),
        "total_tokens": usage.get("total_tokens"),
        "reasoning_tokens": usage.get("reasoning_tokens", details.get("reasoning_tokens")),
    }


def harmonize_chat_completion(
    body: Mapping[str, Any], params: Optional[RequestParameters] = None
) -> Tuple[Message, Optional[str]]:
    """(assistant message, finish_reason) for a Chat Completions body."""
    choices = body.get("choices") or []
    if not choices:
        raise ProviderAPIError(f"Completion has no choices: {str(body)[:200]}")
    choice = choices[0]
    raw_message = dict(choice.get("message") or {})
    raw_message.setdefault("role", "assistant")
    content_type = "application/json" if params is not None and params.wants_json else None
    message = parse_message(raw_message, content_type=content_type)
    if body.get("id"):
        message = dataclasses.replace(message, generation_id=body["id"])
    return message, choice.get("finish_reason")


def parse_embeddings(body: Any) -> List[Dict[str, Any]]:
    """
    ``[{index, object: "embedding", embedding}]`` from any of the shapes
    OpenAI-compatible servers return.
    """
    if isinstance(body, Mapping):
        if isinstance(body.get("data"), list):
            return [
                {
                    "index": item.get("index", i),
                    "object": "embedding",
                    "embedding": item.get("embedding"),
                }
                for i, item in enumerate(body["data"])
            ]
        if isinstance(body.get("embeddings"), list):
            return [
                {"index": i, "object": "embedding", "embedding": vector}
                for i, vector in enumerate(body["embeddings"])
            ]
        if isinstance(body.get("embedding"), list):
            return [{"index": 0, "object": "embedding", "embedding": body["embedding"]}]
    raise ProviderAPIError(f"Unrecognized embeddings response: {str(body)[:200]}")


def build_embeddings_payload(inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
    payload = {
        "model": model,
        "input": inputs,
        "encoding_format": options.get("encoding_format") or "float",
    }
    if options.get("dimensions") is not None:
        payload["dimensions"] = options["dimensions"]
    return payload


# =============================================================================
# Streaming
# =============================================================================

def process_chat_stream_line(
    accumulator: ChatStreamAccumulator,
    line: Any,
    emit,
    content_type: str = "text",
) -> None:
    """Fold one SSE line into ``accumulator`` and emit a delta for new text."""
    chunk = parse_sse_line(line)
    if chunk is None:
        return
    text = accumulator.add(chunk)
    if text is not None:
        emit(accumulator.to_message(content_type), text, False)


def finish_chat_stream(accumulator: ChatStreamAccumulator, emit, content_type: str = "text") -> Dict[str, Any]:
    """Emit the terminal delta and return a completion-shaped body."""
    emit(accumulator.to_message(content_type), None, True)
    body = {
        "id": accumulator.generation_id,
        "object": "chat.completion",
        "model": accumulator.model,
        "choices": [{"index": 0, "message": accumulator.message, "finish_reason": accumulator.finish_reason}],
    }
    if accumulator.usage:
        body["usage"] = accumulator.usage
    return body
