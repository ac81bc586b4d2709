"""
Anthropic Messages API adapter.

Differences from the Chat Completions dialect:
  - system text is a top-level ``system`` field, not a message
  - tool calls are ``tool_use`` content blocks; results go back as
    ``tool_result`` blocks inside a user turn
  - consecutive same-role turns are merged, since the API requires strict
    user/assistant alternation
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from promptwire.agents.messages import Action, Message, Role
from promptwire.models.adapters import openai_wire as wire
from promptwire.models.adapters.base import (
    APIProviderAdapter,
    AsyncBaseAPIAdapter,
    RawProviderResponse,
    RequestContext,
)
from promptwire.models.formatting import (
    compress_content,
    content_blocks,
    decode_params,
    extract_tool_name,
    format_content,
    format_tools,
    merge_consecutive_messages,
    parse_part,
)
from promptwire.models.parameters import RequestParameters
from promptwire.models.response_models import Response
from promptwire.models.streaming import AnthropicStreamAccumulator, parse_sse_line

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


# =============================================================================
# Messages
# =============================================================================

def format_message(message: Message) -> Optional[Dict[str, Any]]:
    """
    Anthropic wire message for one canonical message. System messages give
    None; the adapter moves their text to the ``system`` field.
    """
    if message.role is Role.SYSTEM:
        return None

    if message.role is Role.TOOL:
        content = format_content(message, "anthropic")
        return {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": message.action_id, "content": content if content is not None else ""}],
        }

    content = format_content(message, "anthropic")
    if not message.requested_actions:
        return {"role": message.role.value, "content": content if content is not None else ""}

    blocks = content_blocks(content)
    for action in message.requested_actions:
        blocks.append({"type": "tool_use", "id": action.id, "name": action.name, "input": action.params or {}})
    return {"role": "assistant", "content": blocks}


def format_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """Wire messages with same-role runs merged and single text blocks compressed."""
    wire_messages = [formatted for formatted in map(format_message, messages) if formatted is not None]
    merged = merge_consecutive_messages(wire_messages)
    for message in merged:
        message["content"] = compress_content(message["content"])
    return merged


def system_text(messages: Sequence[Message], params: RequestParameters) -> Optional[str]:
    if params.instructions:
        return params.instructions
    for message in reversed(messages):
        if message.role is Role.SYSTEM:
            return message.text
    return None


def _parse_blocks(role: str, blocks: Sequence[Any]) -> List[Message]:
    """Split one wire turn's blocks into canonical messages."""
    messages: List[Message] = []
    parts: List[Any] = []
    actions: List[Action] = []

    def flush_parts():
        if not parts:
            return
        if len(parts) == 1 and parts[0].type == "text":
            messages.append(Message(role=role, content=parts[0].text))
        else:
            messages.append(Message(role=role, content=tuple(parts)))
        parts.clear()

    for block in blocks:
        block_type = block.get("type") if isinstance(block, Mapping) else None
        if block_type == "tool_result":
            flush_parts()
            result = block.get("content")
            if isinstance(result, list):
                result = "".join(item.get("text", "") for item in result if isinstance(item, Mapping))
            messages.append(Message(role=Role.TOOL, content=result or "", action_id=block.get("tool_use_id")))
        elif block_type == "tool_use":
            name = extract_tool_name(block)
            if name is None:
                logger.warning(f"Dropping tool_use block without a name: {str(block)[:200]}")
                continue
            actions.append(Action(id=block.get("id", ""), name=name, params=decode_params(block.get("input"))))
        elif block_type in ("thinking", "redacted_thinking"):
            continue
        else:
            parts.append(parse_part(block))

    if actions:
        text = "".join(part.text or "" for part in parts if part.type == "text")
        messages.append(Message(role=Role.ASSISTANT, content=text, requested_actions=tuple(actions)))
    else:
        flush_parts()
    return messages


def parse_messages(payload: Any) -> List[Message]:
    """
    Canonical messages from a list of wire messages, a request body or a
    single response body. A ``system`` field comes back as a system message.
    """
    messages: List[Message] = []
    if isinstance(payload, Mapping):
        if payload.get("system"):
            messages.append(Message(role=Role.SYSTEM, content=payload["system"]))
        if payload.get("type") == "message" and "content" in payload:
            payload = [{"role": payload.get("role", "assistant"), "content": payload["content"]}]
        else:
            payload = payload.get("messages") or []

    for raw in payload or ():
        content = raw.get("content")
        if isinstance(content, str):
            messages.append(Message(role=raw["role"], content=content))
        else:
            messages.extend(_parse_blocks(raw["role"], content or ()))
    return messages


def message_from_response(body: Mapping[str, Any], params: Optional[RequestParameters] = None) -> Message:
    text_parts = []
    actions = []
    for block in body.get("content") or ():
        if block.get("type") == "text":
            text_parts.append(block.get("text", ""))
        elif block.get("type") == "tool_use" and block.get("name"):
            actions.append(Action(id=block.get("id", ""), name=block["name"], params=decode_params(block.get("input"))))
    wants_json = params is not None and params.wants_json and not actions
    return Message(
        role=Role.ASSISTANT,
        content="".join(text_parts),
        content_type="application/json" if wants_json else "text",
        requested_actions=tuple(actions),
        generation_id=body.get("id"),
    )


class AnthropicAdapter(APIProviderAdapter):
    """Adapter for Anthropic Claude API"""

    provider_name = "anthropic"
    default_model = "claude-sonnet-4-5"

    VALID_PARAMS = frozenset({
        "top_k",
        "top_p",
        "stop_sequences",
        "metadata",
        "thinking",
        "tool_choice",
        "service_tier",
    })

    def get_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.credential or "",
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return f"{self.config.base_url.rstrip('/')}/messages"

    def resolve_model(self, params: Optional[RequestParameters] = None) -> str:
        model = super().resolve_model(params)
        # OpenRouter uses "anthropic/claude-..." but the Anthropic API needs the bare name
        return model[len("anthropic/"):] if model.startswith("anthropic/") else model

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": format_messages(messages),
            "max_tokens": params.max_tokens or DEFAULT_MAX_TOKENS,
        }

        system = system_text(messages, params)
        if system:
            payload["system"] = system

        if params.temperature is not None:
            payload["temperature"] = params.temperature

        tools = format_tools(params.tools, "anthropic")
        if tools:
            payload["tools"] = tools

        if params.output_schema is not None:
            payload["output_config"] = {
                "format": {"type": "json_schema", "schema": params.output_schema["schema"]}
            }

        if params.stream:
            payload["stream"] = True

        return wire.apply_passthrough(payload, params.extra, self.VALID_PARAMS, "Anthropic")

    @staticmethod
    def _usage(body: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        usage = body.get("usage")
        if not isinstance(usage, Mapping):
            return None
        return {
            "prompt_tokens": usage.get("input_tokens"),
            "completion_tokens": usage.get("output_tokens"),
        }

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        body = raw.body
        message = message_from_response(body, context.params)
        return self.build_response(
            message,
            raw,
            context,
            self._usage(body),
            finish_reason=body.get("stop_reason"),
            stop_sequence=body.get("stop_sequence"),
        )

    # Streaming
    def new_stream_state(self, context: RequestContext) -> AnthropicStreamAccumulator:
        return AnthropicStreamAccumulator()

    def process_stream_line(self, state: AnthropicStreamAccumulator, line: Any, context: RequestContext) -> None:
        event = parse_sse_line(line)
        if event is None:
            return
        if event.get("type") == "error":
            error = event.get("error") or {}
            raise self.handle_api_error(RuntimeError(error.get("message", "stream error")), body=event)
        text = state.add(event)
        if text is not None:
            self.emit(context, message_from_response(state.to_raw_message(), context.params), text)

    def finish_stream(self, state: AnthropicStreamAccumulator, context: RequestContext) -> Dict[str, Any]:
        body = state.to_raw_message()
        self.emit(context, message_from_response(body, context.params), None, True)
        return body


class AsyncAnthropicAdapter(AsyncBaseAPIAdapter, AnthropicAdapter):
    """Async version of Anthropic adapter using aiohttp."""
