"""
Offline provider for tests and local development.

MockAdapter replays queued Chat Completions bodies through the same wire
parser the real OpenAI-compatible adapters use, so a multi-turn tool loop
can run without network access. With nothing queued it answers with the
last user message in pig latin.
"""

import collections
import hashlib
import math
import random
import re
import threading
import time
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from promptwire.agents.messages import Action, Message, Role
from promptwire.models.adapters import openai_wire as wire
from promptwire.models.adapters.base import (
    APIProviderAdapter,
    AsyncBaseAPIAdapter,
    RawProviderResponse,
    RequestContext,
)
from promptwire.models.config import ProviderConfig
from promptwire.models.formatting import format_tool_call
from promptwire.models.parameters import RequestParameters
from promptwire.models.response_models import EmbedResponse, Response

DEFAULT_EMBEDDING_DIMENSIONS = 1536

ScriptItem = Union[Mapping[str, Any], str, Exception]

_WORD = re.compile(r"[A-Za-z]+")
_VOWELS = "aeiouAEIOU"


def pig_latin(text: str) -> str:
    def convert(match: "re.Match[str]") -> str:
        word = match.group(0)
        if word[0] in _VOWELS:
            converted = word + "way"
        else:
            split = next((i for i, ch in enumerate(word) if ch in _VOWELS), len(word))
            converted = word[split:] + word[:split] + "ay"
        if word[0].isupper():
            converted = converted[0].upper() + converted[1:].lower()
        return converted

    return _WORD.sub(convert, text)


def completion(
    content: Optional[str] = "",
    tool_calls: Sequence[Union[Action, Mapping[str, Any]]] = (),
    finish_reason: Optional[str] = None,
    model: str = "mock-model",
    usage: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """A Chat Completions body, for scripting MockAdapter."""
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            format_tool_call(call) if isinstance(call, Action) else dict(call) for call in tool_calls
        ]
    return {
        "id": f"chatcmpl-mock-{int(time.time() * 1000)}",
        "object": "chat.completion",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": finish_reason or ("tool_calls" if tool_calls else "stop"),
            }
        ],
        "usage": dict(usage) if usage else {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def mock_embedding(text: str, dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS) -> List[float]:
    """Deterministic unit vector seeded by ``text``."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = random.Random(seed)
    vector = [rng.uniform(-1.0, 1.0) for _ in range(dimensions)]
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


class MockAdapter(APIProviderAdapter):
    """
    Scripted adapter. Each ``send`` pops the next queued item: a
    Chat Completions body (or a plain string, used as the assistant text)
    is returned, an exception instance is raised. Every payload sent is
    recorded in ``requests``.
    """

    provider_name = "mock"
    default_model = "mock-model"
    default_embedding_model = "mock-embedding"

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        configuration=None,
        retry_policy=None,
        sanitizer=None,
        script: Iterable[ScriptItem] = (),
    ):
        super().__init__(config or ProviderConfig(service="mock"), configuration, retry_policy, sanitizer)
        self._script: Deque[ScriptItem] = collections.deque(script)
        self._lock = threading.Lock()
        self.requests: List[Dict[str, Any]] = []

    def enqueue(self, *items: ScriptItem) -> "MockAdapter":
        with self._lock:
            self._script.extend(items)
        return self

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._script)

    def get_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def get_endpoint_url(self, params: RequestParameters) -> str:
        return "mock://chat/completions"

    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        return wire.build_chat_payload(messages, params, model)

    def _echo(self, context: RequestContext) -> Dict[str, Any]:
        for message in reversed(context.messages):
            if message.role is Role.USER:
                return completion(pig_latin(message.text), model=context.model)
        return completion("", model=context.model)

    def _next_body(self, context: RequestContext) -> Any:
        with self._lock:
            self.requests.append(context.payload)
            item = self._script.popleft() if self._script else None
        if item is None:
            return self._echo(context)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return completion(item, model=context.model)
        return item

    def send(self, context: RequestContext) -> RawProviderResponse:
        context.attempts += 1
        start = time.time()
        if context.kind == "embed":
            body = self._embeddings_body(context.payload)
        else:
            body = self._next_body(context)
            if context.stream:
                self._replay_stream(body, context)
        return RawProviderResponse(body=body, elapsed=time.time() - start)

    def _replay_stream(self, body: Mapping[str, Any], context: RequestContext) -> None:
        message, _ = wire.harmonize_chat_completion(body, context.params)
        text = message.text
        sent = ""
        for chunk in re.findall(r"\S+\s*|\s+", text):
            sent += chunk
            self.emit(context, Message(role=Role.ASSISTANT, content=sent, content_type=message.content_type), chunk)
        self.emit(context, message, None, True)

    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        message, finish_reason = wire.harmonize_chat_completion(raw.body, context.params)
        return self.build_response(
            message, raw, context, wire.usage_from_body(raw.body), finish_reason=finish_reason
        )

    # Embeddings
    def get_embeddings_url(self) -> str:
        return "mock://embeddings"

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        payload = wire.build_embeddings_payload(inputs, options, model)
        payload.setdefault("dimensions", DEFAULT_EMBEDDING_DIMENSIONS)
        return payload

    def _embeddings_body(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        inputs = payload["input"]
        texts = [inputs] if isinstance(inputs, str) else list(inputs)
        return {
            "object": "list",
            "model": payload["model"],
            "data": [
                {"index": i, "object": "embedding", "embedding": mock_embedding(str(text), payload["dimensions"])}
                for i, text in enumerate(texts)
            ],
            "usage": {"prompt_tokens": sum(len(str(text).split()) for text in texts)},
        }

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        return self.build_embed_response(
            wire.parse_embeddings(raw.body), raw, context, wire.usage_from_body(raw.body)
        )


class AsyncMockAdapter(AsyncBaseAPIAdapter, MockAdapter):
    """Async MockAdapter; never opens an HTTP session."""

    async def asend(self, context: RequestContext) -> RawProviderResponse:
        return self.send(context)
