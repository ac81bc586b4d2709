"""
Streaming primitives.

Adapters produce StreamDelta objects into a StreamChannel; the consumer
drains the channel in order. A channel is closed once per conversation,
after the final turn, so one channel can carry the deltas of several
provider round trips.
"""

import dataclasses
import json
import logging
import queue
from typing import Any, Callable, Dict, Iterator, List, Optional

from promptwire.agents.messages import Action, Message, Role
from promptwire.models.formatting import decode_params, parse_tool_calls

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclasses.dataclass(frozen=True)
class StreamDelta:
    """
    One increment of a streamed response.

    ``message`` is the message accumulated so far, ``delta`` the new text
    (None for the terminal or tool-only increments) and ``finished`` is
    True exactly once per round trip, on the last delta.
    """

    message: Message
    delta: Optional[str]
    finished: bool = False


class StreamChannel:
    """
    FIFO hand-off between a producing adapter and a consuming caller.

    ``maxsize`` bounds the queue so a slow consumer applies backpressure to
    the producer; ``cancel`` makes the next ``send`` raise so the producer
    stops reading from the network.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._cancelled = False
        self._closed = False
        self._error: Optional[BaseException] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, delta: StreamDelta) -> None:
        if self._cancelled:
            raise StreamCancelled("Stream consumer cancelled")
        if self._closed:
            raise RuntimeError("Cannot send on a closed stream channel")
        self._queue.put(delta)

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put(_CLOSED)

    def cancel(self) -> None:
        self._cancelled = True

    def __iter__(self) -> Iterator[StreamDelta]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                if self._error is not None:
                    raise self._error
                return
            yield item

    def drain(self) -> List[StreamDelta]:
        """Everything currently queued, without blocking."""
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return items
            items.append(item)


class StreamCancelled(Exception):
    """Raised inside the producer when the consumer cancelled the channel."""


class CallbackChannel(StreamChannel):
    """Channel that forwards each delta synchronously to ``callback(message, delta, finished)``."""

    def __init__(self, callback: Callable[[Message, Optional[str], bool], Any]):
        super().__init__()
        self._callback = callback

    def send(self, delta: StreamDelta) -> None:
        if self.cancelled:
            raise StreamCancelled("Stream consumer cancelled")
        self._callback(delta.message, delta.delta, delta.finished)


def parse_sse_line(line: Any) -> Optional[Dict[str, Any]]:
    """
    JSON payload of one server-sent-events ``data:`` line.

    Returns None for blank lines, comments, ``event:`` lines, the
    ``[DONE]`` sentinel and data that is not a JSON object.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    if not line:
        return None
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        logger.warning(f"Skipping undecodable stream line: {data[:200]!r}")
        return None
    return decoded if isinstance(decoded, dict) else None


def merge_delta(target: Dict[str, Any], delta: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge one Chat Completions delta into the accumulated message dict.

    Strings concatenate, nested dicts merge recursively and lists of dicts
    merge element-wise by their ``index`` key (tool calls).
    """
    for key, value in delta.items():
        if value is None:
            continue
        current = target.get(key)
        if isinstance(value, str) and isinstance(current, str) and key not in ("id", "type", "role"):
            target[key] = current + value
        elif isinstance(value, dict):
            target[key] = merge_delta(dict(current) if isinstance(current, dict) else {}, value)
        elif isinstance(value, list):
            merged = list(current) if isinstance(current, list) else []
            for item in value:
                if isinstance(item, dict) and "index" in item:
                    existing = next(
                        (i for i, m in enumerate(merged) if isinstance(m, dict) and m.get("index") == item["index"]),
                        None,
                    )
                    if existing is None:
                        merged.append(merge_delta({}, item))
                    else:
                        merged[existing] = merge_delta(dict(merged[existing]), item)
                else:
                    merged.append(item)
            target[key] = merged
        else:
            target[key] = value
    return target


class ChatStreamAccumulator:
    """
    Builds the final assistant message from Chat Completions stream chunks,
    independent of how the content was split across chunks.
    """

    def __init__(self):
        self.message: Dict[str, Any] = {"role": "assistant", "content": ""}
        self.finish_reason: Optional[str] = None
        self.generation_id: Optional[str] = None
        self.model: Optional[str] = None
        self.usage: Optional[Dict[str, Any]] = None
        self.chunks: List[Dict[str, Any]] = []

    def add(self, chunk: Dict[str, Any]) -> Optional[str]:
        """Fold in one chunk; returns the new text it carried, if any."""
        self.chunks.append(chunk)
        self.generation_id = self.generation_id or chunk.get("id")
        self.model = self.model or chunk.get("model")
        if chunk.get("usage"):
            self.usage = chunk["usage"]
        choices = chunk.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        delta = choice.get("delta") or {}
        merge_delta(self.message, delta)
        if choice.get("finish_reason"):
            self.finish_reason = choice["finish_reason"]
        text = delta.get("content")
        return text if text else None

    def tool_calls(self) -> List[Action]:
        return parse_tool_calls(self.message.get("tool_calls"))

    def to_message(self, content_type: str = "text") -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=self.message.get("content") or "",
            content_type=content_type,
            requested_actions=tuple(self.tool_calls()),
            generation_id=self.generation_id,
        )


class AnthropicStreamAccumulator:
    """Builds an Anthropic message from server-sent events."""

    def __init__(self):
        self.blocks: Dict[int, Dict[str, Any]] = {}
        self.partial_json: Dict[int, str] = {}
        self.generation_id: Optional[str] = None
        self.model: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.usage: Dict[str, Any] = {}

    def add(self, event: Dict[str, Any]) -> Optional[str]:
        event_type = event.get("type")
        if event_type == "message_start":
            message = event.get("message") or {}
            self.generation_id = message.get("id")
            self.model = message.get("model")
            self.usage.update(message.get("usage") or {})
        elif event_type == "content_block_start":
            self.blocks[event.get("index", 0)] = dict(event.get("content_block") or {})
        elif event_type == "content_block_delta":
            index = event.get("index", 0)
            delta = event.get("delta") or {}
            block = self.blocks.setdefault(index, {"type": "text", "text": ""})
            if delta.get("type") == "text_delta":
                block["text"] = block.get("text", "") + delta.get("text", "")
                return delta.get("text") or None
            if delta.get("type") == "input_json_delta":
                self.partial_json[index] = self.partial_json.get(index, "") + delta.get("partial_json", "")
        elif event_type == "content_block_stop":
            index = event.get("index", 0)
            if index in self.partial_json:
                self.blocks[index]["input"] = decode_params(self.partial_json.pop(index)) or {}
        elif event_type == "message_delta":
            self.stop_reason = (event.get("delta") or {}).get("stop_reason", self.stop_reason)
            self.usage.update(event.get("usage") or {})
        return None

    def content_blocks(self) -> List[Dict[str, Any]]:
        return [self.blocks[i] for i in sorted(self.blocks)]

    def to_raw_message(self) -> Dict[str, Any]:
        return {
            "id": self.generation_id,
            "type": "message",
            "role": "assistant",
            "model": self.model,
            "content": self.content_blocks(),
            "stop_reason": self.stop_reason,
            "usage": self.usage,
        }
