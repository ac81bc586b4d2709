"""
Pure functions translating between the canonical message/action model and
provider wire shapes.

Three tool/content dialects are covered:
  - "openai": Chat Completions (also used by Ollama and OpenRouter)
  - "responses": OpenAI Responses API
  - "anthropic": Anthropic Messages API

Nothing here performs I/O or keeps state.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from promptwire.agents.exceptions import ContentTypeError
from promptwire.agents.messages import (
    MULTIPART_CONTENT_TYPES,
    TEXT_CONTENT_TYPES,
    Action,
    ContentPart,
    Message,
)

logger = logging.getLogger(__name__)

DIALECTS = ("openai", "responses", "anthropic")

# Ordered lookup paths, first hit wins
TOOL_ID_PATHS: Tuple[Tuple[str, ...], ...] = (("id",),)
TOOL_NAME_PATHS: Tuple[Tuple[str, ...], ...] = (("function", "name"), ("name",))
TOOL_PARAMS_PATHS: Tuple[Tuple[str, ...], ...] = (("function", "arguments"), ("arguments",), ("input",))

DATA_URI_PATTERN = re.compile(r"^data:([^;,]+)(?:;base64)?,(.+)$", re.DOTALL)

EMPTY_PARAMETERS_SCHEMA = {"type": "object", "properties": {}}


# =============================================================================
# Accessors
# =============================================================================

def dig(value: Any, path: Sequence[str]) -> Any:
    """Follow ``path`` through nested mappings; None when any step is missing."""
    current = value
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def first_present(value: Any, paths: Iterable[Sequence[str]]) -> Any:
    for path in paths:
        found = dig(value, path)
        if found is not None:
            return found
    return None


def decode_params(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Tool arguments as a dict. JSON strings are decoded; blank or unparsable
    strings and non-object JSON give None.
    """
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        return {str(k): v for k, v in raw.items()}
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Could not decode tool arguments, using no params: {raw[:200]!r}")
            return None
        if isinstance(decoded, Mapping):
            return {str(k): v for k, v in decoded.items()}
        logger.warning(f"Tool arguments decoded to {type(decoded).__name__}, expected an object")
        return None
    return None


def extract_tool_id(raw_call: Any) -> Optional[str]:
    value = first_present(raw_call, TOOL_ID_PATHS)
    return None if value is None else str(value)


def extract_tool_name(raw_call: Any) -> Optional[str]:
    value = first_present(raw_call, TOOL_NAME_PATHS)
    if value is None or not str(value).strip():
        return None
    return str(value)


def extract_tool_params(raw_call: Any) -> Optional[Dict[str, Any]]:
    return decode_params(first_present(raw_call, TOOL_PARAMS_PATHS))


# =============================================================================
# Tool calls
# =============================================================================

def parse_tool_calls(raw_calls: Optional[Iterable[Any]]) -> List[Action]:
    """
    Convert raw provider tool calls to Actions.

    Entries without a discoverable name are dropped: providers emit partial
    calls while streaming and one bad entry must not abort the turn.
    """
    actions = []
    for index, raw_call in enumerate(raw_calls or ()):
        name = extract_tool_name(raw_call)
        if name is None:
            logger.warning(f"Dropping tool call #{index} without a name: {str(raw_call)[:200]}")
            continue
        actions.append(
            Action(
                id=extract_tool_id(raw_call) or "",
                name=name,
                params=extract_tool_params(raw_call),
            )
        )
    return actions


def format_tool_call(action: Action) -> Dict[str, Any]:
    """OpenAI-style tool call; ``arguments`` is a JSON-encoded string."""
    return {
        "type": "function",
        "function": {"name": action.name, "arguments": action.arguments},
        "id": action.id,
    }


# =============================================================================
# Tool schemas
# =============================================================================

def _is_builtin(tool: Mapping[str, Any]) -> bool:
    return "function" not in tool and tool.get("type") not in (None, "function")


def _schema_fields(tool: Mapping[str, Any]) -> Dict[str, Any]:
    """name/description/parameters from a bare, flattened or Anthropic schema."""
    source = tool.get("function") if isinstance(tool.get("function"), Mapping) else tool
    fields = {"name": source.get("name")}
    if source.get("description") is not None:
        fields["description"] = source["description"]
    parameters = source.get("parameters", source.get("input_schema"))
    if parameters is not None:
        fields["parameters"] = parameters
    if source.get("strict") is not None:
        fields["strict"] = source["strict"]
    return fields


def wrap_tool(tool: Mapping[str, Any], dialect: str = "openai") -> Dict[str, Any]:
    """
    Put one tool schema in the dialect's canonical wrapper.
    Already-wrapped schemas and built-in tools come back unchanged.
    """
    if dialect not in DIALECTS:
        raise ValueError(f"Unknown tool dialect {dialect!r}")

    if _is_builtin(tool):
        return dict(tool)

    if dialect == "openai":
        if "function" in tool:
            return dict(tool)
        return {"type": "function", "function": _schema_fields(tool)}

    if dialect == "responses":
        if tool.get("type") == "function" and "function" not in tool and "name" in tool:
            return dict(tool)
        return {"type": "function", **_schema_fields(tool)}

    # anthropic
    if "input_schema" in tool and "name" in tool and "function" not in tool:
        return dict(tool)
    fields = _schema_fields(tool)
    return {
        "name": fields["name"],
        "description": fields.get("description", ""),
        "input_schema": fields.get("parameters") or dict(EMPTY_PARAMETERS_SCHEMA),
    }


def format_tools(tools: Optional[Iterable[Any]], dialect: str = "openai") -> List[Dict[str, Any]]:
    """Wrap every schema for ``dialect``; idempotent, non-mapping entries are skipped."""
    formatted = []
    for tool in tools or ():
        if not isinstance(tool, Mapping):
            logger.debug(f"Skipping non-object tool entry: {tool!r}")
            continue
        formatted.append(wrap_tool(tool, dialect))
    return formatted


def tool_name(tool: Mapping[str, Any]) -> Optional[str]:
    return _schema_fields(tool).get("name") if not _is_builtin(tool) else None


# =============================================================================
# Content
# =============================================================================

def parse_data_uri(uri: str) -> Optional[Tuple[str, str]]:
    """(media_type, data) for a data URI, else None."""
    if not isinstance(uri, str):
        return None
    match = DATA_URI_PATTERN.match(uri)
    if not match:
        return None
    return match.group(1), match.group(2)


def format_part(part: ContentPart, dialect: str = "openai") -> Dict[str, Any]:
    """Wire shape of one content part, chosen by the part's declared type."""
    if dialect == "openai":
        if part.type == "text":
            return {"type": "text", "text": part.text}
        if part.type == "image":
            return {"type": "image_url", "image_url": {"url": part.source}}
        file_part = {"file_data": part.source}
        if part.filename:
            file_part["filename"] = part.filename
        return {"type": "file", "file": file_part}

    if dialect == "responses":
        if part.type == "text":
            return {"type": "input_text", "text": part.text}
        if part.type == "image":
            return {"type": "input_image", "image_url": part.source}
        file_part = {"type": "input_file", "file_data": part.source}
        if part.filename:
            file_part["filename"] = part.filename
        return file_part

    if dialect == "anthropic":
        if part.type == "text":
            return {"type": "text", "text": part.text}
        block_type = "image" if part.type == "image" else "document"
        parsed = parse_data_uri(part.source)
        if parsed:
            media_type, data = parsed
            return {"type": block_type, "source": {"type": "base64", "media_type": media_type, "data": data}}
        return {"type": block_type, "source": {"type": "url", "url": part.source}}

    raise ValueError(f"Unknown content dialect {dialect!r}")


def parse_part(raw: Any) -> ContentPart:
    """Inverse of format_part for any dialect."""
    if isinstance(raw, Mapping) and raw.get("type") in ("image", "document") and isinstance(raw.get("source"), Mapping):
        source = raw["source"]
        part_type = "image" if raw["type"] == "image" else "file"
        if source.get("type") == "base64":
            return ContentPart(type=part_type, data=f"data:{source.get('media_type')};base64,{source.get('data')}")
        return ContentPart(type=part_type, url=source.get("url"))
    return ContentPart.from_dict(raw)


def format_content(message: Message, dialect: str = "openai") -> Union[str, List[Dict[str, Any]], None]:
    """
    Wire content for ``message``. The message's ``content_type`` decides the
    shape; unsupported content types raise ContentTypeError.
    """
    content = message.content
    content_type = message.content_type

    if content_type == "image_url":
        if isinstance(content, str):
            return [format_part(ContentPart(type="image", url=content), dialect)]
        if isinstance(content, tuple):
            return [format_part(part, dialect) for part in content]

    elif content_type in MULTIPART_CONTENT_TYPES:
        if isinstance(content, tuple):
            return [format_part(part, dialect) for part in content]
        if isinstance(content, str):
            return [format_part(ContentPart(type="text", text=content), dialect)]

    elif content_type in TEXT_CONTENT_TYPES:
        if content is None or isinstance(content, str):
            return content
        if isinstance(content, dict):
            return json.dumps(content, ensure_ascii=False)
        if isinstance(content, tuple):
            return [format_part(part, dialect) for part in content]

    raise ContentTypeError(
        f"Unsupported content type in message: {content_type!r}",
        content_type=content_type,
    )


def parse_content(raw: Any) -> Tuple[Any, str]:
    """(content, content_type) for inbound wire content."""
    if raw is None:
        return "", "text"
    if isinstance(raw, str):
        return raw, "text"
    if isinstance(raw, list):
        parts = tuple(parse_part(item) for item in raw)
        if len(parts) == 1 and parts[0].type == "text":
            return parts[0].text, "text"
        return parts, "multipart/mixed"
    if isinstance(raw, Mapping):
        return dict(raw), "application/json"
    return str(raw), "text"


# =============================================================================
# Merging
# =============================================================================

def content_blocks(content: Any) -> List[Dict[str, Any]]:
    """Content as a list of typed blocks; strings become one text block."""
    if content is None:
        return []
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    if isinstance(content, list):
        return [dict(block) if isinstance(block, Mapping) else block for block in content]
    return [{"type": "text", "text": json.dumps(content, ensure_ascii=False)}]


def merge_consecutive_messages(wire_messages: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge runs of same-role wire messages into one message whose content is
    the concatenated block list. Order of blocks is preserved and a role
    change always starts a new message.
    """
    merged: List[Dict[str, Any]] = []
    for message in wire_messages:
        message = dict(message)
        if merged and merged[-1]["role"] == message["role"]:
            previous = merged[-1]
            previous["content"] = content_blocks(previous["content"]) + content_blocks(message.get("content"))
        else:
            merged.append(message)
    return merged


def compress_content(content: Any) -> Any:
    """A block list holding a single text block collapses back to a string."""
    if (
        isinstance(content, list)
        and len(content) == 1
        and isinstance(content[0], Mapping)
        and content[0].get("type") == "text"
        and set(content[0]) <= {"type", "text"}
    ):
        return content[0]["text"]
    return content
