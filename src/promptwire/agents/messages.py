"""
Canonical conversation data model.

Messages and actions are frozen dataclasses: once a message is appended to a
prompt nothing downstream can change it, which keeps the provider-facing
ordering stable across turns.
"""

import dataclasses
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from promptwire.agents.exceptions import ContentTypeError, MessageError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# Message-level content types that carry plain text on the wire
TEXT_CONTENT_TYPES = frozenset({"text", "text/plain", "text/html", "text/markdown", "application/json"})
# Message-level content types whose content is an ordered list of parts
MULTIPART_CONTENT_TYPES = frozenset({"multipart/mixed", "array"})
PART_TYPES = ("text", "image", "file")


@dataclasses.dataclass(frozen=True)
class ContentPart:
    """
    One typed element of multimodal content.

    ``type`` is the declared part type and alone decides the wire shape:
    ``text`` uses ``text``; ``image`` uses ``url`` (http(s) or data URI) or
    ``data`` + ``media_type``; ``file`` uses ``data`` (usually a data URI)
    and ``filename``.
    """

    type: str
    text: Optional[str] = None
    url: Optional[str] = None
    data: Optional[str] = None
    media_type: Optional[str] = None
    filename: Optional[str] = None

    def __post_init__(self):
        if self.type not in PART_TYPES:
            raise ContentTypeError(
                f"Unsupported content type in message: {self.type!r}",
                content_type=self.type,
            )
        if self.type == "text" and self.text is None:
            raise MessageError("Text content part requires 'text'")
        if self.type == "image" and not (self.url or self.data):
            raise MessageError("Image content part requires 'url' or 'data'")
        if self.type == "file" and not (self.url or self.data):
            raise MessageError("File content part requires 'url' or 'data'")

    @property
    def source(self) -> str:
        """URL or data URI for image/file parts."""
        if self.url:
            return self.url
        if self.data and self.data.startswith("data:"):
            return self.data
        media_type = self.media_type or ("image/png" if self.type == "image" else "application/octet-stream")
        return f"data:{media_type};base64,{self.data}"

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContentPart":
        """
        Build a part from a canonical dict or any of the provider wire
        aliases. Unknown types raise ContentTypeError.
        """
        if isinstance(data, ContentPart):
            return data
        if not isinstance(data, Mapping):
            raise ContentTypeError(
                f"Unsupported content type in message: {type(data).__name__}",
                content_type=type(data).__name__,
            )

        part_type = data.get("type")
        if part_type in ("text", "input_text", "output_text"):
            return cls(type="text", text=data.get("text", ""))
        if part_type == "image" and "source" not in data:
            return cls(type="image", url=data.get("url"), data=data.get("data"), media_type=data.get("media_type"))
        if part_type in ("image_url", "input_image"):
            image_url = data.get("image_url")
            if isinstance(image_url, Mapping):
                image_url = image_url.get("url")
            return cls(type="image", url=image_url)
        if part_type == "image_data":
            return cls(type="image", data=data.get("image_data"), media_type=data.get("media_type"))
        if part_type == "file" and "file" not in data:
            return cls(
                type="file",
                url=data.get("url"),
                data=data.get("data"),
                media_type=data.get("media_type"),
                filename=data.get("filename"),
            )
        if part_type == "file":
            file_data = data.get("file") or {}
            return cls(type="file", data=file_data.get("file_data"), filename=file_data.get("filename"))
        if part_type in ("file_data", "input_file"):
            return cls(type="file", data=data.get("file_data"), filename=data.get("filename"))

        raise ContentTypeError(
            f"Unsupported content type in message: {part_type!r}",
            content_type=str(part_type),
        )


def _normalize_params(params: Any) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    if not isinstance(params, Mapping):
        raise MessageError(
            f"Action params must be a mapping, got {type(params).__name__}",
            context={"params": repr(params)[:200]},
        )
    return {str(key): value for key, value in params.items()}


@dataclasses.dataclass(frozen=True)
class Action:
    """A single tool invocation requested by a model."""

    id: str
    name: str
    params: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.name:
            raise MessageError("Action requires a name")
        object.__setattr__(self, "id", "" if self.id is None else str(self.id))
        object.__setattr__(self, "params", _normalize_params(self.params))

    @property
    def arguments(self) -> str:
        """Params as the JSON-encoded string OpenAI-style providers expect."""
        return json.dumps(self.params or {}, ensure_ascii=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "params": self.params}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Action":
        return cls(id=data.get("id", ""), name=data.get("name", ""), params=data.get("params"))


Content = Union[str, Tuple[ContentPart, ...], Dict[str, Any], None]


@dataclasses.dataclass(frozen=True)
class Message:
    """
    A single conversation turn.

    ``content`` is a string, or a tuple of ContentPart for multimodal
    messages (lists and part dicts are accepted and normalized). Tool-role
    messages carry ``action_id``/``action_name`` linking them to the
    Action they answer.
    """

    role: Role
    content: Content = ""
    content_type: str = "text"
    requested_actions: Tuple[Action, ...] = ()
    action_id: Optional[str] = None
    action_name: Optional[str] = None
    generation_id: Optional[str] = dataclasses.field(default=None, compare=False)

    def __post_init__(self):
        try:
            role = Role(self.role)
        except ValueError:
            raise MessageError(
                f"Invalid message role {self.role!r}",
                context={"valid_roles": [r.value for r in Role]},
            )
        object.__setattr__(self, "role", role)

        content = self.content
        if isinstance(content, (list, tuple)):
            content = tuple(ContentPart.from_dict(part) for part in content)
            if self.content_type in TEXT_CONTENT_TYPES:
                object.__setattr__(self, "content_type", "multipart/mixed")
        object.__setattr__(self, "content", content)

        actions = []
        for i, action in enumerate(self.requested_actions or ()):
            if isinstance(action, Mapping):
                action = Action.from_dict(action)
            if not isinstance(action, Action):
                raise MessageError(
                    f"requested_actions[{i}] must be an Action, got {type(action).__name__}"
                )
            actions.append(action)
        object.__setattr__(self, "requested_actions", tuple(actions))

        if actions and role is not Role.ASSISTANT:
            raise MessageError(f"Only assistant messages can request actions, got role {role.value!r}")
        if role is Role.TOOL and not self.action_id:
            raise MessageError("Tool messages require an action_id")

    @property
    def action_requested(self) -> bool:
        return bool(self.requested_actions)

    @property
    def is_multimodal(self) -> bool:
        return isinstance(self.content, tuple)

    @property
    def text(self) -> str:
        """Text view of the content: parts' text joined, JSON for dicts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, dict):
            return json.dumps(self.content, ensure_ascii=False)
        return "".join(part.text or "" for part in self.content if part.type == "text")

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, tuple):
            content = [part.to_dict() for part in self.content]
        else:
            content = self.content
        data = {
            "role": self.role.value,
            "content": content,
            "content_type": self.content_type,
        }
        if self.requested_actions:
            data["requested_actions"] = [action.to_dict() for action in self.requested_actions]
        if self.action_id is not None:
            data["action_id"] = self.action_id
        if self.action_name is not None:
            data["action_name"] = self.action_name
        if self.generation_id is not None:
            data["generation_id"] = self.generation_id
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        if "role" not in data:
            raise MessageError("Message dict requires a 'role'", context={"keys": list(data.keys())})
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            content_type=data.get("content_type", "text"),
            requested_actions=tuple(data.get("requested_actions") or ()),
            action_id=data.get("action_id"),
            action_name=data.get("action_name"),
            generation_id=data.get("generation_id"),
        )


def system(content: str) -> Message:
    return Message(role=Role.SYSTEM, content=content)


def user(content: Union[str, List[Any]], content_type: str = "text") -> Message:
    return Message(role=Role.USER, content=content, content_type=content_type)


def assistant(content: Content = "", requested_actions: Tuple[Action, ...] = ()) -> Message:
    return Message(role=Role.ASSISTANT, content=content, requested_actions=requested_actions)


def tool_result(action: Action, content: str) -> Message:
    return Message(role=Role.TOOL, content=content, action_id=action.id, action_name=action.name)
