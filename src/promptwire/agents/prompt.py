"""
Prompt context: the append-only conversation plus the options bag that
travels with it.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from promptwire.agents.exceptions import ActionCorrelationError, MessageError
from promptwire.agents.messages import Message, Role

logger = logging.getLogger(__name__)

DataCollection = Union[str, List[str]]


def validate_data_collection(value: Any) -> Any:
    """'allow' / 'deny' or an explicit list of provider names."""
    if value is None:
        return value
    if isinstance(value, str):
        if value not in ("allow", "deny"):
            raise ValueError(f"data_collection must be 'allow', 'deny' or a list of providers, got {value!r}")
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValueError(f"data_collection must be 'allow', 'deny' or a list of providers, got {value!r}")


class PromptOptions(BaseModel):
    """
    Typed options for one precedence level.

    ``None`` means "not set at this level"; the parameter builder falls
    through to the next level instead of sending a null.
    """

    model: Optional[str] = Field(None, description="Model identifier")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: Optional[int] = Field(None, gt=0, description="Maximum tokens to generate")
    tools: Optional[List[Any]] = Field(
        None, description="Extra tool entries, including provider built-in tools"
    )
    response_format: Optional[Union[str, Dict[str, Any]]] = Field(
        None, description="'text', 'json_object' or a full response_format object"
    )
    output_schema: Optional[Dict[str, Any]] = Field(
        None, description="JSON schema (or {name, schema, strict} envelope) for structured output"
    )
    data_collection: Optional[DataCollection] = Field(
        None, description="OpenRouter data collection policy"
    )
    stream: Optional[bool] = Field(None, description="Stream the response")
    instructions: Optional[str] = Field(None, description="System instructions sent out of band")
    extra: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific passthrough keys"
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("data_collection")
    @classmethod
    def _check_data_collection(cls, v: Any) -> Any:
        return validate_data_collection(v)

    @model_validator(mode="before")
    @classmethod
    def _route_unknown_keys(cls, data: Any) -> Any:
        """Unknown top-level keys go to ``extra``; nested provider.data_collection is lifted."""
        if not isinstance(data, Mapping):
            return data
        known = set(cls.model_fields)
        routed = {k: v for k, v in data.items() if k in known}
        extra = dict(routed.get("extra") or {})
        for key, value in data.items():
            if key not in known:
                extra[key] = value
        if routed.get("data_collection") is None:
            provider = extra.get("provider")
            if isinstance(provider, Mapping) and provider.get("data_collection") is not None:
                routed["data_collection"] = provider["data_collection"]
        routed["extra"] = extra
        return routed

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PromptOptions":
        if data is None:
            return cls()
        if isinstance(data, PromptOptions):
            return data
        return cls.model_validate(dict(data))

    def get(self, key: str) -> Any:
        """Value for a named field, or from ``extra`` for passthrough keys."""
        if key in type(self).model_fields and key != "extra":
            return getattr(self, key)
        return self.extra.get(key)


class Prompt:
    """
    An append-only conversation with its per-turn options.

    The message list is the source of truth for what is sent to the provider
    each turn. ``append`` is the only way to grow it and it enforces that
    every tool-role message answers an action requested earlier.
    """

    def __init__(
        self,
        messages: Iterable[Union[Message, Mapping[str, Any]]] = (),
        options: Optional[Union[PromptOptions, Mapping[str, Any]]] = None,
        actions: Optional[Iterable[Dict[str, Any]]] = None,
        action_name: Optional[str] = None,
    ):
        self.options = PromptOptions.from_mapping(options)
        self.actions: Tuple[Dict[str, Any], ...] = tuple(actions or ())
        self.action_name = action_name
        self._messages: List[Message] = []
        self._requested_ids: Dict[str, str] = {}
        for message in messages:
            self.append(message)

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def output_schema(self) -> Optional[Dict[str, Any]]:
        return self.options.output_schema

    @property
    def instructions(self) -> Optional[str]:
        """Explicit instructions option, else the last system message's text."""
        if self.options.instructions:
            return self.options.instructions
        for message in reversed(self._messages):
            if message.role is Role.SYSTEM:
                return message.text
        return None

    @property
    def last_message(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def append(self, message: Union[Message, Mapping[str, Any]]) -> Message:
        if isinstance(message, Mapping):
            message = Message.from_dict(message)
        if not isinstance(message, Message):
            raise MessageError(f"Prompt messages must be Message objects, got {type(message).__name__}")

        if message.role is Role.TOOL and message.action_id not in self._requested_ids:
            raise ActionCorrelationError(
                f"Tool message answers unknown action id {message.action_id!r}",
                action_id=message.action_id,
                known_action_ids=list(self._requested_ids),
            )

        for action in message.requested_actions:
            self._requested_ids[action.id] = action.name
        self._messages.append(message)
        return message

    def extend(self, messages: Iterable[Union[Message, Mapping[str, Any]]]) -> None:
        for message in messages:
            self.append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))

    def __repr__(self) -> str:
        return f"Prompt(action_name={self.action_name!r}, messages={len(self._messages)})"
