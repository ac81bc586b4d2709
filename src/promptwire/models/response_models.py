"""
Pydantic models for normalized provider responses.
Every adapter returns one of these regardless of the backend's wire shape.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from promptwire.agents.exceptions import SchemaValidationError
from promptwire.agents.messages import Message


class UsageInfo(BaseModel):
    """Token usage information."""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    reasoning_tokens: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def calculate_total(cls, data: Any) -> Any:
        """Calculate total tokens if not provided."""
        if isinstance(data, dict) and data.get("total_tokens") is None:
            data = dict(data)
            data["total_tokens"] = (
                (data.get("prompt_tokens") or 0)
                + (data.get("completion_tokens") or 0)
                + (data.get("reasoning_tokens") or 0)
            )
        return data


class ResponseMetadata(BaseModel):
    """Metadata about the API response; provider-specific keys are allowed."""
    provider: str
    model: Optional[str] = None
    model_used: Optional[str] = None
    request_id: Optional[str] = None
    trace_id: Optional[str] = None
    finish_reason: Optional[str] = None
    response_time: Optional[float] = None
    fallback_used: Optional[bool] = None
    ratelimit: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow", frozen=True, protected_namespaces=())


class Response(BaseModel):
    """
    Result of one provider round trip.

    ``raw_request`` is scrubbed by the sanitizer passed at construction and
    stored as a copy; the caller's payload is left as it was.
    """

    message: Message
    raw_request: Optional[Dict[str, Any]] = None
    raw_response: Any = None
    usage: Optional[UsageInfo] = None
    metadata: ResponseMetadata
    messages: Tuple[Message, ...] = ()
    output_schema: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def __init__(self, sanitizer=None, **data: Any):
        if sanitizer is not None and data.get("raw_request") is not None:
            data["raw_request"] = sanitizer.sanitize(data["raw_request"])
        super().__init__(**data)

    @property
    def content(self) -> Any:
        return self.message.content

    @property
    def requested_actions(self):
        return self.message.requested_actions

    @property
    def parsed(self) -> Any:
        """
        Structured output decoded from JSON and validated against
        ``output_schema`` when one was requested.
        """
        from promptwire.agents.utils import validate_data

        if self.message.content_type != "application/json":
            return self.message.content
        try:
            data = json.loads(self.message.text)
        except json.JSONDecodeError as e:
            raise SchemaValidationError(
                f"Structured output is not valid JSON: {e}",
                provided_data=self.message.text,
            ) from e
        schema = self.output_schema
        if schema is not None:
            schema = schema.get("schema", schema)
            is_valid, error = validate_data(data, schema)
            if not is_valid:
                raise SchemaValidationError(error, provided_data=data)
        return data

    def with_messages(self, messages: Tuple[Message, ...]) -> "Response":
        return self.model_copy(update={"messages": tuple(messages)})


class EmbedResponse(BaseModel):
    """Embedding vectors normalized to the OpenAI list shape."""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    raw_request: Optional[Dict[str, Any]] = None
    raw_response: Any = None
    usage: Optional[UsageInfo] = None
    metadata: Optional[ResponseMetadata] = None

    model_config = ConfigDict(frozen=True)

    def __init__(self, sanitizer=None, **data: Any):
        if sanitizer is not None and data.get("raw_request") is not None:
            data["raw_request"] = sanitizer.sanitize(data["raw_request"])
        super().__init__(**data)

    @property
    def embeddings(self) -> List[List[float]]:
        return [item["embedding"] for item in sorted(self.data, key=lambda item: item.get("index", 0))]

    @property
    def embedding(self) -> Optional[List[float]]:
        vectors = self.embeddings
        return vectors[0] if vectors else None
