"""
Request parameter assembly.

Every parameter is resolved independently through four layers, highest
first: call-site override, prompt option, agent default, stored provider
configuration. A layer that holds ``None`` for a key does not mask the
layers below it.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from promptwire.agents.prompt import Prompt, PromptOptions
from promptwire.models.config import ProviderConfig
from promptwire.models.formatting import format_tools

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_SCHEMA_NAME = "response_schema"

# Tool types a provider hosts itself; anything else that is not a function
# tool is dropped from the outbound tool list.
BUILTIN_TOOL_TYPES = frozenset({
    "function",
    "custom",
    "web_search",
    "web_search_2025_08_26",
    "web_search_preview",
    "web_search_preview_2025_03_11",
    "code_interpreter",
    "file_search",
    "computer_use_preview",
    "mcp",
    "image_generation",
    "local_shell",
})

Layer = Union[PromptOptions, Mapping[str, Any], None]


def _layer_value(layer: Layer, key: str) -> Any:
    if layer is None:
        return None
    if isinstance(layer, PromptOptions):
        return layer.get(key)
    return layer.get(key)


def resolve_option(key: str, *layers: Layer, default: Any = None) -> Any:
    """First non-None value for ``key`` across ``layers`` (highest first)."""
    for layer in layers:
        value = _layer_value(layer, key)
        if value is not None:
            return value
    return default


def merge_extra(*layers: Layer) -> Dict[str, Any]:
    """Shallow merge of the passthrough maps; earlier layers win per key."""
    merged: Dict[str, Any] = {}
    for layer in reversed(layers):
        if layer is None:
            continue
        extra = layer.extra if isinstance(layer, PromptOptions) else layer.get("extra")
        for key, value in (extra or {}).items():
            if value is not None:
                merged[key] = value
    return merged


def is_function_tool(tool: Mapping[str, Any]) -> bool:
    return "function" in tool or tool.get("type") in (None, "function")


def filter_builtin_tools(tools: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    """
    Keep function tools and recognized built-in tools. Non-object entries and
    unknown ``type`` values are dropped.
    """
    kept = []
    for tool in tools or ():
        if not isinstance(tool, Mapping):
            logger.debug(f"Filtered non-object tool entry: {tool!r}")
            continue
        if is_function_tool(tool) or tool.get("type") in BUILTIN_TOOL_TYPES:
            kept.append(dict(tool))
        else:
            logger.debug(f"Filtered tool with unrecognized type {tool.get('type')!r}")
    return kept


def has_builtin_tools(tools: Optional[Iterable[Mapping[str, Any]]]) -> bool:
    return any(isinstance(t, Mapping) and not is_function_tool(t) for t in tools or ())


def normalize_output_schema(output_schema: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    ``{name, schema, strict}`` envelope for a bare JSON schema or an
    envelope that is already complete.
    """
    if output_schema is None:
        return None
    if isinstance(output_schema.get("schema"), Mapping):
        return {
            "name": output_schema.get("name") or DEFAULT_SCHEMA_NAME,
            "schema": dict(output_schema["schema"]),
            "strict": output_schema.get("strict", True),
        }
    return {"name": DEFAULT_SCHEMA_NAME, "schema": dict(output_schema), "strict": True}


def build_response_format(
    response_format: Union[str, Mapping[str, Any], None] = None,
    output_schema: Optional[Mapping[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    OpenAI-style ``response_format``.

    An output schema wins over a plain response_format and becomes
    ``{type: "json_schema", json_schema: {name, schema, strict}}``. The
    strings ``"json_object"`` and ``"text"`` become ``{type: ...}``.
    """
    envelope = normalize_output_schema(output_schema)
    if envelope is not None:
        return {"type": "json_schema", "json_schema": envelope}
    if response_format is None:
        return None
    if isinstance(response_format, str):
        return {"type": response_format.lstrip(":")}
    return dict(response_format)


class RequestParameters(BaseModel):
    """Resolved parameters for one provider round trip."""

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    response_format: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    data_collection: Optional[Union[str, List[str]]] = None
    stream: bool = False
    instructions: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def wants_json(self) -> bool:
        return self.output_schema is not None or (
            self.response_format is not None and self.response_format.get("type") in ("json_object", "json_schema")
        )


def config_layer(config: Optional[ProviderConfig]) -> Dict[str, Any]:
    """The stored configuration as a precedence layer."""
    if config is None:
        return {}
    options = dict(config.options or {})
    data_collection = config.data_collection
    provider = options.get("provider")
    if data_collection is None and isinstance(provider, Mapping):
        data_collection = provider.get("data_collection")
    return {
        "model": config.model,
        "temperature": config.temperature,
        "max_tokens": config.max_tokens,
        "data_collection": data_collection,
        "stream": config.stream,
        "extra": options,
    }


class ParameterBuilder:
    """
    Builds RequestParameters for a prompt.

    Holds only immutable configuration, so one builder can serve concurrent
    conversations.
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        agent_options: Optional[Union[PromptOptions, Mapping[str, Any]]] = None,
    ):
        self.config = config
        self.agent_options = PromptOptions.from_mapping(agent_options)
        self._config_layer = config_layer(config)

    def layers(self, prompt: Optional[Prompt], overrides: Layer = None) -> Sequence[Layer]:
        if overrides is not None and not isinstance(overrides, PromptOptions):
            overrides = PromptOptions.from_mapping(overrides)
        prompt_options = prompt.options if prompt is not None else None
        return (overrides, prompt_options, self.agent_options, self._config_layer)

    def build(
        self,
        prompt: Optional[Prompt] = None,
        overrides: Optional[Union[PromptOptions, Mapping[str, Any]]] = None,
    ) -> RequestParameters:
        layers = self.layers(prompt, overrides)

        action_tools = format_tools(prompt.actions if prompt is not None else (), "openai")
        option_tools = format_tools(filter_builtin_tools(resolve_option("tools", *layers)), "openai")

        output_schema = normalize_output_schema(resolve_option("output_schema", *layers))
        response_format = build_response_format(resolve_option("response_format", *layers), output_schema)

        instructions = resolve_option("instructions", *layers)
        if instructions is None and prompt is not None:
            instructions = prompt.instructions

        params = RequestParameters(
            model=resolve_option("model", *layers),
            temperature=resolve_option("temperature", *layers, default=DEFAULT_TEMPERATURE),
            max_tokens=resolve_option("max_tokens", *layers),
            tools=action_tools + option_tools,
            response_format=response_format,
            output_schema=output_schema,
            data_collection=resolve_option("data_collection", *layers),
            stream=bool(resolve_option("stream", *layers, default=False)),
            instructions=instructions,
            extra=merge_extra(*layers),
        )
        logger.debug(
            f"Built request parameters: model={params.model}, tools={len(params.tools)}, "
            f"structured={params.output_schema is not None}"
        )
        return params
