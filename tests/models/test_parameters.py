"""
Tests for request parameter assembly and precedence.
"""

import itertools

import pytest

from promptwire.agents.messages import Message, Role
from promptwire.agents.prompt import Prompt, PromptOptions
from promptwire.models.config import ProviderConfig
from promptwire.models.parameters import (
    DEFAULT_TEMPERATURE,
    ParameterBuilder,
    RequestParameters,
    build_response_format,
    config_layer,
    filter_builtin_tools,
    has_builtin_tools,
    normalize_output_schema,
    resolve_option,
)

LAYER_NAMES = ("override", "prompt", "agent", "config")

# Per-key values distinct for every layer
LAYER_VALUES = {
    "model": {"override": "model-override", "prompt": "model-prompt", "agent": "model-agent", "config": "model-config"},
    "temperature": {"override": 0.1, "prompt": 0.2, "agent": 0.3, "config": 0.4},
    "data_collection": {"override": ["OpenAI"], "prompt": "deny", "agent": ["Anthropic"], "config": "allow"},
}
DEFAULTS = {"model": None, "temperature": DEFAULT_TEMPERATURE, "data_collection": None}


def _build(key, present):
    values = {name: LAYER_VALUES[key][name] if name in present else None for name in LAYER_NAMES}
    config = ProviderConfig(service="openrouter", api_key="sk-or", **{key: values["config"]})
    prompt = Prompt(messages=[Message(role=Role.USER, content="hi")], options={key: values["prompt"]})
    builder = ParameterBuilder(config, agent_options={key: values["agent"]})
    return builder.build(prompt, overrides={key: values["override"]})


# =============================================================================
# Precedence
# =============================================================================

@pytest.mark.parametrize("key", sorted(LAYER_VALUES))
@pytest.mark.parametrize("mask", list(itertools.product([True, False], repeat=4)))
def test_precedence_all_combinations(key, mask):
    """Test the highest layer holding a value wins and unset layers never mask lower ones."""
    present = {name for name, is_set in zip(LAYER_NAMES, mask) if is_set}
    expected = next(
        (LAYER_VALUES[key][name] for name in LAYER_NAMES if name in present),
        DEFAULTS[key],
    )

    params = _build(key, present)

    assert getattr(params, key) == expected


class TestResolveOption:
    """Tests for the single-key resolver."""

    def test_none_does_not_mask(self):
        """Test a None at a higher layer falls through."""
        assert resolve_option("model", {"model": None}, PromptOptions(model="m")) == "m"

    def test_extra_keys(self):
        """Test passthrough keys resolve from extra."""
        assert resolve_option("top_p", PromptOptions.from_mapping({"top_p": 0.5})) == 0.5

    def test_default(self):
        """Test the default applies when no layer has the key."""
        assert resolve_option("temperature", None, {}, default=0.7) == 0.7


# =============================================================================
# Builder
# =============================================================================

class TestParameterBuilder:
    """Tests for ParameterBuilder.build."""

    def test_nested_data_collection_in_config_options(self):
        """Test options.provider.data_collection is honored at the config layer."""
        config = ProviderConfig(
            service="openrouter", api_key="k", options={"provider": {"data_collection": "deny"}}
        )

        assert config_layer(config)["data_collection"] == "deny"
        assert ParameterBuilder(config).build().data_collection == "deny"

    def test_extra_merged_higher_wins(self):
        """Test passthrough maps merge with higher layers winning per key."""
        config = ProviderConfig(service="openai", api_key="k", options={"top_p": 0.1, "seed": 7})
        prompt = Prompt(options={"top_p": 0.9})

        params = ParameterBuilder(config).build(prompt)

        assert params.extra == {"top_p": 0.9, "seed": 7}

    def test_prompt_actions_and_option_tools(self):
        """Test prompt actions come first and unknown tool types are filtered."""
        prompt = Prompt(
            actions=[{"name": "add", "parameters": {"type": "object", "properties": {}}}],
            options={"tools": [{"type": "web_search_preview"}, {"type": "mystery"}, "bogus"]},
        )

        params = ParameterBuilder().build(prompt)

        assert params.tools[0] == {
            "type": "function",
            "function": {"name": "add", "parameters": {"type": "object", "properties": {}}},
        }
        assert params.tools[1:] == [{"type": "web_search_preview"}]

    def test_output_schema_sets_response_format(self):
        """Test a bare schema becomes a strict json_schema response format."""
        schema = {"type": "object", "properties": {"answer": {"type": "integer"}}}

        params = ParameterBuilder().build(Prompt(options={"output_schema": schema}))

        assert params.response_format == {
            "type": "json_schema",
            "json_schema": {"name": "response_schema", "schema": schema, "strict": True},
        }
        assert params.wants_json

    def test_instructions_from_system_message(self):
        """Test instructions default to the prompt's system message."""
        prompt = Prompt(messages=[Message(role=Role.SYSTEM, content="Be brief")])

        assert ParameterBuilder().build(prompt).instructions == "Be brief"

    def test_stream_from_config(self):
        """Test the stored stream flag applies when nothing overrides it."""
        config = ProviderConfig(service="ollama", stream=True)

        assert ParameterBuilder(config).build().stream is True
        assert ParameterBuilder(config).build(overrides={"stream": False}).stream is False


class TestResponseFormat:
    """Tests for response_format helpers."""

    def test_string_formats(self):
        """Test shorthand strings and symbol-style names."""
        assert build_response_format("json_object") == {"type": "json_object"}
        assert build_response_format(":text") == {"type": "text"}
        assert build_response_format() is None

    def test_schema_envelope_preserved(self):
        """Test an existing envelope keeps its name and strictness."""
        envelope = {"name": "answer", "schema": {"type": "object"}, "strict": False}

        assert normalize_output_schema(envelope) == envelope

    def test_wants_json(self):
        """Test wants_json for plain and JSON formats."""
        assert not RequestParameters().wants_json
        assert RequestParameters(response_format={"type": "json_object"}).wants_json


def test_builtin_tool_helpers():
    """Test built-in detection and filtering."""
    tools = [{"type": "function", "function": {"name": "a"}}, {"type": "code_interpreter"}]

    assert filter_builtin_tools(tools) == tools
    assert has_builtin_tools(tools)
    assert not has_builtin_tools(tools[:1])
