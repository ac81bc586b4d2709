"""
Tests for the promptwire.agents.actions module.

This module tests:
- Docstring parsing and JSON schema generation for handlers
- ActionRegistry registration, lookup and rendering
- Tool message construction from handler results and failures
"""

import json
from typing import List, Literal, Optional

import pytest

from promptwire.agents.actions import (
    ActionRegistry,
    generate_tool_schema,
    map_type_to_json_schema,
    parse_docstring,
    render_result,
)
from promptwire.agents.exceptions import ToolExecutionError
from promptwire.agents.messages import Action, Role


def add(a: float, b: float) -> float:
    """
    Add two numbers.

    Args:
        a: The first number.
        b: The second number,
            possibly negative.

    Returns:
        The sum.
    """
    return a + b


def search(query: str, limit: Optional[int] = None, mode: Literal["fast", "deep"] = "fast") -> List[str]:
    """Search the index."""
    return [query] * (limit or 1)


# =============================================================================
# Schema Generation Tests
# =============================================================================

class TestParseDocstring:
    """Tests for Google-style docstring parsing."""

    def test_summary_and_params(self):
        """Test summary paragraph and Args entries are extracted."""
        parsed = parse_docstring(add.__doc__)

        assert parsed["description"] == "Add two numbers."
        assert parsed["params"]["a"] == "The first number."
        assert parsed["params"]["b"] == "The second number, possibly negative."

    def test_empty_docstring(self):
        """Test None and empty docstrings parse to empty fields."""
        assert parse_docstring(None) == {"description": "", "params": {}}


class TestTypeMapping:
    """Tests for annotation to JSON schema mapping."""

    @pytest.mark.parametrize(
        "py_type, expected",
        [
            (str, {"type": "string"}),
            (int, {"type": "integer"}),
            (float, {"type": "number"}),
            (bool, {"type": "boolean"}),
            (List[int], {"type": "array", "items": {"type": "integer"}}),
            (Optional[str], {"type": "string"}),
            (Literal["a", "b"], {"type": "string", "enum": ["a", "b"]}),
        ],
    )
    def test_known_types(self, py_type, expected):
        """Test each supported annotation."""
        assert map_type_to_json_schema(py_type) == expected

    def test_unknown_type_defaults_to_string(self):
        """Test unsupported types fall back to string."""
        assert map_type_to_json_schema(object) == {"type": "string"}


class TestGenerateToolSchema:
    """Tests for generate_tool_schema."""

    def test_required_and_descriptions(self):
        """Test required params and docstring descriptions."""
        schema = generate_tool_schema(add)
        function = schema["function"]

        assert schema["type"] == "function"
        assert function["name"] == "add"
        assert function["description"] == "Add two numbers."
        assert function["parameters"]["required"] == ["a", "b"]
        assert function["parameters"]["properties"]["a"] == {"type": "number", "description": "The first number."}

    def test_optional_and_defaulted_params_not_required(self):
        """Test defaults and Optional annotations are not required."""
        function = generate_tool_schema(search)["function"]

        assert function["parameters"]["required"] == ["query"]
        assert function["parameters"]["properties"]["mode"]["enum"] == ["fast", "deep"]
        assert function["parameters"]["properties"]["limit"]["description"] == "Parameter 'limit'"

    def test_default_description(self):
        """Test handlers without docstrings get a generated description."""
        def ping():
            return "pong"

        function = generate_tool_schema(ping, name="ping_server")["function"]

        assert function["name"] == "ping_server"
        assert function["description"] == "Executes the ping_server action."
        assert "required" not in function["parameters"]


# =============================================================================
# ActionRegistry Tests
# =============================================================================

class TestActionRegistry:
    """Tests for ActionRegistry."""

    def test_register_directly_and_as_decorator(self):
        """Test both registration styles."""
        registry = ActionRegistry({"add": add})

        @registry.register(name="mul")
        def multiply(a: float, b: float) -> float:
            return a * b

        assert registry.names == ["add", "mul"]
        assert "mul" in registry
        assert len(registry) == 2
        assert registry.schema("mul")["function"]["name"] == "mul"

    def test_explicit_schema_is_kept(self):
        """Test an explicit schema is advertised as given."""
        schema = {"type": "function", "function": {"name": "add", "parameters": {"type": "object"}}}
        registry = ActionRegistry()
        registry.register(add, schema=schema)

        assert registry.schemas() == [schema]

    def test_unknown_action_suggests_close_match(self):
        """Test unknown names raise with a suggestion."""
        registry = ActionRegistry({"add": add})

        with pytest.raises(ToolExecutionError) as exc_info:
            registry.handler("ad")

        assert "Unknown action 'ad'. Did you mean 'add'?" in str(exc_info.value)
        assert exc_info.value.context["available_tools"] == ["add"]

    def test_render_stringifies_result(self):
        """Test numeric results render with str()."""
        registry = ActionRegistry({"add": add})

        assert registry.render("add", {"a": 2, "b": 3.0}) == "5.0"

    def test_render_wraps_handler_failure(self):
        """Test handler exceptions become ToolExecutionError."""
        registry = ActionRegistry({"add": add})

        with pytest.raises(ToolExecutionError) as exc_info:
            registry.render("add", {"a": 2})

        assert "Action 'add' failed: TypeError" in exc_info.value.developer_message

    def test_render_rejects_async_handler(self):
        """Test coroutine handlers must use arender."""
        async def fetch():
            return "done"

        registry = ActionRegistry({"fetch": fetch})

        with pytest.raises(ToolExecutionError, match="use arender"):
            registry.render("fetch")

    @pytest.mark.asyncio
    async def test_arender_awaits_coroutines(self):
        """Test async handlers are awaited."""
        async def fetch(key: str) -> dict:
            return {"key": key}

        registry = ActionRegistry({"fetch": fetch, "add": add})

        assert await registry.arender("fetch", {"key": "x"}) == '{"key": "x"}'
        assert await registry.arender("add", {"a": 1, "b": 1}) == "2"


class TestActionCall:
    """Tests for tool message construction."""

    def test_call_builds_tool_message(self):
        """Test a successful call answers the action."""
        registry = ActionRegistry({"add": add})
        action = Action(id="call_1", name="add", params={"a": 2.0, "b": 3.0})

        message = registry.call(action)

        assert message.role is Role.TOOL
        assert message.action_id == "call_1"
        assert message.action_name == "add"
        assert message.content == "5.0"

    def test_call_failure_becomes_error_payload(self):
        """Test failures are reported in the message content, not raised."""
        registry = ActionRegistry({"add": add})
        action = Action(id="call_2", name="subtract", params={})

        message = registry.call(action)

        assert message.action_id == "call_2"
        assert json.loads(message.content)["error"].startswith("Unknown action 'subtract'")

    @pytest.mark.asyncio
    async def test_acall(self):
        """Test the async call path."""
        registry = ActionRegistry({"add": add})

        message = await registry.acall(Action(id="call_3", name="add", params={"a": 1, "b": 2}))

        assert message.content == "3"


def test_render_result_shapes():
    """Test result rendering for common return types."""
    assert render_result("ok") == "ok"
    assert render_result(None) == ""
    assert render_result({"a": 1}) == '{"a": 1}'
    assert render_result([1, 2]) == "[1, 2]"
    assert render_result(5.0) == "5.0"
