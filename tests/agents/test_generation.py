"""
Tests for the multi-turn generation loop.

The provider side is a scripted MockAdapter, so every scenario runs the
real request formatting and response parsing without network access.
"""

import json

import pytest

from promptwire.agents.actions import ActionRegistry
from promptwire.agents.exceptions import GenerationProviderError, MaxTurnsExceededError, RateLimitError
from promptwire.agents.generation import Generation, forced_tool
from promptwire.agents.messages import Action, Message, Role
from promptwire.agents.prompt import Prompt
from promptwire.models.adapters.mock import AsyncMockAdapter, MockAdapter, completion
from promptwire.models.adapters.openai import OpenAIChatAdapter
from promptwire.models.parameters import RequestParameters


def add(a: float, b: float) -> float:
    """Add two numbers."""
    return float(a) + float(b)


def multiply(a: float, b: float) -> float:
    """Multiply two numbers."""
    return float(a) * float(b)


def rectangle_area(width: float, height: float) -> float:
    """Area of a rectangle."""
    return float(width) * float(height)


@pytest.fixture
def calculator_actions():
    return ActionRegistry({"add": add, "multiply": multiply, "rectangle_area": rectangle_area})


def _user(prompt: Prompt, text: str) -> Prompt:
    prompt.append(Message(role=Role.USER, content=text))
    return prompt


# =============================================================================
# Calculator Scenarios
# =============================================================================

class TestCalculatorScenarios:
    """End-to-end tool loops against the mock provider."""

    def test_basic_turn(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test one tool call followed by a final answer."""
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="add", params={"a": 2, "b": 3})]),
                completion("2 + 3 = 5"),
            ],
        )
        generation = Generation(adapter, actions=calculator_actions)

        response = generation.run(calculator_prompt)

        roles = [m.role for m in response.messages]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert response.messages[2].requested_actions[0].name == "add"
        assert response.messages[3].content == "5.0"
        assert response.messages[3].action_id == "call_1"
        assert "5" in response.message.text
        assert len(calculator_prompt) == 5

    def test_multi_tool_chain(self, calculator_actions, no_retry_policy):
        """Test sequential tool calls feed each other."""
        prompt = Prompt(messages=[
            Message(role=Role.SYSTEM, content="You are a calculator agent"),
            Message(role=Role.USER, content="Calculate the area of a 5x10 rectangle, then multiply by 2"),
        ])
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="rectangle_area", params={"width": 5, "height": 10})]),
                completion(tool_calls=[Action(id="call_2", name="multiply", params={"a": 50, "b": 2})]),
                completion("The doubled area is 100"),
            ],
        )

        response = Generation(adapter, actions=calculator_actions).run(prompt)

        tool_contents = [m.content for m in response.messages if m.role is Role.TOOL]
        assert tool_contents == ["50.0", "100.0"]
        assert "100" in response.message.text

    def test_tool_results_sent_on_next_turn(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test the second request carries the assistant call and the tool result."""
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="add", params={"a": 2, "b": 3})]),
                completion("5"),
            ],
        )

        Generation(adapter, actions=calculator_actions).run(calculator_prompt)

        second = adapter.requests[1]["messages"]
        assert second[2]["tool_calls"][0]["id"] == "call_1"
        assert second[3] == {"role": "tool", "content": "5.0", "tool_call_id": "call_1"}

    def test_parallel_calls_answered_in_order(self, calculator_actions, no_retry_policy):
        """Test every requested action gets a tool message in request order."""
        prompt = Prompt(messages=[Message(role=Role.USER, content="Add and multiply 2 and 3")])
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[
                    Action(id="call_a", name="add", params={"a": 2, "b": 3}),
                    Action(id="call_m", name="multiply", params={"a": 2, "b": 3}),
                ]),
                completion("5 and 6"),
            ],
        )

        response = Generation(adapter, actions=calculator_actions).run(prompt)

        tools = [(m.action_id, m.content) for m in response.messages if m.role is Role.TOOL]
        assert tools == [("call_a", "5.0"), ("call_m", "6.0")]


# =============================================================================
# Loop Control
# =============================================================================

class TestLoopControl:
    """Tests for turn limits and action failures."""

    def test_max_turns_exceeded(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test a model that never stops calling tools hits the turn ceiling."""
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id=f"call_{i}", name="add", params={"a": i, "b": 1})])
                for i in range(3)
            ],
        )

        with pytest.raises(MaxTurnsExceededError) as exc_info:
            Generation(adapter, actions=calculator_actions, max_turns=2).run(calculator_prompt)

        assert exc_info.value.max_turns == 2
        assert adapter.pending == 1

    def test_invalid_max_turns(self):
        """Test max_turns must be positive."""
        with pytest.raises(ValueError):
            Generation(MockAdapter(), max_turns=0)

    def test_unknown_action_reported_to_model(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test an unknown tool name becomes an error tool message, not an exception."""
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="ad", params={"a": 2, "b": 3})]),
                completion("Sorry, I could not add those."),
            ],
        )

        response = Generation(adapter, actions=calculator_actions).run(calculator_prompt)

        error = json.loads(response.messages[3].content)["error"]
        assert "Unknown action 'ad'. Did you mean 'add'?" in error

    def test_missing_call_ids_are_assigned(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test calls without ids still get answerable tool messages."""
        adapter = MockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[{"type": "function", "function": {"name": "add", "arguments": '{"a": 2, "b": 3}'}}]),
                completion("5"),
            ],
        )

        response = Generation(adapter, actions=calculator_actions).run(calculator_prompt)

        action_id = response.messages[2].requested_actions[0].id
        assert action_id.startswith("call_")
        assert response.messages[3].action_id == action_id

    def test_provider_failure_surfaces_as_generation_error(self, calculator_prompt, fast_retry_policy):
        """Test retries are exhausted before the boundary error is raised."""
        failures = [RateLimitError("Too many requests", provider="mock") for _ in range(4)]
        adapter = MockAdapter(retry_policy=fast_retry_policy, script=failures)

        with pytest.raises(GenerationProviderError) as exc_info:
            Generation(adapter).run(calculator_prompt)

        assert exc_info.value.context["attempts"] == 4
        assert len(adapter.requests) == 4


# =============================================================================
# Parameters
# =============================================================================

class TestGenerationParameters:
    """Tests for parameter building inside the loop."""

    def test_registry_tools_advertised(self, calculator_prompt, calculator_actions):
        """Test registered actions are sent as tools."""
        adapter = MockAdapter(script=["5"])

        Generation(adapter, actions=calculator_actions).run(calculator_prompt)

        names = [tool["function"]["name"] for tool in adapter.requests[0]["tools"]]
        assert names == ["add", "multiply", "rectangle_area"]

    def test_prompt_tools_not_duplicated(self, calculator_actions):
        """Test a prompt tool with the same name is not advertised twice."""
        schema = {"name": "add", "description": "Custom add", "parameters": {"type": "object", "properties": {}}}
        prompt = Prompt(messages=[Message(role=Role.USER, content="hi")], actions=[schema])
        params = Generation(MockAdapter(), actions=calculator_actions).build_parameters(prompt)

        descriptions = [t["function"].get("description") for t in params.tools if t["function"]["name"] == "add"]
        assert descriptions == ["Custom add"]

    def test_overrides_win(self, calculator_prompt):
        """Test call-site overrides reach the payload."""
        adapter = MockAdapter(script=["ok"])

        Generation(adapter).run(calculator_prompt, overrides={"model": "mock-large", "temperature": 0.1})

        assert adapter.requests[0]["model"] == "mock-large"
        assert adapter.requests[0]["temperature"] == 0.1


class TestToolChoiceClearing:
    """Tests for dropping a forcing tool_choice once a tool has run."""

    ADD_CALL = {"id": "call_1", "type": "function", "function": {"name": "add", "arguments": '{"a": 2, "b": 3}'}}

    def test_required_cleared_after_tool_call(
        self, openai_config, http, make_response, completion_body, calculator_actions, no_retry_policy
    ):
        """Test "required" is sent on the first turn only."""
        adapter = OpenAIChatAdapter(openai_config, retry_policy=no_retry_policy)
        http.queue(
            make_response(completion_body(content=None, tool_calls=[self.ADD_CALL], finish_reason="tool_calls")),
            make_response(completion_body("2 + 3 = 5")),
        )
        prompt = Prompt(
            messages=[Message(role=Role.USER, content="Add 2 and 3")],
            options={"tool_choice": "required"},
        )

        response = Generation(adapter, actions=calculator_actions).run(prompt)

        assert response.message.text == "2 + 3 = 5"
        assert http.calls[0]["json"]["tool_choice"] == "required"
        assert "tool_choice" not in http.calls[1]["json"]

    @pytest.mark.parametrize("tool_choice", [
        "required",
        "any",
        {"type": "any"},
        {"type": "function", "function": {"name": "add"}},
        {"type": "tool", "name": "add"},
        {"name": "add"},
    ])
    def test_forcing_choices_cleared(self, tool_choice):
        """Test every forcing shape is dropped after the forced tool runs."""
        params = RequestParameters(extra={"tool_choice": tool_choice, "top_p": 0.5})

        cleared = Generation.clear_tool_choice(params, [Action(id="c1", name="add", params={})])

        assert cleared.extra == {"top_p": 0.5}

    @pytest.mark.parametrize("tool_choice", [
        "auto",
        "none",
        {"type": "auto"},
        {"type": "function", "function": {"name": "multiply"}},
        {"type": "tool", "name": "multiply"},
    ])
    def test_other_choices_kept(self, tool_choice):
        """Test non-forcing choices and other forced functions survive the turn."""
        params = RequestParameters(extra={"tool_choice": tool_choice})

        kept = Generation.clear_tool_choice(params, [Action(id="c1", name="add", params={})])

        assert kept.extra["tool_choice"] == tool_choice

    def test_forced_tool_shapes(self):
        """Test the forced tool is read from each provider shape."""
        assert forced_tool("required") == "*"
        assert forced_tool({"type": "function", "name": "add"}) == "add"
        assert forced_tool(None) is None

    @pytest.mark.asyncio
    async def test_arun_clears_after_tool_call(self, mocker, calculator_actions, no_retry_policy):
        """Test the async loop drops the forced choice too."""
        adapter = AsyncMockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="add", params={"a": 2, "b": 3})]),
                completion("The answer is 5"),
            ],
        )
        spy = mocker.spy(adapter, "agenerate")
        prompt = Prompt(
            messages=[Message(role=Role.USER, content="Add 2 and 3")],
            options={"tool_choice": {"type": "function", "function": {"name": "add"}}},
        )

        await Generation(adapter, actions=calculator_actions).arun(prompt)

        sent = [call.args[1].extra for call in spy.call_args_list]
        assert sent[0]["tool_choice"] == {"type": "function", "function": {"name": "add"}}
        assert "tool_choice" not in sent[1]



# =============================================================================
# Streaming
# =============================================================================

class TestGenerationStreaming:
    """Tests for streamed generation."""

    def test_on_delta_receives_every_chunk(self, calculator_prompt):
        """Test the callback sees accumulated text and one finished delta."""
        seen = []
        adapter = MockAdapter(script=["The answer is 5"])
        generation = Generation(adapter, on_delta=lambda message, delta, finished: seen.append((message.text, delta, finished)))

        response = generation.run(calculator_prompt)

        assert "".join(delta for _, delta, finished in seen if not finished) == "The answer is 5"
        assert seen[-1] == ("The answer is 5", None, True)
        assert [finished for _, _, finished in seen].count(True) == 1
        assert response.message.text == "The answer is 5"
        assert adapter.requests[0]["stream"] is True

    def test_stream_iterates_all_turns(self, calculator_prompt, calculator_actions):
        """Test one stream carries the deltas of every round trip."""
        adapter = MockAdapter(script=[
            completion(tool_calls=[Action(id="call_1", name="add", params={"a": 2, "b": 3})]),
            completion("Result: 5"),
        ])
        stream = Generation(adapter, actions=calculator_actions).stream(calculator_prompt)

        deltas = list(stream)

        assert sum(1 for d in deltas if d.finished) == 2
        assert deltas[-1].message.text == "Result: 5"
        assert stream.response.message.text == "Result: 5"

    def test_stream_text(self, calculator_prompt):
        """Test text() consumes the stream."""
        stream = Generation(MockAdapter(script=["Hi there"])).stream(calculator_prompt)

        assert stream.text() == "Hi there"

    def test_stream_reraises_errors(self, calculator_prompt, no_retry_policy):
        """Test producer failures are raised from the iterator."""
        adapter = MockAdapter(retry_policy=no_retry_policy, script=[RateLimitError("slow down", provider="mock")])
        stream = Generation(adapter).stream(calculator_prompt)

        with pytest.raises(GenerationProviderError):
            list(stream)

    def test_consumer_cancel_stops_producer(self, calculator_prompt):
        """Test breaking out of iteration cancels the run."""
        adapter = MockAdapter(script=["one two three four five six seven"])
        stream = Generation(adapter).stream(calculator_prompt, maxsize=1)

        for _ in stream:
            break

        assert stream.channel.cancelled
        assert stream.response is None


# =============================================================================
# Async
# =============================================================================

class TestAsyncGeneration:
    """Tests for arun."""

    @pytest.mark.asyncio
    async def test_arun_basic_turn(self, calculator_prompt, calculator_actions, no_retry_policy):
        """Test the async loop matches the sync one."""
        adapter = AsyncMockAdapter(
            retry_policy=no_retry_policy,
            script=[
                completion(tool_calls=[Action(id="call_1", name="add", params={"a": 2, "b": 3})]),
                completion("The answer is 5"),
            ],
        )

        response = await Generation(adapter, actions=calculator_actions).arun(calculator_prompt)

        assert len(response.messages) == 5
        assert response.messages[3].content == "5.0"
        assert "5" in response.message.text

    @pytest.mark.asyncio
    async def test_arun_requires_async_adapter(self, calculator_prompt):
        """Test arun rejects sync-only adapters."""
        with pytest.raises(TypeError):
            await Generation(MockAdapter()).arun(calculator_prompt)


class TestEmbeddings:
    """Tests for embedding delegation."""

    def test_embed(self):
        """Test embeddings come back one vector per input."""
        response = Generation(MockAdapter()).embed(["hello", "world"], {"dimensions": 8})

        assert len(response.embeddings) == 2
        assert len(response.embedding) == 8
