"""
Multi-turn generation.

Generation drives one conversation: send the prompt, execute any actions
the model requests, append their results and send again, until the model
answers without requesting tools or ``max_turns`` round trips have been
spent. Each round trip completes (including retries and streaming) before
the next one starts.
"""

import dataclasses
import logging
import threading
import uuid
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, Union

from promptwire.agents.actions import ActionRegistry
from promptwire.agents.exceptions import MaxTurnsExceededError
from promptwire.agents.messages import Action, Message
from promptwire.agents.prompt import Prompt, PromptOptions
from promptwire.models.adapters.base import APIProviderAdapter
from promptwire.models.formatting import format_tools, tool_name
from promptwire.models.parameters import ParameterBuilder, RequestParameters
from promptwire.models.response_models import EmbedResponse, Response
from promptwire.models.streaming import CallbackChannel, StreamCancelled, StreamChannel, StreamDelta

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 10

FORCING_TOOL_CHOICES = ("required", "any")

Overrides = Optional[Union[PromptOptions, Mapping[str, Any]]]


def forced_tool(tool_choice: Any) -> Optional[str]:
    """
    What a ``tool_choice`` forces: "*" for any tool, a function name for one
    specific tool, or None when nothing is forced ("auto", "none").

    Accepts the OpenAI chat (``{"type": "function", "function": {"name": ...}}``),
    Responses and Anthropic (``{"type": "tool", "name": ...}``) shapes.
    """
    if isinstance(tool_choice, str):
        return "*" if tool_choice in FORCING_TOOL_CHOICES else None
    if not isinstance(tool_choice, Mapping):
        return None
    if tool_choice.get("type") in FORCING_TOOL_CHOICES:
        return "*"
    function = tool_choice.get("function")
    if isinstance(function, Mapping) and function.get("name"):
        return function["name"]
    return tool_choice.get("name") or None


class Generation:
    """
    Runs the generate / execute-actions / regenerate loop against one adapter.

    The adapter and builder hold only configuration; all conversation state
    lives on the Prompt passed to ``run``, so one Generation can serve
    concurrent conversations.

    Args:
        adapter: Provider adapter used for every round trip.
        actions: Registry of local action handlers. Its schemas are advertised
            alongside the prompt's own tools.
        builder: Parameter builder; defaults to one over the adapter's config.
        max_turns: Ceiling on provider round trips per ``run``.
        on_delta: Optional ``callback(message, delta, finished)`` receiving
            streamed deltas; setting it streams every round trip.
    """

    def __init__(
        self,
        adapter: APIProviderAdapter,
        actions: Optional[ActionRegistry] = None,
        builder: Optional[ParameterBuilder] = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        on_delta: Optional[Callable[[Message, Optional[str], bool], Any]] = None,
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.adapter = adapter
        self.actions = actions or ActionRegistry()
        self.builder = builder or ParameterBuilder(adapter.config)
        self.max_turns = max_turns
        self.on_delta = on_delta

    # ------------------------------------------------------------------
    # Parameters and actions
    # ------------------------------------------------------------------

    def build_parameters(self, prompt: Prompt, overrides: Overrides = None) -> RequestParameters:
        params = self.builder.build(prompt, overrides)
        advertised = {tool_name(tool) for tool in params.tools}
        registry_tools = [
            tool for tool in format_tools(self.actions.schemas(), "openai") if tool_name(tool) not in advertised
        ]
        if registry_tools:
            params = params.model_copy(update={"tools": list(params.tools) + registry_tools})
        return params

    @staticmethod
    def clear_tool_choice(params: RequestParameters, called: Sequence[Action]) -> RequestParameters:
        """
        Drop a forcing ``tool_choice`` once it has been honored, so the next
        turn lets the model answer instead of calling a tool again.
        """
        forced = forced_tool(params.extra.get("tool_choice"))
        if forced is None:
            return params
        if forced != "*" and forced not in {action.name for action in called}:
            return params
        logger.debug(f"Clearing tool_choice after {forced if forced != '*' else 'forced'} tool call")
        extra = {key: value for key, value in params.extra.items() if key != "tool_choice"}
        return params.model_copy(update={"extra": extra})

    def execute_action(self, action: Action) -> Message:
        """Tool message for ``action``; never raises for handler failures."""
        logger.info(f"Executing action '{action.name}' ({action.id})")
        return self.actions.call(action)

    async def aexecute_action(self, action: Action) -> Message:
        logger.info(f"Executing action '{action.name}' ({action.id})")
        return await self.actions.acall(action)

    @staticmethod
    def ensure_action_ids(message: Message) -> Message:
        # Some providers (Ollama) omit call ids; tool results need one to answer
        if all(action.id for action in message.requested_actions):
            return message
        actions = tuple(
            action if action.id else dataclasses.replace(action, id=f"call_{uuid.uuid4().hex[:24]}")
            for action in message.requested_actions
        )
        return dataclasses.replace(message, requested_actions=actions)

    def _channel(self, channel: Optional[StreamChannel]) -> Optional[StreamChannel]:
        if channel is not None:
            return channel
        if self.on_delta is not None:
            return CallbackChannel(self.on_delta)
        return None

    def _finish(self, response: Response, prompt: Prompt, turn: int) -> Response:
        logger.info(f"Generation finished after {turn} turn(s) with {len(prompt)} messages")
        return response.with_messages(prompt.messages)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(
        self,
        prompt: Prompt,
        overrides: Overrides = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        """
        Run the conversation to its final answer.

        Messages produced along the way (assistant turns and tool results)
        are appended to ``prompt``; the returned Response carries the final
        assistant message and the whole conversation in ``messages``.

        Raises:
            MaxTurnsExceededError: the model was still requesting actions
                after ``max_turns`` round trips.
            GenerationProviderError: a round trip failed after retries.
        """
        params = self.build_parameters(prompt, overrides)
        channel = self._channel(channel)

        for turn in range(1, self.max_turns + 1):
            logger.info(f"Turn {turn}/{self.max_turns}: sending {len(prompt)} messages")
            response = self.adapter.generate(prompt.messages, params, channel)
            message = prompt.append(self.ensure_action_ids(response.message))

            if not message.action_requested:
                return self._finish(response, prompt, turn)

            for action in message.requested_actions:
                prompt.append(self.execute_action(action))
            params = self.clear_tool_choice(params, message.requested_actions)

        raise MaxTurnsExceededError(self.max_turns)

    async def arun(
        self,
        prompt: Prompt,
        overrides: Overrides = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        """Async counterpart of ``run``; requires an adapter with ``agenerate``."""
        if not hasattr(self.adapter, "agenerate"):
            raise TypeError(f"{type(self.adapter).__name__} has no async support; use an Async adapter")

        params = self.build_parameters(prompt, overrides)
        channel = self._channel(channel)

        for turn in range(1, self.max_turns + 1):
            logger.info(f"Turn {turn}/{self.max_turns}: sending {len(prompt)} messages")
            response = await self.adapter.agenerate(prompt.messages, params, channel)
            message = prompt.append(self.ensure_action_ids(response.message))

            if not message.action_requested:
                return self._finish(response, prompt, turn)

            for action in message.requested_actions:
                prompt.append(await self.aexecute_action(action))
            params = self.clear_tool_choice(params, message.requested_actions)

        raise MaxTurnsExceededError(self.max_turns)

    def stream(self, prompt: Prompt, overrides: Overrides = None, maxsize: int = 0) -> "GenerationStream":
        """
        Iterate over the deltas of every round trip while the conversation
        runs on a worker thread. The final Response is on the returned
        stream's ``response`` once iteration ends.
        """
        return GenerationStream(self, prompt, overrides, maxsize)

    def embed(self, inputs: Any, options: Optional[Mapping[str, Any]] = None) -> EmbedResponse:
        return self.adapter.embed(inputs, options)

    async def aembed(self, inputs: Any, options: Optional[Mapping[str, Any]] = None) -> EmbedResponse:
        return await self.adapter.aembed(inputs, options)


class GenerationStream:
    """
    Iterator over StreamDelta objects for one ``Generation.run``.

    Errors raised by the run are re-raised from the iterator. ``cancel``
    stops the producer at its next delta.
    """

    def __init__(self, generation: Generation, prompt: Prompt, overrides: Overrides = None, maxsize: int = 0):
        self.generation = generation
        self.prompt = prompt
        self.overrides = overrides
        self.channel = StreamChannel(maxsize=maxsize)
        self.response: Optional[Response] = None
        self._thread: Optional[threading.Thread] = None

    def _produce(self) -> None:
        error: Optional[BaseException] = None
        try:
            self.response = self.generation.run(self.prompt, self.overrides, channel=self.channel)
        except StreamCancelled:
            logger.info("Stream cancelled by consumer")
        except Exception as e:
            error = e
        finally:
            self.channel.close(error)

    def __iter__(self) -> Iterator[StreamDelta]:
        if self._thread is None:
            self._thread = threading.Thread(target=self._produce, name="promptwire-stream", daemon=True)
            self._thread.start()
        try:
            yield from self.channel
        finally:
            if self._thread.is_alive():
                self.channel.cancel()
            # A bounded channel can block the producer on put; keep draining until it exits
            while self._thread.is_alive():
                self.channel.drain()
                self._thread.join(timeout=0.05)

    def cancel(self) -> None:
        self.channel.cancel()

    def text(self) -> str:
        """Consume the stream and return the final message text."""
        for _ in self:
            pass
        return self.response.message.text if self.response is not None else ""
