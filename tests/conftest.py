"""
Shared fixtures for the promptwire test suite.

No test performs network I/O: HTTP calls go through ``requests.post``,
which the ``http`` fixture patches with scripted responses.
"""

import json
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from promptwire.agents.messages import Message, Role
from promptwire.agents.prompt import Prompt
from promptwire.models.config import ProviderConfig
from promptwire.models.retries import RetryPolicy

API_KEY_ENV_VARS = ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OPENROUTER_API_KEY", "PROMPTWIRE_VERBOSE_ERRORS")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep real credentials and verbose-error settings out of every test."""
    for name in API_KEY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def make_http_response(
    body: Any = None,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    lines: Optional[Iterable[str]] = None,
) -> MagicMock:
    """A stand-in for requests.Response."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.headers = headers or {}
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    response.iter_lines.return_value = list(lines or [])
    response.text = json.dumps(body) if not isinstance(body, Exception) else ""
    return response


def sse_lines(*events: Dict[str, Any], done: bool = True) -> List[str]:
    """Server-sent-event lines for a list of JSON events."""
    lines = []
    for event in events:
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    if done:
        lines.append("data: [DONE]")
    return lines


class HTTPRecorder:
    """Scripted replacement for requests.post that records each call."""

    def __init__(self):
        self.responses: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> "HTTPRecorder":
        self.responses.extend(responses)
        return self

    def __call__(self, url, headers=None, json=None, timeout=None, stream=False):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout, "stream": stream})
        if not self.responses:
            raise AssertionError(f"Unexpected HTTP call to {url}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def last(self) -> Dict[str, Any]:
        return self.calls[-1]


@pytest.fixture
def http(mocker):
    recorder = HTTPRecorder()
    mocker.patch("promptwire.models.adapters.base.requests.post", side_effect=recorder)
    return recorder


@pytest.fixture
def no_retry_policy():
    return RetryPolicy(enabled=True, max_attempts=0, base_delay=0)


@pytest.fixture
def fast_retry_policy():
    return RetryPolicy(enabled=True, max_attempts=3, base_delay=0)


@pytest.fixture
def openai_config():
    return ProviderConfig(service="openai", api_key="sk-test-openai", model="gpt-4o-mini")


@pytest.fixture
def anthropic_config():
    return ProviderConfig(service="anthropic", api_key="sk-ant-test", model="claude-sonnet-4-5")


@pytest.fixture
def openrouter_config():
    return ProviderConfig(
        service="openrouter",
        api_key="sk-or-test",
        site_url="https://example.com",
        app_name="promptwire-tests",
    )


@pytest.fixture
def ollama_config():
    return ProviderConfig(service="ollama", model="llama3.2")


@pytest.fixture
def calculator_prompt():
    return Prompt(
        messages=[
            Message(role=Role.SYSTEM, content="You are a calculator agent"),
            Message(role=Role.USER, content="Add 2 and 3"),
        ]
    )


def chat_completion(
    content: Optional[str] = "Hello!",
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    finish_reason: str = "stop",
    model: str = "gpt-4o-mini",
    usage: Optional[Dict[str, Any]] = None,
    completion_id: str = "chatcmpl-123",
) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "id": completion_id,
        "object": "chat.completion",
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


@pytest.fixture
def make_response():
    return make_http_response


@pytest.fixture
def sse():
    return sse_lines


@pytest.fixture
def completion_body():
    return chat_completion
