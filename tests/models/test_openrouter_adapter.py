"""
Tests for the OpenRouter adapter: routing preferences, fallback models,
metadata and error messages.
"""

import pytest
import requests
from pydantic import ValidationError

from promptwire.agents.exceptions import (
    GenerationProviderError,
    InsufficientCreditsError,
    RateLimitError,
)
from promptwire.agents.messages import ContentPart, Message, Role
from promptwire.agents.prompt import Prompt
from promptwire.models.adapters.openrouter import (
    OpenRouterAdapter,
    ProviderPreferences,
    build_provider_preferences,
)
from promptwire.models.parameters import ParameterBuilder, RequestParameters

MESSAGES = [Message(role=Role.USER, content="Hello")]


@pytest.fixture
def adapter(openrouter_config, no_retry_policy):
    return OpenRouterAdapter(openrouter_config, retry_policy=no_retry_policy)


# =============================================================================
# Provider preferences
# =============================================================================

class TestProviderPreferences:
    """Tests for the provider routing object."""

    def test_default_allows_collection(self):
        """Test data collection defaults to allow."""
        assert build_provider_preferences(RequestParameters()).to_payload() == {"data_collection": "allow"}

    def test_resolved_value_beats_nested(self):
        """Test the resolved data_collection wins over provider.data_collection."""
        params = RequestParameters(
            data_collection="deny",
            extra={"provider": {"order": ["OpenAI"], "data_collection": "allow"}},
        )

        assert build_provider_preferences(params).to_payload() == {"order": ["OpenAI"], "data_collection": "deny"}

    def test_fallback_alias(self):
        """Test enable_fallbacks is accepted for allow_fallbacks."""
        preferences = ProviderPreferences(enable_fallbacks=False)

        assert preferences.to_payload() == {"allow_fallbacks": False, "data_collection": "allow"}

    @pytest.mark.parametrize("field, value", [("quantizations", ["int3"]), ("data_collection", "maybe"), ("colour", "red")])
    def test_invalid_values(self, field, value):
        """Test unknown quantizations, policies and keys are rejected."""
        with pytest.raises(ValidationError):
            ProviderPreferences.model_validate({field: value})


class TestDataCollectionPrecedence:
    """Tests for data_collection across configuration, agent and call."""

    @pytest.fixture
    def builder(self, openrouter_config):
        return ParameterBuilder(openrouter_config.with_overrides(data_collection="allow"), {"data_collection": "deny"})

    def test_agent_beats_config(self, adapter, builder):
        """Test the agent level deny wins over the configured allow."""
        params = builder.build(Prompt(messages=MESSAGES))

        payload = adapter.format_request_payload(MESSAGES, params, adapter.resolve_model(params))

        assert payload["provider"]["data_collection"] == "deny"

    def test_call_override_beats_agent(self, adapter, builder):
        """Test a per-call provider list wins over the agent setting."""
        params = builder.build(Prompt(messages=MESSAGES), {"data_collection": ["OpenAI"]})

        payload = adapter.format_request_payload(MESSAGES, params, adapter.resolve_model(params))

        assert payload["provider"]["data_collection"] == ["OpenAI"]


# =============================================================================
# Requests and responses
# =============================================================================

class TestOpenRouterRequests:
    """Tests for request formatting and response metadata."""

    def test_headers_and_provider_object(self, adapter, http, make_response, completion_body):
        """Test attribution headers and the always-present provider object."""
        http.queue(make_response(completion_body()))

        adapter.generate(MESSAGES)

        assert http.last["url"] == "https://openrouter.ai/api/v1/chat/completions"
        assert http.last["headers"]["Authorization"] == "Bearer sk-or-test"
        assert http.last["headers"]["HTTP-Referer"] == "https://example.com"
        assert http.last["headers"]["X-Title"] == "promptwire-tests"
        assert http.last["json"]["model"] == "openrouter/auto"
        assert http.last["json"]["provider"] == {"data_collection": "allow"}

    def test_fallback_models(self, adapter, http, make_response, completion_body):
        """Test fallback models set the route and metadata reports the fallback."""
        http.queue(make_response(dict(completion_body("Hi", model="anthropic/claude-3-haiku"), provider="Anthropic")))
        params = RequestParameters(
            model="openai/gpt-4o",
            extra={"models": ["openai/gpt-4o", "anthropic/claude-3-haiku"], "transforms": ["middle-out"]},
        )

        response = adapter.generate(MESSAGES, params)

        payload = http.last["json"]
        assert payload["models"] == ["openai/gpt-4o", "anthropic/claude-3-haiku"]
        assert payload["route"] == "fallback"
        assert payload["transforms"] == ["middle-out"]
        assert response.metadata.model_used == "anthropic/claude-3-haiku"
        assert response.metadata.fallback_used is True
        assert response.metadata.provider_used == "Anthropic"

    def test_no_fallback_metadata(self, adapter, http, make_response, completion_body):
        """Test a plain request leaves fallback_used unset."""
        http.queue(make_response(completion_body(model="openai/gpt-4o")))

        response = adapter.generate(MESSAGES, RequestParameters(model="openai/gpt-4o"))

        assert response.metadata.model_used == "openai/gpt-4o"
        assert response.metadata.fallback_used is None

    def test_file_parts_sent_as_image_url(self, adapter):
        """Test inline file data goes through the image_url part."""
        message = Message(role=Role.USER, content=(
            ContentPart(type="text", text="Summarize"),
            ContentPart(type="file", data="data:application/pdf;base64,JVBERi0=", filename="report.pdf"),
        ))

        payload = adapter.format_request_payload([message], RequestParameters(), "openai/gpt-4o")

        assert payload["messages"][0]["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "data:application/pdf;base64,JVBERi0="},
        }


# =============================================================================
# Errors
# =============================================================================

class TestOpenRouterErrors:
    """Tests for friendly error messages."""

    def test_rate_limit(self, adapter, http, make_response):
        """Test 429 gets the OpenRouter rate limit message."""
        http.queue(make_response({"error": {"message": "Rate limit exceeded: free-models-per-day"}}, status_code=429))

        with pytest.raises(GenerationProviderError) as exc_info:
            adapter.generate(MESSAGES)

        assert isinstance(exc_info.value.original_exception, RateLimitError)
        assert exc_info.value.developer_message == "OpenRouter rate limit exceeded. Please retry later."

    def test_insufficient_credits(self, adapter, http, make_response):
        """Test 402 gets the credits message."""
        http.queue(make_response({"error": {"message": "Payment Required"}}, status_code=402))

        with pytest.raises(GenerationProviderError) as exc_info:
            adapter.generate(MESSAGES)

        assert isinstance(exc_info.value.original_exception, InsufficientCreditsError)
        assert exc_info.value.developer_message == "OpenRouter account has insufficient credits."

    def test_no_provider(self, adapter, http, make_response):
        """Test routing failures are reported as no available provider."""
        http.queue(make_response({"error": {"message": "No endpoints found for some/model."}}, status_code=404))

        with pytest.raises(GenerationProviderError, match="No available provider"):
            adapter.generate(MESSAGES)

    def test_other_errors_unchanged(self, adapter, http, make_response):
        """Test unrelated errors keep the provider message."""
        http.queue(make_response({"error": {"message": "Context length exceeded"}}, status_code=400))

        with pytest.raises(GenerationProviderError) as exc_info:
            adapter.generate(MESSAGES)

        assert exc_info.value.developer_message == "Context length exceeded"

    def test_timeout(self, adapter, http):
        """Test transport timeouts use the OpenRouter message."""
        http.queue(requests.exceptions.Timeout("read timed out"))

        with pytest.raises(GenerationProviderError) as exc_info:
            adapter.generate(MESSAGES)

        assert exc_info.value.developer_message == "OpenRouter request timed out."
