"""
Provider adapter base classes.

An adapter turns canonical messages plus RequestParameters into one HTTP
call and the provider's answer back into a Response. Adapters hold only
immutable configuration; everything that belongs to a single call travels
in a RequestContext, so one adapter instance can serve concurrent
conversations.
"""

import asyncio
import dataclasses
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import aiohttp
import requests

from promptwire.agents.exceptions import (
    ConfigurationError,
    GenerationProviderError,
    MessageError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderTimeoutError,
    verbose_errors_enabled,
)
from promptwire.agents.messages import Message
from promptwire.models.config import Configuration, ProviderConfig
from promptwire.models.parameters import RequestParameters
from promptwire.models.response_models import EmbedResponse, Response, ResponseMetadata, UsageInfo
from promptwire.models.retries import RetryPolicy, awith_retry, with_retry
from promptwire.models.sanitizers import Sanitizer
from promptwire.models.streaming import StreamCancelled, StreamChannel, StreamDelta

logger = logging.getLogger(__name__)

RATELIMIT_HEADER_PREFIX = "x-ratelimit-"


@dataclasses.dataclass
class RequestContext:
    """Everything one provider round trip needs; never shared between calls."""

    messages: Sequence[Message]
    params: RequestParameters
    model: str
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]
    channel: Optional[StreamChannel] = None
    kind: str = "generate"
    attempts: int = 0
    started_at: float = dataclasses.field(default_factory=time.time)

    @property
    def stream(self) -> bool:
        return self.kind == "generate" and bool(self.payload.get("stream"))


@dataclasses.dataclass(frozen=True)
class RawProviderResponse:
    """The provider's decoded body plus transport details."""

    body: Any
    status_code: int = 200
    headers: Dict[str, str] = dataclasses.field(default_factory=dict)
    elapsed: Optional[float] = None


def _lower_headers(headers: Any) -> Dict[str, str]:
    if not headers:
        return {}
    try:
        items = headers.items()
    except AttributeError:
        return {}
    return {str(key).lower(): value for key, value in items}


class APIProviderAdapter(ABC):
    """Abstract base class for API provider adapters"""

    provider_name = "base"
    default_model: Optional[str] = None
    default_embedding_model = "text-embedding-3-small"

    def __init__(
        self,
        config: ProviderConfig,
        configuration: Optional[Configuration] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sanitizer: Optional[Sanitizer] = None,
    ):
        self.config = config
        self.configuration = configuration
        self.retry_policy = retry_policy or RetryPolicy.from_config(config, configuration)
        if sanitizer is None:
            sanitizer = Sanitizer.from_config(configuration) if configuration is not None else Sanitizer.from_config(config)
        self.sanitizer = sanitizer
        logger.info(
            f"Initialized {type(self).__name__} (model={config.model or self.default_model})",
            extra={"provider": self.provider_name},
        )

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Return provider-specific headers"""

    @abstractmethod
    def get_endpoint_url(self, params: RequestParameters) -> str:
        """Return provider-specific endpoint URL"""

    @abstractmethod
    def format_request_payload(
        self, messages: Sequence[Message], params: RequestParameters, model: str
    ) -> Dict[str, Any]:
        """Convert canonical messages and parameters to the provider request body"""

    @abstractmethod
    def harmonize_response(self, raw: RawProviderResponse, context: RequestContext) -> Response:
        """Convert the provider body to a Response"""

    def handle_api_error(
        self, error: Exception, response: Any = None, body: Any = None
    ) -> ProviderAPIError:
        """Classify an HTTP failure; the caller raises the returned error."""
        return ProviderAPIError.from_provider_response(
            provider=self.provider_name, response=response, exception=error, body=body
        )

    def timeout_message(self) -> str:
        return f"Request to {self.provider_name} timed out after {self.config.request_timeout}s"

    # Streaming hooks; adapters that stream override all three.
    def new_stream_state(self, context: RequestContext) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    def process_stream_line(self, state: Any, line: Any, context: RequestContext) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    def finish_stream(self, state: Any, context: RequestContext) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    # Embedding hooks
    def get_embeddings_url(self) -> str:
        raise NotImplementedError(f"{type(self).__name__} does not provide embeddings")

    def format_embeddings_payload(self, inputs: Any, options: Mapping[str, Any], model: str) -> Dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__} does not provide embeddings")

    def harmonize_embeddings(self, raw: RawProviderResponse, context: RequestContext) -> EmbedResponse:
        raise NotImplementedError(f"{type(self).__name__} does not provide embeddings")

    # ------------------------------------------------------------------
    # Shared flow
    # ------------------------------------------------------------------

    def resolve_model(self, params: Optional[RequestParameters] = None) -> str:
        model = (params.model if params is not None else None) or self.config.model or self.default_model
        if not model:
            raise ConfigurationError(
                f"No model configured for provider '{self.provider_name}'",
                provider=self.provider_name,
            )
        return model

    def resolve_embedding_model(self, options: Mapping[str, Any]) -> str:
        return options.get("model") or self.config.embedding_model or self.default_embedding_model

    def build_context(
        self,
        messages: Sequence[Message],
        params: Optional[RequestParameters] = None,
        channel: Optional[StreamChannel] = None,
    ) -> RequestContext:
        """
        Format the request. Content errors surface here, before any network
        traffic, and are never retried.
        """
        params = params or RequestParameters()
        if channel is not None and not params.stream:
            params = params.model_copy(update={"stream": True})
        model = self.resolve_model(params)
        payload = self.format_request_payload(messages, params, model)
        return RequestContext(
            messages=tuple(messages),
            params=params,
            model=model,
            url=self.get_endpoint_url(params),
            headers=self.get_headers(),
            payload=payload,
            channel=channel,
        )

    def send(self, context: RequestContext) -> RawProviderResponse:
        """POST the payload once; transport failures become classified errors."""
        context.attempts += 1
        logger.debug(
            f"POST {context.url} (attempt {context.attempts}): {json.dumps(self.sanitizer.sanitize(context.payload))[:2000]}",
            extra={"provider": self.provider_name},
        )
        start = time.time()
        try:
            response = requests.post(
                context.url,
                headers=context.headers,
                json=context.payload,
                timeout=self.config.request_timeout,
                stream=context.stream,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(
                self.timeout_message(),
                provider=self.provider_name,
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderConnectionError(str(e), provider=self.provider_name) from e

        if response.status_code >= 400:
            raise self.handle_api_error(
                requests.exceptions.HTTPError(f"{response.status_code} Error from {self.provider_name}", response=response),
                response,
            )

        headers = _lower_headers(getattr(response, "headers", None))
        if context.stream:
            state = self.new_stream_state(context)
            for line in response.iter_lines(decode_unicode=True):
                self.process_stream_line(state, line, context)
            body = self.finish_stream(state, context)
        else:
            try:
                body = response.json()
            except ValueError as e:
                raise ProviderAPIError(
                    f"Invalid JSON in {self.provider_name} response: {e}",
                    provider=self.provider_name,
                    status_code=response.status_code,
                ) from e
        return RawProviderResponse(
            body=body, status_code=response.status_code, headers=headers, elapsed=time.time() - start
        )

    def parse(self, raw: Union[RawProviderResponse, Mapping[str, Any]], context: RequestContext) -> Response:
        if not isinstance(raw, RawProviderResponse):
            raw = RawProviderResponse(body=raw)
        return self.harmonize_response(raw, context)

    def wrap_error(self, error: Exception, context: RequestContext) -> GenerationProviderError:
        verbose = verbose_errors_enabled(
            self.config.verbose_errors,
            getattr(self.configuration, "verbose_errors", None),
        )
        logger.error(
            f"{self.provider_name} request failed after {context.attempts} attempt(s): {type(error).__name__}: {error}",
            extra={"provider": self.provider_name},
        )
        return GenerationProviderError.from_exception(
            error,
            provider=self.provider_name,
            model=context.model,
            attempts=context.attempts,
            verbose=verbose,
        )

    def _finish(self, result: Any, context: RequestContext) -> Any:
        # An exception handler may hand back a ready Response, a raw body or a RawProviderResponse
        if isinstance(result, (Response, EmbedResponse)):
            return result
        if context.kind == "embed":
            if not isinstance(result, RawProviderResponse):
                result = RawProviderResponse(body=result)
            return self.harmonize_embeddings(result, context)
        return self.parse(result, context)

    def generate(
        self,
        messages: Sequence[Message],
        params: Optional[RequestParameters] = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        """One provider round trip under the retry policy."""
        context = self.build_context(messages, params, channel)
        try:
            raw = with_retry(lambda: self.send(context), self.retry_policy)
            return self._finish(raw, context)
        except (MessageError, StreamCancelled):
            raise
        except Exception as e:
            raise self.wrap_error(e, context) from e

    def build_embed_context(self, inputs: Any, options: Optional[Mapping[str, Any]] = None) -> RequestContext:
        options = dict(options or {})
        model = self.resolve_embedding_model(options)
        return RequestContext(
            messages=(),
            params=RequestParameters(model=model),
            model=model,
            url=self.get_embeddings_url(),
            headers=self.get_headers(),
            payload=self.format_embeddings_payload(inputs, options, model),
            kind="embed",
        )

    def embed(self, inputs: Any, options: Optional[Mapping[str, Any]] = None) -> EmbedResponse:
        """Embedding vectors for one input or a batch of inputs."""
        context = self.build_embed_context(inputs, options)
        try:
            raw = with_retry(lambda: self.send(context), self.retry_policy)
            return self._finish(raw, context)
        except (MessageError, StreamCancelled):
            raise
        except Exception as e:
            raise self.wrap_error(e, context) from e

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------

    def response_metadata(self, raw: RawProviderResponse, context: RequestContext, **fields: Any) -> ResponseMetadata:
        """Metadata common to all providers; missing headers are simply absent."""
        headers = raw.headers or {}
        ratelimit = {
            key[len(RATELIMIT_HEADER_PREFIX):]: value
            for key, value in headers.items()
            if key.startswith(RATELIMIT_HEADER_PREFIX)
        }
        body = raw.body if isinstance(raw.body, Mapping) else {}
        data = {
            "provider": self.provider_name,
            "model": body.get("model") or context.model,
            "request_id": body.get("id") or headers.get("x-request-id") or headers.get("request-id"),
            "trace_id": headers.get("x-trace-id"),
            "response_time": raw.elapsed if raw.elapsed is not None else time.time() - context.started_at,
            "ratelimit": ratelimit,
        }
        data.update({k: v for k, v in fields.items() if v is not None})
        return ResponseMetadata(**data)

    def build_response(
        self,
        message: Message,
        raw: RawProviderResponse,
        context: RequestContext,
        usage: Optional[Mapping[str, Any]] = None,
        **metadata: Any,
    ) -> Response:
        return Response(
            sanitizer=self.sanitizer,
            message=message,
            raw_request=context.payload,
            raw_response=raw.body,
            usage=UsageInfo(**usage) if usage else None,
            metadata=self.response_metadata(raw, context, **metadata),
            output_schema=context.params.output_schema,
        )

    def build_embed_response(
        self, data: List[Dict[str, Any]], raw: RawProviderResponse, context: RequestContext, usage: Optional[Mapping[str, Any]] = None
    ) -> EmbedResponse:
        body = raw.body if isinstance(raw.body, Mapping) else {}
        return EmbedResponse(
            sanitizer=self.sanitizer,
            data=data,
            model=body.get("model") or context.model,
            raw_request=context.payload,
            raw_response=raw.body,
            usage=UsageInfo(**usage) if usage else None,
            metadata=self.response_metadata(raw, context),
        )

    def emit(self, context: RequestContext, message: Message, delta: Optional[str], finished: bool = False) -> None:
        if context.channel is not None:
            context.channel.send(StreamDelta(message=message, delta=delta, finished=finished))


class AsyncBaseAPIAdapter(APIProviderAdapter):
    """
    Async version of APIProviderAdapter using aiohttp for true async calls.

    This class provides async HTTP capabilities while reusing the parent's
    request formatting and response harmonization logic. The session is a
    connection pool shared by all calls; it holds no per-call state.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """
        Ensure aiohttp session exists.

        Creates a persistent session for connection pooling and efficiency.
        """
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=100,  # Total connection limit
                limit_per_host=30,  # Per-host connection limit
                ttl_dns_cache=300,  # DNS cache timeout
            )
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def asend(self, context: RequestContext) -> RawProviderResponse:
        context.attempts += 1
        session = await self._ensure_session()
        start = time.time()
        try:
            async with session.post(
                context.url,
                headers=context.headers,
                json=context.payload,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            ) as response:
                if response.status >= 400:
                    try:
                        body = await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError):
                        body = None
                    raise self.handle_api_error(
                        RuntimeError(f"{response.status} Error from {self.provider_name}"), response, body=body
                    )

                headers = _lower_headers(response.headers)
                if context.stream:
                    state = self.new_stream_state(context)
                    async for line in response.content:
                        self.process_stream_line(state, line.decode("utf-8"), context)
                    body = self.finish_stream(state, context)
                else:
                    body = await response.json(content_type=None)
                status = response.status
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                self.timeout_message(),
                provider=self.provider_name,
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(str(e), provider=self.provider_name) from e
        return RawProviderResponse(body=body, status_code=status, headers=headers, elapsed=time.time() - start)

    async def agenerate(
        self,
        messages: Sequence[Message],
        params: Optional[RequestParameters] = None,
        channel: Optional[StreamChannel] = None,
    ) -> Response:
        """
        Async round trip; the event loop is free while the provider answers.
        """
        context = self.build_context(messages, params, channel)
        try:
            raw = await awith_retry(lambda: self.asend(context), self.retry_policy)
            return self._finish(raw, context)
        except (MessageError, StreamCancelled):
            raise
        except Exception as e:
            raise self.wrap_error(e, context) from e

    async def aembed(self, inputs: Any, options: Optional[Mapping[str, Any]] = None) -> EmbedResponse:
        context = self.build_embed_context(inputs, options)
        try:
            raw = await awith_retry(lambda: self.asend(context), self.retry_policy)
            return self._finish(raw, context)
        except (MessageError, StreamCancelled):
            raise
        except Exception as e:
            raise self.wrap_error(e, context) from e

    async def cleanup(self):
        """
        Clean up aiohttp session on shutdown.

        Important for proper resource cleanup and avoiding warnings.
        """
        if self._session and not self._session.closed:
            await self._session.close()
