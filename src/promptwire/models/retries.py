"""
Retry wrapper for provider calls.

``enabled`` selects the strategy:
  - False: run once; on failure the exception handler (if any) supplies the
    result, otherwise the error propagates. A handler that returns None
    lets the original error propagate.
  - True: retry exceptions in the allowlist with exponential backoff of
    ``base_delay * 2 ** (attempt - 1)`` for up to ``max_attempts`` retries.
  - a callable: it receives the guarded operation and owns invocation,
    retry and backoff entirely.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple, Type, Union

from promptwire.agents import exceptions as errors

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    errors.RateLimitError,
    errors.ServiceUnavailableError,
    errors.ProviderTimeoutError,
    errors.ProviderConnectionError,
)


def resolve_exception_names(names: Sequence[Union[str, Type[BaseException]]]) -> Tuple[Type[BaseException], ...]:
    """Map configured exception names to classes from promptwire.agents.exceptions."""
    resolved = []
    for name in names:
        if isinstance(name, type) and issubclass(name, BaseException):
            resolved.append(name)
            continue
        exc_class = getattr(errors, str(name), None)
        if not (isinstance(exc_class, type) and issubclass(exc_class, BaseException)):
            raise errors.ConfigurationError(f"Unknown exception class in retry_on: {name!r}")
        resolved.append(exc_class)
    return tuple(resolved)


def _merge_exceptions(*groups: Sequence[Type[BaseException]]) -> Tuple[Type[BaseException], ...]:
    merged = []
    for group in groups:
        for exc_class in group:
            if exc_class not in merged:
                merged.append(exc_class)
    return tuple(merged)


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration for one adapter.

    ``retryable_exceptions`` is always the union of the given classes and
    DEFAULT_RETRYABLE_EXCEPTIONS; passing an empty tuple keeps the defaults.
    """

    enabled: Union[bool, Callable[[Callable[[], Any]], Any]] = True
    max_attempts: int = 3
    retryable_exceptions: Tuple[Type[BaseException], ...] = ()
    exception_handler: Optional[Callable[[BaseException], Any]] = None
    base_delay: float = 1.0
    respect_retry_after: bool = False

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        object.__setattr__(
            self,
            "retryable_exceptions",
            _merge_exceptions(DEFAULT_RETRYABLE_EXCEPTIONS, tuple(self.retryable_exceptions or ())),
        )

    @classmethod
    def from_config(cls, provider_config=None, configuration=None, **overrides: Any) -> "RetryPolicy":
        """Build from a ProviderConfig, adding the configuration-wide retry_on list."""
        names = list(getattr(configuration, "retry_on", ()) or ())
        if provider_config is not None:
            names.extend(provider_config.retry_on)
        kwargs = {"retryable_exceptions": resolve_exception_names(names)}
        if provider_config is not None:
            kwargs["enabled"] = provider_config.retries
            kwargs["max_attempts"] = provider_config.max_retries
        kwargs.update(overrides)
        return cls(**kwargs)

    def is_retryable(self, exception: BaseException) -> bool:
        return isinstance(exception, self.retryable_exceptions)

    def backoff(self, attempt: int, exception: Optional[BaseException] = None) -> float:
        """Delay before the retry that follows failed attempt number ``attempt`` (1-based)."""
        if self.respect_retry_after:
            retry_after = getattr(exception, "retry_after", None)
            if retry_after:
                return float(retry_after)
        return self.base_delay * (2 ** (attempt - 1))


def _handle_or_raise(policy: RetryPolicy, exception: BaseException) -> Any:
    if policy.exception_handler is not None:
        result = policy.exception_handler(exception)
        if result is not None:
            return result
        logger.debug(f"Exception handler returned None for {type(exception).__name__}; re-raising")
    raise exception


def with_retry(
    operation: Callable[[], Any],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Run ``operation`` under ``policy``. See module docstring for strategies."""
    policy = policy or RetryPolicy()

    if callable(policy.enabled) and not isinstance(policy.enabled, bool):
        def guarded():
            try:
                return operation()
            except Exception as e:
                return _handle_or_raise(policy, e)

        return policy.enabled(guarded)

    if not policy.enabled:
        try:
            return operation()
        except Exception as e:
            return _handle_or_raise(policy, e)

    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            if policy.is_retryable(e) and attempt <= policy.max_attempts:
                delay = policy.backoff(attempt, e)
                logger.warning(
                    f"{type(e).__name__}: {e}. Retry {attempt}/{policy.max_attempts} after {delay:.1f}s"
                )
                sleep(delay)
                attempt += 1
                continue
            if policy.is_retryable(e):
                logger.error(f"Max retries ({policy.max_attempts}) exhausted: {type(e).__name__}")
            return _handle_or_raise(policy, e)


async def awith_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """Async counterpart of with_retry; ``operation`` returns an awaitable."""
    policy = policy or RetryPolicy()

    if callable(policy.enabled) and not isinstance(policy.enabled, bool):
        async def guarded():
            try:
                return await operation()
            except Exception as e:
                return _handle_or_raise(policy, e)

        result = policy.enabled(guarded)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    if not policy.enabled:
        try:
            return await operation()
        except Exception as e:
            return _handle_or_raise(policy, e)

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if policy.is_retryable(e) and attempt <= policy.max_attempts:
                delay = policy.backoff(attempt, e)
                logger.warning(
                    f"{type(e).__name__}: {e}. Retry {attempt}/{policy.max_attempts} after {delay:.1f}s"
                )
                await sleep(delay)
                attempt += 1
                continue
            if policy.is_retryable(e):
                logger.error(f"Max retries ({policy.max_attempts}) exhausted: {type(e).__name__}")
            return _handle_or_raise(policy, e)
