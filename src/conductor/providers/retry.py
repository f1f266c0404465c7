"""
Retrying provider wrapper.

Retries retryable ProviderErrors (rate limits, server and network errors)
with capped exponential backoff and jitter, honoring a rate limit's
``retry_after``. Non-retryable errors propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from conductor.config.settings import RetrySettings, get_settings
from conductor.errors import ProviderError, RateLimitError
from conductor.items import Message, ModelResponse, StreamChunk
from conductor.providers.base import Provider
from conductor.run_config import ModelSettings
from conductor.tools.base import ToolDefinition

logger = structlog.get_logger(__name__)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def compute_delay(
    attempt: int,
    policy: RetrySettings,
    error: BaseException | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the next attempt.

    The backoff is capped at ``max_delay``; a rate limit's ``retry_after``
    is waited out in full even when it is longer.

    Args:
        attempt: Number of the attempt that just failed (1-based).
        policy: Backoff parameters.
        error: The error that failed the attempt.
        rand: Source of uniform [0, 1) numbers.
    """
    delay = min(policy.base_delay * policy.multiplier ** (attempt - 1), policy.max_delay)
    if policy.jitter:
        delay *= 1 + policy.jitter * (2 * rand() - 1)
    delay = max(0.0, min(delay, policy.max_delay))
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        delay = max(delay, error.retry_after)
    return delay


class RetryingProvider(Provider):
    """
    Wraps a provider with retries.

    Usage:
        provider = RetryingProvider(VendorProvider(...))
    """

    def __init__(
        self,
        provider: Provider,
        policy: RetrySettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.policy = policy or get_settings().retry
        self._sleep = sleep
        self.name = f"retrying({provider.name})"

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return compute_delay(retry_state.attempt_number, self.policy, error)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "provider_retry",
            provider=self.provider.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.policy.max_attempts,
            delay=round(retry_state.next_action.sleep if retry_state.next_action else 0.0, 3),
            error_type=type(error).__name__,
            error=str(error),
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=True,
        )

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> ModelResponse:
        async for attempt in self._retrying():
            with attempt:
                return await self.provider.complete(messages, tools, settings)
        raise AssertionError("unreachable")

    async def stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        settings: ModelSettings,
    ) -> AsyncIterator[StreamChunk]:
        """Retry only until the first chunk arrives; later failures propagate."""
        async for attempt in self._retrying():
            with attempt:
                iterator = aiter(self.provider.stream(messages, tools, settings))
                try:
                    first = await anext(iterator)
                except StopAsyncIteration:
                    return
        yield first
        async for chunk in iterator:
            yield chunk
