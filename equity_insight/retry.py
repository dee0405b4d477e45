"""Bounded retries with exponential backoff for model calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from equity_insight.errors import is_rate_limited, is_server_transient, unwrap_failure


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0  # seconds
DEFAULT_RATE_LIMIT_DELAY = 5.0  # seconds


def retry_delay(
    error: BaseException,
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
) -> Optional[float]:
    """
    Decide whether a failure is worth retrying and how long to wait.

    Rate-limited failures (429, quota, resource exhausted) back off from
    rate_limit_delay; server-side failures (500, 503, overloaded) from
    base_delay. The delay doubles with each attempt.

    Args:
        error: The failure raised by the operation
        attempt: Zero-based index of the attempt that failed
        base_delay: Base delay for server-side failures
        rate_limit_delay: Base delay for rate-limited failures

    Returns:
        Seconds to wait, or None if the failure must propagate
    """
    status, message = unwrap_failure(error)
    if is_rate_limited(status, message):
        base = rate_limit_delay
    elif is_server_transient(status, message):
        base = base_delay
    else:
        return None
    return base * (2 ** attempt)


async def execute(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying transient failures.

    Preconditions:
    - max_attempts >= 1
    - operation can be invoked repeatedly; each call starts a fresh request

    Postconditions:
    - Returns the first successful result
    - Non-retryable failures propagate unchanged after a single call
    - After max_attempts retryable failures, the last one propagates unchanged

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Upper bound on invocations
        base_delay: Backoff base for server-side failures (seconds)
        rate_limit_delay: Backoff base for rate-limited failures (seconds)
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def is_retryable(error: BaseException) -> bool:
        return retry_delay(error, 0, base_delay, rate_limit_delay) is not None

    def backoff(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        delay = retry_delay(error, retry_state.attempt_number - 1, base_delay, rate_limit_delay)
        return delay if delay is not None else 0.0

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception(is_retryable),
        wait=backoff,
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return await retrying(operation)
