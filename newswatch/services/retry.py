"""
Exponential backoff with jitter for calls to external services.

The delay after the n-th failed attempt is
``min(max_delay, initial_delay * factor ** (n - 1))`` plus a random jitter of
up to ``jitter_ratio`` of that value, still capped at ``max_delay``.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from newswatch.services.errors import CircuitOpenError

T = TypeVar("T")


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff."""

    max_attempts: int = 3
    initial_delay: float = 0.4  # seconds
    factor: float = 2.0
    max_delay: float = 5.0  # seconds
    jitter_ratio: float = 0.2


@dataclass
class RetryContext:
    """Details passed to ``on_retry`` before sleeping."""

    failed_attempt: int
    max_attempts: int
    delay: float
    error: BaseException


def compute_delay(
    failed_attempt: int,
    config: BackoffConfig,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds to wait after ``failed_attempt`` (1-based)."""
    raw = min(
        config.max_delay,
        config.initial_delay * config.factor ** max(0, failed_attempt - 1),
    )
    jitter = raw * config.jitter_ratio * rand()
    return min(config.max_delay, raw + jitter)


def is_retryable_http_status(status: int) -> bool:
    return status in (408, 425, 429) or 500 <= status <= 599


def is_retryable_error(error: BaseException) -> bool:
    """Default retry policy for HTTP calls."""
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_http_status(error.response.status_code)
    if isinstance(error, (CircuitOpenError, asyncio.CancelledError)):
        return False
    return True


async def with_exponential_backoff(
    operation: Callable[[], Awaitable[T]],
    config: BackoffConfig | None = None,
    should_retry: Callable[[BaseException, int, int], bool] | None = None,
    on_retry: Callable[[RetryContext], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or attempts are exhausted.

    Args:
        operation: Zero-argument coroutine factory
        config: Backoff parameters (defaults to BackoffConfig())
        should_retry: ``(error, failed_attempt, max_attempts) -> bool``;
            retries everything when omitted
        on_retry: Hook called with a RetryContext before each sleep
        sleep: Awaitable sleep function

    Returns:
        The first successful result

    Raises:
        The last error when no attempt succeeds or should_retry refuses
    """
    config = config or BackoffConfig()
    max_attempts = max(1, int(config.max_attempts))

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as error:
            has_next_attempt = attempt < max_attempts
            if not has_next_attempt or (
                should_retry and not should_retry(error, attempt, max_attempts)
            ):
                raise

            delay = compute_delay(attempt, config)
            context = RetryContext(
                failed_attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=error,
            )
            if on_retry:
                on_retry(context)
            else:
                logger.debug(
                    f"Attempt {attempt}/{max_attempts} failed ({error}), "
                    f"retrying in {delay:.2f}s"
                )
            await sleep(delay)
            attempt += 1
