"""Retry utilities with exponential backoff for transient failures.

Usage:
    from utils.retry import RetryPolicy, retry_async

    policy = RetryPolicy(max_attempts=3, backoff_base=1.0)
    result = await retry_async(
        flaky_operation,
        policy=policy,
        retryable_exceptions=(ConnectionError, TimeoutError),
        operation_name="store-results",
    )

    @retry(max_attempts=3, retryable_exceptions={ConnectionError})
    async def connect():
        ...
"""

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry budget for one unit of work.

    Attributes:
        max_attempts: Total attempts including the first try
        backoff_base: Base delay in seconds
        backoff_max: Maximum delay cap in seconds
        jitter: Add 0-1s of random jitter to each delay
    """

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 8.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


NO_RETRY = RetryPolicy(max_attempts=1)


def calculate_backoff(
    attempt: int,
    base: float = 1.0,
    max_delay: float = 8.0,
    jitter: bool = True,
) -> float:
    """Calculate exponential backoff with optional jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter: Whether to add random jitter (0-1s)

    Returns:
        Delay in seconds before next retry
    """
    delay = min(base * (2**attempt), max_delay)

    # Spread out retries from concurrent callers
    if jitter:
        delay += random.uniform(0, 1)

    return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Run an async operation under a retry policy.

    Non-retryable exceptions propagate immediately, as do retryable types
    for which ``should_retry`` returns False. When the budget is spent
    the last exception is re-raised unchanged so callers can map it.
    """
    last_exception: Exception | None = None

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except retryable_exceptions as e:
            last_exception = e

            if should_retry is not None and not should_retry(e):
                raise

            if attempt >= policy.max_attempts - 1:
                logger.error(
                    f"{operation_name} failed after {policy.max_attempts} attempts. "
                    f"Last error: {type(e).__name__}: {e}"
                )
                raise

            delay = calculate_backoff(
                attempt, policy.backoff_base, policy.backoff_max, policy.jitter
            )

            if on_retry:
                on_retry(e, attempt)

            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{policy.max_attempts} failed: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s"
            )

            await asyncio.sleep(delay)

    if last_exception:
        raise last_exception
    raise RuntimeError(f"Unexpected state in retry for {operation_name}")


def retry(
    max_attempts: int = 3,
    backoff_base: float = 1.0,
    backoff_max: float = 8.0,
    jitter: bool = True,
    retryable_exceptions: Optional[set[type[Exception]]] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Callable:
    """Decorator form of retry_async for coroutine functions.

    Args:
        max_attempts: Maximum number of attempts (including first try)
        backoff_base: Base delay in seconds for backoff calculation
        backoff_max: Maximum delay cap in seconds
        jitter: Whether to add random jitter
        retryable_exceptions: Set of exception types to retry (None = all)
        on_retry: Optional callback called before each retry with (exception, attempt)
    """
    policy = RetryPolicy(
        max_attempts=max_attempts,
        backoff_base=backoff_base,
        backoff_max=backoff_max,
        jitter=jitter,
    )
    retryable = tuple(retryable_exceptions) if retryable_exceptions else (Exception,)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(
                lambda: func(*args, **kwargs),
                policy=policy,
                retryable_exceptions=retryable,
                operation_name=func.__name__,
                on_retry=on_retry,
            )

        return wrapper

    return decorator
