"""
Idempotent retry executor with exponential backoff.

Wraps any fallible async operation, retrying only errors the caller marks
as retryable. Markers are either exception classes (matched by isinstance)
or strings matched case-insensitively against the error message and the
error class name, so network conditions such as ``ETIMEDOUT`` or
``timeout`` are recognized regardless of which client raised them.

Non-retryable errors are re-raised after the first failed invocation.
"""

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

from marketplace.core.config import get_settings
from marketplace.core.errors import TransientProviderError
from marketplace.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RetryMarker = Union[str, type[BaseException]]
OnRetry = Callable[[int, Exception], Any]

DEFAULT_RETRYABLE_ERRORS: tuple[RetryMarker, ...] = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "ECONNREFUSED",
    "EAI_AGAIN",
    "timeout",
    "network",
    TransientProviderError,
)


@dataclass
class RetryConfig:
    """
    Retry policy for a single wrapped operation.

    Attributes:
        max_attempts: Total invocations allowed, including the first
        initial_delay: Seconds to wait before the first retry
        max_delay: Upper bound in seconds for any single wait
        backoff_multiplier: Growth factor applied per attempt
        retryable_errors: Markers deciding which errors are retried; an
            empty sequence retries every error
        on_retry: Observer called with (attempt, error) before each wait
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_errors: Sequence[RetryMarker] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_ERRORS
    )
    on_retry: Optional[OnRetry] = None

    @classmethod
    def from_settings(cls, **overrides: Any) -> "RetryConfig":
        """Build a config seeded from application settings."""
        settings = get_settings()
        values: dict[str, Any] = {
            "max_attempts": settings.retry_max_attempts,
            "initial_delay": settings.retry_initial_delay,
            "max_delay": settings.retry_max_delay,
            "backoff_multiplier": settings.retry_backoff_multiplier,
        }
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt: int) -> float:
        """
        Calculate the wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Backoff delay in seconds
        """
        return min(
            self.initial_delay * (self.backoff_multiplier ** (attempt - 1)),
            self.max_delay,
        )


def is_retryable(error: BaseException, markers: Sequence[RetryMarker]) -> bool:
    """
    Decide whether an error matches any retry marker.

    Args:
        error: The raised exception
        markers: Exception classes or case-insensitive string fragments

    Returns:
        True if the error should be retried
    """
    if not markers:
        return True

    message = str(error).lower()
    name = type(error).__name__.lower()

    for marker in markers:
        if isinstance(marker, str):
            needle = marker.lower()
            if needle in message or needle in name:
                return True
        elif isinstance(error, marker):
            return True
    return False


async def _notify(on_retry: Optional[OnRetry], attempt: int, error: Exception) -> None:
    if on_retry is None:
        return
    try:
        result = on_retry(attempt, error)
        if asyncio.iscoroutine(result):
            await result
    except Exception as observer_error:
        logger.warning(
            "Retry observer raised, ignoring",
            attempt=attempt,
            error=str(observer_error),
            error_type=type(observer_error).__name__,
        )


async def retry_with_condition(
    fn: Callable[[], Awaitable[T]],
    should_retry: Callable[[Exception], bool],
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Execute an async operation, retrying while a predicate approves.

    Args:
        fn: Zero-argument coroutine factory, invoked once per attempt
        should_retry: Predicate deciding if a raised error is retried
        config: Retry policy; defaults to RetryConfig()

    Returns:
        The value returned by the first successful invocation

    Raises:
        Exception: The first non-retryable error, or the last error once
            attempts are exhausted
    """
    config = config or RetryConfig()
    attempt = 1

    while True:
        try:
            result = await fn()
            if attempt > 1:
                logger.info("Operation succeeded after retry", attempt=attempt)
            return result
        except Exception as e:
            if attempt >= config.max_attempts or not should_retry(e):
                logger.debug(
                    "Operation failed without retry",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    error_type=type(e).__name__,
                )
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                "Operation failed, retrying",
                attempt=attempt,
                max_attempts=config.max_attempts,
                backoff_seconds=delay,
                error=str(e),
                error_type=type(e).__name__,
            )
            await _notify(config.on_retry, attempt, e)
            await asyncio.sleep(delay)
            attempt += 1


async def retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Execute an async operation with exponential backoff.

    Only errors matching ``config.retryable_errors`` are retried.

    Example:
        >>> refund = await retry(
        ...     lambda: client.create_refund(intent_id, amount),
        ...     RetryConfig(max_attempts=3),
        ... )
    """
    config = config or RetryConfig()
    markers = tuple(config.retryable_errors)
    return await retry_with_condition(
        fn, lambda error: is_retryable(error, markers), config
    )


def with_retry(config: Optional[RetryConfig] = None):
    """
    Decorate an async function so every call goes through ``retry``.

    Args:
        config: Retry policy shared by all calls
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry(lambda: func(*args, **kwargs), config)

        return wrapper

    return decorator
