"""
Retry handling for AI calls.

Runs an async operation under a per-attempt deadline and retries failures
with linear or exponential backoff.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 1.0  # seconds

RETRYABLE_MARKERS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "enetunreach",
    "request timeout",
    "rate_limit_exceeded",
    "server_error",
    "service_unavailable",
)


class BackoffStrategy(Enum):
    """Delay growth between attempts."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class AttemptTimeoutError(TimeoutError):
    """Raised when a single attempt exceeds its deadline."""


@dataclass(frozen=True)
class RetryOptions:
    """How many times to try and how long to wait."""
    max_attempts: int
    backoff: BackoffStrategy
    timeout: float  # Per-attempt deadline in seconds
    base_delay: float = DEFAULT_BASE_DELAY
    on_retry: Optional[Callable[[int, Exception], None]] = None
    retry_if: Optional[Callable[[Exception], bool]] = None

    def __post_init__(self):
        """Validate retry bounds."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def with_overrides(self, **changes) -> "RetryOptions":
        return replace(self, **changes)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of ``with_retry_detailed``."""
    success: bool
    attempts: int
    total_time: float
    data: Optional[T] = None
    error: Optional[Exception] = None


RETRY_PRESETS: Dict[str, RetryOptions] = {
    # Quick operations
    "fast": RetryOptions(max_attempts=2, backoff=BackoffStrategy.LINEAR, timeout=5.0),
    # Most AI calls
    "standard": RetryOptions(max_attempts=3, backoff=BackoffStrategy.EXPONENTIAL, timeout=30.0),
    # Critical operations
    "aggressive": RetryOptions(max_attempts=5, backoff=BackoffStrategy.EXPONENTIAL, timeout=60.0),
    # Single short attempt for callers with a tight end-to-end deadline
    "tight": RetryOptions(max_attempts=1, backoff=BackoffStrategy.LINEAR, timeout=6.0),
}


def calculate_backoff(attempt: int, strategy: BackoffStrategy, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay in seconds after the given failed attempt (1-based).

    Linear: base * attempt. Exponential: base * 2 ** (attempt - 1).
    """
    if strategy == BackoffStrategy.LINEAR:
        return base_delay * attempt
    return base_delay * (2 ** (attempt - 1))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """Execute an operation with retries.

    Each attempt is cancelled if it runs past ``options.timeout``. There is
    no delay after the final attempt.

    Args:
        operation: Coroutine function to call on each attempt
        options: Attempt budget, backoff and per-attempt timeout
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result from the first successful attempt

    Raises:
        The last attempt's error once attempts are exhausted, or the first
        error rejected by ``options.retry_if``.
    """
    for attempt in range(1, options.max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=options.timeout)
        except asyncio.TimeoutError:
            error: Exception = AttemptTimeoutError(f"Request timeout after {options.timeout}s")
        except Exception as exc:
            error = exc

        if options.on_retry is not None:
            options.on_retry(attempt, error)

        if attempt == options.max_attempts:
            raise error

        if options.retry_if is not None and not options.retry_if(error):
            logger.info("Attempt %d failed with a non-retryable error: %s", attempt, error)
            raise error

        delay = calculate_backoff(attempt, options.backoff, options.base_delay)
        logger.warning(
            "Attempt %d/%d failed (%s). Retrying in %.2fs",
            attempt, options.max_attempts, error, delay
        )
        await sleep(delay)

    raise RuntimeError("unreachable: retry loop exited without result")


async def with_retry_detailed(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> RetryResult[T]:
    """Like ``with_retry`` but reports the outcome instead of raising."""
    start = time.monotonic()
    attempts = 0

    def _count(attempt: int, error: Exception) -> None:
        nonlocal attempts
        attempts = attempt
        if options.on_retry is not None:
            options.on_retry(attempt, error)

    try:
        data = await with_retry(operation, options.with_overrides(on_retry=_count), sleep=sleep)
    except Exception as exc:
        return RetryResult(
            success=False,
            attempts=attempts,
            total_time=time.monotonic() - start,
            error=exc
        )

    return RetryResult(
        success=True,
        attempts=attempts + 1,
        total_time=time.monotonic() - start,
        data=data
    )


def is_retryable_error(error: BaseException) -> bool:
    """Whether an error message looks like a transient transport failure."""
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)
