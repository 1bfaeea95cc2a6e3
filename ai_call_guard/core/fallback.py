"""
Fallback and circuit-breaker middleware.

Wraps an AI operation with a deterministic rule-based alternative. The
circuit breaker stops calling a failing upstream for a cooldown window.
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from .errors import AIError, classify_error, should_fallback as default_should_fallback

logger = logging.getLogger(__name__)

T = TypeVar("T")

FallbackFn = Callable[[], Union[T, Awaitable[T]]]


@dataclass(frozen=True)
class FallbackResult(Generic[T]):
    """Result of a guarded call and which path produced it."""
    data: T
    used_fallback: bool
    error: Optional[AIError] = None
    circuit_open: bool = False


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def with_fallback(
    ai_fn: Callable[[], Awaitable[T]],
    fallback_fn: FallbackFn,
    should_fallback: Optional[Callable[[AIError], bool]] = None,
    on_fallback: Optional[Callable[[AIError], None]] = None
) -> FallbackResult[T]:
    """Call ``ai_fn``, substituting ``fallback_fn`` on eligible failures.

    Args:
        ai_fn: Coroutine function for the AI path
        fallback_fn: Sync or async rule-based alternative
        should_fallback: Predicate on the classified error; the default
            accepts timeouts, rate limits, network and parse errors
        on_fallback: Called with the classified error before falling back

    Returns:
        FallbackResult; ``error`` holds the classified error when the
        fallback served the request

    Raises:
        The original error, unchanged, when fallback is not indicated
    """
    try:
        data = await ai_fn()
    except Exception as exc:
        ai_error = classify_error(exc)
        predicate = should_fallback or default_should_fallback
        if not predicate(ai_error):
            raise

        if on_fallback is not None:
            on_fallback(ai_error)
        logger.warning("AI call failed (%s), using fallback: %s", ai_error.kind.value, ai_error.message)

        fallback_data = await _resolve(fallback_fn())
        return FallbackResult(data=fallback_data, used_fallback=True, error=ai_error)

    return FallbackResult(data=data, used_fallback=False)


def create_fallback_wrapper(
    ai_fn: Callable[..., Awaitable[T]],
    fallback_fn: Callable[..., Union[T, Awaitable[T]]],
    should_fallback: Optional[Callable[[AIError], bool]] = None,
    on_fallback: Optional[Callable[[AIError], None]] = None
) -> Callable[..., Awaitable[FallbackResult[T]]]:
    """Bind an AI function and its fallback into one function of the same arguments."""
    async def wrapper(*args: Any, **kwargs: Any) -> FallbackResult[T]:
        return await with_fallback(
            lambda: ai_fn(*args, **kwargs),
            lambda: fallback_fn(*args, **kwargs),
            should_fallback=should_fallback,
            on_fallback=on_fallback
        )
    return wrapper


async def retry_with_fallback(
    ai_fn: Callable[[], Awaitable[T]],
    fallback_fn: FallbackFn,
    max_attempts: int,
    delay: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> FallbackResult[T]:
    """Retry with a fixed delay, then fall back unconditionally."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            data = await ai_fn()
        except Exception as exc:
            last_error = exc
            if attempt < max_attempts:
                logger.warning("Attempt %d/%d failed, retrying", attempt, max_attempts)
                await sleep(delay)
            continue
        return FallbackResult(data=data, used_fallback=False)

    logger.warning("All %d attempts failed, using fallback", max_attempts)
    fallback_data = await _resolve(fallback_fn())
    return FallbackResult(data=fallback_data, used_fallback=True, error=classify_error(last_error))


@dataclass(frozen=True)
class CircuitStatus:
    """Snapshot of a circuit breaker."""
    is_open: bool
    half_open: bool
    consecutive_failures: int
    last_failure_at: Optional[float]

    def to_dict(self) -> dict:
        return {
            "is_open": self.is_open,
            "half_open": self.half_open,
            "consecutive_failures": self.consecutive_failures,
            "last_failure_at": self.last_failure_at,
        }


class CircuitBreaker:
    """Skips the AI path after repeated consecutive failures.

    Closed: calls go to the AI function; a success resets the failure
    count, a failure increments it and opens the circuit at ``threshold``.
    Open: calls go straight to the fallback until ``timeout`` seconds have
    passed since the last failure. Half-open: the next call tries the AI
    function once; success closes the circuit, failure reopens it at once.
    """

    def __init__(
        self,
        threshold: int = 5,
        timeout: float = 60.0,
        name: str = "default",
        clock: Callable[[], float] = time.time
    ):
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.threshold = threshold
        self.timeout = timeout
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self.consecutive_failures = 0
        self.last_failure_at: Optional[float] = None
        self.is_open = False
        self.half_open = False

    def _allow_request(self) -> bool:
        with self._lock:
            if not self.is_open:
                return True
            elapsed = self._clock() - (self.last_failure_at or 0.0)
            if elapsed > self.timeout:
                logger.info("Circuit %s cooldown elapsed, trying AI path", self.name)
                self.is_open = False
                self.half_open = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self.half_open:
                logger.info("Circuit %s closed", self.name)
            self.consecutive_failures = 0
            self.half_open = False

    def record_failure(self) -> None:
        with self._lock:
            self.consecutive_failures += 1
            self.last_failure_at = self._clock()
            if self.half_open or self.consecutive_failures >= self.threshold:
                self.is_open = True
                self.half_open = False
                logger.error(
                    "Circuit %s opened after %d consecutive failures",
                    self.name, self.consecutive_failures
                )

    async def execute(
        self,
        ai_fn: Callable[[], Awaitable[T]],
        fallback_fn: FallbackFn,
        should_fallback: Optional[Callable[[AIError], bool]] = None
    ) -> FallbackResult[T]:
        """Run ``ai_fn`` through the breaker.

        Every AI failure counts toward the threshold. Without a predicate
        every failure is answered by the fallback; with one, errors the
        predicate rejects propagate unchanged.
        """
        if not self._allow_request():
            logger.warning("Circuit %s is open, using fallback", self.name)
            data = await _resolve(fallback_fn())
            return FallbackResult(data=data, used_fallback=True, circuit_open=True)

        try:
            data = await ai_fn()
        except Exception as exc:
            self.record_failure()
            ai_error = classify_error(exc)
            if should_fallback is not None and not should_fallback(ai_error):
                raise
            logger.warning("Circuit %s: AI call failed (%s), using fallback", self.name, ai_error.kind.value)
            fallback_data = await _resolve(fallback_fn())
            return FallbackResult(data=fallback_data, used_fallback=True, error=ai_error)

        self.record_success()
        return FallbackResult(data=data, used_fallback=False)

    def status(self) -> CircuitStatus:
        with self._lock:
            return CircuitStatus(
                is_open=self.is_open,
                half_open=self.half_open,
                consecutive_failures=self.consecutive_failures,
                last_failure_at=self.last_failure_at
            )

    def reset(self) -> None:
        with self._lock:
            self.is_open = False
            self.half_open = False
            self.consecutive_failures = 0
            self.last_failure_at = None
