"""
Unit tests for fallback handling and the circuit breaker.
"""

import asyncio

import pytest

from ai_call_guard.core.errors import AIErrorKind
from ai_call_guard.core.fallback import (
    CircuitBreaker,
    create_fallback_wrapper,
    retry_with_fallback,
    with_fallback
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def no_sleep(seconds: float) -> None:
    return None


def raising(message: str):
    async def fn():
        raise Exception(message)
    return fn


async def succeed():
    return "ai"


def fallback():
    return "rule-based"


class TestWithFallback:
    """Test single-shot fallback."""

    def test_success_uses_ai_result(self):
        result = asyncio.run(with_fallback(succeed, fallback))
        assert result.data == "ai"
        assert result.used_fallback is False
        assert result.error is None

    def test_rate_limit_falls_back(self):
        result = asyncio.run(with_fallback(raising("Rate limit exceeded"), fallback))
        assert result.data == "rule-based"
        assert result.used_fallback is True
        assert result.error.kind == AIErrorKind.RATE_LIMITED

    def test_auth_error_propagates_unchanged(self):
        original = Exception("Invalid API key")

        async def fail():
            raise original

        with pytest.raises(Exception) as exc_info:
            asyncio.run(with_fallback(fail, fallback))
        assert exc_info.value is original

    def test_quota_error_propagates(self):
        with pytest.raises(Exception, match="quota"):
            asyncio.run(with_fallback(raising("quota exhausted"), fallback))

    def test_async_fallback(self):
        async def async_fallback():
            return "async rule-based"

        result = asyncio.run(with_fallback(raising("timed out"), async_fallback))
        assert result.data == "async rule-based"

    def test_custom_predicate_and_hook(self):
        seen = []
        result = asyncio.run(with_fallback(
            raising("boom"),
            fallback,
            should_fallback=lambda error: True,
            on_fallback=seen.append
        ))
        assert result.used_fallback is True
        assert seen[0].kind == AIErrorKind.UNKNOWN

    def test_wrapper_passes_arguments(self):
        async def ai(x):
            raise Exception(f"network failure for {x}")

        wrapped = create_fallback_wrapper(ai, lambda x: f"fallback {x}")
        result = asyncio.run(wrapped(7))
        assert result.data == "fallback 7"


class TestRetryWithFallback:
    """Test fixed-delay retry before an unconditional fallback."""

    def test_falls_back_after_attempts(self):
        calls = []

        async def fail():
            calls.append(1)
            raise Exception("Invalid API key")

        result = asyncio.run(retry_with_fallback(fail, fallback, max_attempts=3, delay=0.5, sleep=no_sleep))
        assert len(calls) == 3
        assert result.used_fallback is True
        assert result.error.kind == AIErrorKind.AUTH_INVALID

    def test_success_on_retry(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise Exception("timeout")
            return "ai"

        result = asyncio.run(retry_with_fallback(flaky, fallback, max_attempts=3, delay=0.5, sleep=no_sleep))
        assert result.data == "ai"
        assert result.used_fallback is False


class TestCircuitBreaker:
    """Test breaker state transitions."""

    def fail_times(self, breaker: CircuitBreaker, count: int, message: str = "network error"):
        for _ in range(count):
            asyncio.run(breaker.execute(raising(message), fallback))

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(threshold=5, timeout=60, clock=FakeClock())
        self.fail_times(breaker, 4)
        assert breaker.status().is_open is False

        self.fail_times(breaker, 1)
        status = breaker.status()
        assert status.is_open is True
        assert status.consecutive_failures == 5

    def test_open_circuit_skips_ai(self):
        breaker = CircuitBreaker(threshold=5, timeout=60, clock=FakeClock())
        self.fail_times(breaker, 5)

        calls = []

        async def ai():
            calls.append(1)
            return "ai"

        result = asyncio.run(breaker.execute(ai, fallback))
        assert calls == []
        assert result.data == "rule-based"
        assert result.circuit_open is True
        assert result.error is None

    def test_recovers_after_cooldown(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=5, timeout=60, clock=clock)
        self.fail_times(breaker, 5)

        clock.now = 61
        result = asyncio.run(breaker.execute(succeed, fallback))
        assert result.data == "ai"

        status = breaker.status()
        assert status.is_open is False
        assert status.half_open is False
        assert status.consecutive_failures == 0

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=5, timeout=60, clock=clock)
        self.fail_times(breaker, 5)

        clock.now = 61
        self.fail_times(breaker, 1)
        assert breaker.status().is_open is True

        # Cooldown restarts from the failed trial
        clock.now = 100
        result = asyncio.run(breaker.execute(succeed, fallback))
        assert result.circuit_open is True

    def test_success_resets_count(self):
        breaker = CircuitBreaker(threshold=5, timeout=60, clock=FakeClock())
        self.fail_times(breaker, 4)
        asyncio.run(breaker.execute(succeed, fallback))
        self.fail_times(breaker, 4)
        assert breaker.status().is_open is False

    def test_rejected_error_propagates_but_counts(self):
        breaker = CircuitBreaker(threshold=2, timeout=60, clock=FakeClock())

        with pytest.raises(Exception, match="Invalid API key"):
            asyncio.run(breaker.execute(
                raising("Invalid API key"),
                fallback,
                should_fallback=lambda error: error.kind != AIErrorKind.AUTH_INVALID
            ))
        assert breaker.status().consecutive_failures == 1

    def test_reset(self):
        breaker = CircuitBreaker(threshold=1, timeout=60, clock=FakeClock())
        self.fail_times(breaker, 1)
        breaker.reset()
        assert breaker.status().to_dict() == {
            "is_open": False,
            "half_open": False,
            "consecutive_failures": 0,
            "last_failure_at": None,
        }

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="threshold must be >= 1"):
            CircuitBreaker(threshold=0)
