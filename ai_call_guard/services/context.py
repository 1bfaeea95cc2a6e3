"""
Shared state for the guarded AI services.

One AIContext is built per process (or per test) and passed to every
service function, instead of module-level singletons.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config.loader import GuardConfig, default_guard_config, load_guard_config
from ..core.budget import BudgetStatus, check_budget
from ..core.cache import CacheManager, CacheRegistry
from ..core.cost_tracker import CostTracker
from ..core.fallback import CircuitBreaker
from ..core.retry import RETRY_PRESETS, RetryOptions
from ..sdk.deepseek_client import ChatCompletionClient, DeepSeekClient

logger = logging.getLogger(__name__)


class AIContext:
    """Client, caches, ledger and circuit breakers shared by service calls."""

    def __init__(
        self,
        client: ChatCompletionClient,
        config: Optional[GuardConfig] = None,
        caches: Optional[CacheRegistry] = None,
        tracker: Optional[CostTracker] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize the context.

        Args:
            client: Chat-completion collaborator
            config: Guard configuration, built-in defaults when omitted
            caches: Cache registry, a fresh one when omitted
            tracker: Usage ledger, a fresh one when omitted
            clock: Time source for caches and breakers, in seconds
            sleep: Awaitable sleep used between retries
        """
        self.client = client
        self.config = config or default_guard_config()
        self.caches = caches or CacheRegistry(clock=clock)
        self.tracker = tracker or CostTracker()
        self.sleep = sleep
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, config_path: Optional[str] = None) -> "AIContext":
        """Context with a DeepSeek client configured from the environment."""
        config = load_guard_config(config_path) if config_path else default_guard_config()
        return cls(client=DeepSeekClient(), config=config)

    def cache_for(self, service: str) -> CacheManager[Any]:
        return self.caches.get(service, self.config.get_cache_config(service))

    def breaker_for(self, service: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a service."""
        with self._lock:
            if service not in self._breakers:
                breaker_config = self.config.circuit_breaker
                self._breakers[service] = CircuitBreaker(
                    threshold=breaker_config.threshold,
                    timeout=breaker_config.timeout,
                    name=service,
                    clock=self._clock
                )
            return self._breakers[service]

    def retry_options_for(self, service: str) -> RetryOptions:
        return RETRY_PRESETS[self.config.get_retry_preset(service)]

    def check_budget(self) -> BudgetStatus:
        return check_budget(self.tracker, self.config.budget)

    def reset(self) -> None:
        """Clear every cache, the usage ledger and breaker state."""
        self.caches.clear_all()
        self.tracker.clear()
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()
        logger.info("AI statistics reset")

    def cleanup(self) -> int:
        """Sweep expired cache entries only.

        Returns:
            Number of entries removed
        """
        removed = self.caches.cleanup_all()
        logger.info("Cleaned up %d expired cache entries", removed)
        return removed

    def snapshot(self, recent: int = 10) -> Dict[str, Any]:
        """Usage, cache, budget and breaker state for a stats endpoint."""
        usage = self.tracker.get_stats()
        return {
            "usage": {
                "total_calls": usage.total_calls,
                "successful_calls": usage.successful_calls,
                "failed_calls": usage.failed_calls,
                "cached_calls": usage.cached_calls,
                "total_tokens": usage.total_tokens,
                "total_cost": usage.total_cost,
                "average_tokens_per_call": usage.average_tokens_per_call,
                "cache_hit_rate": usage.cache_hit_rate,
            },
            "cache": {name: stats.to_dict() for name, stats in self.caches.stats_all().items()},
            "recent_records": [r.to_dict() for r in self.tracker.get_recent_records(recent)],
            "budget": self.check_budget().to_dict(),
            "circuit_breakers": {name: b.status().to_dict() for name, b in list(self._breakers.items())},
        }
