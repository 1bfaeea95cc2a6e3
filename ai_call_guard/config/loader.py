"""
Configuration management and loading.

Handles the YAML guard configuration and environment settings.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_call_guard.core.budget import BudgetConfig
from ai_call_guard.core.cache import CACHE_PRESETS, CacheConfig, EvictionStrategy
from ai_call_guard.core.retry import RETRY_PRESETS

SUMMARY_SERVICE = "summary"
SENTIMENT_SERVICE = "sentiment"
CLUSTER_SERVICE = "keyword-cluster"
TREND_SERVICE = "trend-analysis"
SEO_TITLE_SERVICE = "seo-title"
META_DESCRIPTION_SERVICE = "meta-description"

SERVICES = (
    SUMMARY_SERVICE,
    SENTIMENT_SERVICE,
    CLUSTER_SERVICE,
    TREND_SERVICE,
    SEO_TITLE_SERVICE,
    META_DESCRIPTION_SERVICE,
)

DEFAULT_CACHE_CONFIGS: Dict[str, CacheConfig] = {
    SUMMARY_SERVICE: CACHE_PRESETS["standard"],
    SENTIMENT_SERVICE: CacheConfig(ttl_seconds=21600, max_entries=500, strategy=EvictionStrategy.LRU),
    CLUSTER_SERVICE: CacheConfig(ttl_seconds=3600, max_entries=200, strategy=EvictionStrategy.LRU),
    TREND_SERVICE: CacheConfig(ttl_seconds=3600, max_entries=100, strategy=EvictionStrategy.LRU),
    SEO_TITLE_SERVICE: CACHE_PRESETS["standard"],
    META_DESCRIPTION_SERVICE: CACHE_PRESETS["standard"],
}

# Trend analysis answers inside a tight HTTP deadline
DEFAULT_RETRY_PRESETS: Dict[str, str] = {
    SUMMARY_SERVICE: "standard",
    SENTIMENT_SERVICE: "standard",
    CLUSTER_SERVICE: "standard",
    TREND_SERVICE: "tight",
    SEO_TITLE_SERVICE: "standard",
    META_DESCRIPTION_SERVICE: "standard",
}


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker settings shared by every service."""
    threshold: int = 5
    timeout: float = 60.0  # Cooldown in seconds

    def __post_init__(self):
        """Validate breaker values."""
        if self.threshold < 1:
            raise ValueError("threshold must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")


@dataclass(frozen=True)
class GuardConfig:
    """Complete guard configuration."""
    budget: BudgetConfig
    caches: Dict[str, CacheConfig] = field(default_factory=lambda: dict(DEFAULT_CACHE_CONFIGS))
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry_presets: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RETRY_PRESETS))

    def get_cache_config(self, service: str) -> CacheConfig:
        """Get cache configuration for a service, the standard preset if not specified."""
        return self.caches.get(service, CACHE_PRESETS["standard"])

    def get_retry_preset(self, service: str) -> str:
        return self.retry_presets.get(service, "standard")


@dataclass(frozen=True)
class Settings:
    """LLM client settings loaded from environment variables."""
    api_key: str = ""
    base_url: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-chat"
    timeout: float = 12.0  # Keeps a full call inside the HTTP layer's deadline

    @classmethod
    def from_env(cls) -> "Settings":
        """Read DEEPSEEK_* variables, falling back to defaults."""
        return cls(
            api_key=os.getenv("DEEPSEEK_API_KEY", ""),
            base_url=os.getenv("DEEPSEEK_BASE_URL", cls.base_url),
            model=os.getenv("DEEPSEEK_MODEL", cls.model),
            timeout=float(os.getenv("DEEPSEEK_TIMEOUT", str(cls.timeout)))
        )


def default_guard_config() -> GuardConfig:
    """Built-in configuration: $10/day, $100/month, warn at 80%."""
    return GuardConfig(budget=BudgetConfig(daily=10.0, monthly=100.0, warning_threshold=0.8))


def load_guard_config(path: str) -> GuardConfig:
    """Load and validate guard configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected cost overruns.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Guard config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'budget', 'cache', 'circuit_breaker', 'retry'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'budget' not in raw_config:
        raise ValueError("Missing required 'budget' section")
    budget = _parse_budget(raw_config['budget'])

    caches = dict(DEFAULT_CACHE_CONFIGS)
    cache_data = raw_config.get('cache', {}) or {}
    if not isinstance(cache_data, dict):
        raise ValueError("'cache' must be a dictionary")
    for service_name, service_data in cache_data.items():
        caches[service_name] = _parse_cache_config(service_data, f"cache.{service_name}")

    breaker = CircuitBreakerConfig()
    breaker_data = raw_config.get('circuit_breaker')
    if breaker_data is not None:
        breaker = _parse_breaker(breaker_data)

    retry_presets = dict(DEFAULT_RETRY_PRESETS)
    retry_data = raw_config.get('retry', {}) or {}
    if not isinstance(retry_data, dict):
        raise ValueError("'retry' must be a dictionary")
    for service_name, preset in retry_data.items():
        if preset not in RETRY_PRESETS:
            raise ValueError(f"'retry.{service_name}' must be one of: {sorted(RETRY_PRESETS)}")
        retry_presets[service_name] = preset

    return GuardConfig(
        budget=budget,
        caches=caches,
        circuit_breaker=breaker,
        retry_presets=retry_presets
    )


def _require_number(data: Dict[str, Any], key: str, path: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _check_keys(data: Any, allowed: set, required: set, path: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    for key in sorted(required):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
    return data


def _parse_budget(data: Any) -> BudgetConfig:
    data = _check_keys(data, {'daily', 'monthly', 'warning_threshold'}, {'daily', 'monthly'}, "budget")
    threshold: Optional[float] = None
    if 'warning_threshold' in data:
        threshold = _require_number(data, 'warning_threshold', "budget")

    return BudgetConfig(
        daily=_require_number(data, 'daily', "budget"),
        monthly=_require_number(data, 'monthly', "budget"),
        warning_threshold=threshold if threshold is not None else 0.8
    )


def _parse_cache_config(data: Any, path: str) -> CacheConfig:
    """Parse and validate one service's cache configuration.

    Raises:
        ValueError: If configuration is invalid
    """
    data = _check_keys(data, {'ttl', 'max_size', 'strategy'}, {'ttl', 'max_size'}, path)

    max_size = data['max_size']
    if isinstance(max_size, bool) or not isinstance(max_size, int):
        raise ValueError(f"'max_size' in {path} must be an integer")

    strategy_str = data.get('strategy', 'lru')
    if not isinstance(strategy_str, str):
        raise ValueError(f"'strategy' in {path} must be a string")
    try:
        strategy = EvictionStrategy(strategy_str.lower())
    except ValueError:
        valid = [s.value for s in EvictionStrategy]
        raise ValueError(f"'strategy' in {path} must be one of: {valid}")

    return CacheConfig(
        ttl_seconds=_require_number(data, 'ttl', path),
        max_entries=max_size,
        strategy=strategy
    )


def _parse_breaker(data: Any) -> CircuitBreakerConfig:
    data = _check_keys(data, {'threshold', 'timeout'}, set(), "circuit_breaker")
    defaults = CircuitBreakerConfig()

    threshold = data.get('threshold', defaults.threshold)
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValueError("'threshold' in circuit_breaker must be an integer")

    timeout = defaults.timeout
    if 'timeout' in data:
        timeout = _require_number(data, 'timeout', "circuit_breaker")

    return CircuitBreakerConfig(threshold=threshold, timeout=timeout)
