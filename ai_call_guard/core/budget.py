"""
Budget limits and threshold checks.

Compares today's and this month's accumulated AI cost against configured
limits and a warning fraction.

Verdict Order:
1. FAIL - Daily or monthly limit reached
2. WARN - Daily or monthly usage at or above the warning fraction
3. PASS - Everything below the warning fraction
"""

from dataclasses import dataclass
from enum import Enum

from .cost_tracker import CostTracker


class BudgetVerdict(Enum):
    """Overall budget state, in order of severity."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class BudgetConfig:
    """Budget limits for AI spend."""
    daily: float
    monthly: float
    warning_threshold: float = 0.8  # Fraction of a limit that triggers a warning

    def __post_init__(self):
        """Validate budget values."""
        if self.daily <= 0:
            raise ValueError("daily budget must be > 0")
        if self.monthly <= 0:
            raise ValueError("monthly budget must be > 0")
        if not 0 < self.warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")


@dataclass(frozen=True)
class BudgetStatus:
    """Result of a budget check."""
    daily_exceeded: bool
    monthly_exceeded: bool
    daily_warning: bool
    monthly_warning: bool
    daily_usage: float
    monthly_usage: float

    @property
    def verdict(self) -> BudgetVerdict:
        if self.daily_exceeded or self.monthly_exceeded:
            return BudgetVerdict.FAIL
        if self.daily_warning or self.monthly_warning:
            return BudgetVerdict.WARN
        return BudgetVerdict.PASS

    def to_dict(self) -> dict:
        return {
            "daily_exceeded": self.daily_exceeded,
            "monthly_exceeded": self.monthly_exceeded,
            "daily_warning": self.daily_warning,
            "monthly_warning": self.monthly_warning,
            "daily_usage": self.daily_usage,
            "monthly_usage": self.monthly_usage,
        }


def check_budget(tracker: CostTracker, config: BudgetConfig) -> BudgetStatus:
    """Compare accumulated cost against the budget.

    Limits are reached at equality. Read-only; nothing is blocked here.

    Args:
        tracker: Ledger to read today's and this month's cost from
        config: Daily and monthly limits and the warning fraction

    Returns:
        BudgetStatus with exceeded and warning flags for both windows
    """
    daily_usage = tracker.get_daily_stats().cost
    monthly_usage = tracker.get_monthly_stats().total_cost

    return BudgetStatus(
        daily_exceeded=daily_usage >= config.daily,
        monthly_exceeded=monthly_usage >= config.monthly,
        daily_warning=daily_usage >= config.daily * config.warning_threshold,
        monthly_warning=monthly_usage >= config.monthly * config.warning_threshold,
        daily_usage=daily_usage,
        monthly_usage=monthly_usage
    )
