"""
Usage ledger for AI calls.

Append-only, bounded record of every AI invocation with its token usage
and cost, plus aggregation by time window, service and user.
"""

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, TypeVar

from .pricing import DEEPSEEK_PRICING, CostCalculation, ModelPricing, calculate_cost
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RECORDS = 10_000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageRecord:
    """Immutable ledger entry for one AI invocation.

    Once appended, records are never modified; the oldest are dropped when
    the ledger is full.
    """
    timestamp: datetime
    service: str
    operation: str
    tokens: TokenUsage
    cost: CostCalculation
    success: bool = True
    cache_hit: bool = False
    user_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "operation": self.operation,
            "tokens": self.tokens.to_dict(),
            "cost": self.cost.to_dict(),
            "user_id": self.user_id,
            "success": self.success,
            "cache_hit": self.cache_hit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        """Rebuild a record from ``to_dict`` output.

        Raises:
            KeyError, TypeError, ValueError: If the data is malformed
        """
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        tokens = data["tokens"]
        cost = data["cost"]
        return cls(
            timestamp=timestamp,
            service=str(data["service"]),
            operation=str(data["operation"]),
            tokens=TokenUsage(
                prompt_tokens=int(tokens["prompt_tokens"]),
                completion_tokens=int(tokens["completion_tokens"]),
                total_tokens=int(tokens["total_tokens"])
            ),
            cost=CostCalculation(
                prompt_cost=float(cost["prompt_cost"]),
                completion_cost=float(cost["completion_cost"]),
                total_cost=float(cost["total_cost"]),
                currency=cost.get("currency", "USD")
            ),
            success=bool(data.get("success", True)),
            cache_hit=bool(data.get("cache_hit", False)),
            user_id=data.get("user_id")
        )


@dataclass
class ServiceStats:
    """Totals for one service."""
    calls: int = 0
    tokens: int = 0
    cost: float = 0.0


@dataclass
class DailyStats:
    """Totals for one calendar day."""
    date: str
    calls: int = 0
    tokens: int = 0
    cost: float = 0.0


@dataclass
class UsageStats:
    """Aggregate over a filtered slice of the ledger."""
    total_calls: int
    successful_calls: int
    failed_calls: int
    cached_calls: int
    total_tokens: int
    total_cost: float
    average_tokens_per_call: float
    cache_hit_rate: float
    by_service: Dict[str, ServiceStats] = field(default_factory=dict)
    by_day: Dict[str, DailyStats] = field(default_factory=dict)


class CostTracker:
    """Bounded, append-only usage ledger.

    Statistics over long windows are approximate once the ledger wraps and
    the oldest records have been dropped.
    """

    def __init__(
        self,
        max_records: int = DEFAULT_MAX_RECORDS,
        pricing: ModelPricing = DEEPSEEK_PRICING,
        clock: Callable[[], datetime] = _utc_now,
        tz: Optional[tzinfo] = None
    ):
        """Initialize an empty ledger.

        Args:
            max_records: Ledger capacity; oldest records are dropped beyond it
            pricing: Rates used to price tracked usage
            clock: Returns the current timezone-aware time
            tz: Timezone for day and month boundaries, local time when None
        """
        if max_records <= 0:
            raise ValueError("max_records must be > 0")
        self.max_records = max_records
        self.pricing = pricing
        self._clock = clock
        self._tz = tz
        self._records: Deque[UsageRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def track_usage(
        self,
        service: str,
        operation: str,
        tokens: TokenUsage,
        user_id: Optional[str] = None,
        success: bool = True,
        cache_hit: bool = False
    ) -> UsageRecord:
        """Price a usage and append it to the ledger.

        Returns:
            The appended record
        """
        record = UsageRecord(
            timestamp=self._clock(),
            service=service,
            operation=operation,
            tokens=tokens,
            cost=calculate_cost(tokens, self.pricing),
            success=success,
            cache_hit=cache_hit,
            user_id=user_id
        )
        with self._lock:
            self._records.append(record)
        return record

    def _snapshot(self) -> List[UsageRecord]:
        with self._lock:
            return list(self._records)

    def get_stats(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        user_id: Optional[str] = None,
        service: Optional[str] = None
    ) -> UsageStats:
        """Aggregate records matching every given filter.

        Time bounds are inclusive. ``by_day`` groups by UTC date.
        """
        records = [
            r for r in self._snapshot()
            if (start_time is None or r.timestamp >= start_time)
            and (end_time is None or r.timestamp <= end_time)
            and (user_id is None or r.user_id == user_id)
            and (service is None or r.service == service)
        ]

        total_calls = len(records)
        successful_calls = sum(1 for r in records if r.success)
        cached_calls = sum(1 for r in records if r.cache_hit)
        total_tokens = sum(r.tokens.total_tokens for r in records)
        total_cost = sum(r.cost.total_cost for r in records)

        by_service: Dict[str, ServiceStats] = {}
        by_day: Dict[str, DailyStats] = {}
        for record in records:
            service_stats = by_service.setdefault(record.service, ServiceStats())
            service_stats.calls += 1
            service_stats.tokens += record.tokens.total_tokens
            service_stats.cost += record.cost.total_cost

            day = record.timestamp.astimezone(timezone.utc).date().isoformat()
            day_stats = by_day.setdefault(day, DailyStats(date=day))
            day_stats.calls += 1
            day_stats.tokens += record.tokens.total_tokens
            day_stats.cost += record.cost.total_cost

        for service_stats in by_service.values():
            service_stats.cost = round(service_stats.cost, 6)
        for day_stats in by_day.values():
            day_stats.cost = round(day_stats.cost, 6)

        return UsageStats(
            total_calls=total_calls,
            successful_calls=successful_calls,
            failed_calls=total_calls - successful_calls,
            cached_calls=cached_calls,
            total_tokens=total_tokens,
            total_cost=round(total_cost, 6),
            average_tokens_per_call=round(total_tokens / total_calls, 2) if total_calls else 0.0,
            cache_hit_rate=round(cached_calls / total_calls, 4) if total_calls else 0.0,
            by_service=by_service,
            by_day=by_day
        )

    def _now_local(self) -> datetime:
        return self._clock().astimezone(self._tz)

    def _midnight(self, day: date) -> datetime:
        if self._tz is None:
            return datetime.combine(day, time.min).astimezone()
        return datetime.combine(day, time.min, tzinfo=self._tz)

    def day_bounds(self, day: Optional[date] = None) -> Tuple[datetime, datetime]:
        """Start of the day and the last instant before the next midnight."""
        day = day or self._now_local().date()
        start = self._midnight(day)
        end = self._midnight(day + timedelta(days=1)) - timedelta(microseconds=1)
        return start, end

    def month_bounds(self, year: Optional[int] = None, month: Optional[int] = None) -> Tuple[datetime, datetime]:
        """Start of the calendar month and the last instant before the next."""
        now = self._now_local()
        year = year if year is not None else now.year
        month = month if month is not None else now.month
        if not 1 <= month <= 12:
            raise ValueError("month must be between 1 and 12")
        next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
        start = self._midnight(date(year, month, 1))
        end = self._midnight(date(next_year, next_month, 1)) - timedelta(microseconds=1)
        return start, end

    def get_daily_stats(self, day: Optional[date] = None) -> DailyStats:
        """Totals from midnight to midnight of a day, today by default."""
        day = day or self._now_local().date()
        start, end = self.day_bounds(day)
        stats = self.get_stats(start_time=start, end_time=end)
        return DailyStats(date=day.isoformat(), calls=stats.total_calls, tokens=stats.total_tokens, cost=stats.total_cost)

    def get_monthly_stats(self, year: Optional[int] = None, month: Optional[int] = None) -> UsageStats:
        """Statistics for a calendar month (1-12), the current one by default."""
        start, end = self.month_bounds(year, month)
        return self.get_stats(start_time=start, end_time=end)

    def get_user_stats(self, user_id: str) -> UsageStats:
        return self.get_stats(user_id=user_id)

    def get_service_stats(self, service: str) -> UsageStats:
        return self.get_stats(service=service)

    def get_recent_records(self, limit: int = 10) -> List[UsageRecord]:
        """Most recent records, newest first."""
        records = self._snapshot()
        return list(reversed(records[-limit:])) if limit > 0 else []

    def export_to_json(self) -> str:
        """Serialize the ledger for persistence across restarts."""
        records = self._snapshot()
        return json.dumps(
            {
                "exported_at": self._clock().isoformat(),
                "record_count": len(records),
                "records": [r.to_dict() for r in records],
            },
            indent=2
        )

    def import_from_json(self, json_data: str, strict: bool = False) -> int:
        """Replace the ledger with exported records.

        Best-effort by default: malformed input is logged and leaves the
        ledger untouched. Only the newest ``max_records`` records are kept.

        Args:
            json_data: Output of ``export_to_json``
            strict: Raise on malformed input instead of returning 0

        Returns:
            Number of records now in the ledger, 0 on failure

        Raises:
            ValueError: If ``strict`` and the input is not a valid ledger
        """
        try:
            data = json.loads(json_data)
            raw_records = data["records"]
            if not isinstance(raw_records, list):
                raise ValueError("'records' must be a list")
            records = [UsageRecord.from_dict(raw) for raw in raw_records]
        except (ValueError, KeyError, TypeError) as exc:
            if strict:
                raise ValueError(f"Invalid usage ledger: {exc}") from exc
            logger.error("Failed to import usage ledger: %s", exc)
            return 0

        with self._lock:
            self._records = deque(records, maxlen=self.max_records)
            return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    @property
    def record_count(self) -> int:
        return len(self._records)


async def track_ai_usage(
    tracker: CostTracker,
    service: str,
    operation: str,
    fn: Callable[[], Awaitable[Tuple[T, TokenUsage]]],
    user_id: Optional[str] = None,
    cache_hit: bool = False
) -> T:
    """Run an AI call and record its usage.

    ``fn`` returns ``(data, usage)``. A failure is recorded with zero
    tokens and re-raised.
    """
    try:
        data, usage = await fn()
    except Exception:
        tracker.track_usage(service, operation, TokenUsage.empty(), user_id=user_id, success=False, cache_hit=cache_hit)
        raise

    record = tracker.track_usage(service, operation, usage, user_id=user_id, success=True, cache_hit=cache_hit)
    logger.info(
        "%s.%s - tokens: %d, cost: $%.6f",
        service, operation, usage.total_tokens, record.cost.total_cost
    )
    return data
