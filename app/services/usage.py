# =============================================================================
# Usage Tracker — Cost and Token Accounting Across Runs
# =============================================================================
#
# Every priced remote call (cache misses only) is recorded here. The
# tracker keeps the most recent 1000 records in memory and aggregates
# them per UTC day and per UTC month, with a per-model breakdown.
#
# Spend limits are optional. When configured, ResilientClient checks
# them before each remote call and fails fast with BudgetExceededError.
# =============================================================================

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

MAX_RECORDS = 1000


@dataclass(frozen=True)
class UsageRecord:
    timestamp: datetime
    model_id: str
    task_type: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    duration_ms: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelUsage:
    cost_usd: float = 0.0
    tokens: int = 0
    requests: int = 0


@dataclass
class UsageSummary:
    """Aggregated usage for one period ("2026-10-19" or "2026-10")."""

    period: str
    total_cost_usd: float = 0.0
    total_tokens: int = 0
    request_count: int = 0
    model_breakdown: dict[str, ModelUsage] = field(default_factory=dict)

    def add(self, record: UsageRecord) -> None:
        self.total_cost_usd += record.cost_usd
        self.total_tokens += record.total_tokens
        self.request_count += 1
        model = self.model_breakdown.setdefault(record.model_id, ModelUsage())
        model.cost_usd += record.cost_usd
        model.tokens += record.total_tokens
        model.requests += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "total_tokens": self.total_tokens,
            "request_count": self.request_count,
            "model_breakdown": {
                model_id: {
                    "cost_usd": round(usage.cost_usd, 6),
                    "tokens": usage.tokens,
                    "requests": usage.requests,
                }
                for model_id, usage in self.model_breakdown.items()
            },
        }


class UsageTracker:
    def __init__(
        self,
        daily_limit_usd: float | None = None,
        monthly_limit_usd: float | None = None,
        max_records: int = MAX_RECORDS,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.daily_limit_usd = daily_limit_usd
        self.monthly_limit_usd = monthly_limit_usd
        self._now = now
        self._records: deque[UsageRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(
        self,
        model_id: str,
        task_type: str,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
        duration_ms: int,
    ) -> UsageRecord:
        entry = UsageRecord(
            timestamp=self._now(),
            model_id=model_id,
            task_type=task_type,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
            duration_ms=duration_ms,
        )
        with self._lock:
            self._records.append(entry)
        return entry

    def records(self) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)

    def daily_usage(self) -> UsageSummary:
        today = self._now().date()
        summary = UsageSummary(period=today.isoformat())
        for record in self.records():
            if record.timestamp.date() == today:
                summary.add(record)
        return summary

    def monthly_usage(self) -> UsageSummary:
        now = self._now()
        summary = UsageSummary(period=f"{now.year:04d}-{now.month:02d}")
        for record in self.records():
            if (record.timestamp.year, record.timestamp.month) == (now.year, now.month):
                summary.add(record)
        return summary

    def within_limits(self) -> dict[str, bool]:
        """Limits are exclusive: spending exactly the limit is over it."""
        daily = monthly = True
        if self.daily_limit_usd is not None:
            daily = self.daily_usage().total_cost_usd < self.daily_limit_usd
        if self.monthly_limit_usd is not None:
            monthly = self.monthly_usage().total_cost_usd < self.monthly_limit_usd
        return {"daily": daily, "monthly": monthly}

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
