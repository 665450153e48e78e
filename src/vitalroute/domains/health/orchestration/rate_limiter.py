"""AI dispatch rate limiter: per-kind window quotas plus a monthly budget.

Counters are stored under wall-clock bucket keys (``hour:quick:2026-10-19-14``).
Crossing a boundary simply produces a new key whose count starts at zero,
so resets are lazy and need no background timer. Stale buckets are pruned
on access.

Every public operation runs under one ``asyncio.Lock``; in particular
``check_and_reserve`` evaluates all constraints and increments all counters
without yielding, so two concurrent requests can never both take the last
slot.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Literal, Union

from vitalroute.core.storage.database import DatabaseError
from vitalroute.core.storage.encryption import EncryptionError
from vitalroute.core.storage.kv_store import KeyValueStore
from vitalroute.domains.health.orchestration.cost import WINDOWS, AICostCalculator, QuotaPolicy
from vitalroute.domains.health.orchestration.models import RequestKind

logger = logging.getLogger(__name__)

STATE_KEY = "rate_limiter/state"
MAX_RECORDS = 100

# Usage analytics
ANALYTICS_DAYS = 7
STATISTICS_DAYS = 30
HIGH_SPEND_FRACTION = 0.8
USAGE_TREND_TOLERANCE = 0.1
COST_TREND_TOLERANCE = 0.2

Window = Literal["hour", "day", "week", "month"]
LimitingFactor = Literal["none", "budget", "hour", "day", "week", "month", "critical_only"]
Trend = Literal["increasing", "decreasing", "stable"]


def _local_now() -> datetime:
    return datetime.now().astimezone()


# ---------------------------------------------------------------------------
# Window arithmetic
# ---------------------------------------------------------------------------

def bucket_id(window: str, now: datetime) -> str:
    if window == "hour":
        return now.strftime("%Y-%m-%d-%H")
    if window == "day":
        return now.strftime("%Y-%m-%d")
    if window == "week":
        iso = now.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if window == "month":
        return now.strftime("%Y-%m")
    raise ValueError(f"Unknown window: {window}")


def window_reset(window: str, now: datetime) -> datetime:
    """Start of the next window after ``now`` (top of hour, midnight, Monday, 1st)."""
    if window == "hour":
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if window == "day":
        return midnight + timedelta(days=1)
    if window == "week":
        return midnight + timedelta(days=7 - now.weekday())
    if window == "month":
        if now.month == 12:
            return midnight.replace(year=now.year + 1, month=1, day=1)
        return midnight.replace(month=now.month + 1, day=1)
    raise ValueError(f"Unknown window: {window}")


def _counter_key(window: str, kind: str, now: datetime) -> str:
    return f"{window}:{kind}:{bucket_id(window, now)}"


# ---------------------------------------------------------------------------
# Check results (tagged union)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Allowed:
    cost: float
    outcome: Literal["allowed"] = "allowed"

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class RateLimited:
    reset_time: datetime
    window: Window
    outcome: Literal["rate_limited"] = "rate_limited"

    @property
    def allowed(self) -> bool:
        return False


@dataclass(frozen=True)
class BudgetExceeded:
    reset_time: datetime
    outcome: Literal["budget_exceeded"] = "budget_exceeded"

    @property
    def allowed(self) -> bool:
        return False


@dataclass(frozen=True)
class CriticalOnly:
    reset_time: datetime
    outcome: Literal["critical_only"] = "critical_only"

    @property
    def allowed(self) -> bool:
        return False


RateLimitResult = Union[Allowed, RateLimited, BudgetExceeded, CriticalOnly]


@dataclass
class RequestRecord:
    kind: str
    timestamp: str
    cost: float
    allowed: bool
    outcome: str


@dataclass(frozen=True)
class Availability:
    """When a kind can next be dispatched, and which constraint decides it."""

    available_at: datetime
    limiting_factor: LimitingFactor

    def to_dict(self) -> dict[str, Any]:
        return {
            "available_at": self.available_at.isoformat(),
            "limiting_factor": self.limiting_factor,
        }


@dataclass(frozen=True)
class UsageRecommendation:
    type: Literal["cost_optimization", "usage_pattern"]
    title: str
    description: str
    priority: Literal["medium", "high"]
    estimated_savings: float


# ---------------------------------------------------------------------------
# Usage analytics
# ---------------------------------------------------------------------------

def trend(earlier: float, later: float, tolerance: float) -> Trend:
    """Direction of change from ``earlier`` to ``later`` beyond a relative tolerance."""
    if earlier <= 0:
        return "increasing" if later > 0 else "stable"
    change = (later - earlier) / earlier
    if change > tolerance:
        return "increasing"
    if change < -tolerance:
        return "decreasing"
    return "stable"


def _record_time(record: dict[str, Any]) -> datetime:
    return datetime.fromisoformat(record["timestamp"])


def _since(records: list[dict[str, Any]], start: datetime) -> list[dict[str, Any]]:
    return [r for r in records if _record_time(r) >= start]


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

class AIRequestRateLimiter:
    """Gates AI dispatches against window quotas and the monthly budget.

    Args:
        policy: Limits, costs, and budget.
        store: Optional key-value store; when given, state survives restarts.
        clock: Returns the current (timezone-aware, local) time.
    """

    def __init__(
        self,
        policy: QuotaPolicy,
        store: KeyValueStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.policy = policy
        self.cost_calculator = AICostCalculator(policy)
        self._store = store
        self._clock = clock or _local_now
        self._lock = asyncio.Lock()
        self._counters: dict[str, int] = {}
        self._spend: dict[str, float] = {}
        self._records: list[dict[str, Any]] = []
        self._loaded = store is None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_and_reserve(
        self, kind: RequestKind, cost: float | None = None
    ) -> RateLimitResult:
        """Atomically check every constraint and, if allowed, count the dispatch."""
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            cost = self.cost_calculator.estimate(kind) if cost is None else cost
            result = self._evaluate(kind, cost, now)

            if isinstance(result, Allowed):
                for window in WINDOWS:
                    key = _counter_key(window, kind.value, now)
                    self._counters[key] = self._counters.get(key, 0) + 1
                month = bucket_id("month", now)
                self._spend[month] = round(self._spend.get(month, 0.0) + cost, 6)
            else:
                logger.info("AI dispatch denied for %s: %s", kind.value, result.outcome)

            self._record(kind, cost, result, now)
            self._save()
            return result

    async def check(self, kind: RequestKind, cost: float | None = None) -> RateLimitResult:
        """Evaluate without reserving a slot."""
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            cost = self.cost_calculator.estimate(kind) if cost is None else cost
            return self._evaluate(kind, cost, now)

    async def remaining_requests(self) -> int:
        """Remaining daily AI requests summed over every request kind."""
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            return sum(
                max(0, self.policy.limits_for(kind).day - self._usage("day", kind.value, now))
                for kind in RequestKind
            )

    async def remaining_budget(self) -> float:
        async with self._lock:
            self._ensure_loaded()
            return max(0.0, self.policy.monthly_budget_usd - self._month_spend(self._clock()))

    async def budget_fraction_available(self) -> float:
        """Share of this month's budget still unspent, in [0, 1]."""
        async with self._lock:
            self._ensure_loaded()
            budget = self.policy.monthly_budget_usd
            if budget <= 0:
                return 0.0
            return max(0.0, min(1.0, 1.0 - self._month_spend(self._clock()) / budget))

    async def next_reset_time(self) -> datetime:
        """Earliest upcoming window boundary (always the next top of the hour)."""
        now = self._clock()
        return min(window_reset(w, now) for w in WINDOWS)

    async def predict_availability(self, kind: RequestKind) -> Availability:
        """Earliest time a dispatch of ``kind`` would be allowed again.

        When several constraints block, the one that lifts last decides;
        on a tie the budget wins over the windows.
        """
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            cost = self.cost_calculator.estimate(kind)
            limits = self.policy.limits_for(kind)
            blocking: list[tuple[LimitingFactor, datetime]] = []
            if self._month_spend(now) + cost > self.policy.monthly_budget_usd:
                blocking.append(("budget", window_reset("month", now)))
            blocking.extend(
                (w, window_reset(w, now))
                for w in WINDOWS
                if self._usage(w, kind.value, now) >= limits.for_window(w)
            )
            if not blocking and isinstance(self._evaluate(kind, cost, now), CriticalOnly):
                blocking.append(("critical_only", self._critical_only_reset(now)))
            if not blocking:
                return Availability(available_at=now, limiting_factor="none")
            factor, available_at = max(blocking, key=lambda b: b[1])
            return Availability(available_at=available_at, limiting_factor=factor)

    async def usage_statistics(self) -> dict[str, Any]:
        """Window counters, spend, and usage analytics over recent dispatches."""
        async with self._lock:
            self._ensure_loaded()
            now = self._clock()
            per_kind = {
                kind.value: {w: self._usage(w, kind.value, now) for w in WINDOWS}
                for kind in RequestKind
            }
            allowed = [r for r in self._records if r["allowed"]]
            spend = self._month_spend(now)
            stats = {
                "per_kind": per_kind,
                "spend_this_month": round(spend, 6),
                "monthly_budget": self.policy.monthly_budget_usd,
                "budget_used_fraction": (
                    round(spend / self.policy.monthly_budget_usd, 4)
                    if self.policy.monthly_budget_usd > 0
                    else 1.0
                ),
                "recorded_requests": len(allowed),
                "denied_requests": len(self._records) - len(allowed),
                "average_cost": (
                    round(sum(r["cost"] for r in allowed) / len(allowed), 6) if allowed else 0.0
                ),
            }
            stats.update(self._analytics(allowed, now))
            return stats

    async def recent_requests(self, limit: int = 20) -> list[RequestRecord]:
        async with self._lock:
            self._ensure_loaded()
            return [RequestRecord(**r) for r in self._records[-limit:]]

    async def reset_all(self) -> None:
        async with self._lock:
            self._counters.clear()
            self._spend.clear()
            self._records.clear()
            self._loaded = True
            self._save()
            logger.info("Rate limiter state reset")

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _analytics(self, allowed: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
        recent = _since(allowed, now - timedelta(days=STATISTICS_DAYS))
        week_start = now - timedelta(days=ANALYTICS_DAYS)
        week = _since(recent, week_start)
        previous_week = [
            r for r in _since(recent, week_start - timedelta(days=ANALYTICS_DAYS))
            if _record_time(r) < week_start
        ]

        cost_by_kind: dict[str, float] = {}
        for r in recent:
            cost_by_kind[r["kind"]] = round(cost_by_kind.get(r["kind"], 0.0) + r["cost"], 6)
        week_kinds = Counter(r["kind"] for r in week)
        week_hours = Counter(_record_time(r).hour for r in week)

        # Fewer than four dispatches is too little history to call a trend.
        usage_trend: Trend = "stable"
        cost_trend: Trend = "stable"
        if len(recent) >= 4:
            half = len(recent) // 2
            usage_trend = trend(len(previous_week), len(week), USAGE_TREND_TOLERANCE)
            cost_trend = trend(
                sum(r["cost"] for r in recent[:half]),
                sum(r["cost"] for r in recent[-half:]),
                COST_TREND_TOLERANCE,
            )

        return {
            "requests_by_kind": dict(Counter(r["kind"] for r in recent)),
            "cost_by_kind": cost_by_kind,
            "average_requests_per_day": round(len(week) / ANALYTICS_DAYS, 2),
            "most_used_kind": week_kinds.most_common(1)[0][0] if week_kinds else None,
            "peak_usage_hour": week_hours.most_common(1)[0][0] if week_hours else None,
            "usage_trend": usage_trend,
            "cost_trend": cost_trend,
            "recommendations": [asdict(r) for r in self._recommendations(recent, now)],
        }

    def _recommendations(
        self, recent: list[dict[str, Any]], now: datetime
    ) -> list[UsageRecommendation]:
        recommendations = []
        spend = self._month_spend(now)
        if spend > self.policy.monthly_budget_usd * HIGH_SPEND_FRACTION:
            recommendations.append(UsageRecommendation(
                type="cost_optimization",
                title="High AI spend this month",
                description="Use local analysis for routine checks",
                priority="high",
                estimated_savings=round(spend * 0.3, 6),
            ))
        quick = sum(1 for r in recent if r["kind"] == RequestKind.QUICK.value)
        if quick * 2 > len(recent):
            recommendations.append(UsageRecommendation(
                type="usage_pattern",
                title="Frequent quick analyses",
                description="Keep quick analyses on local processing",
                priority="medium",
                estimated_savings=round(
                    quick * self.cost_calculator.estimate(RequestKind.QUICK) * 0.9, 6
                ),
            ))
        return recommendations

    def _usage(self, window: str, kind: str, now: datetime) -> int:
        return self._counters.get(_counter_key(window, kind, now), 0)

    def _month_spend(self, now: datetime) -> float:
        return self._spend.get(bucket_id("month", now), 0.0)

    def _daily_load(self, now: datetime) -> float:
        """Share of the summed daily limits already used across kinds."""
        capacity = sum(self.policy.limits_for(k).day for k in RequestKind)
        used = sum(self._usage("day", k.value, now) for k in RequestKind)
        return used / capacity if capacity else 1.0

    def _budget_load(self, now: datetime) -> float:
        budget = self.policy.monthly_budget_usd
        return self._month_spend(now) / budget if budget > 0 else 1.0

    def _critical_only_reset(self, now: datetime) -> datetime:
        if self._budget_load(now) >= self.policy.critical_only_threshold:
            return window_reset("month", now)
        return window_reset("day", now)

    def _evaluate(self, kind: RequestKind, cost: float, now: datetime) -> RateLimitResult:
        self._prune(now)
        limits = self.policy.limits_for(kind)
        for window in WINDOWS:
            if self._usage(window, kind.value, now) >= limits.for_window(window):
                return RateLimited(reset_time=window_reset(window, now), window=window)

        if self._month_spend(now) + cost > self.policy.monthly_budget_usd:
            return BudgetExceeded(reset_time=window_reset("month", now))

        threshold = self.policy.critical_only_threshold
        constrained = self._budget_load(now) >= threshold or self._daily_load(now) >= threshold
        if constrained and kind is not RequestKind.CRITICAL:
            return CriticalOnly(reset_time=self._critical_only_reset(now))

        return Allowed(cost=cost)

    def _prune(self, now: datetime) -> None:
        current = {w: bucket_id(w, now) for w in WINDOWS}
        stale = [
            key for key in self._counters
            if key.rsplit(":", 1)[-1] != current.get(key.split(":", 1)[0])
        ]
        for key in stale:
            del self._counters[key]
        for month in [m for m in self._spend if m != current["month"]]:
            del self._spend[month]

    def _record(self, kind: RequestKind, cost: float, result: RateLimitResult, now: datetime) -> None:
        record = RequestRecord(
            kind=kind.value,
            timestamp=now.isoformat(),
            cost=cost if result.allowed else 0.0,
            allowed=result.allowed,
            outcome=result.outcome,
        )
        self._records.append(asdict(record))
        del self._records[:-MAX_RECORDS]

    # ---- persistence ----

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            raw = self._store.get(STATE_KEY)
            if raw is None:
                return
            state = json.loads(raw)
            self._counters = {k: int(v) for k, v in state.get("counters", {}).items()}
            self._spend = {k: float(v) for k, v in state.get("spend", {}).items()}
            self._records = list(state.get("records", []))[-MAX_RECORDS:]
            logger.info("Restored rate limiter state (%d counters)", len(self._counters))
        except (DatabaseError, EncryptionError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Could not restore rate limiter state, starting fresh: %s", exc)
            self._counters, self._spend, self._records = {}, {}, []

    def _save(self) -> None:
        if self._store is None:
            return
        state = {"counters": self._counters, "spend": self._spend, "records": self._records}
        try:
            self._store.set(STATE_KEY, json.dumps(state, sort_keys=True).encode("utf-8"))
        except (DatabaseError, EncryptionError) as exc:
            logger.warning("Could not persist rate limiter state: %s", exc)
