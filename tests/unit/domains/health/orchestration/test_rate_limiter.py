"""Tests for the AI dispatch rate limiter."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import FIXED_NOW, FakeClock

from vitalroute.core.storage.kv_store import InMemoryKeyValueStore
from vitalroute.domains.health.orchestration.cost import QuotaPolicy, WindowLimits
from vitalroute.domains.health.orchestration.models import RequestKind
from vitalroute.domains.health.orchestration.rate_limiter import (
    STATE_KEY,
    AIRequestRateLimiter,
    Allowed,
    Availability,
    BudgetExceeded,
    CriticalOnly,
    RateLimited,
    bucket_id,
    trend,
    window_reset,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _reserve(limiter, kind, times, **kwargs):
    return [await limiter.check_and_reserve(kind, **kwargs) for _ in range(times)]


class TestWindows:
    def test_bucket_ids(self):
        assert bucket_id("hour", FIXED_NOW) == "2026-10-14-14"
        assert bucket_id("day", FIXED_NOW) == "2026-10-14"
        assert bucket_id("week", FIXED_NOW) == "2026-W42"
        assert bucket_id("month", FIXED_NOW) == "2026-10"

    def test_resets_are_wall_clock_aligned(self):
        tz = timezone.utc
        assert window_reset("hour", FIXED_NOW) == datetime(2026, 10, 14, 15, tzinfo=tz)
        assert window_reset("day", FIXED_NOW) == datetime(2026, 10, 15, tzinfo=tz)
        assert window_reset("week", FIXED_NOW) == datetime(2026, 10, 19, tzinfo=tz)
        assert window_reset("month", FIXED_NOW) == datetime(2026, 11, 1, tzinfo=tz)

    def test_december_rolls_into_next_year(self):
        december = datetime(2026, 12, 20, 9, tzinfo=timezone.utc)
        assert window_reset("month", december) == datetime(2027, 1, 1, tzinfo=timezone.utc)

    def test_unknown_window(self):
        with pytest.raises(ValueError):
            bucket_id("fortnight", FIXED_NOW)


class TestQuotas:
    def test_twenty_first_quick_request_in_an_hour_is_limited(self, rate_limiter):
        results = _run(_reserve(rate_limiter, RequestKind.QUICK, 21))
        assert all(isinstance(r, Allowed) for r in results[:20])
        last = results[20]
        assert isinstance(last, RateLimited)
        assert last.window == "hour"
        assert last.reset_time == datetime(2026, 10, 14, 15, tzinfo=timezone.utc)

    def test_window_resets_lazily(self, rate_limiter, clock):
        async def _check():
            await _reserve(rate_limiter, RequestKind.QUICK, 20)
            assert not (await rate_limiter.check(RequestKind.QUICK)).allowed
            clock.advance(hours=1)
            return await rate_limiter.check_and_reserve(RequestKind.QUICK)

        assert _run(_check()).allowed

    def test_daily_window_outlasts_the_hour(self, rate_limiter, clock):
        async def _check():
            for _ in range(2):
                await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 2)
                clock.advance(hours=1)
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 1)
            clock.advance(hours=1)
            return await rate_limiter.check_and_reserve(RequestKind.COMPREHENSIVE)

        result = _run(_check())
        assert isinstance(result, RateLimited)
        assert result.window == "day"

    def test_limits_are_per_kind(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 2)
            return await rate_limiter.check_and_reserve(RequestKind.DAILY)

        assert _run(_check()).allowed

    def test_check_does_not_reserve(self, rate_limiter):
        async def _check():
            for _ in range(30):
                await rate_limiter.check(RequestKind.QUICK)
            return await rate_limiter.usage_statistics()

        assert _run(_check())["per_kind"]["quick"]["hour"] == 0

    def test_concurrent_reservations_never_oversubscribe(self, rate_limiter):
        async def _check():
            return await asyncio.gather(
                *(rate_limiter.check_and_reserve(RequestKind.QUICK) for _ in range(30))
            )

        results = _run(_check())
        assert sum(1 for r in results if r.allowed) == 20


class TestBudget:
    def test_budget_exhaustion(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.01), clock=clock)
        results = _run(_reserve(limiter, RequestKind.QUICK, 3))
        assert [r.allowed for r in results] == [True, True, False]
        assert isinstance(results[2], BudgetExceeded)
        assert results[2].reset_time == datetime(2026, 11, 1, tzinfo=timezone.utc)

    def test_critical_only_near_budget(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.1), clock=clock)

        async def _check():
            await limiter.check_and_reserve(RequestKind.DAILY, cost=0.095)
            quick = await limiter.check_and_reserve(RequestKind.QUICK)
            critical = await limiter.check_and_reserve(RequestKind.CRITICAL, cost=0.001)
            return quick, critical

        quick, critical = _run(_check())
        assert isinstance(quick, CriticalOnly)
        assert critical.allowed

    def test_critical_only_under_daily_load(self, clock):
        def _limits(day):
            return WindowLimits(hour=100, day=day, week=100, month=100)

        # 36 daily slots across kinds: quick 20, user_requested 10, critical 6.
        policy = QuotaPolicy(
            monthly_budget_usd=10.0,
            critical_only_threshold=0.9,
            token_cost_usd=0.0,
            limits={
                "quick": _limits(20),
                "user_requested": _limits(10),
                "critical": _limits(6),
                "default": _limits(0),
            },
            base_costs={"default": 0.001},
        )
        limiter = AIRequestRateLimiter(policy, clock=clock)

        async def _check():
            # 33 of 36 used: above the 90% threshold with window room left.
            reserved = (
                await _reserve(limiter, RequestKind.CRITICAL, 4)
                + await _reserve(limiter, RequestKind.QUICK, 20)
                + await _reserve(limiter, RequestKind.USER_REQUESTED, 9)
            )
            blocked = await limiter.check(RequestKind.USER_REQUESTED)
            critical = await limiter.check(RequestKind.CRITICAL)
            return reserved, blocked, critical

        reserved, blocked, critical = _run(_check())
        assert all(r.allowed for r in reserved)
        assert isinstance(blocked, CriticalOnly)
        assert blocked.reset_time == datetime(2026, 10, 15, tzinfo=timezone.utc)
        assert critical.allowed

    def test_budget_fraction(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(1.0), clock=clock)

        async def _check():
            await limiter.check_and_reserve(RequestKind.DAILY, cost=0.25)
            return await limiter.budget_fraction_available(), await limiter.remaining_budget()

        fraction, remaining = _run(_check())
        assert fraction == pytest.approx(0.75)
        assert remaining == pytest.approx(0.75)

    def test_spend_resets_with_the_month(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.01), clock=clock)

        async def _check():
            await _reserve(limiter, RequestKind.QUICK, 2)
            clock.advance(days=18)
            return await limiter.check_and_reserve(RequestKind.QUICK)

        assert _run(_check()).allowed


class TestObservability:
    def test_remaining_requests_sums_daily_limits(self, rate_limiter):
        async def _check():
            before = await rate_limiter.remaining_requests()
            await rate_limiter.check_and_reserve(RequestKind.QUICK)
            return before, await rate_limiter.remaining_requests()

        assert _run(_check()) == (86, 85)

    def test_next_reset_is_top_of_hour(self, rate_limiter):
        reset = _run(rate_limiter.next_reset_time())
        assert reset == datetime(2026, 10, 14, 15, tzinfo=timezone.utc)

    def test_predict_availability(self, rate_limiter):
        async def _check():
            now = await rate_limiter.predict_availability(RequestKind.COMPREHENSIVE)
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 2)
            later = await rate_limiter.predict_availability(RequestKind.COMPREHENSIVE)
            return now, later

        now, later = _run(_check())
        assert now == Availability(available_at=FIXED_NOW, limiting_factor="none")
        assert later.available_at == datetime(2026, 10, 14, 15, tzinfo=timezone.utc)
        assert later.limiting_factor == "hour"
        assert later.to_dict() == {
            "available_at": "2026-10-14T15:00:00+00:00",
            "limiting_factor": "hour",
        }

    def test_latest_blocking_window_decides(self, rate_limiter, clock):
        async def _check():
            # Five comprehensive dispatches spread over the day fill the daily window.
            for _ in range(5):
                await rate_limiter.check_and_reserve(RequestKind.COMPREHENSIVE)
                clock.advance(minutes=30)
            return await rate_limiter.predict_availability(RequestKind.COMPREHENSIVE)

        availability = _run(_check())
        assert availability.limiting_factor == "day"
        assert availability.available_at == datetime(2026, 10, 15, tzinfo=timezone.utc)

    def test_budget_exhaustion_is_reported(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.01), clock=clock)

        async def _check():
            await _reserve(limiter, RequestKind.QUICK, 2)
            return await limiter.predict_availability(RequestKind.QUICK)

        availability = _run(_check())
        assert availability.limiting_factor == "budget"
        assert availability.available_at == datetime(2026, 11, 1, tzinfo=timezone.utc)

    def test_critical_only_is_reported(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.1), clock=clock)

        async def _check():
            await limiter.check_and_reserve(RequestKind.DAILY, cost=0.095)
            return await limiter.predict_availability(RequestKind.QUICK)

        availability = _run(_check())
        assert availability.limiting_factor == "critical_only"
        assert availability.available_at == datetime(2026, 11, 1, tzinfo=timezone.utc)

    def test_usage_statistics(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 3)
            return await rate_limiter.usage_statistics()

        stats = _run(_check())
        assert stats["per_kind"]["comprehensive"] == {"hour": 2, "day": 2, "week": 2, "month": 2}
        assert stats["recorded_requests"] == 2
        assert stats["denied_requests"] == 1
        assert stats["spend_this_month"] == pytest.approx(0.11)
        assert stats["average_cost"] == pytest.approx(0.055)
        assert stats["requests_by_kind"] == {"comprehensive": 2}
        assert stats["cost_by_kind"]["comprehensive"] == pytest.approx(0.11)
        assert stats["most_used_kind"] == "comprehensive"
        assert stats["peak_usage_hour"] == 14
        assert stats["usage_trend"] == "stable"
        assert stats["recommendations"] == []

    def test_empty_usage_statistics(self, rate_limiter):
        stats = _run(rate_limiter.usage_statistics())
        assert stats["requests_by_kind"] == {}
        assert stats["most_used_kind"] is None
        assert stats["peak_usage_hour"] is None
        assert stats["average_requests_per_day"] == 0.0
        assert stats["usage_trend"] == stats["cost_trend"] == "stable"

    def test_recent_requests_include_denials(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 3)
            return await rate_limiter.recent_requests()

        records = _run(_check())
        assert [r.outcome for r in records] == ["allowed", "allowed", "rate_limited"]
        assert records[-1].cost == 0.0

    def test_reset_all(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 2)
            await rate_limiter.reset_all()
            return await rate_limiter.check_and_reserve(RequestKind.COMPREHENSIVE)

        assert _run(_check()).allowed


class TestUsageAnalytics:
    @pytest.mark.parametrize(
        ("earlier", "later", "expected"),
        [(10, 12, "increasing"), (10, 8, "decreasing"), (10, 10.5, "stable"),
         (0, 3, "increasing"), (0, 0, "stable")],
    )
    def test_trend(self, earlier, later, expected):
        assert trend(earlier, later, 0.1) == expected

    def test_usage_trend_compares_the_last_two_weeks(self, quota_policy):
        clock = FakeClock(FIXED_NOW - timedelta(days=10))
        limiter = AIRequestRateLimiter(quota_policy, clock=clock)

        async def _check():
            await _reserve(limiter, RequestKind.DAILY, 2)
            clock.advance(days=10)
            await _reserve(limiter, RequestKind.DAILY, 4)
            return await limiter.usage_statistics()

        stats = _run(_check())
        assert stats["usage_trend"] == "increasing"
        assert stats["cost_trend"] == "stable"
        assert stats["requests_by_kind"] == {"daily": 6}
        assert stats["average_requests_per_day"] == pytest.approx(0.57)

    def test_cost_trend(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.QUICK, 2)
            await _reserve(rate_limiter, RequestKind.COMPREHENSIVE, 2)
            return await rate_limiter.usage_statistics()

        stats = _run(_check())
        assert stats["cost_trend"] == "increasing"
        assert stats["cost_by_kind"] == {
            "quick": pytest.approx(0.008),
            "comprehensive": pytest.approx(0.11),
        }

    def test_high_spend_recommends_local_analysis(self, quota_policy, clock):
        limiter = AIRequestRateLimiter(quota_policy.with_budget(0.1), clock=clock)

        async def _check():
            await limiter.check_and_reserve(RequestKind.CRITICAL, cost=0.085)
            return await limiter.usage_statistics()

        (recommendation,) = _run(_check())["recommendations"]
        assert recommendation["type"] == "cost_optimization"
        assert recommendation["priority"] == "high"
        assert recommendation["description"] == "Use local analysis for routine checks"
        assert recommendation["estimated_savings"] == pytest.approx(0.0255)

    def test_frequent_quick_requests_recommend_local(self, rate_limiter):
        async def _check():
            await _reserve(rate_limiter, RequestKind.QUICK, 3)
            await rate_limiter.check_and_reserve(RequestKind.DAILY)
            return await rate_limiter.usage_statistics()

        stats = _run(_check())
        (recommendation,) = stats["recommendations"]
        assert recommendation["type"] == "usage_pattern"
        assert recommendation["priority"] == "medium"
        assert recommendation["estimated_savings"] == pytest.approx(0.0108)
        assert stats["most_used_kind"] == "quick"


class TestPersistence:
    def test_state_survives_a_new_limiter(self, quota_policy):
        store = InMemoryKeyValueStore()
        clock = FakeClock()
        first = AIRequestRateLimiter(quota_policy, store=store, clock=clock)
        _run(_reserve(first, RequestKind.COMPREHENSIVE, 2))

        second = AIRequestRateLimiter(quota_policy, store=store, clock=clock)
        result = _run(second.check_and_reserve(RequestKind.COMPREHENSIVE))
        assert isinstance(result, RateLimited)

    def test_state_round_trips_through_sqlite(self, quota_policy, sqlite_store):
        clock = FakeClock()
        first = AIRequestRateLimiter(quota_policy, store=sqlite_store, clock=clock)
        _run(_reserve(first, RequestKind.DAILY, 3))

        second = AIRequestRateLimiter(quota_policy, store=sqlite_store, clock=clock)
        stats = _run(second.usage_statistics())
        assert stats["per_kind"]["daily"]["day"] == 3

    def test_stale_buckets_are_pruned_on_reload(self, quota_policy):
        store = InMemoryKeyValueStore()
        clock = FakeClock()
        _run(_reserve(AIRequestRateLimiter(quota_policy, store=store, clock=clock),
                      RequestKind.COMPREHENSIVE, 2))
        clock.advance(days=1)
        result = _run(AIRequestRateLimiter(quota_policy, store=store, clock=clock)
                      .check_and_reserve(RequestKind.COMPREHENSIVE))
        assert result.allowed

    def test_corrupt_state_starts_fresh(self, quota_policy, clock):
        store = InMemoryKeyValueStore()
        store.set(STATE_KEY, b"not json")
        limiter = AIRequestRateLimiter(quota_policy, store=store, clock=clock)
        assert _run(limiter.check_and_reserve(RequestKind.QUICK)).allowed
