"""
Tests for the BudgetGovernor.

Covers:
- Atomic counters for search queries and AI calls
- Throttle events appended exactly once per ceiling crossing
- Daily and monthly refusals
- Paid query reservations checked and counted under one lock
- History, monthly totals and retention purge
"""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest


TODAY = date(2026, 10, 15)


@pytest.fixture
def fixed_today():
    """Pin the governor's UTC day."""
    from scout.budget.governor import BudgetGovernor

    with patch.object(BudgetGovernor, "today", return_value=TODAY):
        yield TODAY


@pytest.mark.django_db
class TestCounters:
    """Tests for the increment operations."""

    def test_free_query_increments_free_counter(self, fixed_today):
        """Free queries count without adding cost."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor()
        governor.record_search_query("free")
        day = governor.record_search_query("free", count=2)

        assert day.date == TODAY
        assert day.search_queries_free == 3
        assert day.search_queries_paid == 0
        assert day.total_cost == Decimal("0")

    def test_paid_query_adds_search_cost(self, fixed_today):
        """Paid queries add their cost to search_cost and total_cost."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor()
        day = governor.record_search_query("paid", cost="0.005")

        assert day.search_queries_paid == 1
        assert day.search_cost == Decimal("0.005")
        assert day.total_cost == Decimal("0.005")

    def test_ai_calls_counted_per_provider(self, fixed_today):
        """AI calls accumulate per provider and total_cost includes AI cost."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor()
        governor.record_ai_call("openai", cost="0.10")
        governor.record_ai_call("openai", count=2, cost="0.20")
        day = governor.record_ai_call("anthropic", cost="0.05")

        assert day.ai_calls == {"openai": 3, "anthropic": 1}
        assert day.ai_cost == Decimal("0.35")
        assert day.total_cost == Decimal("0.35")

    def test_single_row_per_day(self, fixed_today):
        """Repeated increments reuse today's row."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay

        governor = BudgetGovernor()
        governor.record_search_query("free")
        governor.add_costs(search_cost="1.00", ai_cost="0.50")

        assert BudgetDay.objects.count() == 1
        assert BudgetDay.objects.get().total_cost == Decimal("1.50")


@pytest.mark.django_db
class TestThrottling:
    """Tests for ceiling crossings and refusals."""

    def test_daily_crossing_appends_one_event(self, fixed_today):
        """Only the increment that crosses the daily limit records a throttle event."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import ThrottleEvent

        governor = BudgetGovernor(daily_limit="5.00", monthly_limit="1000")

        with patch("scout.monitoring.sentry_integration.capture_alert") as mock_alert:
            governor.add_costs(search_cost="3.00")
            assert ThrottleEvent.objects.count() == 0

            governor.add_costs(search_cost="3.00")
            governor.add_costs(search_cost="1.00")
            governor.add_costs(ai_cost="1.00")

        events = list(ThrottleEvent.objects.all())
        assert len(events) == 1
        assert "Daily budget limit reached" in events[0].reason
        assert mock_alert.call_count == 1

    def test_check_budget_allows_below_limit(self, fixed_today):
        """No refusal while spend is under both ceilings."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor(daily_limit="5.00", monthly_limit="100.00")
        governor.add_costs(search_cost="4.99")

        assert governor.check_budget() is None
        assert governor.is_throttled() is False

    def test_check_budget_refuses_at_daily_limit(self, fixed_today):
        """Spend equal to the daily limit refuses new operations."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor(daily_limit="5.00", monthly_limit="100.00")
        with patch("scout.monitoring.sentry_integration.capture_alert"):
            governor.add_costs(search_cost="5.00")

        refusal = governor.check_budget()

        assert refusal is not None
        assert refusal.scope == "daily"
        assert refusal.spent == Decimal("5.00")
        assert refusal.limit == Decimal("5.00")

    def test_monthly_limit_includes_earlier_days(self, fixed_today):
        """Monthly spend sums every day of the calendar month."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay, ThrottleEvent

        BudgetDay.objects.create(
            date=TODAY - timedelta(days=5),
            search_cost=Decimal("8.00"),
            total_cost=Decimal("8.00"),
        )
        # Previous month does not count
        BudgetDay.objects.create(
            date=date(2026, 9, 30),
            search_cost=Decimal("50.00"),
            total_cost=Decimal("50.00"),
        )
        governor = BudgetGovernor(daily_limit="1000", monthly_limit="10.00")

        with patch("scout.monitoring.sentry_integration.capture_alert"):
            governor.add_costs(search_cost="1.00")
            assert governor.check_budget() is None

            governor.add_costs(search_cost="2.00")

        refusal = governor.check_budget()
        assert refusal.scope == "monthly"
        assert refusal.spent == Decimal("11.00")
        assert ThrottleEvent.objects.filter(reason__startswith="Monthly").count() == 1

    def test_throttle_does_not_block_recording(self, fixed_today):
        """Work already running can still record its spend past the limit."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor(daily_limit="1.00", monthly_limit="100.00")
        with patch("scout.monitoring.sentry_integration.capture_alert"):
            governor.add_costs(search_cost="2.00")
            day = governor.record_search_query("paid", cost="0.50")

        assert day.total_cost == Decimal("2.50")

    def test_manual_throttle_event(self, fixed_today):
        """add_throttle_event appends to today's record."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor()
        event = governor.add_throttle_event("manual pause")

        assert event.budget_day.date == TODAY
        assert event.reason == "manual pause"


@pytest.mark.django_db
class TestReservation:
    """Tests for reserve_search_query, the locked check-then-count for paid queries."""

    def test_reserve_records_below_limit(self, fixed_today):
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay

        governor = BudgetGovernor(daily_limit="1.00", monthly_limit="100.00")

        assert governor.reserve_search_query("paid", cost="0.25") is None

        day = BudgetDay.objects.get(date=TODAY)
        assert day.search_queries_paid == 1
        assert day.total_cost == Decimal("0.25")

    def test_reserve_refuses_once_limit_is_spent(self, fixed_today):
        """The reservation that crosses the ceiling counts; the next one is refused."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay, ThrottleEvent

        governor = BudgetGovernor(daily_limit="1.00", monthly_limit="100.00")

        with patch("scout.monitoring.sentry_integration.capture_alert"):
            assert governor.reserve_search_query("paid", cost="0.60") is None
            assert governor.reserve_search_query("paid", cost="0.60") is None
            refusal = governor.reserve_search_query("paid", cost="0.60")

        assert refusal.scope == "daily"
        assert refusal.spent == Decimal("1.20")
        day = BudgetDay.objects.get(date=TODAY)
        assert day.search_queries_paid == 2
        assert day.total_cost == Decimal("1.20")
        assert ThrottleEvent.objects.count() == 1

    def test_refusal_does_not_create_row(self, fixed_today):
        """A refused reservation rolls back the lazily created day."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay

        BudgetDay.objects.create(
            date=TODAY - timedelta(days=1),
            search_cost=Decimal("10.00"),
            total_cost=Decimal("10.00"),
        )
        governor = BudgetGovernor(daily_limit="5.00", monthly_limit="10.00")

        refusal = governor.reserve_search_query("paid", cost="0.005")

        assert refusal.scope == "monthly"
        assert refusal.spent == Decimal("10.00")
        assert not BudgetDay.objects.filter(date=TODAY).exists()

    def test_check_runs_under_the_row_lock(self, fixed_today):
        """Spend recorded after a stale check_budget is still seen by the reservation."""
        from scout.budget.governor import BudgetGovernor

        first = BudgetGovernor(daily_limit="1.00", monthly_limit="100.00")
        second = BudgetGovernor(daily_limit="1.00", monthly_limit="100.00")

        # Both would pass a separate check
        assert first.check_budget() is None
        assert second.check_budget() is None

        with patch("scout.monitoring.sentry_integration.capture_alert"):
            assert first.reserve_search_query("paid", cost="1.00") is None
            refusal = second.reserve_search_query("paid", cost="1.00")

        assert refusal is not None
        assert refusal.spent == Decimal("1.00")


@pytest.mark.django_db
class TestHistory:
    """Tests for status, history, monthly totals and purge."""

    def test_get_status_serializes_costs(self, fixed_today):
        """Status reports costs and limits as strings."""
        from scout.budget.governor import BudgetGovernor

        governor = BudgetGovernor(daily_limit="5.00", monthly_limit="100.00")
        governor.record_search_query("paid", cost="0.25")

        status = governor.get_status()

        assert status["date"] == "2026-10-15"
        assert status["search_queries_paid"] == 1
        assert status["cost_today"] == "0.2500"
        assert status["daily_limit"] == "5.00"
        assert status["throttled"] is False

    def test_get_monthly_totals(self, fixed_today):
        """Monthly totals sum counters, AI calls and costs."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay

        BudgetDay.objects.create(
            date=date(2026, 10, 1),
            search_queries_free=10,
            search_queries_paid=2,
            ai_calls={"openai": 4},
            search_cost=Decimal("0.01"),
            ai_cost=Decimal("0.40"),
            total_cost=Decimal("0.41"),
        )
        BudgetDay.objects.create(
            date=date(2026, 10, 2),
            search_queries_free=5,
            ai_calls={"openai": 1, "anthropic": 2},
            ai_cost=Decimal("0.30"),
            total_cost=Decimal("0.30"),
        )
        BudgetDay.objects.create(date=date(2026, 11, 1), search_queries_free=99)

        totals = BudgetGovernor().get_monthly_totals(2026, 10)

        assert totals["days"] == 2
        assert totals["search_queries_free"] == 15
        assert totals["search_queries_paid"] == 2
        assert totals["ai_calls"] == {"openai": 5, "anthropic": 2}
        assert totals["total_cost"] == Decimal("0.71")

    def test_get_history_newest_first(self, fixed_today):
        """History is limited to the window and ordered newest first."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay

        for offset in (1, 3, 45):
            BudgetDay.objects.create(date=TODAY - timedelta(days=offset))

        history = BudgetGovernor().get_history(days_back=30)

        assert [d.date for d in history] == [TODAY - timedelta(days=1), TODAY - timedelta(days=3)]

    def test_purge_older_than_retention(self, fixed_today):
        """Rows past retention are deleted along with their throttle events."""
        from scout.budget.governor import BudgetGovernor
        from scout.models import BudgetDay, ThrottleEvent

        old = BudgetDay.objects.create(date=TODAY - timedelta(days=100))
        ThrottleEvent.objects.create(budget_day=old, reason="old throttle")
        BudgetDay.objects.create(date=TODAY - timedelta(days=10))

        purged = BudgetGovernor().purge_older_than(90)

        assert purged == 1
        assert BudgetDay.objects.count() == 1
        assert ThrottleEvent.objects.count() == 0
