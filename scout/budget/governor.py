"""
Budget Governor - Tracks daily/monthly spend and throttles costed operations.

One BudgetDay row per UTC calendar day holds the free/paid search counts,
AI call counts and accumulated cost (USD). Every increment is a locked
read-modify-write inside transaction.atomic(). A lost race on the lazy
create of today's row raises IntegrityError and the increment is retried.
reserve_search_query checks the ceilings inside that same locked
transaction before counting a paid query.

Throttling only refuses new costed operations. It never cancels work that
is already running.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass
class BudgetExceeded:
    """Typed refusal for a new costed operation."""

    scope: str  # "daily" or "monthly"
    reason: str
    spent: Decimal
    limit: Decimal


class _Refused(Exception):
    """Rolls back a reservation that would pass a ceiling."""

    def __init__(self, refusal: BudgetExceeded):
        super().__init__(refusal.reason)
        self.refusal = refusal


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class BudgetGovernor:
    """
    Owns the per-day spend counters.

    Limits of None disable the corresponding ceiling.
    """

    MAX_RETRIES = 3

    def __init__(
        self,
        daily_limit=None,
        monthly_limit=None,
        retention_days: Optional[int] = None,
    ):
        self.daily_limit = _to_decimal(
            daily_limit if daily_limit is not None
            else getattr(settings, "BUDGET_DAILY_LIMIT_USD", None)
        )
        self.monthly_limit = _to_decimal(
            monthly_limit if monthly_limit is not None
            else getattr(settings, "BUDGET_MONTHLY_LIMIT_USD", None)
        )
        self.retention_days = retention_days or getattr(
            settings, "BUDGET_RETENTION_DAYS", 90
        )

    @staticmethod
    def today() -> date:
        """Current UTC calendar day."""
        return timezone.now().date()

    def get_today(self):
        """Get (or lazily create) today's BudgetDay."""
        from scout.models import BudgetDay

        day, _ = BudgetDay.objects.get_or_create(date=self.today())
        return day

    # ------------------------------------------------------------------
    # Atomic increments
    # ------------------------------------------------------------------

    def record_search_query(self, mode: str = "free", count: int = 1, cost=Decimal("0")):
        """Record search queries in free or paid mode, with their cost."""
        return self._apply(
            self._count_searches(mode, count, cost), label=f"{count} {mode} search queries"
        )

    def reserve_search_query(
        self, mode: str = "paid", count: int = 1, cost=Decimal("0")
    ) -> Optional[BudgetExceeded]:
        """
        Check the ceilings and record search queries under one row lock.

        Concurrent paid queries cannot both pass the check and then both
        spend past the limit.

        Returns:
            None when the queries were recorded, otherwise the refusal
        """
        try:
            self._apply(
                self._count_searches(mode, count, cost),
                label=f"{count} {mode} search queries",
                enforce=True,
            )
        except _Refused as refused:
            return refused.refusal
        return None

    @staticmethod
    def _count_searches(mode: str, count: int, cost) -> Callable:
        cost = _to_decimal(cost) or Decimal("0")

        def mutate(day):
            if mode == "paid":
                day.search_queries_paid += count
            else:
                day.search_queries_free += count
            day.search_cost += cost

        return mutate

    def record_ai_call(self, provider: str, count: int = 1, cost=Decimal("0")):
        """Record AI calls for a provider, with their cost."""
        cost = _to_decimal(cost) or Decimal("0")

        def mutate(day):
            calls = dict(day.ai_calls or {})
            calls[provider] = calls.get(provider, 0) + count
            day.ai_calls = calls
            day.ai_cost += cost

        return self._apply(mutate, label=f"{count} {provider} AI calls")

    def add_costs(self, search_cost=Decimal("0"), ai_cost=Decimal("0")):
        """Add cost deltas without touching call counters."""
        search_cost = _to_decimal(search_cost) or Decimal("0")
        ai_cost = _to_decimal(ai_cost) or Decimal("0")

        def mutate(day):
            day.search_cost += search_cost
            day.ai_cost += ai_cost

        return self._apply(mutate, label="cost update")

    def add_throttle_event(self, reason: str):
        """Append a throttle event to today's record."""
        from scout.models import ThrottleEvent

        day = self.get_today()
        event = ThrottleEvent.objects.create(budget_day=day, reason=reason)
        logger.warning("Budget throttle: %s", reason)
        return event

    def _apply(self, mutate: Callable, label: str, enforce: bool = False):
        from scout.models import BudgetDay

        for attempt in range(self.MAX_RETRIES):
            try:
                with transaction.atomic():
                    day, _ = BudgetDay.objects.select_for_update().get_or_create(
                        date=self.today()
                    )
                    month_other = self._month_total(day.date, exclude_date=day.date)
                    before = day.total_cost

                    if enforce:
                        refusal = self._refusal(before, month_other + before)
                        if refusal is not None:
                            raise _Refused(refusal)

                    mutate(day)
                    day.total_cost = day.search_cost + day.ai_cost
                    day.save()

                    self._record_transitions(day, before, month_other)

                logger.debug(
                    "Budget %s: recorded %s, total today $%s",
                    day.date, label, day.total_cost,
                )
                return day
            except IntegrityError:
                logger.debug("Budget row race on attempt %d, retrying", attempt + 1)

        raise RuntimeError(f"Could not record budget increment: {label}")

    def _record_transitions(self, day, before: Decimal, month_other: Decimal):
        """Append throttle events when this increment crossed a ceiling."""
        after = day.total_cost

        if self.daily_limit is not None and before < self.daily_limit <= after:
            self._throttle(
                day,
                f"Daily budget limit reached: ${after} >= ${self.daily_limit}",
                after,
                self.daily_limit,
            )

        if self.monthly_limit is not None:
            month_before = month_other + before
            month_after = month_other + after
            if month_before < self.monthly_limit <= month_after:
                self._throttle(
                    day,
                    f"Monthly budget limit reached: ${month_after} >= ${self.monthly_limit}",
                    month_after,
                    self.monthly_limit,
                )

    def _throttle(self, day, reason: str, spent: Decimal, limit: Decimal):
        from scout.models import ThrottleEvent
        from scout.monitoring.sentry_integration import capture_alert

        ThrottleEvent.objects.create(budget_day=day, reason=reason)
        logger.warning("Budget throttle: %s", reason)
        capture_alert(
            message=reason,
            level="warning",
            extra_data={"spent": str(spent), "limit": str(limit), "date": str(day.date)},
        )

    # ------------------------------------------------------------------
    # Throttle checks
    # ------------------------------------------------------------------

    def _month_total(self, day: date, exclude_date: Optional[date] = None) -> Decimal:
        from scout.models import BudgetDay

        qs = BudgetDay.objects.filter(date__year=day.year, date__month=day.month)
        if exclude_date is not None:
            qs = qs.exclude(date=exclude_date)
        return qs.aggregate(total=Sum("total_cost"))["total"] or Decimal("0")

    def check_budget(self) -> Optional[BudgetExceeded]:
        """
        Check whether a new costed operation may start.

        Returns:
            None when allowed, otherwise a BudgetExceeded describing the ceiling
        """
        from scout.models import BudgetDay

        today = self.today()
        day = BudgetDay.objects.filter(date=today).first()
        spent_today = day.total_cost if day else Decimal("0")
        spent_month = self._month_total(today) if self.monthly_limit is not None else Decimal("0")
        return self._refusal(spent_today, spent_month)

    def _refusal(self, spent_today: Decimal, spent_month: Decimal) -> Optional[BudgetExceeded]:
        if self.daily_limit is not None and spent_today >= self.daily_limit:
            return BudgetExceeded(
                scope="daily",
                reason=f"Daily budget exhausted (${spent_today} of ${self.daily_limit})",
                spent=spent_today,
                limit=self.daily_limit,
            )

        if self.monthly_limit is not None:
            if spent_month >= self.monthly_limit:
                return BudgetExceeded(
                    scope="monthly",
                    reason=f"Monthly budget exhausted (${spent_month} of ${self.monthly_limit})",
                    spent=spent_month,
                    limit=self.monthly_limit,
                )

        return None

    def is_throttled(self) -> bool:
        return self.check_budget() is not None

    def get_status(self) -> Dict:
        """Summary of today's and this month's spend."""
        today = self.today()
        day = self.get_today()
        return {
            "date": today.isoformat(),
            "search_queries_free": day.search_queries_free,
            "search_queries_paid": day.search_queries_paid,
            "ai_calls": dict(day.ai_calls or {}),
            "cost_today": str(day.total_cost),
            "cost_month": str(self._month_total(today)),
            "daily_limit": str(self.daily_limit) if self.daily_limit is not None else None,
            "monthly_limit": str(self.monthly_limit) if self.monthly_limit is not None else None,
            "throttled": self.is_throttled(),
        }

    # ------------------------------------------------------------------
    # History and retention
    # ------------------------------------------------------------------

    def get_history(self, days_back: int = 30) -> List:
        """BudgetDay rows for the last days_back days, newest first."""
        from scout.models import BudgetDay

        since = self.today() - timedelta(days=days_back)
        return list(BudgetDay.objects.filter(date__gte=since).order_by("-date"))

    def get_monthly_totals(self, year: int, month: int) -> Dict:
        """Aggregate counters and costs for one calendar month."""
        from scout.models import BudgetDay

        days = list(BudgetDay.objects.filter(date__year=year, date__month=month))

        ai_calls: Dict[str, int] = {}
        for day in days:
            for provider, count in (day.ai_calls or {}).items():
                ai_calls[provider] = ai_calls.get(provider, 0) + count

        return {
            "year": year,
            "month": month,
            "days": len(days),
            "search_queries_free": sum(d.search_queries_free for d in days),
            "search_queries_paid": sum(d.search_queries_paid for d in days),
            "ai_calls": ai_calls,
            "search_cost": sum((d.search_cost for d in days), Decimal("0")),
            "ai_cost": sum((d.ai_cost for d in days), Decimal("0")),
            "total_cost": sum((d.total_cost for d in days), Decimal("0")),
        }

    def purge_older_than(self, days: Optional[int] = None) -> int:
        """
        Delete BudgetDay rows (and their throttle events) past retention.

        Returns:
            Number of BudgetDay rows deleted
        """
        from scout.models import BudgetDay

        days = days if days is not None else self.retention_days
        cutoff = self.today() - timedelta(days=days)
        deleted, per_model = BudgetDay.objects.filter(date__lt=cutoff).delete()
        count = per_model.get("scout.BudgetDay", 0)

        if count:
            logger.info("Purged %d budget days older than %s", count, cutoff)
        return count


# Global governor instance
_budget_governor: Optional[BudgetGovernor] = None


def get_budget_governor() -> BudgetGovernor:
    """Get the global BudgetGovernor instance."""
    global _budget_governor
    if _budget_governor is None:
        _budget_governor = BudgetGovernor()
    return _budget_governor
