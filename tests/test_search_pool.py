"""
Tests for the SearchEnginePool.

Covers:
- Free quota accounting across engines (never exceeded)
- Rotation on quota, transient and permanent backend errors
- Paid mode once free quotas are exhausted, and budget refusals
- Daily quota reset
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
import responses


def make_credential(name, quota=3, used=0, paid=False, **kwargs):
    from scout.models import SearchEngineCredential

    return SearchEngineCredential.objects.create(
        name=name,
        api_key=f"{name}-key",
        engine_id=f"{name}-cx",
        daily_free_quota=quota,
        used_today=used,
        uses_paid_budget=paid,
        **kwargs,
    )


def ok_backend(name):
    backend = Mock()
    backend.execute.return_value = {"items": [], "engine": name}
    return backend


def failing_backend(error):
    backend = Mock()
    backend.execute.side_effect = error
    return backend


def make_pool(backends, governor=None, **kwargs):
    from scout.budget.governor import BudgetGovernor
    from scout.search.pool import SearchEnginePool

    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("backoff_seconds", 0)
    kwargs.setdefault("billing_enabled", False)
    return SearchEnginePool(
        governor=governor or BudgetGovernor(daily_limit="5.00", monthly_limit="100.00"),
        backend_factory=lambda credential: backends[credential.name],
        **kwargs,
    )


@pytest.mark.django_db
class TestFreeQuota:
    """Tests for free-quota selection."""

    def test_free_usage_never_exceeds_quota(self):
        """Total free queries served is bounded by the sum of daily quotas."""
        from scout.exceptions import SourceUnavailable
        from scout.models import BudgetDay, SearchEngineCredential

        make_credential("alpha", quota=3)
        make_credential("beta", quota=2)
        pool = make_pool({"alpha": ok_backend("alpha"), "beta": ok_backend("beta")})

        outcomes = [pool.search(f"planted {i}") for i in range(8)]

        served = [o for o in outcomes if o.success]
        assert len(served) == 5
        assert all(o.mode == "free" for o in served)
        for outcome in outcomes[5:]:
            assert not outcome.success
            assert isinstance(outcome.error, SourceUnavailable)

        for credential in SearchEngineCredential.objects.all():
            assert credential.used_today <= credential.daily_free_quota
        assert BudgetDay.objects.get().search_queries_free == 5

    def test_least_used_engine_first(self):
        """The engine with the most free quota left serves the query."""
        make_credential("alpha", quota=10, used=4)
        make_credential("beta", quota=10, used=1)
        pool = make_pool({"alpha": ok_backend("alpha"), "beta": ok_backend("beta")})

        outcome = pool.search("planted berlin")

        assert outcome.engine == "beta"
        assert outcome.attempts == 1

    def test_inactive_engines_skipped(self):
        make_credential("alpha", is_active=False)
        pool = make_pool({"alpha": ok_backend("alpha")})

        outcome = pool.search("planted")

        assert not outcome.success
        assert outcome.engines_tried == []

    def test_quota_status(self):
        from scout.search.pool import SearchEnginePool

        make_credential("alpha", quota=3, used=1)
        make_credential("beta", quota=2, used=2)

        status = make_pool({}).get_quota_status()

        assert status["engines"] == 2
        assert status["free_quota_total"] == 5
        assert status["free_used_today"] == 3
        assert status["free_remaining"] == 2
        assert SearchEnginePool.has_credentials() is True


@pytest.mark.django_db
class TestRotation:
    """Tests for error handling and engine rotation."""

    def test_quota_error_marks_engine_exhausted(self):
        """A quota error rotates to the next engine and exhausts the first."""
        from scout.models import SearchEngineCredential
        from scout.search.backends import QuotaExceededError

        make_credential("alpha", quota=10, used=0)
        make_credential("beta", quota=10, used=5)
        pool = make_pool(
            {
                "alpha": failing_backend(QuotaExceededError("alpha: daily limit", 429)),
                "beta": ok_backend("beta"),
            }
        )

        outcome = pool.search("planted")

        assert outcome.success
        assert outcome.engine == "beta"
        assert outcome.engines_tried == ["alpha", "beta"]
        alpha = SearchEngineCredential.objects.get(name="alpha")
        assert alpha.used_today == alpha.daily_free_quota
        assert alpha.consecutive_failures == 1

    def test_transient_error_backs_off_and_rotates(self):
        """Transient errors sleep with exponential backoff before the next engine."""
        from scout.models import SearchEngineCredential
        from scout.search.backends import TransientSearchError

        make_credential("alpha", quota=10, used=0)
        make_credential("beta", quota=10, used=5)
        sleep = Mock()
        pool = make_pool(
            {
                "alpha": failing_backend(TransientSearchError("alpha: HTTP 503", 503)),
                "beta": ok_backend("beta"),
            },
            backoff_seconds=0.5,
            sleep=sleep,
        )

        outcome = pool.search("planted")

        assert outcome.engine == "beta"
        sleep.assert_called_once_with(0.5)
        alpha = SearchEngineCredential.objects.get(name="alpha")
        assert alpha.consecutive_failures == 1
        assert "503" in alpha.last_error

    def test_success_resets_consecutive_failures(self):
        from scout.models import SearchEngineCredential

        make_credential("alpha", consecutive_failures=4)
        pool = make_pool({"alpha": ok_backend("alpha")})

        pool.search("planted")

        assert SearchEngineCredential.objects.get(name="alpha").consecutive_failures == 0

    def test_gives_up_after_max_attempts(self):
        """Past the attempt ceiling the outcome carries SourceUnavailable."""
        from scout.exceptions import SourceUnavailable
        from scout.search.backends import PermanentSearchError

        names = ["alpha", "beta", "gamma", "delta"]
        for i, name in enumerate(names):
            make_credential(name, quota=10, used=i)
        pool = make_pool(
            {name: failing_backend(PermanentSearchError(f"{name}: bad key", 403)) for name in names},
            max_attempts=3,
        )

        outcome = pool.search("planted")

        assert not outcome.success
        assert isinstance(outcome.error, SourceUnavailable)
        assert outcome.attempts == 3
        assert outcome.error.engines_tried == ["alpha", "beta", "gamma"]

    def test_unclassified_backend_error_rotates(self):
        """An exception a backend did not classify moves on to the next engine."""
        from scout.models import SearchEngineCredential

        make_credential("alpha", quota=10, used=0)
        make_credential("beta", quota=10, used=5)
        pool = make_pool(
            {
                "alpha": failing_backend(KeyError("items")),
                "beta": ok_backend("beta"),
            }
        )

        outcome = pool.search("planted")

        assert outcome.success
        assert outcome.engine == "beta"
        assert SearchEngineCredential.objects.get(name="alpha").consecutive_failures == 1

    @responses.activate
    def test_html_interstitial_on_every_engine_is_source_unavailable(self):
        """Captcha pages from the real Google client end in SourceUnavailable."""
        from scout.exceptions import SourceUnavailable
        from scout.search.backends import build_backend
        from scout.search.pool import SearchEnginePool

        responses.add(
            responses.GET,
            "https://www.googleapis.com/customsearch/v1",
            body="<html>captcha</html>",
            status=200,
            content_type="text/html",
        )
        make_credential("alpha", quota=10)
        make_credential("beta", quota=10)
        pool = SearchEnginePool(
            governor=Mock(),
            backend_factory=build_backend,
            max_attempts=3,
            backoff_seconds=0,
            billing_enabled=False,
        )

        outcome = pool.search("planted")

        assert not outcome.success
        assert isinstance(outcome.error, SourceUnavailable)
        assert sorted(outcome.engines_tried) == ["alpha", "beta"]


@pytest.mark.django_db
class TestPaidMode:
    """Tests for paid searches after free quotas run out."""

    def test_paid_mode_records_cost(self):
        """With billing enabled, an exhausted pool falls back to a paid engine."""
        from scout.models import BudgetDay

        make_credential("alpha", quota=1, used=1, paid=True)
        pool = make_pool(
            {"alpha": ok_backend("alpha")},
            billing_enabled=True,
            paid_query_cost="0.005",
        )

        outcome = pool.search("planted")

        assert outcome.success
        assert outcome.mode == "paid"
        day = BudgetDay.objects.get()
        assert day.search_queries_paid == 1
        assert day.search_cost == Decimal("0.005")

    def test_paid_mode_disabled_without_billing(self):
        make_credential("alpha", quota=1, used=1, paid=True)
        pool = make_pool({"alpha": ok_backend("alpha")}, billing_enabled=False)

        outcome = pool.search("planted")

        assert not outcome.success
        assert outcome.budget_refusal is None

    def test_budget_refusal_stops_paid_query(self):
        """A refusal from the governor is returned without calling any backend."""
        from scout.budget.governor import BudgetExceeded

        make_credential("alpha", quota=1, used=1, paid=True)
        backend = ok_backend("alpha")
        governor = Mock()
        governor.reserve_search_query.return_value = BudgetExceeded(
            scope="daily", reason="Daily budget exhausted", spent=Decimal("5"), limit=Decimal("5")
        )
        pool = make_pool(
            {"alpha": backend}, governor=governor, billing_enabled=True, paid_query_cost="0.005"
        )

        outcome = pool.search("planted")

        assert not outcome.success
        assert outcome.budget_refusal.scope == "daily"
        backend.execute.assert_not_called()
        governor.reserve_search_query.assert_called_once_with("paid", cost=Decimal("0.005"))
        governor.record_search_query.assert_not_called()

    def test_exhausted_budget_refuses_without_counting(self):
        """At the daily limit the paid query is refused and nothing is counted."""
        from django.utils import timezone

        from scout.models import BudgetDay

        BudgetDay.objects.create(
            date=timezone.now().date(), search_cost=Decimal("5.00"), total_cost=Decimal("5.00")
        )
        make_credential("alpha", quota=1, used=1, paid=True)
        backend = ok_backend("alpha")
        pool = make_pool(
            {"alpha": backend}, billing_enabled=True, paid_query_cost="0.005"
        )

        outcome = pool.search("planted")

        assert outcome.budget_refusal.scope == "daily"
        backend.execute.assert_not_called()
        day = BudgetDay.objects.get()
        assert day.search_queries_paid == 0
        assert day.total_cost == Decimal("5.00")


@pytest.mark.django_db
class TestQuotaReset:
    """Tests for the daily quota reset."""

    def test_reset_only_stale_credentials(self):
        """Credentials last reset before today go back to zero usage."""
        from django.utils import timezone

        from scout.models import SearchEngineCredential
        from scout.search.pool import SearchEnginePool

        today = timezone.now().date()
        make_credential("stale", used=3, quota_date=today - timedelta(days=1))
        make_credential("fresh", used=2, quota_date=today)

        assert SearchEnginePool.reset_daily_quotas() == 1

        stale = SearchEngineCredential.objects.get(name="stale")
        assert stale.used_today == 0
        assert stale.quota_date == today
        assert SearchEngineCredential.objects.get(name="fresh").used_today == 2
