"""
Search Engine Pool - Rotates queries across quota-limited search backends.

Selection order:
1. Active credential with free quota left, least used first. The quota
   check-and-increment is a single conditional UPDATE, so concurrent
   workers can never push an engine past its daily_free_quota.
2. Once every free quota is exhausted, paid mode on a credential flagged
   uses_paid_budget, if billing is enabled and the budget allows it.

Backend errors rotate to a different engine with exponential backoff, up
to a fixed attempt ceiling. Past the ceiling the outcome carries a
SourceUnavailable error; search() itself never raises for backend failures.
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from scout.budget.governor import BudgetExceeded, BudgetGovernor, get_budget_governor
from scout.exceptions import SourceUnavailable
from scout.search.backends import (
    PermanentSearchError,
    QuotaExceededError,
    SearchBackendError,
    TransientSearchError,
    build_backend,
)

logger = logging.getLogger(__name__)

MODE_FREE = "free"
MODE_PAID = "paid"


@dataclass
class SearchOutcome:
    """Result of one pooled search, successful or not."""

    query: str
    content: Optional[Dict[str, Any]] = None
    engine: str = ""
    mode: str = ""
    attempts: int = 0
    engines_tried: List[str] = field(default_factory=list)
    error: Optional[SourceUnavailable] = None
    budget_refusal: Optional[BudgetExceeded] = None

    @property
    def success(self) -> bool:
        return self.content is not None


class SearchEnginePool:
    """
    Usage:
        pool = SearchEnginePool()
        outcome = pool.search("site:lieferando.de planted berlin")
        if outcome.success:
            items = outcome.content["items"]
    """

    def __init__(
        self,
        governor: Optional[BudgetGovernor] = None,
        backend_factory: Callable = build_backend,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        billing_enabled: Optional[bool] = None,
        paid_query_cost=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.governor = governor or get_budget_governor()
        self.backend_factory = backend_factory
        self.max_attempts = max_attempts or getattr(settings, "SEARCH_MAX_ATTEMPTS", 3)
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else getattr(settings, "SEARCH_BACKOFF_SECONDS", 1.0)
        )
        self.billing_enabled = (
            billing_enabled
            if billing_enabled is not None
            else getattr(settings, "SEARCH_BILLING_ENABLED", False)
        )
        self.paid_query_cost = Decimal(
            str(
                paid_query_cost
                if paid_query_cost is not None
                else getattr(settings, "SEARCH_PAID_QUERY_COST_USD", "0.005")
            )
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Quota bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def reset_daily_quotas() -> int:
        """Reset used_today on credentials whose quota_date is before today (UTC)."""
        from scout.models import SearchEngineCredential, utc_today

        today = utc_today()
        reset = SearchEngineCredential.objects.filter(quota_date__lt=today).update(
            used_today=0, quota_date=today
        )
        if reset:
            logger.info("Reset daily free quota on %d search engines", reset)
        return reset

    @staticmethod
    def has_credentials() -> bool:
        from scout.models import SearchEngineCredential

        return SearchEngineCredential.objects.filter(is_active=True).exists()

    def get_quota_status(self) -> Dict[str, Any]:
        """Free quota usage across active engines."""
        from scout.models import SearchEngineCredential

        self.reset_daily_quotas()
        engines = list(SearchEngineCredential.objects.filter(is_active=True))
        return {
            "engines": len(engines),
            "free_quota_total": sum(e.daily_free_quota for e in engines),
            "free_used_today": sum(e.used_today for e in engines),
            "free_remaining": sum(e.remaining_free for e in engines),
            "billing_enabled": self.billing_enabled,
        }

    def _acquire_free(self, exclude: List) -> Optional[Any]:
        from scout.models import SearchEngineCredential

        self.reset_daily_quotas()
        candidates = (
            SearchEngineCredential.objects.filter(
                is_active=True, used_today__lt=F("daily_free_quota")
            )
            .exclude(pk__in=exclude)
            .order_by("used_today", "last_used_at")
        )
        for credential in candidates:
            claimed = SearchEngineCredential.objects.filter(
                pk=credential.pk, used_today__lt=F("daily_free_quota")
            ).update(used_today=F("used_today") + 1, last_used_at=timezone.now())
            if claimed:
                credential.used_today += 1
                return credential
        return None

    def _acquire_paid(self, exclude: List) -> Tuple[Optional[Any], Optional[BudgetExceeded]]:
        from scout.models import SearchEngineCredential

        if not self.billing_enabled:
            return None, None

        credential = (
            SearchEngineCredential.objects.filter(is_active=True, uses_paid_budget=True)
            .exclude(pk__in=exclude)
            .order_by("last_used_at")
            .first()
        )
        if credential is None:
            return None, None

        refusal = self.governor.reserve_search_query(MODE_PAID, cost=self.paid_query_cost)
        if refusal is not None:
            logger.warning("Paid search refused: %s", refusal.reason)
            return None, refusal

        SearchEngineCredential.objects.filter(pk=credential.pk).update(
            last_used_at=timezone.now()
        )
        return credential, None

    def acquire(self, exclude: Optional[List] = None):
        """
        Pick an engine for one query.

        Returns:
            Tuple of (credential, mode, budget_refusal). credential is None
            when nothing is available.
        """
        exclude = exclude or []
        credential = self._acquire_free(exclude)
        if credential is not None:
            return credential, MODE_FREE, None

        credential, refusal = self._acquire_paid(exclude)
        if credential is not None:
            logger.info("Free quotas exhausted, using paid mode on %s", credential.name)
            return credential, MODE_PAID, None
        return None, "", refusal

    @staticmethod
    def _mark_exhausted(credential) -> None:
        from scout.models import SearchEngineCredential

        SearchEngineCredential.objects.filter(pk=credential.pk).update(
            used_today=F("daily_free_quota")
        )

    @staticmethod
    def _record_failure(credential, error: Exception) -> None:
        from scout.models import SearchEngineCredential

        SearchEngineCredential.objects.filter(pk=credential.pk).update(
            consecutive_failures=F("consecutive_failures") + 1,
            last_error=str(error)[:500],
        )

    @staticmethod
    def _record_success(credential) -> None:
        from scout.models import SearchEngineCredential

        if credential.consecutive_failures:
            SearchEngineCredential.objects.filter(pk=credential.pk).update(
                consecutive_failures=0
            )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str) -> SearchOutcome:
        """Execute one query, rotating engines on failure."""
        excluded: List = []
        tried: List[str] = []

        for attempt in range(self.max_attempts):
            credential, mode, refusal = self.acquire(excluded)
            if refusal is not None:
                return SearchOutcome(
                    query=query, attempts=attempt, engines_tried=tried, budget_refusal=refusal
                )
            if credential is None:
                break

            tried.append(credential.name)
            backend = self.backend_factory(credential)

            try:
                content = backend.execute(query)
            except QuotaExceededError as e:
                logger.warning("Engine %s quota exceeded: %s", credential.name, e)
                if mode == MODE_FREE:
                    self._mark_exhausted(credential)
                self._record_failure(credential, e)
                excluded.append(credential.pk)
                continue
            except TransientSearchError as e:
                logger.warning(
                    "Engine %s transient error (attempt %d/%d): %s",
                    credential.name, attempt + 1, self.max_attempts, e,
                )
                self._record_failure(credential, e)
                excluded.append(credential.pk)
                self._backoff(attempt)
                continue
            except PermanentSearchError as e:
                logger.error("Engine %s permanent error: %s", credential.name, e)
                self._record_failure(credential, e)
                excluded.append(credential.pk)
                continue
            except SearchBackendError as e:
                logger.warning("Engine %s error: %s", credential.name, e)
                self._record_failure(credential, e)
                excluded.append(credential.pk)
                self._backoff(attempt)
                continue
            except Exception as e:
                # Anything a backend did not classify is retried on another engine
                logger.exception("Engine %s unexpected error", credential.name)
                self._record_failure(credential, e)
                excluded.append(credential.pk)
                self._backoff(attempt)
                continue

            self._record_success(credential)
            if mode == MODE_FREE:
                self.governor.record_search_query(MODE_FREE)

            logger.debug("Query %r served by %s (%s)", query, credential.name, mode)
            return SearchOutcome(
                query=query,
                content=content,
                engine=credential.name,
                mode=mode,
                attempts=attempt + 1,
                engines_tried=tried,
            )

        error = SourceUnavailable(
            f"No search engine could serve query {query!r}",
            engines_tried=tried,
            attempts=len(tried),
        )
        logger.warning("%s (tried: %s)", error, ", ".join(tried) or "none")
        return SearchOutcome(
            query=query, attempts=len(tried), engines_tried=tried, error=error
        )

    def _backoff(self, attempt: int) -> None:
        delay = self.backoff_seconds * (2 ** attempt)
        if delay > 0:
            self._sleep(delay)
