"""
Quality Gate - Source health from feedback, and dish record validation.

Source health (per platform/country):
- Fewer than MIN_FEEDBACK_FOR_DECISION samples: healthy, reported at 50%
- Otherwise excluded when success_rate < MIN_SUCCESS_RATE or
  error_rate > MAX_ERROR_RATE

Dish validation is a structural data-integrity check and is independent of
the learning signal: a non-empty name, a positive price amount, and a
three-letter currency code.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from django.db.models import Count, Q
from django.utils import timezone

from scout.exceptions import ValidationFailure
from scout.strategies.store import StrategyStore
from scout.strategies.tiering import success_rate_percent

logger = logging.getLogger(__name__)

SourceKey = Tuple[str, str]


@dataclass
class SourceHealth:
    platform: str
    country: str
    samples: int
    success_rate: int
    error_rate: int
    healthy: bool
    reason: str = ""


@dataclass
class DishValidation:
    valid: bool
    issues: List[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    records: List[Dict[str, Any]] = field(default_factory=list)


def _get(obj: Any, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class QualityGate:
    """
    Aggregates FeedbackRecords and decides which sources are worth searching.

    Usage:
        gate = QualityGate()
        healthy = gate.get_healthy_sources()
        check = gate.validate_dish({"name": "", "price": {"amount": 12, "currency": "EUR"}})
    """

    MIN_SUCCESS_RATE = 15
    MAX_ERROR_RATE = 40
    MIN_FEEDBACK_FOR_DECISION = 10
    BENEFIT_OF_DOUBT_RATE = 50

    def __init__(self, strategy_store: Optional[StrategyStore] = None, window_days: Optional[int] = None):
        self.strategy_store = strategy_store or StrategyStore()
        self.window_days = window_days

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_feedback(
        self,
        subject_id: str,
        platform: str,
        country: str,
        result_type: str,
        strategy_id: str = "",
        reviewed_at=None,
        notes: str = "",
    ):
        """Append a FeedbackRecord and count the outcome against its strategy."""
        from scout.models import FeedbackRecord

        record = FeedbackRecord.objects.create(
            subject_id=str(subject_id),
            platform=platform,
            country=country,
            strategy_id=str(strategy_id or ""),
            result_type=result_type,
            reviewed_at=reviewed_at or timezone.now(),
            notes=notes,
        )
        if strategy_id:
            self.strategy_store.record_outcome(str(strategy_id), result_type)
        return record

    def analyze_feedback_by_source(self) -> Dict[SourceKey, Dict[str, int]]:
        """Counts per (platform, country): total, true_positive, false_positive, error."""
        from scout.models import FeedbackRecord, FeedbackResult

        qs = FeedbackRecord.objects.all()
        if self.window_days:
            qs = qs.filter(reviewed_at__gte=timezone.now() - timedelta(days=self.window_days))

        rows = (
            qs.order_by()
            .values("platform", "country")
            .annotate(
                total=Count("id"),
                true_positive=Count("id", filter=Q(result_type=FeedbackResult.TRUE_POSITIVE)),
                false_positive=Count("id", filter=Q(result_type=FeedbackResult.FALSE_POSITIVE)),
                error=Count("id", filter=Q(result_type=FeedbackResult.ERROR)),
            )
        )
        return {
            (row["platform"], row["country"]): {
                "total": row["total"],
                "true_positive": row["true_positive"],
                "false_positive": row["false_positive"],
                "error": row["error"],
            }
            for row in rows
        }

    def assess_source(self, platform: str, country: str, stats: Optional[Dict[str, int]]) -> SourceHealth:
        total = (stats or {}).get("total", 0)

        if total < self.MIN_FEEDBACK_FOR_DECISION:
            return SourceHealth(
                platform=platform,
                country=country,
                samples=total,
                success_rate=self.BENEFIT_OF_DOUBT_RATE,
                error_rate=0,
                healthy=True,
                reason="insufficient feedback",
            )

        success_rate = success_rate_percent(stats["true_positive"], total)
        error_rate = success_rate_percent(stats["error"], total)

        if success_rate < self.MIN_SUCCESS_RATE:
            reason = f"success rate {success_rate}% below {self.MIN_SUCCESS_RATE}%"
            healthy = False
        elif error_rate > self.MAX_ERROR_RATE:
            reason = f"error rate {error_rate}% above {self.MAX_ERROR_RATE}%"
            healthy = False
        else:
            reason = ""
            healthy = True

        return SourceHealth(
            platform=platform,
            country=country,
            samples=total,
            success_rate=success_rate,
            error_rate=error_rate,
            healthy=healthy,
            reason=reason,
        )

    def evaluate_sources(
        self, candidates: Optional[Iterable[SourceKey]] = None
    ) -> Tuple[List[SourceHealth], List[SourceHealth]]:
        """
        Split sources into healthy and excluded.

        Args:
            candidates: (platform, country) pairs to judge. Defaults to every
                pair that has feedback.

        Returns:
            Tuple of (healthy sorted by success_rate descending, excluded)
        """
        from scout.monitoring.sentry_integration import capture_alert

        stats = self.analyze_feedback_by_source()
        keys = list(candidates) if candidates is not None else list(stats)

        healthy: List[SourceHealth] = []
        excluded: List[SourceHealth] = []
        for platform, country in keys:
            health = self.assess_source(platform, country, stats.get((platform, country)))
            if health.healthy:
                healthy.append(health)
                continue

            excluded.append(health)
            logger.warning(
                "Excluding source %s/%s: %s (success %d%%, errors %d%%, %d samples)",
                platform, country, health.reason,
                health.success_rate, health.error_rate, health.samples,
            )
            capture_alert(
                message=f"Source {platform}/{country} excluded: {health.reason}",
                level="info",
                platform=platform,
                country=country,
                extra_data={
                    "success_rate": health.success_rate,
                    "error_rate": health.error_rate,
                    "samples": health.samples,
                },
            )

        healthy.sort(key=lambda h: h.success_rate, reverse=True)
        return healthy, excluded

    def get_healthy_sources(self, candidates: Optional[Iterable[SourceKey]] = None) -> List[SourceHealth]:
        healthy, _ = self.evaluate_sources(candidates)
        return healthy

    # ------------------------------------------------------------------
    # Dish validation
    # ------------------------------------------------------------------

    def validate_dish(self, dish: Any) -> DishValidation:
        """
        Structural checks on one dish record.

        Accepts dicts or objects with name and either a price object/dict
        (amount, currency) or flat price/currency attributes.
        """
        issues: List[str] = []

        name = _get(dish, "name")
        if not isinstance(name, str) or not name.strip():
            issues.append("missing name")

        price = _get(dish, "price")
        if price is None:
            issues.append("missing price")
            return DishValidation(valid=False, issues=issues)

        if isinstance(price, (int, float, Decimal, str)):
            amount, currency = price, _get(dish, "currency")
        else:
            amount, currency = _get(price, "amount"), _get(price, "currency")

        try:
            valid_amount = amount is not None and not isinstance(amount, bool) \
                and Decimal(str(amount)) > 0
        except InvalidOperation:
            valid_amount = False
        if not valid_amount:
            issues.append("invalid price amount")

        if not (isinstance(currency, str) and len(currency) == 3 and currency.isalpha()):
            issues.append("invalid currency")

        return DishValidation(valid=not issues, issues=issues)

    def validate_dishes(self, dishes: Sequence[Any]) -> ValidationReport:
        report = ValidationReport(total=len(dishes))
        for index, dish in enumerate(dishes):
            result = self.validate_dish(dish)
            if result.valid:
                report.valid += 1
            else:
                report.invalid += 1
            report.records.append(
                {"index": index, "name": _get(dish, "name") or "", "valid": result.valid,
                 "issues": result.issues}
            )
        return report

    def require_valid(self, dish: Any) -> None:
        """Raise ValidationFailure if the dish fails validate_dish."""
        result = self.validate_dish(dish)
        if not result.valid:
            raise ValidationFailure(
                f"Invalid dish {_get(dish, 'name')!r}: {', '.join(result.issues)}",
                issues=result.issues,
            )
