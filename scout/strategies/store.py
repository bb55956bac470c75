"""
Strategy Store - Catalog of search query strategies with performance metrics.

Reads are filtered by the quality floor; writes are limited to usage and
outcome counters. Tier changes go through apply_tier(), which only the
learning loop calls.
"""

import logging
import uuid
from typing import Dict, List, Optional

from django.db.models import Count, F, Q
from django.utils import timezone

from scout.strategies.tiering import TIER_LOW

logger = logging.getLogger(__name__)


class StrategyStore:
    """Access layer for DiscoveryStrategy rows."""

    # Quality floor for strategy selection (percent)
    MIN_SUCCESS_RATE = 15

    # Tested strategies below this rate are reported as struggling
    STRUGGLING_RATE = 30

    def active(self, platform: Optional[str] = None, country: Optional[str] = None):
        from scout.models import DiscoveryStrategy

        qs = DiscoveryStrategy.objects.filter(deprecated_at__isnull=True)
        if platform:
            qs = qs.filter(platform=platform)
        if country:
            qs = qs.filter(country=country)
        return qs

    def get_top_strategies(
        self,
        limit: int = 10,
        platform: Optional[str] = None,
        country: Optional[str] = None,
    ) -> List:
        """
        Active strategies at or above the quality floor.

        Sorted by success_rate descending; tier 1 ahead of tier 2/3 when
        success rates are equal.
        """
        qs = (
            self.active(platform, country)
            .filter(success_rate__gte=self.MIN_SUCCESS_RATE)
            .order_by("-success_rate", "tier", "-total_uses")
        )
        return list(qs[:limit])

    def has_active_strategies(self) -> bool:
        return self.active().exists()

    def record_usage(self, strategy) -> None:
        """Count one execution of the strategy's query."""
        from scout.models import DiscoveryStrategy

        DiscoveryStrategy.objects.filter(pk=strategy.pk).update(
            total_uses=F("total_uses") + 1,
            last_used_at=timezone.now(),
        )

    def record_outcome(self, strategy_id: str, result_type: str) -> bool:
        """
        Count a reviewed outcome against a strategy.

        Returns:
            True if a stored strategy was updated
        """
        from scout.models import DiscoveryStrategy, FeedbackResult

        if result_type == FeedbackResult.TRUE_POSITIVE:
            update = {"successful_discoveries": F("successful_discoveries") + 1}
        elif result_type == FeedbackResult.FALSE_POSITIVE:
            update = {"false_positives": F("false_positives") + 1}
        else:
            return False

        try:
            pk = uuid.UUID(str(strategy_id))
        except ValueError:
            # strategy_id is free text; non-UUID ids have no stored row
            logger.debug("No stored strategy for id %r", strategy_id)
            return False

        return DiscoveryStrategy.objects.filter(pk=pk).update(**update) > 0

    def apply_tier(self, strategy, tier: int, success_rate: int) -> None:
        """Persist a tier and success rate computed by the learning loop."""
        from scout.models import DiscoveryStrategy

        DiscoveryStrategy.objects.filter(pk=strategy.pk).update(
            tier=tier, success_rate=success_rate, updated_at=timezone.now()
        )
        strategy.tier = tier
        strategy.success_rate = success_rate

    def update_success_rate(self, strategy, success_rate: int) -> None:
        from scout.models import DiscoveryStrategy

        DiscoveryStrategy.objects.filter(pk=strategy.pk).update(
            success_rate=success_rate, updated_at=timezone.now()
        )
        strategy.success_rate = success_rate

    def deprecate(self, strategy) -> None:
        """Retire a strategy without deleting it."""
        from scout.models import DiscoveryStrategy

        now = timezone.now()
        DiscoveryStrategy.objects.filter(pk=strategy.pk).update(
            deprecated_at=now, tier=TIER_LOW, updated_at=now
        )
        strategy.deprecated_at = now
        strategy.tier = TIER_LOW
        logger.info("Deprecated strategy %s", strategy.pk)

    def get_stats(self, top_n: int = 5) -> Dict:
        """Tier/origin breakdown plus best and struggling strategies."""
        qs = self.active()
        by_tier = qs.aggregate(
            total=Count("id"),
            high=Count("id", filter=Q(tier=1)),
            medium=Count("id", filter=Q(tier=2)),
            low=Count("id", filter=Q(tier=3)),
            untested=Count("id", filter=Q(total_uses=0)),
        )
        by_origin = {
            row["origin"]: row["count"]
            for row in qs.order_by().values("origin").annotate(count=Count("id"))
        }

        def describe(strategy):
            return {
                "id": str(strategy.pk),
                "platform": strategy.platform,
                "country": strategy.country,
                "query_template": strategy.query_template,
                "tier": strategy.tier,
                "success_rate": strategy.success_rate,
                "total_uses": strategy.total_uses,
            }

        top = qs.filter(total_uses__gt=0).order_by("-success_rate", "tier")[:top_n]
        struggling = qs.filter(
            total_uses__gt=0, success_rate__lt=self.STRUGGLING_RATE
        ).order_by("success_rate")[:top_n]

        return {
            "tiers": by_tier,
            "by_origin": by_origin,
            "top_strategies": [describe(s) for s in top],
            "struggling_strategies": [describe(s) for s in struggling],
        }
