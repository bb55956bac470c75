"""
Learning Loop - Re-tiers discovery strategies from reviewed feedback.

Each cycle:
1. Collect FeedbackRecords reviewed in the trailing window (default 7 days)
2. Skip the cycle when fewer than MIN_FEEDBACK_RECORDS exist
3. Bucket by strategy_id, ignoring placeholder ids and agent strategies
4. For buckets with enough samples, recompute success_rate and apply the
   promotion/demotion rule from scout.strategies.tiering
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from django.db.models import Count, Q
from django.utils import timezone

from scout.strategies.store import StrategyStore
from scout.strategies.tiering import (
    MIN_SAMPLES_FOR_TIERING,
    compute_tier_transition,
    success_rate_percent,
)

logger = logging.getLogger(__name__)


@dataclass
class StrategyInsight:
    strategy_id: str
    samples: int
    true_positives: int
    success_rate: int
    previous_tier: int
    new_tier: int

    @property
    def changed(self) -> bool:
        return self.previous_tier != self.new_tier


@dataclass
class LearningResult:
    feedback_analyzed: int = 0
    skipped_reason: str = ""
    insights: List[StrategyInsight] = field(default_factory=list)
    tier_changes: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "feedback_analyzed": self.feedback_analyzed,
            "skipped_reason": self.skipped_reason,
            "strategies_evaluated": len(self.insights),
            "tier_changes": self.tier_changes,
            "dry_run": self.dry_run,
            "changes": [
                {
                    "strategy_id": i.strategy_id,
                    "from": i.previous_tier,
                    "to": i.new_tier,
                    "success_rate": i.success_rate,
                    "samples": i.samples,
                }
                for i in self.insights
                if i.changed
            ],
        }


class LearningLoop:
    """
    Usage:
        result = LearningLoop().run()
        print(result.tier_changes)
    """

    WINDOW_DAYS = 7
    MIN_FEEDBACK_RECORDS = 10

    # strategy_id values that never map to a stored strategy
    PLACEHOLDER_IDS = {"", "unknown", "agent-generated"}

    def __init__(self, strategy_store: Optional[StrategyStore] = None):
        self.strategy_store = strategy_store or StrategyStore()

    def run(self, window_days: Optional[int] = None, dry_run: bool = False) -> LearningResult:
        from scout.models import DiscoveryStrategy, FeedbackRecord, FeedbackResult, StrategyOrigin

        window_days = window_days or self.WINDOW_DAYS
        since = timezone.now() - timedelta(days=window_days)
        records = FeedbackRecord.objects.filter(reviewed_at__gte=since)

        result = LearningResult(feedback_analyzed=records.count(), dry_run=dry_run)
        if result.feedback_analyzed < self.MIN_FEEDBACK_RECORDS:
            result.skipped_reason = (
                f"insufficient feedback ({result.feedback_analyzed} < {self.MIN_FEEDBACK_RECORDS})"
            )
            logger.info("Learning cycle skipped: %s", result.skipped_reason)
            return result

        buckets = (
            records.order_by()
            .values("strategy_id")
            .annotate(
                total=Count("id"),
                true_positive=Count("id", filter=Q(result_type=FeedbackResult.TRUE_POSITIVE)),
            )
        )

        by_pk = {}
        for bucket in buckets:
            strategy_id = (bucket["strategy_id"] or "").strip()
            if strategy_id.lower() in self.PLACEHOLDER_IDS:
                continue
            try:
                by_pk[uuid.UUID(strategy_id)] = bucket
            except ValueError:
                logger.debug("Skipping feedback for unknown strategy id %r", strategy_id)

        strategies = DiscoveryStrategy.objects.in_bulk(list(by_pk))

        for pk, bucket in by_pk.items():
            strategy = strategies.get(pk)
            if strategy is None or strategy.origin == StrategyOrigin.AGENT:
                continue
            if bucket["total"] < MIN_SAMPLES_FOR_TIERING:
                continue

            rate = success_rate_percent(bucket["true_positive"], bucket["total"])
            new_tier = compute_tier_transition(strategy.tier, bucket["total"], rate)
            insight = StrategyInsight(
                strategy_id=str(pk),
                samples=bucket["total"],
                true_positives=bucket["true_positive"],
                success_rate=rate,
                previous_tier=strategy.tier,
                new_tier=new_tier,
            )
            result.insights.append(insight)

            if insight.changed:
                result.tier_changes += 1
                logger.info(
                    "Strategy %s tier %d -> %d (%d%% over %d samples)%s",
                    pk, insight.previous_tier, new_tier, rate, insight.samples,
                    " [dry run]" if dry_run else "",
                )

            if dry_run:
                continue
            if insight.changed:
                self.strategy_store.apply_tier(strategy, new_tier, rate)
            else:
                self.strategy_store.update_success_rate(strategy, rate)

        logger.info(
            "Learning cycle done: %d records, %d strategies evaluated, %d tier changes",
            result.feedback_analyzed, len(result.insights), result.tier_changes,
        )
        return result
