"""
Tests for the LearningLoop.
"""

from datetime import timedelta

import pytest
from django.utils import timezone


def make_strategy(template, tier=2, success_rate=50, origin="seed"):
    from scout.models import DiscoveryStrategy

    return DiscoveryStrategy.objects.create(
        query_template=template,
        platform="lieferando",
        country="DE",
        tier=tier,
        success_rate=success_rate,
        origin=origin,
    )


@pytest.mark.django_db
class TestLearningLoop:
    """Tests for strategy re-tiering from feedback."""

    def test_skips_with_insufficient_feedback(self, strategy, make_feedback):
        """Fewer than 10 records in the window is a no-op."""
        from scout.quality.learning import LearningLoop

        make_feedback(9, "true_positive", strategy_id=strategy.pk)

        result = LearningLoop().run()

        assert result.feedback_analyzed == 9
        assert result.skipped_reason == "insufficient feedback (9 < 10)"
        strategy.refresh_from_db()
        assert strategy.tier == 2

    def test_promotes_and_demotes(self, make_feedback):
        from scout.quality.learning import LearningLoop

        good = make_strategy("{product} good", tier=3)
        bad = make_strategy("{product} bad", tier=1)
        make_feedback(7, "true_positive", strategy_id=good.pk)
        make_feedback(3, "false_positive", strategy_id=good.pk)
        make_feedback(1, "true_positive", strategy_id=bad.pk)
        make_feedback(5, "false_positive", strategy_id=bad.pk)

        result = LearningLoop().run()

        assert result.tier_changes == 2
        good.refresh_from_db()
        bad.refresh_from_db()
        assert (good.tier, good.success_rate) == (1, 70)
        assert (bad.tier, bad.success_rate) == (3, 17)

    def test_middle_band_updates_rate_only(self, make_feedback):
        from scout.quality.learning import LearningLoop

        strategy = make_strategy("{product} middle", tier=2, success_rate=50)
        make_feedback(4, "true_positive", strategy_id=strategy.pk)
        make_feedback(6, "false_positive", strategy_id=strategy.pk)

        result = LearningLoop().run()

        assert result.tier_changes == 0
        strategy.refresh_from_db()
        assert (strategy.tier, strategy.success_rate) == (2, 40)

    def test_small_buckets_and_placeholders_ignored(self, make_feedback):
        """Buckets under 5 samples, placeholder ids and agent strategies never move."""
        from scout.quality.learning import LearningLoop

        few = make_strategy("{product} few", tier=2)
        agent = make_strategy("{product} agent", tier=2, origin="agent")
        make_feedback(4, "true_positive", strategy_id=few.pk)
        make_feedback(6, "true_positive", strategy_id=agent.pk)
        make_feedback(5, "true_positive", strategy_id="agent-generated")
        make_feedback(5, "true_positive", strategy_id="")

        result = LearningLoop().run()

        assert result.feedback_analyzed == 20
        assert result.insights == []
        few.refresh_from_db()
        agent.refresh_from_db()
        assert few.tier == 2
        assert agent.tier == 2

    def test_feedback_outside_window_ignored(self, strategy, make_feedback):
        from scout.quality.learning import LearningLoop

        make_feedback(
            10, "true_positive", strategy_id=strategy.pk,
            reviewed_at=timezone.now() - timedelta(days=8),
        )

        result = LearningLoop().run()

        assert result.feedback_analyzed == 0
        assert result.skipped_reason

    def test_dry_run_reports_without_writing(self, make_feedback):
        from scout.quality.learning import LearningLoop

        strategy = make_strategy("{product} good", tier=3, success_rate=50)
        make_feedback(10, "true_positive", strategy_id=strategy.pk)

        result = LearningLoop().run(dry_run=True)

        data = result.to_dict()
        assert data["dry_run"] is True
        assert data["tier_changes"] == 1
        assert data["changes"] == [
            {"strategy_id": str(strategy.pk), "from": 3, "to": 1, "success_rate": 100, "samples": 10}
        ]
        strategy.refresh_from_db()
        assert (strategy.tier, strategy.success_rate) == (3, 50)
