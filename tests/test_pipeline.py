"""
Tests for the QualityPipeline.

Discovery and extraction are replaced with fakes; gates, verification and
learning run against the test database.
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest


class FakeDiscoveryAgent:
    """Stands in for DiscoveryAgent and remembers the configs it was given."""

    configs = []

    def __init__(self, config):
        self.config = config
        FakeDiscoveryAgent.configs.append(config)

    def run(self):
        result = Mock()
        result.to_dict.return_value = {"state": "done", "stats": {"venues_created": 2}}
        return result


def make_extractor(venue_ids):
    """Extractor that reports success for the given venue ids."""
    from scout.extraction.agent import ExtractionResult, VenueExtraction, VenueTarget

    calls = []

    def extractor(venues):
        calls.append(list(venues))
        result = ExtractionResult(venues_attempted=len(venue_ids), venues_succeeded=len(venue_ids))
        for pk in venue_ids:
            target = VenueTarget(url=f"https://www.lieferando.de/speisekarte/{pk}",
                                 platform="lieferando", venue_pk=str(pk))
            result.extractions.append(VenueExtraction(target=target, success=True))
        return result

    extractor.calls = calls
    return extractor


@pytest.mark.django_db
class TestQualityPipeline:
    """Tests for a full pipeline pass."""

    def setup_method(self):
        FakeDiscoveryAgent.configs = []

    def test_full_run_reports_every_step(self, venue):
        from scout.models import DiscoveredDish, PipelineRun, RunKind, RunStatus
        from scout.pipeline import QualityPipeline

        DiscoveredDish.objects.create(
            venue=venue, name="Planted Bowl", price_amount=Decimal("12.90"), price_currency="EUR"
        )
        DiscoveredDish.objects.create(venue=venue, name="Side Salad")
        extractor = make_extractor([venue.pk])

        report = QualityPipeline(
            discovery_agent_class=FakeDiscoveryAgent, extractor=extractor
        ).run(countries=["DE"], max_queries=3)

        steps = report.steps
        assert {(s["platform"], s["country"]) for s in steps["gates"]["healthy"]} == {
            ("lieferando", "DE"),
            ("uber_eats", "DE"),
        }
        assert steps["gates"]["excluded"] == []
        assert steps["discovery"]["stats"]["venues_created"] == 2
        assert FakeDiscoveryAgent.configs[0].max_queries == 3
        assert [v.pk for v in extractor.calls[0]] == [venue.pk]
        assert steps["extraction"]["venues_succeeded"] == 1

        verification = steps["verification"]["venues"][str(venue.pk)]
        assert (verification["total"], verification["valid"], verification["invalid"]) == (2, 1, 1)
        assert verification["issues"][0]["issues"] == ["missing price"]
        assert steps["verification"]["invalid_dishes"] == 1
        assert steps["learning"]["skipped_reason"] == "insufficient feedback (0 < 10)"

        run = PipelineRun.objects.get(pk=report.run_id)
        assert run.kind == RunKind.PIPELINE
        assert run.status == RunStatus.COMPLETED
        assert run.config["countries"] == ["DE"]

    def test_dry_run_skips_discovery_and_extraction(self, venue):
        from scout.pipeline import QualityPipeline

        extractor = make_extractor([])

        report = QualityPipeline(
            discovery_agent_class=FakeDiscoveryAgent, extractor=extractor
        ).run(platforms=["lieferando"], dry_run=True)

        assert report.dry_run is True
        assert report.steps["discovery"] == {"skipped": True, "reason": "dry run"}
        assert report.steps["extraction"] == {"skipped": True, "reason": "dry run"}
        assert report.steps["verification"] == {"venues": {}, "invalid_dishes": 0}
        assert report.steps["learning"]["dry_run"] is True
        assert FakeDiscoveryAgent.configs == []
        assert extractor.calls == []

    def test_excluded_source_reported(self, make_feedback):
        from scout.pipeline import QualityPipeline

        make_feedback(10, "false_positive", platform="lieferando", country="AT")

        report = QualityPipeline().run(
            platforms=["lieferando"], skip_discovery=True, skip_extraction=True, skip_learning=True
        )

        gates = report.steps["gates"]
        assert [(s["platform"], s["country"]) for s in gates["healthy"]] == [("lieferando", "DE")]
        assert gates["excluded"][0]["country"] == "AT"
        assert gates["excluded"][0]["success_rate"] == 0
        assert report.steps["learning"] == {"skipped": True, "reason": "skipped"}

    def test_discovery_configuration_error_is_reported(self):
        from scout.exceptions import ConfigurationError
        from scout.pipeline import QualityPipeline

        agent_class = Mock()
        agent_class.return_value.run.side_effect = ConfigurationError("No search engine credentials configured")

        report = QualityPipeline(discovery_agent_class=agent_class).run(
            platforms=["lieferando"], skip_extraction=True, skip_learning=True
        )

        assert report.steps["discovery"] == {"error": "No search engine credentials configured"}

    def test_unexpected_error_fails_run(self):
        from scout.models import PipelineRun, RunStatus
        from scout.pipeline import QualityPipeline

        def broken_extractor(venues):
            raise RuntimeError("browser crashed")

        pipeline = QualityPipeline(extractor=broken_extractor)
        with pytest.raises(RuntimeError):
            pipeline.run(platforms=["lieferando"], skip_discovery=True, skip_learning=True)

        run = PipelineRun.objects.get()
        assert run.status == RunStatus.FAILED
        assert run.error_message == "browser crashed"
        assert "gates" in run.stats


@pytest.mark.django_db
class TestPendingVenues:
    """Tests for selecting venues to extract."""

    def test_filters_and_orders(self, venue, strategy):
        from scout.models import DiscoveredVenue, VenueStatus
        from scout.pipeline import pending_venues

        DiscoveredVenue.objects.create(
            name="Chain Venue", url="https://www.lieferando.de/speisekarte/chain",
            normalized_url="https://lieferando.de/speisekarte/chain", platform="lieferando",
            resolved_country="DE", extraction_skipped=True,
        )
        DiscoveredVenue.objects.create(
            name="Done", url="https://www.lieferando.de/speisekarte/done",
            normalized_url="https://lieferando.de/speisekarte/done", platform="lieferando",
            resolved_country="DE", status=VenueStatus.EXTRACTED,
        )
        austrian = DiscoveredVenue.objects.create(
            name="Wiener Gruen", url="https://www.lieferando.at/speisekarte/wiener-gruen",
            normalized_url="https://lieferando.at/speisekarte/wiener-gruen", platform="lieferando",
            resolved_country="AT",
        )

        assert [v.pk for v in pending_venues()] == [venue.pk, austrian.pk]
        assert [v.pk for v in pending_venues(countries=["AT"])] == [austrian.pk]
        assert pending_venues(platforms=["uber_eats"]) == []
        assert len(pending_venues(limit=1)) == 1


class TestDishPayload:
    """Tests for stored dish conversion."""

    def test_with_and_without_price(self):
        from types import SimpleNamespace

        from scout.pipeline import dish_payload

        priced = SimpleNamespace(name="Bowl", price_amount=Decimal("9.50"), price_currency="CHF")
        unpriced = SimpleNamespace(name="Salad", price_amount=None, price_currency="")

        assert dish_payload(priced) == {"name": "Bowl", "price": {"amount": Decimal("9.50"), "currency": "CHF"}}
        assert dish_payload(unpriced) == {"name": "Salad", "price": None}
