"""
Quality Pipeline - One end-to-end pass over the discovery system.

Steps, in order:
1. gates: healthy and excluded (platform, country) sources
2. discovery: DiscoveryAgent run over the healthy sources
3. extraction: pending venues without a chain short-circuit
4. verification: dish validation report for each venue extracted in step 3
5. learning: LearningLoop cycle

Every step can be skipped. A dry run only reads: discovery and extraction
are skipped and the learning loop reports tier changes without writing them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from scout.discovery.agent import DiscoveryAgent, DiscoveryConfig
from scout.exceptions import ConfigurationError
from scout.extraction.agent import extract_venues
from scout.platforms.registry import available_platforms, get_adapter
from scout.quality.gate import QualityGate
from scout.quality.learning import LearningLoop

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_LIMIT = 20


def pending_venues(platforms=None, countries=None, limit: int = DEFAULT_EXTRACTION_LIMIT) -> List:
    """Discovered venues still waiting for page extraction, oldest first."""
    from scout.models import DiscoveredVenue, VenueStatus

    qs = DiscoveredVenue.objects.filter(status=VenueStatus.DISCOVERED, extraction_skipped=False)
    if platforms:
        qs = qs.filter(platform__in=platforms)
    if countries:
        qs = qs.filter(resolved_country__in=countries)
    return list(qs.order_by("created_at")[:limit])


def dish_payload(dish) -> Dict[str, Any]:
    """Stored dish in the shape QualityGate.validate_dish expects."""
    price = None
    if dish.price_amount is not None:
        price = {"amount": dish.price_amount, "currency": dish.price_currency}
    return {"name": dish.name, "price": price}


@dataclass
class PipelineReport:
    run_id: Optional[str] = None
    dry_run: bool = False
    steps: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"run_id": self.run_id, "dry_run": self.dry_run, "steps": self.steps}


class QualityPipeline:
    """
    Usage:
        report = QualityPipeline().run(countries=["DE"], dry_run=True)
    """

    def __init__(
        self,
        quality_gate: Optional[QualityGate] = None,
        learning_loop: Optional[LearningLoop] = None,
        discovery_agent_class=DiscoveryAgent,
        extractor: Callable = extract_venues,
    ):
        self.quality_gate = quality_gate or QualityGate()
        self.learning_loop = learning_loop or LearningLoop()
        self.discovery_agent_class = discovery_agent_class
        self.extractor = extractor

    def run(
        self,
        platforms: Optional[List[str]] = None,
        countries: Optional[List[str]] = None,
        max_queries: Optional[int] = None,
        extraction_limit: int = DEFAULT_EXTRACTION_LIMIT,
        dry_run: bool = False,
        skip_discovery: bool = False,
        skip_extraction: bool = False,
        skip_learning: bool = False,
    ) -> PipelineReport:
        from scout.models import PipelineRun, RunKind, RunStatus

        platforms = list(platforms or [])
        countries = list(countries or [])
        run = PipelineRun.objects.create(
            kind=RunKind.PIPELINE,
            config={
                "platforms": platforms,
                "countries": countries,
                "max_queries": max_queries,
                "dry_run": dry_run,
                "skip_discovery": skip_discovery,
                "skip_extraction": skip_extraction,
                "skip_learning": skip_learning,
            },
        )
        run.start()
        report = PipelineReport(run_id=str(run.pk), dry_run=dry_run)

        try:
            report.steps["gates"] = self._gates(platforms, countries)

            if skip_discovery or dry_run:
                report.steps["discovery"] = {"skipped": True, "reason": "dry run" if dry_run else "skipped"}
            else:
                report.steps["discovery"] = self._discovery(platforms, countries, max_queries)

            extracted_ids: List[str] = []
            if skip_extraction or dry_run:
                report.steps["extraction"] = {"skipped": True, "reason": "dry run" if dry_run else "skipped"}
            else:
                report.steps["extraction"], extracted_ids = self._extraction(
                    platforms, countries, extraction_limit
                )

            report.steps["verification"] = self._verification(extracted_ids)

            if skip_learning:
                report.steps["learning"] = {"skipped": True, "reason": "skipped"}
            else:
                report.steps["learning"] = self.learning_loop.run(dry_run=dry_run).to_dict()
        except Exception as e:
            logger.exception("Quality pipeline %s failed", run.pk)
            run.complete(stats=report.steps, status=RunStatus.FAILED, error_message=str(e))
            raise

        run.complete(stats=report.steps)
        logger.info("Quality pipeline %s completed (dry_run=%s)", run.pk, dry_run)
        return report

    def _gates(self, platforms: List[str], countries: List[str]) -> Dict[str, Any]:
        candidates = []
        for platform in platforms or available_platforms():
            adapter = get_adapter(platform)
            for country in countries or adapter.supported_countries:
                if adapter.supports(country):
                    candidates.append((platform, country))

        healthy, excluded = self.quality_gate.evaluate_sources(candidates)
        return {
            "healthy": [
                {"platform": s.platform, "country": s.country, "success_rate": s.success_rate,
                 "samples": s.samples}
                for s in healthy
            ],
            "excluded": [
                {"platform": s.platform, "country": s.country, "success_rate": s.success_rate,
                 "error_rate": s.error_rate, "reason": s.reason}
                for s in excluded
            ],
        }

    def _discovery(self, platforms, countries, max_queries) -> Dict[str, Any]:
        config = DiscoveryConfig(platforms=platforms, countries=countries, max_queries=max_queries)
        try:
            result = self.discovery_agent_class(config).run()
        except ConfigurationError as e:
            logger.warning("Discovery step not run: %s", e)
            return {"error": str(e)}
        return result.to_dict()

    def _extraction(self, platforms, countries, limit):
        venues = pending_venues(platforms, countries, limit)
        result = self.extractor(venues)
        extracted = [
            e.target.venue_pk for e in result.extractions if e.success and e.target.venue_pk
        ]
        return result.to_dict(), extracted

    def _verification(self, venue_ids: List[str]) -> Dict[str, Any]:
        from scout.models import DiscoveredVenue

        reports = {}
        invalid_total = 0
        for venue in DiscoveredVenue.objects.filter(pk__in=venue_ids).prefetch_related("dishes"):
            report = self.quality_gate.validate_dishes([dish_payload(d) for d in venue.dishes.all()])
            invalid_total += report.invalid
            reports[str(venue.pk)] = {
                "total": report.total,
                "valid": report.valid,
                "invalid": report.invalid,
                "issues": [r for r in report.records if not r["valid"]],
            }
        return {"venues": reports, "invalid_dishes": invalid_total}
