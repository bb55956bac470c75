"""
Extraction Agent - Fetches venue pages and turns menus into dish records.

Flow per venue:
1. Budget check (a refusal stops new venues, the current one never starts)
2. PageFetcher.fetch (state cleared, one page at a time, per-page timeout)
3. adapter.parse_venue_page (ordered menu parsers)
4. product tagging and QualityGate.validate_dish; invalid items are dropped
   and counted
5. Valid dishes go to the optional async dish_sink

Venues are processed sequentially. A failed fetch, parse or dish_sink call
counts the venue as failed and the run moves on. When a DeadLetterQueue is
given, failures of stored venues are queued for retry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from asgiref.sync import sync_to_async
from django.db import transaction
from django.utils import timezone

from scout.budget.governor import BudgetGovernor, get_budget_governor
from scout.exceptions import ConfigurationError
from scout.extraction.fetcher import PageFetcher, PlaywrightSession
from scout.extraction.products import tag_product
from scout.monitoring.dead_letter import DeadLetterQueue, get_dead_letter_queue
from scout.monitoring.platform_health import PlatformHealthTracker, get_platform_health_tracker
from scout.monitoring.sentry_integration import capture_pipeline_error
from scout.platforms.base import Price
from scout.platforms.registry import get_adapter
from scout.quality.gate import QualityGate

logger = logging.getLogger(__name__)

# Confidence by the menu parser that produced the item
PARSER_CONFIDENCE = {
    "parse_menu_structured": 0.9,
    "parse_menu_markup": 0.7,
    "parse_menu_mentions": 0.5,
}


@dataclass
class VenueTarget:
    url: str
    platform: str
    country: str = ""
    name: str = ""
    venue_pk: Optional[str] = None

    @classmethod
    def from_venue(cls, venue) -> "VenueTarget":
        return cls(
            url=venue.url,
            platform=venue.platform,
            country=venue.resolved_country,
            name=venue.name,
            venue_pk=str(venue.pk),
        )


@dataclass
class DishRecord:
    name: str
    description: str = ""
    price: Optional[Price] = None
    category: str = ""
    product_tag: str = ""
    confidence: float = 0.0


@dataclass
class VenueExtraction:
    target: VenueTarget
    success: bool = False
    venue_name: str = ""
    dishes: List[DishRecord] = field(default_factory=list)
    invalid_dishes: int = 0
    invalid_records: List[Dict[str, Any]] = field(default_factory=list)
    menu_parser: str = ""
    error: Optional[str] = None
    timed_out: bool = False


@dataclass
class ExtractionResult:
    extractions: List[VenueExtraction] = field(default_factory=list)
    venues_attempted: int = 0
    venues_succeeded: int = 0
    venues_failed: int = 0
    dishes_valid: int = 0
    dishes_invalid: int = 0
    timeouts: int = 0
    persist_failures: int = 0
    budget_stopped: bool = False
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venues_attempted": self.venues_attempted,
            "venues_succeeded": self.venues_succeeded,
            "venues_failed": self.venues_failed,
            "dishes_valid": self.dishes_valid,
            "dishes_invalid": self.dishes_invalid,
            "timeouts": self.timeouts,
            "persist_failures": self.persist_failures,
            "budget_stopped": self.budget_stopped,
            "cancelled": self.cancelled,
        }


DishSink = Callable[[VenueTarget, VenueExtraction], Awaitable[Any]]


class ExtractionAgent:
    """
    Usage:
        async with PlaywrightSession() as session:
            agent = ExtractionAgent(PageFetcher(session))
            result = await agent.run(targets)
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        quality_gate: Optional[QualityGate] = None,
        governor: Optional[BudgetGovernor] = None,
        dish_sink: Optional[DishSink] = None,
        health_tracker: Optional[PlatformHealthTracker] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
    ):
        self.fetcher = fetcher
        self.quality_gate = quality_gate or QualityGate()
        self.governor = governor or get_budget_governor()
        self.dish_sink = dish_sink
        self.health_tracker = health_tracker or get_platform_health_tracker()
        self.dead_letters = dead_letters
        self._cancelled = False

    def cancel(self) -> None:
        """Stop before the next venue."""
        self._cancelled = True

    async def run(self, targets: List[VenueTarget]) -> ExtractionResult:
        from scout.models import FailedOperationType

        result = ExtractionResult()

        for target in targets:
            if self._cancelled:
                result.cancelled = True
                logger.info("Extraction cancelled with %d venues left", len(targets) - result.venues_attempted)
                break

            refusal = await sync_to_async(self.governor.check_budget)()
            if refusal is not None:
                result.budget_stopped = True
                logger.warning("Extraction stopped by budget: %s", refusal.reason)
                break

            result.venues_attempted += 1
            extraction = await self.extract_venue(target)
            result.extractions.append(extraction)
            result.dishes_invalid += extraction.invalid_dishes
            if extraction.timed_out:
                result.timeouts += 1

            if not extraction.success:
                result.venues_failed += 1
                await self._queue_failure(
                    target, FailedOperationType.DISH_EXTRACTION, extraction.error or "extraction failed"
                )
                continue

            if self.dish_sink is not None:
                try:
                    await self.dish_sink(target, extraction)
                except Exception as e:
                    logger.exception("Storing dishes failed for %s", target.url)
                    capture_pipeline_error(
                        e, stage="extraction", platform=target.platform, country=target.country, url=target.url
                    )
                    result.venues_failed += 1
                    result.persist_failures += 1
                    await self._queue_failure(target, FailedOperationType.MENU_PERSIST, f"persist error: {e}")
                    continue

            result.venues_succeeded += 1
            result.dishes_valid += len(extraction.dishes)

        logger.info(
            "Extraction done: %d/%d venues, %d dishes kept, %d dropped",
            result.venues_succeeded, result.venues_attempted,
            result.dishes_valid, result.dishes_invalid,
        )
        return result

    async def _queue_failure(self, target: VenueTarget, operation_type: str, error: str) -> None:
        if self.dead_letters is None or not target.venue_pk:
            return
        await sync_to_async(self.dead_letters.queue)(
            operation_type,
            error,
            venue_pk=target.venue_pk,
            platform=target.platform,
            country=target.country,
            context={"url": target.url},
        )

    async def extract_venue(self, target: VenueTarget) -> VenueExtraction:
        extraction = VenueExtraction(target=target)

        try:
            adapter = get_adapter(target.platform)
        except ConfigurationError as e:
            extraction.error = str(e)
            return extraction

        fetched = await self.fetcher.fetch(target.url)
        if not fetched.success:
            extraction.error = fetched.error
            extraction.timed_out = fetched.timed_out
            self.health_tracker.record_failure(target.platform, target.country, fetched.error or "")
            return extraction

        try:
            page = adapter.parse_venue_page(fetched.content, target.country)
        except Exception as e:
            logger.exception("Parsing failed for %s", target.url)
            capture_pipeline_error(
                e, stage="extraction", platform=target.platform, country=target.country, url=target.url
            )
            extraction.error = f"parse error: {e}"
            return extraction

        self.health_tracker.record_success(target.platform, target.country)
        extraction.success = True
        extraction.venue_name = page.name or target.name
        extraction.menu_parser = page.menu_parser
        confidence = PARSER_CONFIDENCE.get(page.menu_parser, 0.5)

        for item in page.menu_items:
            record = DishRecord(
                name=item.name,
                description=item.description,
                price=Price(item.price, item.currency) if item.price is not None else None,
                category=item.category,
                product_tag=tag_product(item.name, item.description) or "",
                confidence=confidence,
            )
            validation = self.quality_gate.validate_dish(record)
            if validation.valid:
                extraction.dishes.append(record)
            else:
                extraction.invalid_dishes += 1
                extraction.invalid_records.append({"name": item.name, "issues": validation.issues})

        if not extraction.dishes:
            logger.debug("No valid dishes on %s (parser: %s)", target.url, page.menu_parser or "none")
        return extraction


def persist_venue_dishes(target: VenueTarget, extraction: VenueExtraction) -> int:
    """Replace a venue's extracted dishes and mark it extracted."""
    from scout.extraction.snapshots import summarize_changes, take_menu_snapshot
    from scout.models import DiscoveredDish, DiscoveredVenue, DishSource, VenueStatus

    if not target.venue_pk:
        return 0

    with transaction.atomic():
        venue = DiscoveredVenue.objects.select_for_update().get(pk=target.venue_pk)
        venue.dishes.filter(source=DishSource.EXTRACTION).delete()
        DiscoveredDish.objects.bulk_create(
            [
                DiscoveredDish(
                    venue=venue,
                    name=dish.name[:300],
                    description=dish.description,
                    price_amount=dish.price.amount if dish.price else None,
                    price_currency=dish.price.currency if dish.price else "",
                    category=dish.category[:200],
                    product_tag=dish.product_tag,
                    confidence=dish.confidence,
                    source=DishSource.EXTRACTION,
                )
                for dish in extraction.dishes
            ]
        )
        snapshot = take_menu_snapshot(venue, extraction.dishes)
        venue.status = VenueStatus.EXTRACTED
        venue.last_extracted_at = timezone.now()
        venue.save(update_fields=["status", "last_extracted_at"])

    if snapshot.changes:
        logger.info("Menu of %s changed: %s", venue.name, summarize_changes(snapshot.changes))
    return len(extraction.dishes)


async def _extract_with_session(
    targets: List[VenueTarget], session=None, record_failures: bool = True
) -> ExtractionResult:
    owns_session = session is None
    session = session or PlaywrightSession()
    fetcher = PageFetcher(session)
    try:
        agent = ExtractionAgent(
            fetcher,
            dish_sink=sync_to_async(persist_venue_dishes),
            dead_letters=get_dead_letter_queue() if record_failures else None,
        )
        return await agent.run(targets)
    finally:
        if owns_session:
            await fetcher.close()


def extract_venues(venues, session=None, record_failures: bool = True) -> ExtractionResult:
    """
    Synchronous entry point for tasks and commands.

    record_failures=False keeps failures out of the dead-letter queue, for
    retries that are themselves driven from it.
    """
    targets = [VenueTarget.from_venue(v) for v in venues]
    if not targets:
        return ExtractionResult()
    return asyncio.run(_extract_with_session(targets, session, record_failures))
