"""
Discovery Agent - Turns search strategies into venue candidates.

Run states:
    INIT -> SOURCE_FILTER -> QUERY_GEN -> QUERY_EXEC -> RESULT_PARSE
         -> VENUE_RESOLUTION -> DONE

FAILED is only reached when validation raises ConfigurationError before
the run starts. Once running, individual query or venue failures become
counters on the PipelineRun and never abort the run.

Sources (platform, country) run concurrently on a thread pool bounded by
DISCOVERY_MAX_WORKERS; queries within a source run sequentially and the
cancel flag is checked before each one.

Usage:
    agent = DiscoveryAgent(DiscoveryConfig(platforms=["lieferando"], countries=["DE"]))
    result = agent.run()
    for candidate in result.candidates:
        print(candidate.name, candidate.resolved_country)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import close_old_connections, transaction

from scout.exceptions import ConfigurationError, ParseFailure, ValidationFailure
from scout.discovery.resolution import BrandMisuseDetector, ChainMatcher
from scout.monitoring.platform_health import PlatformHealthTracker, get_platform_health_tracker
from scout.monitoring.sentry_integration import add_pipeline_breadcrumb, capture_pipeline_error
from scout.platforms.base import SearchResultItem
from scout.platforms.countries import resolve_country
from scout.platforms.registry import available_platforms, get_adapter
from scout.quality.gate import QualityGate, SourceHealth
from scout.search.cache import QueryCache
from scout.search.pool import SearchEnginePool
from scout.strategies.store import StrategyStore
from scout.utils.urls import normalize_url

logger = logging.getLogger(__name__)

SourceKey = Tuple[str, str]


class DiscoveryState(str, Enum):
    INIT = "init"
    SOURCE_FILTER = "source_filter"
    QUERY_GEN = "query_gen"
    QUERY_EXEC = "query_exec"
    RESULT_PARSE = "result_parse"
    VENUE_RESOLUTION = "venue_resolution"
    DONE = "done"
    FAILED = "failed"


@dataclass
class DiscoveryConfig:
    """Run parameters. Empty platform/country lists mean "all supported"."""

    platforms: List[str] = field(default_factory=list)
    countries: List[str] = field(default_factory=list)
    max_queries: Optional[int] = None
    strategies_per_source: Optional[int] = None
    max_workers: Optional[int] = None
    product: str = ""
    city: str = ""

    def __post_init__(self):
        if self.max_queries is None:
            self.max_queries = getattr(settings, "DISCOVERY_MAX_QUERIES_PER_RUN", 50)
        if self.strategies_per_source is None:
            self.strategies_per_source = getattr(settings, "DISCOVERY_STRATEGIES_PER_SOURCE", 5)
        if self.max_workers is None:
            self.max_workers = getattr(settings, "DISCOVERY_MAX_WORKERS", 4)
        if not self.product:
            keywords = getattr(settings, "TRACKED_PRODUCT_KEYWORDS", ["planted"])
            self.product = keywords[0] if keywords else ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PlannedQuery:
    platform: str
    country: str
    strategy: Any
    query: str


@dataclass
class VenueCandidate:
    name: str
    url: str
    normalized_url: str
    platform: str
    venue_id: str
    resolved_country: str
    configured_country: str
    country_source: str
    strategy_id: str = ""
    chain_name: str = ""
    extraction_skipped: bool = False
    venue_pk: Optional[str] = None

    @property
    def country_mismatch(self) -> bool:
        return self.country_source == "url" and self.resolved_country != self.configured_country


class DiscoveryStats:
    """Run counters, safe to update from worker threads."""

    COUNTERS = (
        "sources_considered",
        "sources_excluded",
        "sources_unsupported",
        "sources_unhealthy",
        "queries_planned",
        "queries_executed",
        "cache_hits",
        "queries_failed",
        "budget_refusals",
        "parse_failures",
        "results_parsed",
        "duplicates",
        "brand_misuse_dropped",
        "country_mismatches",
        "chain_matches",
        "chain_short_circuits",
        "chain_country_conflicts",
        "venues_created",
        "errors",
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in self.COUNTERS}
        self.cancelled = False

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data = dict(self._counts)
        data["cancelled"] = self.cancelled
        return data


@dataclass
class DiscoveryResult:
    state: DiscoveryState
    candidates: List[VenueCandidate] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    excluded_sources: List[SourceHealth] = field(default_factory=list)
    run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "run_id": self.run_id,
            "candidates": len(self.candidates),
            "stats": self.stats,
            "excluded_sources": [
                {"platform": s.platform, "country": s.country, "reason": s.reason}
                for s in self.excluded_sources
            ],
        }


class DiscoveryAgent:
    """Plans, executes and resolves discovery queries for one run."""

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        pool: Optional[SearchEnginePool] = None,
        query_cache: Optional[QueryCache] = None,
        strategy_store: Optional[StrategyStore] = None,
        quality_gate: Optional[QualityGate] = None,
        health_tracker: Optional[PlatformHealthTracker] = None,
        brand_detector: Optional[BrandMisuseDetector] = None,
        chain_matcher: Optional[ChainMatcher] = None,
    ):
        self.config = config or DiscoveryConfig()
        self.pool = pool or SearchEnginePool()
        self.query_cache = query_cache or QueryCache()
        self.strategy_store = strategy_store or StrategyStore()
        self.quality_gate = quality_gate or QualityGate(strategy_store=self.strategy_store)
        self.health_tracker = health_tracker or get_platform_health_tracker()
        self.brand_detector = brand_detector or BrandMisuseDetector()
        self.chain_matcher = chain_matcher or ChainMatcher()

        self.state = DiscoveryState.INIT
        self.stats = DiscoveryStats()
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._seen_urls = set()
        self._candidates: List[VenueCandidate] = []

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop before the next query. In-flight queries finish."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> DiscoveryResult:
        from scout.models import PipelineRun, RunKind, RunStatus

        self.state = DiscoveryState.INIT
        try:
            platforms, countries = self._validate()
        except ConfigurationError as e:
            self.state = DiscoveryState.FAILED
            logger.error("Discovery not started: %s", e)
            raise

        run = PipelineRun.objects.create(kind=RunKind.DISCOVERY, config=self.config.to_dict())
        run.start()
        add_pipeline_breadcrumb(
            stage="discovery",
            message=f"Discovery run {run.pk} started",
            extra_data={"platforms": platforms, "countries": countries},
        )

        try:
            healthy, excluded = self._filter_sources(platforms, countries)
            plan = self._generate_queries(healthy)
            self._execute(plan, run)
        except Exception as e:
            logger.exception("Discovery run %s failed", run.pk)
            capture_pipeline_error(e, stage="discovery", extra_context={"run_id": str(run.pk)})
            run.complete(stats=self.stats.to_dict(), status=RunStatus.FAILED, error_message=str(e))
            raise

        self.stats.cancelled = self.cancelled
        self.state = DiscoveryState.DONE
        stats = self.stats.to_dict()
        run.complete(
            stats=stats,
            status=RunStatus.CANCELLED if self.cancelled else RunStatus.COMPLETED,
        )

        logger.info(
            "Discovery run %s done: %d queries (%d cached, %d failed), %d venues created",
            run.pk, stats["queries_executed"], stats["cache_hits"],
            stats["queries_failed"], stats["venues_created"],
        )
        return DiscoveryResult(
            state=self.state,
            candidates=list(self._candidates),
            stats=stats,
            excluded_sources=excluded,
            run_id=str(run.pk),
        )

    def _validate(self) -> Tuple[List[str], List[str]]:
        """INIT: resolve platforms/countries and check prerequisites."""
        from scout.models import Country

        platforms = list(self.config.platforms) or available_platforms()
        adapters = [get_adapter(p) for p in platforms]

        if self.config.countries:
            countries = list(self.config.countries)
            unknown = [c for c in countries if c not in Country.values]
            if unknown:
                raise ConfigurationError(f"Unknown countries: {', '.join(unknown)}")
        else:
            countries = sorted({c for a in adapters for c in a.supported_countries})

        if not self.pool.has_credentials():
            raise ConfigurationError("No active search engine credentials")
        if not self.strategy_store.has_active_strategies():
            raise ConfigurationError("No active discovery strategies")

        return platforms, countries

    def _filter_sources(
        self, platforms: List[str], countries: List[str]
    ) -> Tuple[List[SourceHealth], List[SourceHealth]]:
        """SOURCE_FILTER: adapter support, platform health, then feedback gates."""
        self.state = DiscoveryState.SOURCE_FILTER

        candidates: List[SourceKey] = []
        for platform in platforms:
            adapter = get_adapter(platform)
            for country in countries:
                if not adapter.supports(country):
                    self.stats.incr("sources_unsupported")
                    continue
                if not self.health_tracker.is_available(platform, country):
                    logger.warning(
                        "Skipping %s/%s: consecutive failure threshold reached", platform, country
                    )
                    self.stats.incr("sources_unhealthy")
                    continue
                candidates.append((platform, country))

        self.stats.incr("sources_considered", len(candidates))
        healthy, excluded = self.quality_gate.evaluate_sources(candidates)
        self.stats.incr("sources_excluded", len(excluded))
        return healthy, excluded

    def _generate_queries(self, sources: List[SourceHealth]) -> Dict[SourceKey, List[PlannedQuery]]:
        """QUERY_GEN: top strategies per source, capped at max_queries overall."""
        self.state = DiscoveryState.QUERY_GEN

        plan: Dict[SourceKey, List[PlannedQuery]] = {}
        remaining = self.config.max_queries
        for source in sources:
            if remaining <= 0:
                break
            adapter = get_adapter(source.platform)
            strategies = self.strategy_store.get_top_strategies(
                limit=min(self.config.strategies_per_source, remaining),
                platform=source.platform,
                country=source.country,
            )
            queries = []
            for strategy in strategies:
                if "{city}" in strategy.query_template:
                    text = strategy.render_query(self.config.product, self.config.city)
                    city = None
                else:
                    text = strategy.render_query(self.config.product)
                    city = self.config.city or None
                queries.append(
                    PlannedQuery(
                        platform=source.platform,
                        country=source.country,
                        strategy=strategy,
                        query=adapter.build_search_url(text, source.country, city),
                    )
                )
            if queries:
                plan[(source.platform, source.country)] = queries
                remaining -= len(queries)

        self.stats.incr("queries_planned", sum(len(q) for q in plan.values()))
        return plan

    def _execute(self, plan: Dict[SourceKey, List[PlannedQuery]], run) -> None:
        """QUERY_EXEC: one worker per source."""
        self.state = DiscoveryState.QUERY_EXEC
        if not plan:
            return

        if self.config.max_workers <= 1 or len(plan) == 1:
            for queries in plan.values():
                self._run_source(queries, run)
            return

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            future_to_source = {
                executor.submit(self._source_worker, queries, run): source
                for source, queries in plan.items()
            }
            for future in as_completed(future_to_source):
                platform, country = future_to_source[future]
                try:
                    future.result()
                except Exception as e:
                    logger.exception("Discovery worker for %s/%s failed", platform, country)
                    capture_pipeline_error(e, stage="discovery", platform=platform, country=country)
                    self.stats.incr("errors")

    def _source_worker(self, queries: List[PlannedQuery], run) -> None:
        try:
            self._run_source(queries, run)
        finally:
            close_old_connections()

    def _run_source(self, queries: List[PlannedQuery], run) -> None:
        for planned in queries:
            if self.cancelled:
                logger.info("Discovery cancelled before query %r", planned.query)
                return
            try:
                self._run_query(planned, run)
            except Exception as e:
                logger.exception("Query %r failed", planned.query)
                capture_pipeline_error(
                    e,
                    stage="discovery",
                    platform=planned.platform,
                    country=planned.country,
                    extra_context={"query": planned.query},
                )
                self.stats.incr("errors")

    def _run_query(self, planned: PlannedQuery, run) -> None:
        platform, country = planned.platform, planned.country

        content = self.query_cache.get(platform, country, planned.query)
        if content is not None:
            self.stats.incr("cache_hits")
        else:
            outcome = self.pool.search(planned.query)
            if not outcome.success:
                if outcome.budget_refusal is not None:
                    self.stats.incr("budget_refusals")
                    logger.warning(
                        "Query %r refused: %s", planned.query, outcome.budget_refusal.reason
                    )
                else:
                    self.stats.incr("queries_failed")
                    self.health_tracker.record_failure(platform, country, str(outcome.error))
                    logger.warning("Query %r failed: %s", planned.query, outcome.error)
                return
            content = outcome.content
            self.query_cache.put(platform, country, planned.query, content)
            self.stats.incr("queries_executed")
            self.health_tracker.record_success(platform, country)

        self.strategy_store.record_usage(planned.strategy)

        items = self._parse(planned, content)
        for item in items:
            self._resolve(item, planned, run)

    def _parse(self, planned: PlannedQuery, content) -> List[SearchResultItem]:
        """RESULT_PARSE"""
        self.state = DiscoveryState.RESULT_PARSE
        items = get_adapter(planned.platform).parse_search_results(content, planned.country)
        if not items:
            failure = ParseFailure(
                f"No venues in results for {planned.query!r}", platform=planned.platform
            )
            logger.debug(str(failure))
            self.stats.incr("parse_failures")
            return []
        self.stats.incr("results_parsed", len(items))
        return items

    def _resolve(self, item: SearchResultItem, planned: PlannedQuery, run) -> Optional[VenueCandidate]:
        """VENUE_RESOLUTION: dedupe, misuse check, country, chain, persist."""
        from scout.models import DiscoveredVenue

        self.state = DiscoveryState.VENUE_RESOLUTION
        normalized = normalize_url(item.url)

        with self._lock:
            if normalized in self._seen_urls:
                self.stats.incr("duplicates")
                return None
            self._seen_urls.add(normalized)

        if DiscoveredVenue.objects.filter(normalized_url=normalized).exists():
            self.stats.incr("duplicates")
            return None

        misuse = self.brand_detector.check(item.name, item.snippet)
        if misuse:
            logger.info("Dropping %r (%s): matches misuse pattern %s", item.name, item.url, misuse)
            self.stats.incr("brand_misuse_dropped")
            return None

        country, country_source = resolve_country(item.url, planned.country)
        candidate = VenueCandidate(
            name=item.name,
            url=item.url,
            normalized_url=normalized,
            platform=planned.platform,
            venue_id=item.venue_id,
            resolved_country=country,
            configured_country=planned.country,
            country_source=country_source,
            strategy_id=str(planned.strategy.pk),
        )
        if candidate.country_mismatch:
            logger.warning(
                "Country mismatch for %s: url says %s, run configured %s",
                item.url, country, planned.country,
            )
            self.stats.incr("country_mismatches")

        chain = None
        match = self.chain_matcher.match(item.name)
        if match:
            chain = match.chain
            candidate.chain_name = chain.name
            self.stats.incr("chain_matches")
            if chain.operates_in(country):
                candidate.extraction_skipped = True
            else:
                logger.warning(
                    "Venue %r matched chain %s, which does not list %s; extracting page",
                    item.name, chain.name, country,
                )
                self.stats.incr("chain_country_conflicts")

        with transaction.atomic():
            venue, created = DiscoveredVenue.objects.get_or_create(
                normalized_url=normalized,
                defaults={
                    "name": item.name[:300],
                    "url": item.url,
                    "platform": planned.platform,
                    "venue_id": item.venue_id,
                    "resolved_country": country,
                    "configured_country": planned.country,
                    "chain": chain,
                    "raw_snippet": item.snippet,
                    "extraction_skipped": candidate.extraction_skipped,
                    "strategy": planned.strategy,
                    "run": run,
                },
            )
            if not created:
                self.stats.incr("duplicates")
                return None
            if candidate.extraction_skipped:
                create_chain_dishes(venue, chain, self.quality_gate)
                self.stats.incr("chain_short_circuits")

        candidate.venue_pk = str(venue.pk)
        self.stats.incr("venues_created")
        with self._lock:
            self._candidates.append(candidate)
        return candidate


def create_chain_dishes(venue, chain, quality_gate: Optional[QualityGate] = None) -> int:
    """Write a chain's pre-verified products as dishes on the venue."""
    from scout.models import DiscoveredDish, DishSource

    quality_gate = quality_gate or QualityGate()
    dishes = []
    for product in chain.products or []:
        name = (product.get("name") or "").strip()
        try:
            amount = Decimal(str(product["price_amount"])) if product.get("price_amount") is not None else None
        except InvalidOperation:
            amount = None
        price = {"amount": amount, "currency": product.get("price_currency", "")} if amount is not None else None
        try:
            quality_gate.require_valid({"name": name, "price": price})
        except ValidationFailure as e:
            logger.warning("Skipping product of chain %s: %s", chain.name, e)
            continue
        dishes.append(
            DiscoveredDish(
                venue=venue,
                name=name,
                description=product.get("description", ""),
                price_amount=amount,
                price_currency=product.get("price_currency", "") if amount is not None else "",
                category=product.get("category", ""),
                product_tag=product.get("product_tag", ""),
                confidence=1.0,
                source=DishSource.CHAIN,
            )
        )
    DiscoveredDish.objects.bulk_create(dishes)
    return len(dishes)
