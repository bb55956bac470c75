"""
Celery tasks for Delivery Scout.

- run_discovery: DiscoveryAgent run (discovery queue)
- run_extraction: page extraction for pending venues (extraction queue)
- run_learning_cycle: strategy re-tiering from feedback
- reset_search_quotas: daily free-quota reset at 00:00 UTC
- purge_budget_history: drop BudgetDay rows past retention
- retry_failed_operations: dead-letter retries with backoff and escalation
- purge_failed_operations: drop resolved dead-letter entries past retention
- run_quality_pipeline: gates, discovery, extraction, verification, learning

Every task returns a JSON-serializable dict.
"""

import logging
from typing import Any, Dict, List, Optional

from celery import shared_task

from scout.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@shared_task(name="scout.tasks.run_discovery")
def run_discovery(
    platforms: Optional[List[str]] = None,
    countries: Optional[List[str]] = None,
    max_queries: Optional[int] = None,
    product: str = "",
    city: str = "",
) -> Dict[str, Any]:
    """Run one discovery pass. Configuration errors are reported, not raised."""
    from scout.discovery.agent import DiscoveryAgent, DiscoveryConfig

    config = DiscoveryConfig(
        platforms=platforms or [],
        countries=countries or [],
        max_queries=max_queries,
        product=product,
        city=city,
    )
    try:
        result = DiscoveryAgent(config).run()
    except ConfigurationError as e:
        logger.error("Discovery task not started: %s", e)
        return {"status": "failed", "error": str(e)}

    return {"status": "completed", **result.to_dict()}


@shared_task(name="scout.tasks.run_extraction")
def run_extraction(
    limit: int = 20,
    platforms: Optional[List[str]] = None,
    countries: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Extract menus for pending venues without a chain short-circuit."""
    from scout.extraction.agent import extract_venues
    from scout.models import PipelineRun, RunKind, RunStatus
    from scout.pipeline import pending_venues

    venues = pending_venues(platforms, countries, limit)
    if not venues:
        logger.info("No venues pending extraction")
        return {"status": "completed", "venues_attempted": 0}

    run = PipelineRun.objects.create(
        kind=RunKind.EXTRACTION,
        config={"limit": limit, "platforms": platforms or [], "countries": countries or []},
    )
    run.start()
    try:
        result = extract_venues(venues)
    except Exception as e:
        logger.exception("Extraction run %s failed", run.pk)
        run.complete(status=RunStatus.FAILED, error_message=str(e))
        raise

    stats = result.to_dict()
    run.complete(stats=stats)
    return {"status": "completed", "run_id": str(run.pk), **stats}


@shared_task(name="scout.tasks.run_learning_cycle")
def run_learning_cycle(window_days: Optional[int] = None, dry_run: bool = False) -> Dict[str, Any]:
    from scout.models import PipelineRun, RunKind
    from scout.quality.learning import LearningLoop

    run = PipelineRun.objects.create(
        kind=RunKind.LEARNING, config={"window_days": window_days, "dry_run": dry_run}
    )
    run.start()
    stats = LearningLoop().run(window_days=window_days, dry_run=dry_run).to_dict()
    run.complete(stats=stats)
    return {"status": "completed", "run_id": str(run.pk), **stats}


@shared_task(name="scout.tasks.reset_search_quotas")
def reset_search_quotas() -> Dict[str, Any]:
    from scout.search.pool import SearchEnginePool

    reset = SearchEnginePool.reset_daily_quotas()
    logger.info("Reset free quota on %d search credentials", reset)
    return {"status": "completed", "credentials_reset": reset}


@shared_task(name="scout.tasks.purge_budget_history")
def purge_budget_history(days: Optional[int] = None) -> Dict[str, Any]:
    from scout.budget.governor import get_budget_governor

    purged = get_budget_governor().purge_older_than(days)
    return {"status": "completed", "days_purged": purged}


@shared_task(name="scout.tasks.run_quality_pipeline")
def run_quality_pipeline(
    platforms: Optional[List[str]] = None,
    countries: Optional[List[str]] = None,
    max_queries: Optional[int] = None,
    dry_run: bool = False,
    skip_discovery: bool = False,
    skip_extraction: bool = False,
    skip_learning: bool = False,
) -> Dict[str, Any]:
    from scout.pipeline import QualityPipeline

    report = QualityPipeline().run(
        platforms=platforms,
        countries=countries,
        max_queries=max_queries,
        dry_run=dry_run,
        skip_discovery=skip_discovery,
        skip_extraction=skip_extraction,
        skip_learning=skip_learning,
    )
    return {"status": "completed", **report.to_dict()}


@shared_task(name="scout.tasks.retry_failed_operations")
def retry_failed_operations(limit: int = 50) -> Dict[str, Any]:
    """
    Retry due dead-letter entries by re-extracting their venue.

    A failed retry is rescheduled with exponential backoff until the entry
    runs out of attempts and is escalated to manual review.
    """
    from scout.extraction.agent import extract_venues
    from scout.models import FailedOperationStatus
    from scout.monitoring.dead_letter import get_dead_letter_queue

    dlq = get_dead_letter_queue()
    operations = dlq.due(limit)
    stats = {"due": len(operations), "resolved": 0, "rescheduled": 0, "escalated": 0}

    for operation in operations:
        if operation.venue is None:
            dlq.escalate(operation, "Venue no longer exists")
            stats["escalated"] += 1
            continue

        try:
            result = extract_venues([operation.venue], record_failures=False)
        except Exception as e:
            logger.exception("Retry of failed operation %s raised", operation.pk)
            error = str(e)
        else:
            if result.venues_succeeded:
                dlq.mark_resolved(operation)
                stats["resolved"] += 1
                continue
            error = next((x.error for x in result.extractions if x.error), "") or (
                "persist error" if result.persist_failures else "extraction failed"
            )

        updated = dlq.record_retry_failure(operation, error)
        if updated.status == FailedOperationStatus.REQUIRES_MANUAL:
            stats["escalated"] += 1
        else:
            stats["rescheduled"] += 1

    if operations:
        logger.info("Dead-letter retry: %s", stats)
    return {"status": "completed", **stats}


@shared_task(name="scout.tasks.purge_failed_operations")
def purge_failed_operations(days: Optional[int] = None) -> Dict[str, Any]:
    from scout.monitoring.dead_letter import get_dead_letter_queue

    purged = get_dead_letter_queue().purge_resolved(days)
    return {"status": "completed", "operations_purged": purged}
