"""
Dead-letter queue for venue operations that failed.

- Failed extractions and failed dish writes are stored as FailedOperation rows
- Retries back off exponentially: DEAD_LETTER_BASE_DELAY_SECONDS doubled per
  attempt, capped at DEAD_LETTER_MAX_DELAY_SECONDS
- After DEAD_LETTER_MAX_ATTEMPTS an entry is escalated to manual review and
  a Sentry alert is raised
- Resolved entries are purged after DEAD_LETTER_RETENTION_DAYS

Usage:
    dlq = get_dead_letter_queue()
    dlq.queue(FailedOperationType.DISH_EXTRACTION, "timeout", venue_pk=venue.pk)
    for operation in dlq.due():
        ...
        dlq.mark_resolved(operation)
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_SECONDS = 5 * 60
DEFAULT_MAX_DELAY_SECONDS = 6 * 60 * 60
DEFAULT_RETENTION_DAYS = 30


class DeadLetterQueue:
    """Stores failed operations and schedules their retries."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay_seconds: Optional[int] = None,
        max_delay_seconds: Optional[int] = None,
    ):
        self.max_attempts = max_attempts or getattr(
            settings, "DEAD_LETTER_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS
        )
        self.base_delay_seconds = (
            base_delay_seconds
            if base_delay_seconds is not None
            else getattr(settings, "DEAD_LETTER_BASE_DELAY_SECONDS", DEFAULT_BASE_DELAY_SECONDS)
        )
        self.max_delay_seconds = max_delay_seconds or getattr(
            settings, "DEAD_LETTER_MAX_DELAY_SECONDS", DEFAULT_MAX_DELAY_SECONDS
        )

    def retry_delay(self, attempts: int) -> timedelta:
        """Delay before the next retry once `attempts` retries have failed."""
        if attempts <= 0:
            return timedelta(0)
        seconds = self.base_delay_seconds * (2 ** (attempts - 1))
        return timedelta(seconds=min(seconds, self.max_delay_seconds))

    def queue(
        self,
        operation_type: str,
        error: str,
        venue_pk: Any = None,
        platform: str = "",
        country: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Store a failed operation, first retry due immediately.

        An open entry for the same venue and operation is reused instead of
        stacking duplicates.
        """
        from scout.models import FailedOperation, FailedOperationStatus

        now = timezone.now()
        if venue_pk is not None:
            existing = FailedOperation.objects.filter(
                venue_id=venue_pk,
                operation_type=operation_type,
                status=FailedOperationStatus.PENDING_RETRY,
            ).first()
            if existing is not None:
                existing.error = error[:5000]
                existing.last_attempt_at = now
                existing.save(update_fields=["error", "last_attempt_at"])
                return existing

        operation = FailedOperation.objects.create(
            operation_type=operation_type,
            venue_id=venue_pk,
            platform=platform or "",
            country=country or "",
            error=error[:5000],
            context=context or {},
            max_attempts=self.max_attempts,
            next_retry_at=now + self.retry_delay(0),
            created_at=now,
            last_attempt_at=now,
        )
        logger.info(
            "Queued failed %s for venue %s: %s", operation_type, venue_pk or "-", error[:200]
        )
        return operation

    def due(self, limit: int = 50) -> List:
        """Pending entries whose retry time has come, oldest schedule first."""
        from scout.models import FailedOperation, FailedOperationStatus

        return list(
            FailedOperation.objects.filter(
                status=FailedOperationStatus.PENDING_RETRY,
                next_retry_at__lte=timezone.now(),
            )
            .select_related("venue")
            .order_by("next_retry_at")[:limit]
        )

    def record_retry_failure(self, operation, error: str):
        """Count a failed retry and reschedule, or escalate past max_attempts."""
        from scout.models import FailedOperation, FailedOperationStatus

        with transaction.atomic():
            operation = FailedOperation.objects.select_for_update().get(pk=operation.pk)
            operation.attempts += 1
            operation.error = error[:5000]
            operation.last_attempt_at = timezone.now()
            if operation.attempts >= operation.max_attempts:
                operation.status = FailedOperationStatus.REQUIRES_MANUAL
                operation.next_retry_at = None
                operation.manual_review_reason = (
                    f"Gave up after {operation.attempts} attempts"
                )
            else:
                operation.next_retry_at = operation.last_attempt_at + self.retry_delay(operation.attempts)
            operation.save()

        if operation.status == FailedOperationStatus.REQUIRES_MANUAL:
            self._escalation_alert(operation)
        else:
            logger.info(
                "Retry %d/%d of %s failed, next at %s",
                operation.attempts, operation.max_attempts, operation.pk, operation.next_retry_at,
            )
        return operation

    def mark_resolved(self, operation) -> None:
        from scout.models import FailedOperation, FailedOperationStatus

        FailedOperation.objects.filter(pk=operation.pk).update(
            status=FailedOperationStatus.RESOLVED,
            next_retry_at=None,
            last_attempt_at=timezone.now(),
        )
        logger.info("Failed operation %s resolved", operation.pk)

    def escalate(self, operation, reason: str) -> None:
        """Send an entry straight to manual review."""
        from scout.models import FailedOperation, FailedOperationStatus

        FailedOperation.objects.filter(pk=operation.pk).update(
            status=FailedOperationStatus.REQUIRES_MANUAL,
            next_retry_at=None,
            manual_review_reason=reason[:500],
        )
        operation.status = FailedOperationStatus.REQUIRES_MANUAL
        operation.manual_review_reason = reason[:500]
        self._escalation_alert(operation)

    def requeue(self, queryset) -> int:
        """Put entries back in the retry queue with a fresh attempt budget."""
        from scout.models import FailedOperationStatus

        return queryset.exclude(status=FailedOperationStatus.RESOLVED).update(
            status=FailedOperationStatus.PENDING_RETRY,
            attempts=0,
            next_retry_at=timezone.now(),
            manual_review_reason="",
        )

    def get_stats(self) -> Dict[str, Any]:
        from scout.models import FailedOperation

        by_status = dict(
            FailedOperation.objects.values_list("status").annotate(n=Count("id")).order_by()
        )
        by_type = dict(
            FailedOperation.objects.values_list("operation_type").annotate(n=Count("id")).order_by()
        )
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_type": by_type,
        }

    def purge_resolved(self, days: Optional[int] = None) -> int:
        from scout.models import FailedOperation, FailedOperationStatus

        days = days if days is not None else getattr(
            settings, "DEAD_LETTER_RETENTION_DAYS", DEFAULT_RETENTION_DAYS
        )
        cutoff = timezone.now() - timedelta(days=days)
        deleted, _ = FailedOperation.objects.filter(
            status=FailedOperationStatus.RESOLVED, last_attempt_at__lt=cutoff
        ).delete()
        if deleted:
            logger.info("Purged %d resolved failed operations older than %d days", deleted, days)
        return deleted

    @staticmethod
    def _escalation_alert(operation) -> None:
        from .sentry_integration import capture_alert

        message = (
            f"Failed {operation.operation_type} escalated to manual review: "
            f"{operation.manual_review_reason}"
        )
        logger.warning("%s (%s)", message, operation.pk)
        capture_alert(
            message=message,
            level="warning",
            platform=operation.platform or None,
            country=operation.country or None,
            extra_data={
                "failed_operation_id": str(operation.pk),
                "venue_id": str(operation.venue_id) if operation.venue_id else None,
                "attempts": operation.attempts,
                "last_error": operation.error[:500],
            },
        )


# Singleton instance
_dead_letter_queue: Optional[DeadLetterQueue] = None


def get_dead_letter_queue() -> DeadLetterQueue:
    """Get the global dead-letter queue instance."""
    global _dead_letter_queue
    if _dead_letter_queue is None:
        _dead_letter_queue = DeadLetterQueue()
    return _dead_letter_queue
