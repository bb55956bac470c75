"""
Consecutive failure tracking per (platform, country) source.

- Counters live in the Django cache (Redis in production)
- Alert threshold: 5 consecutive failures (PLATFORM_FAILURE_THRESHOLD)
- Triggers a Sentry alert when the threshold is reached
- Resets on the next success

Discovery consults is_available() during source filtering, so a platform
that keeps failing is skipped until a success resets it or the counter
expires.

Usage:
    tracker = get_platform_health_tracker()
    tracker.record_failure("lieferando", "DE")
    tracker.record_success("lieferando", "DE")
"""

import logging
from typing import Dict, Optional

from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5

# TTL for failure counters (24 hours)
FAILURE_COUNTER_TTL = 86400


class PlatformHealthTracker:
    """Tracks consecutive failures per source and alerts on threshold breach."""

    def __init__(self, threshold: Optional[int] = None, key_prefix: str = "scout:platform_failures"):
        self.threshold = threshold or getattr(
            settings, "PLATFORM_FAILURE_THRESHOLD", DEFAULT_FAILURE_THRESHOLD
        )
        self.key_prefix = key_prefix

    def _get_key(self, platform: str, country: str) -> str:
        return f"{self.key_prefix}:{platform}:{country}"

    def record_failure(self, platform: str, country: str, reason: str = "") -> int:
        """
        Increment the consecutive failure counter.

        Returns:
            Failure count after the increment
        """
        key = self._get_key(platform, country)
        if cache.add(key, 1, FAILURE_COUNTER_TTL):
            count = 1
        else:
            try:
                count = cache.incr(key)
            except ValueError:
                # Expired between add() and incr()
                cache.set(key, 1, FAILURE_COUNTER_TTL)
                count = 1

        logger.debug(
            "Recorded failure for %s/%s: count=%d, threshold=%d",
            platform, country, count, self.threshold,
        )

        if count == self.threshold:
            self._trigger_alert(platform, country, count, reason)
        return count

    def record_success(self, platform: str, country: str) -> None:
        cache.delete(self._get_key(platform, country))

    def get_failure_count(self, platform: str, country: str) -> int:
        return int(cache.get(self._get_key(platform, country)) or 0)

    def is_available(self, platform: str, country: str) -> bool:
        return self.get_failure_count(platform, country) < self.threshold

    def get_status(self, platform: str, country: str) -> Dict:
        count = self.get_failure_count(platform, country)
        return {
            "platform": platform,
            "country": country,
            "consecutive_failures": count,
            "available": count < self.threshold,
        }

    def _trigger_alert(self, platform: str, country: str, count: int, reason: str) -> None:
        from .sentry_integration import capture_alert

        message = (
            f"Consecutive failure threshold breached for {platform}/{country}: "
            f"{count} consecutive failures"
        )
        logger.warning(message)
        capture_alert(
            message=message,
            level="warning",
            platform=platform,
            country=country,
            extra_data={"failure_count": count, "threshold": self.threshold, "reason": reason},
        )


# Singleton instance
_platform_health_tracker: Optional[PlatformHealthTracker] = None


def get_platform_health_tracker() -> PlatformHealthTracker:
    """Get the global platform health tracker instance."""
    global _platform_health_tracker
    if _platform_health_tracker is None:
        _platform_health_tracker = PlatformHealthTracker()
    return _platform_health_tracker
