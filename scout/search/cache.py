"""
Query Cache - Deduplicates search executions within a TTL window.

Backed by the Django cache framework (Redis in production, local memory in
tests). Entries are keyed by a hash of the normalized (platform, country,
query_text) tuple. The stored payload carries its own timestamp so TTL is
checked against timezone.now(), independently of backend eviction.

Cached data is advisory: concurrent put() calls for the same key simply
overwrite each other. A TTL of 0 turns the cache off.
"""

import hashlib
import logging
from datetime import timedelta
from typing import Any, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from django.utils.dateparse import parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400


def normalize_query(query: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join((query or "").lower().split())


class QueryCache:
    """
    Usage:
        query_cache = QueryCache()
        hit = query_cache.get("lieferando", "DE", "site:lieferando.de planted")
        if hit is None:
            ...
            query_cache.put("lieferando", "DE", "site:lieferando.de planted", content)
    """

    def __init__(self, ttl_seconds: Optional[int] = None, prefix: str = "scout:query"):
        self.ttl_seconds = (
            ttl_seconds
            if ttl_seconds is not None
            else getattr(settings, "QUERY_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS)
        )
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def make_key(self, platform: str, country: str, query_text: str) -> str:
        raw = "|".join(
            [(platform or "").lower(), (country or "").upper(), normalize_query(query_text)]
        )
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
        return f"{self.prefix}:{digest}"

    def get(self, platform: str, country: str, query_text: str) -> Optional[Any]:
        """Return the cached result set, or None on miss or expiry."""
        if not self.enabled:
            return None
        key = self.make_key(platform, country, query_text)
        entry = cache.get(key)
        if not entry:
            return None

        stored_at = parse_datetime(entry.get("stored_at", ""))
        if stored_at is None:
            return None
        if timezone.now() - stored_at >= timedelta(seconds=self.ttl_seconds):
            logger.debug("Query cache expired for %s/%s %r", platform, country, query_text)
            return None

        logger.debug("Query cache hit for %s/%s %r", platform, country, query_text)
        return entry.get("result")

    def put(self, platform: str, country: str, query_text: str, result: Any) -> None:
        """Store a result set. Idempotent, last write wins."""
        if not self.enabled:
            return
        key = self.make_key(platform, country, query_text)
        cache.set(
            key,
            {"stored_at": timezone.now().isoformat(), "result": result},
            self.ttl_seconds,
        )

    def invalidate(self, platform: str, country: str, query_text: str) -> None:
        cache.delete(self.make_key(platform, country, query_text))
