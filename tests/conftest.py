"""
Pytest configuration and fixtures for the Delivery Scout test suite.
"""

import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_setup, django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Query cache and failure counters live in the local-memory cache."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def strategy(db):
    """Create a seed strategy for Lieferando Germany."""
    from scout.models import DiscoveryStrategy, StrategyOrigin, StrategyTier

    return DiscoveryStrategy.objects.create(
        query_template="{product} {city}",
        platform="lieferando",
        country="DE",
        tier=StrategyTier.MEDIUM,
        origin=StrategyOrigin.SEED,
        success_rate=50,
    )


@pytest.fixture
def credential(db):
    """Create a Google Custom Search credential with a small free quota."""
    from scout.models import SearchEngineCredential

    return SearchEngineCredential.objects.create(
        name="google-primary",
        api_key="test-key",
        engine_id="test-cx",
        daily_free_quota=3,
    )


@pytest.fixture
def chain(db):
    """Create a chain that only operates in Germany."""
    from scout.models import Chain

    return Chain.objects.create(
        name="Hiltl Burger",
        aliases=["Hiltl"],
        countries=["DE"],
        products=[
            {
                "name": "Planted Chicken Burger",
                "product_tag": "planted.chicken",
                "price_amount": "14.90",
                "price_currency": "EUR",
            },
            {"name": "", "product_tag": "planted"},
        ],
    )


@pytest.fixture
def venue(db, strategy):
    """Create a discovered venue waiting for extraction."""
    from scout.models import DiscoveredVenue

    return DiscoveredVenue.objects.create(
        name="Green Kitchen",
        url="https://www.lieferando.de/speisekarte/green-kitchen",
        normalized_url="https://lieferando.de/speisekarte/green-kitchen",
        platform="lieferando",
        venue_id="green-kitchen",
        resolved_country="DE",
        configured_country="DE",
        strategy=strategy,
    )


@pytest.fixture
def make_feedback(db):
    """Factory creating FeedbackRecords in bulk."""
    from django.utils import timezone

    from scout.models import FeedbackRecord

    def _make(count, result_type, platform="lieferando", country="DE", strategy_id="", reviewed_at=None):
        reviewed_at = reviewed_at or timezone.now()
        return FeedbackRecord.objects.bulk_create(
            [
                FeedbackRecord(
                    subject_id=f"{platform}-{country}-{result_type}-{i}",
                    platform=platform,
                    country=country,
                    strategy_id=str(strategy_id),
                    result_type=result_type,
                    reviewed_at=reviewed_at,
                )
                for i in range(count)
            ]
        )

    return _make
