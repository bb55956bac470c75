"""
Tests for the ExtractionAgent and PageFetcher.

Browser sessions are fakes. LeakySession deliberately carries the previous
page into the next one unless clear_state() is called, the way a shared
browser cache would.
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest


def menu_page(*items):
    """Lieferando product markup for (name, price) pairs."""
    articles = []
    for name, price in items:
        price_html = f'<span class="price">{price}</span>' if price else ""
        articles.append(f'<article class="product"><h3>{name}</h3>{price_html}</article>')
    return "<h1>Venue</h1><h2>Menu</h2>" + "".join(articles)


URL_A = "https://www.lieferando.de/speisekarte/green-kitchen"
URL_B = "https://www.lieferando.de/speisekarte/burger-bar"

PAGES = {
    URL_A: menu_page(("Planted Chicken Bowl", "12,90 €"), ("Fries", "3,50 €")),
    URL_B: menu_page(("Planted Kebab", "13,50 €"), ("Fries", "3,50 €")),
}


class LeakySession:
    """Fake browser whose previous page leaks into the next unless cleared."""

    def __init__(self, pages, delays=None, errors=None):
        self.pages = pages
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls = []
        self._residue = ""
        self.closed = False

    async def clear_state(self):
        self.calls.append("clear")
        self._residue = ""

    async def open(self, url):
        self.calls.append(f"open {url}")
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url in self.errors:
            raise self.errors[url]
        content = self._residue + self.pages.get(url, "")
        self._residue = content
        return content

    async def close(self):
        self.closed = True


def make_agent(session, governor=None, dish_sink=None, timeout=5):
    from scout.extraction.agent import ExtractionAgent
    from scout.extraction.fetcher import PageFetcher

    if governor is None:
        governor = Mock()
        governor.check_budget.return_value = None
    return ExtractionAgent(
        PageFetcher(session, timeout=timeout),
        governor=governor,
        dish_sink=dish_sink,
        health_tracker=Mock(),
    )


def targets(*urls):
    from scout.extraction.agent import VenueTarget

    return [VenueTarget(url=url, platform="lieferando", country="DE") for url in urls]


class TestPageFetcher:
    """Tests for session isolation and timeouts."""

    @pytest.mark.asyncio
    async def test_clears_state_before_every_open(self):
        from scout.extraction.fetcher import PageFetcher

        session = LeakySession(PAGES)
        fetcher = PageFetcher(session, timeout=5)

        await fetcher.fetch(URL_A)
        await fetcher.fetch(URL_B)

        assert session.calls == ["clear", f"open {URL_A}", "clear", f"open {URL_B}"]

    @pytest.mark.asyncio
    async def test_timeout_is_a_result_not_an_exception(self):
        from scout.extraction.fetcher import PageFetcher

        session = LeakySession(PAGES, delays={URL_A: 1})
        result = await PageFetcher(session).fetch(URL_A, timeout=0.01)

        assert result.success is False
        assert result.timed_out is True
        assert "timeout" in result.error

    @pytest.mark.asyncio
    async def test_browser_navigation_timeout(self):
        from scout.exceptions import FetchTimeout
        from scout.extraction.fetcher import PageFetcher

        session = LeakySession(PAGES, errors={URL_A: FetchTimeout("navigation timeout")})
        result = await PageFetcher(session, timeout=5).fetch(URL_A)

        assert result.success is False
        assert result.timed_out is True

    @pytest.mark.asyncio
    async def test_navigation_error(self):
        from scout.extraction.fetcher import PageFetcher

        session = LeakySession(PAGES, errors={URL_A: RuntimeError("net::ERR_NAME_NOT_RESOLVED")})
        result = await PageFetcher(session, timeout=5).fetch(URL_A)

        assert result.success is False
        assert result.timed_out is False
        assert "ERR_NAME_NOT_RESOLVED" in result.error

    @pytest.mark.asyncio
    async def test_empty_page_is_failure(self):
        from scout.extraction.fetcher import PageFetcher

        result = await PageFetcher(LeakySession({}), timeout=5).fetch(URL_A)

        assert result.success is False
        assert result.error == "empty page"


class TestExtractionAgent:
    """Tests for sequential venue extraction."""

    @pytest.mark.asyncio
    async def test_no_cross_contamination(self):
        """Dishes unique to venue A never show up in venue B's result."""
        session = LeakySession(PAGES)
        result = await make_agent(session).run(targets(URL_A, URL_B))

        first, second = result.extractions
        names_a = {d.name for d in first.dishes}
        names_b = {d.name for d in second.dishes}
        assert names_a == {"Planted Chicken Bowl", "Fries"}
        assert names_b == {"Planted Kebab", "Fries"}
        # Fries appears on both pages independently
        assert names_a & names_b == {"Fries"}

    @pytest.mark.asyncio
    async def test_dishes_tagged_priced_and_scored(self):
        result = await make_agent(LeakySession(PAGES)).run(targets(URL_A))

        extraction = result.extractions[0]
        bowl = next(d for d in extraction.dishes if d.name == "Planted Chicken Bowl")
        assert bowl.price.amount == Decimal("12.90")
        assert bowl.price.currency == "EUR"
        assert bowl.product_tag == "planted.chicken"
        assert bowl.confidence == 0.7
        assert extraction.menu_parser == "parse_menu_markup"

    @pytest.mark.asyncio
    async def test_prices_take_venue_country_currency(self):
        """A UK store page without priceCurrency yields GBP dishes."""
        import json

        from scout.extraction.agent import VenueTarget

        url = "https://www.ubereats.com/gb/store/green-kitchen/u-1"
        restaurant = {
            "@type": "Restaurant",
            "name": "Green Kitchen",
            "hasMenu": {
                "hasMenuSection": [
                    {"name": "Mains", "hasMenuItem": [{"name": "Planted Kebab", "offers": {"price": "9.50"}}]}
                ]
            },
        }
        pages = {url: f'<script type="application/ld+json">{json.dumps(restaurant)}</script>'}

        result = await make_agent(LeakySession(pages)).run(
            [VenueTarget(url=url, platform="uber_eats", country="UK")]
        )

        dish = result.extractions[0].dishes[0]
        assert dish.price.amount == Decimal("9.50")
        assert dish.price.currency == "GBP"

    @pytest.mark.asyncio
    async def test_invalid_dishes_dropped_and_counted(self):
        pages = {URL_A: menu_page(("Planted Bowl", "12,90 €"), ("Side Salad", None))}

        result = await make_agent(LeakySession(pages)).run(targets(URL_A))

        extraction = result.extractions[0]
        assert [d.name for d in extraction.dishes] == ["Planted Bowl"]
        assert extraction.invalid_dishes == 1
        assert extraction.invalid_records == [{"name": "Side Salad", "issues": ["missing price"]}]
        assert result.dishes_invalid == 1
        assert result.dishes_valid == 1

    @pytest.mark.asyncio
    async def test_timeout_skips_venue_and_continues(self):
        session = LeakySession(PAGES, delays={URL_A: 1})

        result = await make_agent(session, timeout=0.01).run(targets(URL_A, URL_B))

        assert result.venues_attempted == 2
        assert result.venues_failed == 1
        assert result.timeouts == 1
        assert result.venues_succeeded == 1
        assert result.extractions[0].dishes == []
        assert {d.name for d in result.extractions[1].dishes} == {"Planted Kebab", "Fries"}

    @pytest.mark.asyncio
    async def test_failure_recorded_against_platform_health(self):
        session = LeakySession(PAGES, errors={URL_A: RuntimeError("blocked")})
        agent = make_agent(session)

        await agent.run(targets(URL_A, URL_B))

        agent.health_tracker.record_failure.assert_called_once_with("lieferando", "DE", "blocked")
        agent.health_tracker.record_success.assert_called_once_with("lieferando", "DE")

    @pytest.mark.asyncio
    async def test_dish_sink_receives_successful_venues(self):
        sink = AsyncMock()
        session = LeakySession(PAGES, errors={URL_A: RuntimeError("blocked")})

        await make_agent(session, dish_sink=sink).run(targets(URL_A, URL_B))

        sink.assert_awaited_once()
        target, extraction = sink.await_args[0]
        assert target.url == URL_B
        assert extraction.success is True

    @pytest.mark.asyncio
    async def test_dish_sink_error_skips_venue_and_continues(self):
        """A sink failure on one venue is counted and the next venue still runs."""
        stored = []

        async def sink(target, extraction):
            if target.url == URL_A:
                raise RuntimeError("database is locked")
            stored.append(target.url)

        with patch("scout.extraction.agent.capture_pipeline_error") as mock_capture:
            result = await make_agent(LeakySession(PAGES), dish_sink=sink).run(targets(URL_A, URL_B))

        assert stored == [URL_B]
        assert result.venues_attempted == 2
        assert result.venues_failed == 1
        assert result.persist_failures == 1
        assert result.venues_succeeded == 1
        assert result.dishes_valid == 2
        assert result.to_dict()["persist_failures"] == 1
        mock_capture.assert_called_once()
        assert mock_capture.call_args.kwargs["stage"] == "extraction"
        assert mock_capture.call_args.kwargs["url"] == URL_A

    @pytest.mark.asyncio
    async def test_failures_of_stored_venues_are_dead_lettered(self):
        from scout.extraction.agent import ExtractionAgent, VenueTarget
        from scout.extraction.fetcher import PageFetcher

        governor = Mock()
        governor.check_budget.return_value = None
        dead_letters = Mock()
        sink = AsyncMock(side_effect=RuntimeError("disk full"))
        session = LeakySession(PAGES, errors={URL_A: RuntimeError("blocked")})
        agent = ExtractionAgent(
            PageFetcher(session, timeout=5),
            governor=governor,
            dish_sink=sink,
            health_tracker=Mock(),
            dead_letters=dead_letters,
        )

        with patch("scout.extraction.agent.capture_pipeline_error"):
            await agent.run(
                [
                    VenueTarget(url=URL_A, platform="lieferando", country="DE", venue_pk="v-a"),
                    VenueTarget(url=URL_B, platform="lieferando", country="DE", venue_pk="v-b"),
                    VenueTarget(url=URL_B, platform="lieferando", country="DE"),
                ]
            )

        queued = [(c.args[0], c.kwargs["venue_pk"]) for c in dead_letters.queue.call_args_list]
        # The target without a stored venue has nothing to retry
        assert queued == [("dish_extraction", "v-a"), ("menu_persist", "v-b")]
        assert dead_letters.queue.call_args_list[0].args[1] == "blocked"
        assert dead_letters.queue.call_args_list[1].args[1] == "persist error: disk full"

    @pytest.mark.asyncio
    async def test_budget_refusal_stops_new_venues(self):
        from scout.budget.governor import BudgetExceeded

        governor = Mock()
        governor.check_budget.side_effect = [
            None,
            BudgetExceeded("daily", "Daily budget exhausted", Decimal("5"), Decimal("5")),
        ]
        session = LeakySession(PAGES)

        result = await make_agent(session, governor=governor).run(targets(URL_A, URL_B))

        assert result.budget_stopped is True
        assert result.venues_attempted == 1
        assert f"open {URL_B}" not in session.calls

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_venue(self):
        session = LeakySession(PAGES)
        agent = make_agent(session)
        agent.cancel()

        result = await agent.run(targets(URL_A, URL_B))

        assert result.cancelled is True
        assert result.venues_attempted == 0
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_unknown_platform_is_not_fatal(self):
        from scout.extraction.agent import VenueTarget

        session = LeakySession(PAGES)
        result = await make_agent(session).run(
            [VenueTarget(url=URL_A, platform="deliveroo"), *targets(URL_B)]
        )

        assert result.extractions[0].success is False
        assert "No adapter registered" in result.extractions[0].error
        assert result.venues_succeeded == 1

    @pytest.mark.asyncio
    async def test_parse_error_is_captured(self):
        from scout.platforms.lieferando import LieferandoAdapter

        session = LeakySession(PAGES)
        with patch.object(LieferandoAdapter, "parse_venue_page", side_effect=ValueError("bad markup")), \
                patch("scout.extraction.agent.capture_pipeline_error") as mock_capture:
            result = await make_agent(session).run(targets(URL_A))

        assert result.venues_failed == 1
        assert result.extractions[0].error == "parse error: bad markup"
        mock_capture.assert_called_once()


class TestExtractVenues:
    """Tests for the synchronous entry point."""

    def test_no_venues(self):
        from scout.extraction.agent import extract_venues

        result = extract_venues([])

        assert result.venues_attempted == 0

    def test_runs_agent_and_persists(self):
        from scout.extraction.agent import extract_venues

        venue = SimpleNamespace(
            pk="v-1", url=URL_A, platform="lieferando", resolved_country="DE", name="Green Kitchen"
        )
        governor = Mock()
        governor.check_budget.return_value = None
        session = LeakySession(PAGES)
        persisted = []

        def fake_persist(target, extraction):
            persisted.append((target, extraction))
            return len(extraction.dishes)

        with patch("scout.extraction.agent.get_budget_governor", return_value=governor), \
                patch("scout.extraction.agent.get_platform_health_tracker", return_value=Mock()), \
                patch("scout.extraction.agent.persist_venue_dishes", new=fake_persist):
            result = extract_venues([venue], session=session)

        assert result.venues_succeeded == 1
        target, extraction = persisted[0]
        assert target.venue_pk == "v-1"
        assert len(extraction.dishes) == 2
        # A caller-provided session is left open
        assert session.closed is False


@pytest.mark.django_db
class TestPersistVenueDishes:
    """Tests for writing extracted dishes."""

    def test_replaces_extracted_dishes(self, venue):
        from scout.extraction.agent import DishRecord, VenueExtraction, VenueTarget, persist_venue_dishes
        from scout.models import DiscoveredDish, DishSource, VenueStatus
        from scout.platforms.base import Price

        DiscoveredDish.objects.create(venue=venue, name="Old Dish", source=DishSource.EXTRACTION)
        DiscoveredDish.objects.create(venue=venue, name="Chain Dish", source=DishSource.CHAIN)
        target = VenueTarget.from_venue(venue)
        extraction = VenueExtraction(
            target=target,
            success=True,
            dishes=[
                DishRecord(
                    name="Planted Kebab",
                    price=Price(Decimal("13.50"), "EUR"),
                    product_tag="planted.kebab",
                    confidence=0.9,
                )
            ],
        )

        assert persist_venue_dishes(target, extraction) == 1

        venue.refresh_from_db()
        assert venue.status == VenueStatus.EXTRACTED
        assert venue.last_extracted_at is not None
        assert sorted(venue.dishes.values_list("name", flat=True)) == ["Chain Dish", "Planted Kebab"]
        kebab = venue.dishes.get(name="Planted Kebab")
        assert kebab.price_amount == Decimal("13.50")
        assert kebab.product_tag == "planted.kebab"

    def test_writes_menu_snapshot_with_changes(self, venue):
        """Each persist snapshots the menu and diffs tracked dishes against the last one."""
        from scout.extraction.agent import DishRecord, VenueExtraction, VenueTarget, persist_venue_dishes
        from scout.models import MenuSnapshot
        from scout.platforms.base import Price

        target = VenueTarget.from_venue(venue)

        def extraction(*dishes):
            return VenueExtraction(
                target=target,
                success=True,
                dishes=[
                    DishRecord(name=name, price=Price(Decimal(price), "EUR"), product_tag=tag)
                    for name, price, tag in dishes
                ],
            )

        persist_venue_dishes(
            target,
            extraction(
                ("Planted Kebab", "13.50", "planted.kebab"),
                ("Planted Schnitzel", "16.00", "planted.schnitzel"),
                ("Fries", "3.50", ""),
            ),
        )
        persist_venue_dishes(
            target,
            extraction(
                ("Planted Kebab", "14.50", "planted.kebab"),
                ("Planted Chicken Bowl", "12.90", "planted.chicken"),
                ("Fries", "3.90", ""),
            ),
        )

        first, second = MenuSnapshot.objects.filter(venue=venue).order_by("pk")
        assert first.dish_count == 3
        assert first.tracked_dish_count == 2
        assert {c["change_type"] for c in first.changes} == {"dish_added"}

        changes = {(c["change_type"], c["dish_name"]) for c in second.changes}
        assert changes == {
            ("price_change", "Planted Kebab"),
            ("dish_removed", "Planted Schnitzel"),
            ("dish_added", "Planted Chicken Bowl"),
        }
        price_change = next(c for c in second.changes if c["change_type"] == "price_change")
        assert (price_change["old_value"], price_change["new_value"]) == ("13.50", "14.50")

    def test_unchanged_menu_has_no_changes(self, venue):
        from scout.extraction.agent import DishRecord, VenueExtraction, VenueTarget, persist_venue_dishes
        from scout.models import MenuSnapshot
        from scout.platforms.base import Price

        target = VenueTarget.from_venue(venue)
        extraction = VenueExtraction(
            target=target,
            success=True,
            dishes=[DishRecord(name="Planted Kebab", price=Price(Decimal("13.50"), "EUR"), product_tag="planted.kebab")],
        )

        persist_venue_dishes(target, extraction)
        persist_venue_dishes(target, extraction)

        latest = MenuSnapshot.objects.filter(venue=venue).order_by("-pk").first()
        assert latest.changes == []
        assert MenuSnapshot.objects.filter(venue=venue).count() == 2
