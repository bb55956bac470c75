"""
Uber Eats adapter.

URL format:
    https://www.ubereats.com/{cc}/store/{store-slug}/{store-uuid}

One global domain with a country path segment ("gb" for the UK). Store
pages embed a schema.org Restaurant in JSON-LD, including the menu under
hasMenu -> hasMenuSection -> hasMenuItem with decimal prices.
"""

import logging
import math
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from scout.platforms.base import (
    CURRENCY_SYMBOLS,
    Coordinates,
    MenuItem,
    PlatformAdapter,
    SearchContent,
    SearchResultItem,
    VenueAddress,
    VenuePage,
    as_list,
    clean_text,
    extract_json_ld,
    parse_price,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://www.ubereats.com"


def _to_number(value, kind):
    """
    Lenient number from JSON-LD, where counts show up as "500+" or "1,234".

    Returns None when no number can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return kind(value) if math.isfinite(value) else None

    text = str(value)
    if kind is int:
        match = re.search(r"\d[\d.,']*", text)
        return int(re.sub(r"\D", "", match.group(0))) if match else None
    match = re.search(r"\d+(?:[.,]\d+)?", text)
    return float(match.group(0).replace(",", ".")) if match else None


class UberEatsAdapter(PlatformAdapter):
    platform = "uber_eats"
    supported_countries = ("DE", "AT", "CH", "IT", "ES", "FR", "UK", "NL", "BE", "PL")
    default_currency = "EUR"

    COUNTRY_PATHS = {"UK": "gb"}

    VENUE_ID_RE = re.compile(
        r"ubereats\.com/(?:[a-z]{2}(?:-[a-z]{2})?/)?store/([^/?#\"'\s<>]+)(?:/([^/?#\"'\s<>]+))?"
    )
    VENUE_URL_PATTERN = (
        r"https?://(?:www\.)?ubereats\.com/(?:[a-z]{2}(?:-[a-z]{2})?/)?store/"
        r"[^/?#\"'\s<>]+(?:/[^/?#\"'\s<>]+)?"
    )

    def country_path(self, country: str) -> str:
        return self.COUNTRY_PATHS.get(country, country.lower())

    def get_search_domain(self, country: str) -> str:
        return f"ubereats.com/{self.country_path(country)}"

    def build_venue_url(self, id_or_slug: str, country: str) -> str:
        if id_or_slug.startswith("/"):
            return f"{BASE_URL}{id_or_slug}"
        return f"{BASE_URL}/{self.country_path(country)}/store/{id_or_slug}"

    def extract_venue_id(self, url: str) -> Optional[str]:
        """Returns "slug/uuid" when the store uuid is present, else the slug."""
        if not url:
            return None
        match = self.VENUE_ID_RE.search(url)
        if not match:
            return None
        slug, store_uuid = match.group(1), match.group(2)
        return f"{slug}/{store_uuid}" if store_uuid else slug

    def clean_result_title(self, title: str) -> str:
        title = super().clean_result_title(title)
        title = re.sub(r"^(?:order|commander|bestellen bei|pide)\s+", "", title, flags=re.IGNORECASE)
        return re.sub(r"\s+(?:menu|delivery|speisekarte|livraison)\b.*$", "", title, flags=re.IGNORECASE)

    # ------------------------------------------------------------------
    # Search results
    # ------------------------------------------------------------------

    def parse_result_markup(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """Store cards on Uber Eats feed pages."""
        if not isinstance(content, str):
            return []

        soup = BeautifulSoup(content, "html.parser")
        results = []
        for link in soup.select('a[href*="/store/"]'):
            href = link.get("href", "")
            url = f"{BASE_URL}{href}" if href.startswith("/") else href
            venue_id = self.extract_venue_id(url)
            heading = link.find(["h3", "h2"])
            name = clean_text(heading.get_text() if heading else link.get_text())
            if venue_id and name:
                results.append(SearchResultItem(name=name, url=url, venue_id=venue_id))
        return results

    # ------------------------------------------------------------------
    # Venue pages
    # ------------------------------------------------------------------

    @staticmethod
    def _restaurant_ld(content: str) -> Optional[dict]:
        for entry in extract_json_ld(content):
            types = as_list(entry.get("@type"))
            if "Restaurant" in types or "FoodEstablishment" in types:
                return entry
        return None

    def parse_venue_metadata(self, content: str) -> VenuePage:
        page = VenuePage()
        restaurant = self._restaurant_ld(content)
        if not restaurant:
            return page

        page.name = clean_text(restaurant.get("name"))

        address = restaurant.get("address")
        if isinstance(address, dict) and address.get("streetAddress"):
            page.address = VenueAddress(
                street=address.get("streetAddress", ""),
                city=address.get("addressLocality", ""),
                postal_code=address.get("postalCode", ""),
                country=address.get("addressCountry", ""),
            )

        geo = restaurant.get("geo") or {}
        try:
            page.coordinates = Coordinates(float(geo["latitude"]), float(geo["longitude"]))
        except (KeyError, TypeError, ValueError):
            page.coordinates = None

        rating = restaurant.get("aggregateRating") or {}
        page.rating = _to_number(rating.get("ratingValue"), float)
        if page.rating is not None:
            page.review_count = _to_number(rating.get("reviewCount") or rating.get("ratingCount"), int)

        return page

    def parse_menu_structured(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        restaurant = self._restaurant_ld(content)
        if not restaurant:
            return []

        items = []
        for menu in as_list(restaurant.get("hasMenu")):
            if not isinstance(menu, dict):
                continue
            for section in as_list(menu.get("hasMenuSection")):
                category = clean_text(section.get("name"))
                for entry in as_list(section.get("hasMenuItem")):
                    offer = next(iter(as_list(entry.get("offers"))), {}) or {}
                    item_currency = offer.get("priceCurrency") or currency or self.default_currency
                    price = parse_price(offer.get("price"), item_currency)
                    items.append(
                        MenuItem(
                            name=clean_text(entry.get("name")),
                            description=clean_text(entry.get("description")),
                            price=price.amount if price else None,
                            currency=item_currency if price else "",
                            category=category,
                        )
                    )
        return items

    def parse_menu_markup(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        soup = BeautifulSoup(content, "html.parser")
        items = []

        for element in soup.select('[data-testid^="store-item"]'):
            texts = [clean_text(t) for t in element.stripped_strings]
            texts = [t for t in texts if t]
            if not texts:
                continue

            price = None
            description = ""
            for text in texts[1:]:
                looks_like_price = any(symbol in text for symbol in CURRENCY_SYMBOLS) or re.search(
                    r"\b(?:CHF|EUR|PLN)\b", text
                )
                if price is None and looks_like_price:
                    price = parse_price(text, currency or self.default_currency)
                elif not description and len(text) > 20:
                    description = text

            section = element.find_previous(["h2", "h3"])
            items.append(
                MenuItem(
                    name=texts[0],
                    description=description,
                    price=price.amount if price else None,
                    currency=price.currency if price else "",
                    category=clean_text(section.get_text()) if section else "",
                )
            )
        return items
