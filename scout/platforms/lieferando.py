"""
Lieferando adapter (Germany and Austria).

URL format:
    https://www.lieferando.de/speisekarte/{restaurant-slug}
    https://www.lieferando.at/en/menu/{restaurant-slug}

Venue pages are Next.js; restaurant data and the menu live in __NEXT_DATA__
with prices in cents. Older pages only carry the business info in a
"colophon" block or a nested location object.
"""

import logging
import re
from typing import Any, List, Optional

from bs4 import BeautifulSoup

from scout.platforms.base import (
    Coordinates,
    MenuItem,
    PlatformAdapter,
    SearchContent,
    SearchResultItem,
    VenueAddress,
    VenuePage,
    clean_text,
    extract_next_data,
    find_nested_property,
    from_minor_units,
    parse_price,
)
from scout.platforms.countries import get_country_from_url

logger = logging.getLogger(__name__)


class LieferandoAdapter(PlatformAdapter):
    platform = "lieferando"
    supported_countries = ("DE", "AT")
    default_currency = "EUR"

    DOMAINS = {"DE": "lieferando.de", "AT": "lieferando.at"}

    VENUE_ID_RE = re.compile(r"lieferando\.(?:de|at)/(?:en/)?(?:speisekarte|menu)/([^/?#\"'\s<>]+)")
    VENUE_URL_PATTERN = r"https?://(?:www\.)?lieferando\.(?:de|at)/(?:en/)?(?:speisekarte|menu)/[^/?#\"'\s<>]+"

    def get_search_domain(self, country: str) -> str:
        return self.DOMAINS["AT"] if country == "AT" else self.DOMAINS["DE"]

    def base_url(self, country: str) -> str:
        return f"https://www.{self.get_search_domain(country)}"

    def build_venue_url(self, id_or_slug: str, country: str) -> str:
        if id_or_slug.startswith("/"):
            return f"{self.base_url(country)}{id_or_slug}"
        return f"{self.base_url(country)}/speisekarte/{id_or_slug}"

    def extract_venue_id(self, url: str) -> Optional[str]:
        if not url:
            return None
        match = self.VENUE_ID_RE.search(url)
        return match.group(1) if match else None

    def clean_result_title(self, title: str) -> str:
        title = super().clean_result_title(title)
        return re.sub(r"\s+(?:online\s+)?bestellen$", "", title, flags=re.IGNORECASE)

    # ------------------------------------------------------------------
    # Search results
    # ------------------------------------------------------------------

    def parse_result_markup(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """
        Restaurant cards on Lieferando listing pages.

        Relative links resolve against the listing page's own domain when the
        page names it (canonical, og:url or base), else the searched country.
        """
        if not isinstance(content, str):
            return []

        soup = BeautifulSoup(content, "html.parser")
        country = self._listing_country(soup) or (country if country in self.DOMAINS else "DE")
        results = []

        for link in soup.select('a[href*="/speisekarte/"], a[href*="/menu/"]'):
            href = link.get("href", "")
            url = self.build_venue_url(href, country) if href.startswith("/") else href
            venue_id = self.extract_venue_id(url)
            heading = link.find("h2")
            name = clean_text(heading.get_text() if heading else link.get_text())
            if venue_id and name:
                results.append(SearchResultItem(name=name, url=url, venue_id=venue_id))

        if results:
            return results

        for link in soup.select("a[data-restaurant-slug]"):
            slug = link["data-restaurant-slug"]
            name_tag = link.select_one("span[class*=name]")
            name = clean_text(name_tag.get_text() if name_tag else link.get_text())
            url = self.build_venue_url(slug, country)
            if name:
                results.append(SearchResultItem(name=name, url=url, venue_id=slug))
        return results

    def _listing_country(self, soup: BeautifulSoup) -> Optional[str]:
        candidates = [
            soup.select_one('link[rel="canonical"]'),
            soup.select_one('meta[property="og:url"]'),
            soup.find("base"),
        ]
        for tag in candidates:
            if tag is None:
                continue
            url = tag.get("href") or tag.get("content") or ""
            if "lieferando." not in url:
                continue
            found = get_country_from_url(url)
            if found in self.DOMAINS:
                return found
        return None

    # ------------------------------------------------------------------
    # Venue pages
    # ------------------------------------------------------------------

    def parse_venue_metadata(self, content: str) -> VenuePage:
        page = VenuePage()
        next_data = extract_next_data(content)
        if not next_data:
            return page

        fallback_country = get_country_from_url(content) or "DE"
        page_props = (next_data.get("props") or {}).get("pageProps") or {}
        restaurant = page_props.get("restaurant") or {}

        if restaurant:
            page.name = clean_text(restaurant.get("name"))
            address = restaurant.get("address") or {}
            if address.get("street"):
                page.address = VenueAddress(
                    street=address.get("street", ""),
                    city=address.get("city", ""),
                    postal_code=address.get("postalCode", ""),
                    country=address.get("country") or fallback_country,
                )
            location = restaurant.get("location") or {}
            if location.get("lat") and location.get("lng"):
                page.coordinates = Coordinates(location["lat"], location["lng"])
            rating = restaurant.get("rating") or {}
            if rating:
                page.rating = rating.get("score")
                page.review_count = rating.get("votes")

        if page.address is None:
            colophon = find_nested_property(next_data, "colophon") or {}
            colophon_data = colophon.get("data") if isinstance(colophon, dict) else None
            if colophon_data and colophon_data.get("streetName"):
                page.address = VenueAddress(
                    street=colophon_data["streetName"],
                    city=colophon_data.get("city", ""),
                    postal_code=colophon_data.get("postalCode", ""),
                    country=fallback_country,
                )
                if not page.name:
                    page.name = clean_text(colophon_data.get("restaurantName"))

        if page.address is None or page.coordinates is None:
            location = self._find_location_with_address(next_data)
            if location:
                if page.address is None:
                    page.address = VenueAddress(
                        street=location.get("street") or location.get("streetAddress", ""),
                        city=location.get("city", ""),
                        postal_code=location.get("postalCode", ""),
                        country=location.get("countryCode")
                        or location.get("country")
                        or fallback_country,
                    )
                if page.coordinates is None and isinstance(location.get("lat"), (int, float)) \
                        and isinstance(location.get("lng"), (int, float)):
                    page.coordinates = Coordinates(location["lat"], location["lng"])

        return page

    def _find_location_with_address(self, obj: Any) -> Optional[dict]:
        """First nested dict carrying a non-empty street."""
        if isinstance(obj, dict):
            street = obj.get("street") or obj.get("streetAddress")
            if isinstance(street, str) and street.strip():
                return obj
            children = obj.values()
        elif isinstance(obj, list):
            children = obj
        else:
            return None

        for child in children:
            found = self._find_location_with_address(child)
            if found:
                return found
        return None

    def parse_menu_structured(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        next_data = extract_next_data(content)
        if not next_data:
            return []

        page_props = (next_data.get("props") or {}).get("pageProps") or {}
        menu = page_props.get("menu") or find_nested_property(next_data, "menu") or {}
        categories = menu.get("categories") if isinstance(menu, dict) else None

        items = []
        for category in categories or []:
            for product in category.get("products") or []:
                price = from_minor_units(product.get("price"), currency or self.default_currency)
                items.append(
                    MenuItem(
                        name=clean_text(product.get("name")),
                        description=clean_text(product.get("description")),
                        price=price.amount if price else None,
                        currency=price.currency if price else "",
                        category=clean_text(category.get("name")),
                    )
                )
        return items

    def parse_menu_markup(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        soup = BeautifulSoup(content, "html.parser")

        layouts = (
            # Current layout
            ("article[class*=product]", "h3", "p[class*=description]", "span[class*=price]"),
            # Legacy layout
            ("div[class*=meal]", "span[class*=meal-name]", "span[class*=meal-description]",
             "span[class*=meal-price]"),
        )

        for container_sel, name_sel, description_sel, price_sel in layouts:
            items = []
            for container in soup.select(container_sel):
                name_tag = container.select_one(name_sel)
                if name_tag is None:
                    continue
                description_tag = container.select_one(description_sel)
                price_tag = container.select_one(price_sel)
                price = parse_price(price_tag.get_text(), currency or self.default_currency) if price_tag else None

                category_tag = container.find_previous(["h2"])
                items.append(
                    MenuItem(
                        name=clean_text(name_tag.get_text()),
                        description=clean_text(description_tag.get_text()) if description_tag else "",
                        price=price.amount if price else None,
                        currency=price.currency if price else "",
                        category=clean_text(category_tag.get_text()) if category_tag else "",
                    )
                )
            if items:
                return items
        return []
