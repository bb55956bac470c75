"""
Platform adapter contract and shared parsing helpers.

Each delivery platform gets one PlatformAdapter subclass that knows the
platform's URL grammar and page layouts. Parsing is an explicit, ordered
list of strategies: the first strategy that yields a non-empty result wins
and results from different strategies are never merged.

Search result content is either the normalized engine payload
({"items": [...]}) or raw HTML/text.
"""

import html as html_lib
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bs4 import BeautifulSoup
from django.conf import settings

logger = logging.getLogger(__name__)

SearchContent = Union[Dict[str, Any], str]

CENT = Decimal("0.01")

# Codes are checked before symbols so "CHF 12.50" is not read as something else
CURRENCY_CODES = ("EUR", "GBP", "CHF", "PLN", "USD")
CURRENCY_SYMBOLS = {
    "€": "EUR",
    "£": "GBP",
    "zł": "PLN",
    "Fr.": "CHF",
    "$": "USD",
}

# Local currency for countries outside the eurozone
COUNTRY_CURRENCIES = {"UK": "GBP", "CH": "CHF", "PL": "PLN"}

_NUMBER_RE = re.compile(r"\d[\d.,']*")
_CURRENCY_TOKEN = r"(?:€|£|zł|Fr\.|\$|EUR|GBP|CHF|PLN|USD)"
_PRICE_NEAR_CURRENCY = re.compile(
    rf"{_CURRENCY_TOKEN}\s*(\d[\d.,']*)|(\d[\d.,']*)\s*{_CURRENCY_TOKEN}"
)


@dataclass
class Price:
    amount: Decimal
    currency: str


@dataclass
class SearchResultItem:
    name: str
    url: str
    venue_id: str
    snippet: str = ""


@dataclass
class VenueAddress:
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class MenuItem:
    name: str
    description: str = ""
    price: Optional[Decimal] = None
    currency: str = ""
    category: str = ""


@dataclass
class VenuePage:
    name: str = ""
    address: Optional[VenueAddress] = None
    coordinates: Optional[Coordinates] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    menu_items: List[MenuItem] = field(default_factory=list)
    menu_parser: str = ""


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def clean_text(text: Optional[str]) -> str:
    """Unescape HTML entities and collapse whitespace."""
    if not text:
        return ""
    return " ".join(html_lib.unescape(str(text)).split())


def detect_currency(text: str, default: str = "EUR") -> str:
    upper = text.upper()
    for code in CURRENCY_CODES:
        if re.search(rf"\b{code}\b", upper):
            return code
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    return default


def _normalize_number(raw: str) -> Optional[str]:
    number = raw.replace("'", "").strip(".,")
    if not number:
        return None

    if "," in number and "." in number:
        # The separator that appears last is the decimal separator
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        if re.search(r",\d{1,2}$", number):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif re.fullmatch(r"\d{1,3}(\.\d{3})+", number):
        number = number.replace(".", "")
    return number


def parse_price(text: Any, default_currency: str = "EUR") -> Optional[Price]:
    """
    Parse a locale-formatted price into a decimal amount and currency code.

    Handles formats:
    - "12,50 €" / "€12,50" (comma decimal)
    - "£9.99" / "CHF 18.90" / "24,90 zł"
    - "1.299,00 €" and "$1,299.99" (thousands separators)

    Returns:
        Price, or None when no finite number is present
    """
    if text is None:
        return None
    if isinstance(text, (int, float, Decimal)) and not isinstance(text, bool):
        amount = Decimal(str(text))
        if not amount.is_finite():
            return None
        try:
            return Price(amount.quantize(CENT), default_currency)
        except InvalidOperation:
            return None

    text = clean_text(text)
    near = _PRICE_NEAR_CURRENCY.search(text)
    if near:
        raw = near.group(1) or near.group(2)
    else:
        match = _NUMBER_RE.search(text)
        if not match:
            return None
        raw = match.group(0)

    number = _normalize_number(raw)
    if number is None:
        return None

    try:
        amount = Decimal(number).quantize(CENT)
    except InvalidOperation:
        return None

    return Price(amount, detect_currency(text, default_currency))


def from_minor_units(value: Any, currency: str = "EUR", exponent: int = 2) -> Optional[Price]:
    """Convert an integer amount in minor units (e.g. cents) to a Price."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value)) / (Decimal(10) ** exponent)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return Price(amount.quantize(CENT), currency)


def find_nested_property(obj: Any, name: str) -> Any:
    """Depth-first search for the first truthy value stored under key `name`."""
    if isinstance(obj, dict):
        if obj.get(name):
            return obj[name]
        children: Iterable = obj.values()
    elif isinstance(obj, list):
        children = obj
    else:
        return None

    for child in children:
        found = find_nested_property(child, name)
        if found:
            return found
    return None


def extract_next_data(content: str) -> Optional[Dict[str, Any]]:
    """Parse the __NEXT_DATA__ JSON blob embedded by Next.js pages."""
    soup = BeautifulSoup(content, "html.parser")
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None or not script.string:
        return None
    try:
        return json.loads(script.string)
    except ValueError:
        logger.debug("Invalid __NEXT_DATA__ JSON")
        return None


def extract_json_ld(content: str) -> List[Dict[str, Any]]:
    """All JSON-LD objects on a page, with @graph containers flattened."""
    soup = BeautifulSoup(content, "html.parser")
    objects: List[Dict[str, Any]] = []

    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue

        stack = data if isinstance(data, list) else [data]
        for entry in stack:
            if not isinstance(entry, dict):
                continue
            if "@graph" in entry:
                objects.extend(e for e in entry["@graph"] if isinstance(e, dict))
            else:
                objects.append(entry)
    return objects


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def slug_to_name(slug: str) -> str:
    """Best-effort display name from a URL slug."""
    base = slug.split("/")[0]
    return clean_text(re.sub(r"[-_]+", " ", base)).title()


# ----------------------------------------------------------------------
# Adapter contract
# ----------------------------------------------------------------------


class PlatformAdapter(ABC):
    """
    Capability contract for one delivery platform.

    Subclasses set platform, supported_countries and VENUE_URL_PATTERN,
    implement the URL operations, and fill in whichever parser strategies
    the platform supports.
    """

    platform: str = ""
    supported_countries: Tuple[str, ...] = ()
    default_currency: str = "EUR"

    # Regex for absolute venue URLs, used by the raw URL scan
    VENUE_URL_PATTERN: str = ""

    SEARCH_RESULT_PARSERS: Tuple[str, ...] = (
        "parse_result_items",
        "parse_result_markup",
        "scan_venue_urls",
    )
    MENU_PARSERS: Tuple[str, ...] = (
        "parse_menu_structured",
        "parse_menu_markup",
        "parse_menu_mentions",
    )

    def supports(self, country: str) -> bool:
        return country in self.supported_countries

    def currency_for(self, country: Optional[str]) -> str:
        """Currency assumed for prices on a page that does not state one."""
        return COUNTRY_CURRENCIES.get(country or "", self.default_currency)

    @abstractmethod
    def get_search_domain(self, country: str) -> str:
        """Country-specific domain used to scope site: searches."""

    def build_search_url(self, query: str, country: str, city: Optional[str] = None) -> str:
        """Literal site-restricted search engine query."""
        parts = [f"site:{self.get_search_domain(country)}", query.strip()]
        if city:
            parts.append(city.strip())
        return " ".join(p for p in parts if p)

    @abstractmethod
    def build_venue_url(self, id_or_slug: str, country: str) -> str:
        """Canonical venue URL on the country-specific base domain."""

    @abstractmethod
    def extract_venue_id(self, url: str) -> Optional[str]:
        """Venue id/slug from a venue URL, or None if the path does not match."""

    # ------------------------------------------------------------------
    # Search results
    # ------------------------------------------------------------------

    def parse_search_results(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """
        Run the search result parsers in order; first non-empty result wins.

        country is the source being searched, used where relative links need
        a country-specific base.
        """
        for parser_name in self.SEARCH_RESULT_PARSERS:
            results = self._dedupe(getattr(self, parser_name)(content, country))
            if results:
                logger.debug(
                    "%s: %d search results via %s", self.platform, len(results), parser_name
                )
                return results
        return []

    @staticmethod
    def _dedupe(results: Iterable[SearchResultItem]) -> List[SearchResultItem]:
        seen = set()
        unique = []
        for result in results or []:
            if result.venue_id and result.venue_id not in seen:
                seen.add(result.venue_id)
                unique.append(result)
        return unique

    def parse_result_items(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """Structured search engine items whose link matches the venue grammar."""
        if not isinstance(content, dict):
            return []

        results = []
        for item in content.get("items") or []:
            url = item.get("link") or ""
            venue_id = self.extract_venue_id(url)
            if not venue_id:
                continue
            name = self.clean_result_title(item.get("title", "")) or slug_to_name(venue_id)
            results.append(
                SearchResultItem(
                    name=name,
                    url=url,
                    venue_id=venue_id,
                    snippet=clean_text(item.get("snippet", "")),
                )
            )
        return results

    def parse_result_markup(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """Platform listing markup. Adapters override when they know the layout."""
        return []

    def scan_venue_urls(
        self, content: SearchContent, country: Optional[str] = None
    ) -> List[SearchResultItem]:
        """Last resort: any absolute venue URL appearing in the content."""
        if not self.VENUE_URL_PATTERN:
            return []
        text = content if isinstance(content, str) else json.dumps(content)

        results = []
        for match in re.finditer(self.VENUE_URL_PATTERN, text):
            url = match.group(0)
            venue_id = self.extract_venue_id(url)
            if venue_id:
                results.append(
                    SearchResultItem(name=slug_to_name(venue_id), url=url, venue_id=venue_id)
                )
        return results

    def clean_result_title(self, title: str) -> str:
        """Strip the platform suffix from a search result title."""
        title = clean_text(title)
        for separator in (" | ", " - ", " – "):
            if separator in title:
                title = title.split(separator)[0]
        return title.strip()

    # ------------------------------------------------------------------
    # Venue pages
    # ------------------------------------------------------------------

    def parse_venue_page(self, content: str, country: Optional[str] = None) -> VenuePage:
        """
        Venue metadata plus the menu from the first parser that finds items.

        Prices that carry no currency of their own get the venue country's
        currency.
        """
        page = self.parse_venue_metadata(content)
        currency = self.currency_for(country)

        for parser_name in self.MENU_PARSERS:
            items = [i for i in getattr(self, parser_name)(content, currency) if i.name]
            if items:
                page.menu_items = items
                page.menu_parser = parser_name
                break

        if not page.name:
            page.name = self._name_from_markup(content)
        return page

    def parse_venue_metadata(self, content: str) -> VenuePage:
        return VenuePage()

    def parse_menu_structured(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        return []

    def parse_menu_markup(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        return []

    def parse_menu_mentions(self, content: str, currency: Optional[str] = None) -> List[MenuItem]:
        """Lines of visible text that mention a tracked product keyword."""
        keywords = [k.lower() for k in getattr(settings, "TRACKED_PRODUCT_KEYWORDS", ["planted"])]
        soup = BeautifulSoup(content, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()

        lines = [clean_text(line) for line in soup.get_text("\n").splitlines()]
        lines = [line for line in lines if line]

        items = []
        seen = set()
        for index, line in enumerate(lines):
            lower = line.lower()
            if not any(keyword in lower for keyword in keywords):
                continue
            if not 5 < len(line) < 150 or line in seen:
                continue
            seen.add(line)

            price = None
            for candidate in lines[index:index + 3]:
                if any(symbol in candidate for symbol in CURRENCY_SYMBOLS) or re.search(
                    r"\b(EUR|GBP|CHF|PLN)\b", candidate
                ):
                    price = parse_price(candidate, currency or self.default_currency)
                    if price:
                        break

            items.append(
                MenuItem(
                    name=line,
                    description="Mentions tracked product",
                    price=price.amount if price else None,
                    currency=price.currency if price else "",
                )
            )
        return items

    @staticmethod
    def _name_from_markup(content: str) -> str:
        soup = BeautifulSoup(content, "html.parser")
        heading = soup.select_one("h1[class*=restaurant-name]") or soup.find("h1")
        return clean_text(heading.get_text()) if heading else ""
