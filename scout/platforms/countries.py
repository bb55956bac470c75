"""
URL-to-country resolution for delivery platform URLs.

A fixed table of platform domain patterns per country. Resolution is a pure
function and takes priority over a run's configured country: multi-country
platforms surface venues from neighbouring markets, and those must keep the
country their URL says.
"""

from typing import Optional, Tuple

COUNTRY_DOMAIN_PATTERNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("DE", ("lieferando.de", "wolt.com/de", "ubereats.com/de")),
    ("AT", ("lieferando.at", "wolt.com/at", "ubereats.com/at")),
    ("CH", ("just-eat.ch", "smood.ch", "ubereats.com/ch")),
    ("IT", ("justeat.it", "deliveroo.it", "ubereats.com/it", "glovoapp.com/it")),
    ("ES", ("just-eat.es", "deliveroo.es", "ubereats.com/es", "glovoapp.com/es")),
    ("FR", ("just-eat.fr", "deliveroo.fr", "ubereats.com/fr")),
    ("UK", ("just-eat.co.uk", "deliveroo.co.uk", "ubereats.com/gb")),
    ("NL", ("thuisbezorgd.nl", "deliveroo.nl", "ubereats.com/nl")),
    ("BE", ("takeaway.com/be", "deliveroo.be", "ubereats.com/be")),
    ("PL", ("pyszne.pl", "wolt.com/pl", "ubereats.com/pl", "glovoapp.com/pl")),
)


def get_country_from_url(url) -> Optional[str]:
    """
    Derive the country code from a platform URL.

    Returns:
        Country code (e.g. "DE"), or None for unrecognized or invalid input
    """
    if not isinstance(url, str) or not url:
        return None

    lowered = url.lower()
    for country, patterns in COUNTRY_DOMAIN_PATTERNS:
        for pattern in patterns:
            if pattern in lowered:
                return country
    return None


def resolve_country(url: str, configured_country: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Pick the canonical country for a candidate.

    Returns:
        Tuple of (country, source) where source is "url" or "run"
    """
    country = get_country_from_url(url)
    if country:
        return country, "url"
    return configured_country, "run"
