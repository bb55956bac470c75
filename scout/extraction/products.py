"""
Tracked product tagging.

TRACKED_PRODUCTS maps a product tag to the keywords that identify it on a
menu, e.g. {"planted.chicken": ["planted chicken", "planted.chicken"]}.
Longer keywords are tried first so the most specific tag wins.
"""

from typing import Dict, List, Optional

from django.conf import settings

DEFAULT_TRACKED_PRODUCTS = {
    "planted.chicken": ["planted chicken", "planted.chicken", "planted poulet"],
    "planted.kebab": ["planted kebab", "planted.kebab", "planted döner"],
    "planted.pulled": ["planted pulled", "planted.pulled"],
    "planted.schnitzel": ["planted schnitzel", "planted.schnitzel"],
    "planted.steak": ["planted steak", "planted.steak"],
    "planted": ["planted"],
}


def get_tracked_products() -> Dict[str, List[str]]:
    return getattr(settings, "TRACKED_PRODUCTS", None) or DEFAULT_TRACKED_PRODUCTS


def tag_product(name: str, description: str = "") -> Optional[str]:
    """Tag of the most specific tracked product mentioned, or None."""
    text = f"{name or ''} {description or ''}".lower()
    if not text.strip():
        return None

    matches = [
        (len(keyword), tag)
        for tag, keywords in get_tracked_products().items()
        for keyword in keywords
        if keyword.lower() in text
    ]
    if not matches:
        return None
    return max(matches)[1]
