"""
Delivery platform adapters and URL-to-country resolution.
"""

from .base import MenuItem, PlatformAdapter, Price, SearchResultItem, VenuePage, parse_price
from .countries import get_country_from_url, resolve_country
from .registry import (
    ADAPTER_REGISTRY,
    adapter_for_url,
    adapters_for_country,
    available_platforms,
    get_adapter,
)

__all__ = [
    "ADAPTER_REGISTRY",
    "MenuItem",
    "PlatformAdapter",
    "Price",
    "SearchResultItem",
    "VenuePage",
    "adapter_for_url",
    "adapters_for_country",
    "available_platforms",
    "get_adapter",
    "get_country_from_url",
    "parse_price",
    "resolve_country",
]
