"""Venue page fetching and menu extraction."""

from scout.extraction.agent import (
    DishRecord,
    ExtractionAgent,
    ExtractionResult,
    VenueExtraction,
    VenueTarget,
    extract_venues,
    persist_venue_dishes,
)
from scout.extraction.fetcher import BrowserSession, FetchResult, PageFetcher, PlaywrightSession
from scout.extraction.products import tag_product

__all__ = [
    "BrowserSession",
    "DishRecord",
    "ExtractionAgent",
    "ExtractionResult",
    "FetchResult",
    "PageFetcher",
    "PlaywrightSession",
    "VenueExtraction",
    "VenueTarget",
    "extract_venues",
    "persist_venue_dishes",
    "tag_product",
]
