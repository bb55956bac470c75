"""Venue discovery: query planning, execution and venue resolution."""

from scout.discovery.agent import (
    DiscoveryAgent,
    DiscoveryConfig,
    DiscoveryResult,
    DiscoveryState,
    VenueCandidate,
)
from scout.discovery.resolution import BrandMisuseDetector, ChainMatcher

__all__ = [
    "BrandMisuseDetector",
    "ChainMatcher",
    "DiscoveryAgent",
    "DiscoveryConfig",
    "DiscoveryResult",
    "DiscoveryState",
    "VenueCandidate",
]
