"""
Venue resolution helpers used after search results are parsed.

- BrandMisuseDetector: drops candidates that only use the brand word
  (garden centres selling "planted" pots and the like)
- ChainMatcher: fuzzy match of venue names against the chain registry
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.conf import settings
from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

DEFAULT_MISUSE_PATTERNS = [
    r"\bgarden\s*cent(?:er|re)\b",
    r"\bgartencenter\b",
    r"\bnursery\b",
    r"\bbaumschule\b",
    r"\bflorist\b",
    r"\bblumen\b",
]

DEFAULT_CHAIN_MATCH_THRESHOLD = 88


def normalize_venue_name(name: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not name:
        return ""
    name = re.sub(r"[^\w\s&]", " ", name.lower())
    return re.sub(r"\s+", " ", name).strip()


class BrandMisuseDetector:
    """Flags venue names that look unrelated to food service."""

    def __init__(self, patterns: Optional[Iterable[str]] = None, official_names: Optional[Iterable[str]] = None):
        if patterns is None:
            patterns = getattr(settings, "BRAND_MISUSE_PATTERNS", None) or DEFAULT_MISUSE_PATTERNS
        if official_names is None:
            official_names = getattr(settings, "BRAND_OFFICIAL_VENUE_NAMES", [])
        self.patterns = [re.compile(p, re.IGNORECASE) for p in patterns]
        self.official_names = {normalize_venue_name(n) for n in official_names}

    def check(self, name: str, snippet: str = "") -> Optional[str]:
        """
        Returns:
            The matching pattern when the candidate looks like misuse, else None
        """
        if normalize_venue_name(name) in self.official_names:
            return None
        text = f"{name} {snippet}"
        for pattern in self.patterns:
            if pattern.search(text):
                return pattern.pattern
        return None


@dataclass
class ChainMatch:
    chain: object
    score: float
    matched_name: str


class ChainMatcher:
    """
    Matches venue names against active Chain rows.

    Score is the best of token_set_ratio, partial_ratio and ratio over the
    chain name and its aliases.
    """

    def __init__(self, chains: Optional[List] = None, threshold: Optional[float] = None):
        self._chains = chains
        self.threshold = threshold or getattr(
            settings, "CHAIN_MATCH_THRESHOLD", DEFAULT_CHAIN_MATCH_THRESHOLD
        )

    @property
    def chains(self) -> List:
        if self._chains is None:
            from scout.models import Chain

            self._chains = list(Chain.objects.filter(is_active=True))
        return self._chains

    @staticmethod
    def score(candidate: str, reference: str) -> float:
        candidate = normalize_venue_name(candidate)
        reference = normalize_venue_name(reference)
        if not candidate or not reference:
            return 0.0
        # partial_ratio alone over-matches very short names
        partial = fuzz.partial_ratio(candidate, reference) if min(len(candidate), len(reference)) >= 4 else 0
        return max(
            fuzz.token_set_ratio(candidate, reference),
            partial,
            fuzz.ratio(candidate, reference),
        )

    def match(self, venue_name: str) -> Optional[ChainMatch]:
        best = None
        for chain in self.chains:
            for reference in [chain.name] + list(chain.aliases or []):
                score = self.score(venue_name, reference)
                if score >= self.threshold and (best is None or score > best.score):
                    best = ChainMatch(chain=chain, score=score, matched_name=reference)

        if best:
            logger.debug(
                "Venue %r matched chain %s (%.1f via %r)",
                venue_name, best.chain, best.score, best.matched_name,
            )
        return best
