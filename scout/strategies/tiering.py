"""
Strategy tier transition rule.

Pure functions shared by the learning loop and its tests. A tier only moves
when there are enough trailing-window samples to trust the measured rate.
"""

import math

MIN_SAMPLES_FOR_TIERING = 5
PROMOTION_RATE = 70
DEMOTION_RATE = 20

TIER_HIGH = 1
TIER_MEDIUM = 2
TIER_LOW = 3


def success_rate_percent(successes: int, total: int) -> int:
    """Integer percentage, rounded half up. 0 when there are no samples."""
    if total <= 0:
        return 0
    return int(math.floor(successes * 100 / total + 0.5))


def compute_tier_transition(current_tier: int, samples: int, success_rate: float) -> int:
    """
    Apply the promotion/demotion rule.

    Args:
        current_tier: Tier the strategy holds now (1, 2 or 3)
        samples: Feedback samples for the strategy in the trailing window
        success_rate: Percent of those samples that were true positives

    Returns:
        The tier the strategy should hold (possibly unchanged)
    """
    if samples < MIN_SAMPLES_FOR_TIERING:
        return current_tier
    if success_rate >= PROMOTION_RATE:
        return TIER_HIGH
    if success_rate < DEMOTION_RATE:
        return TIER_LOW
    return current_tier
