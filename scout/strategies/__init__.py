"""
Search strategy catalog and tiering policy.
"""

from .store import StrategyStore
from .tiering import compute_tier_transition, success_rate_percent

__all__ = [
    "StrategyStore",
    "compute_tier_transition",
    "success_rate_percent",
]
