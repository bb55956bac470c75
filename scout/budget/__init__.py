"""
Budget tracking and throttling for costed operations.
"""

from .governor import BudgetExceeded, BudgetGovernor, get_budget_governor

__all__ = [
    "BudgetExceeded",
    "BudgetGovernor",
    "get_budget_governor",
]
