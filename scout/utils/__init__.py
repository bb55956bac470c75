"""
Utility functions for the scout app.
"""

from .urls import normalize_url

__all__ = ["normalize_url"]
