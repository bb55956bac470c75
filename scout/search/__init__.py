"""
Search execution: backends, the engine pool and the query cache.
"""

from .backends import (
    GoogleCustomSearchBackend,
    PermanentSearchError,
    QuotaExceededError,
    SearchBackendError,
    SerpApiBackend,
    TransientSearchError,
)
from .cache import QueryCache
from .pool import SearchEnginePool, SearchOutcome

__all__ = [
    "GoogleCustomSearchBackend",
    "SerpApiBackend",
    "SearchBackendError",
    "QuotaExceededError",
    "TransientSearchError",
    "PermanentSearchError",
    "QueryCache",
    "SearchEnginePool",
    "SearchOutcome",
]
