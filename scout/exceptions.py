"""
Error taxonomy for discovery and extraction.

Only ConfigurationError is allowed to abort a run, and only before it
starts. Everything else is converted into run-level counters by the agents.
Budget refusals are not exceptions: see scout.budget.governor.BudgetExceeded.
"""

from typing import List, Optional, Sequence


class ScoutError(Exception):
    """Base class for scout errors."""


class ConfigurationError(ScoutError):
    """Missing credentials, empty strategy set or unknown platform."""


class SourceUnavailable(ScoutError):
    """Search engine or platform unreachable, or every quota exhausted."""

    def __init__(
        self,
        message: str,
        engines_tried: Optional[Sequence[str]] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.engines_tried = list(engines_tried or [])
        self.attempts = attempts


class ParseFailure(ScoutError):
    """No adapter pattern matched the content."""

    def __init__(self, message: str, platform: str = "", url: str = ""):
        super().__init__(message)
        self.platform = platform
        self.url = url


class ValidationFailure(ScoutError):
    """A dish record failed structural validation."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class FetchTimeout(ScoutError):
    """Navigation or network timeout for one venue or query."""
