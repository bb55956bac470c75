"""
Search backends - HTTP clients for quota-limited search engines.

Every backend exposes execute(query) and normalizes the engine response to:

    {"items": [{"title": ..., "link": ..., "snippet": ...}], "engine": name}

Failures are raised as one of three typed errors so the pool can decide
how to rotate:
- QuotaExceededError: the engine's quota is spent for today
- TransientSearchError: timeouts, connection errors, 5xx; worth retrying
- PermanentSearchError: bad key, bad request; do not retry on this engine
"""

import logging
from typing import Any, Dict, List, Protocol

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class SearchBackendError(Exception):
    """Base class for backend failures."""

    kind = "error"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class QuotaExceededError(SearchBackendError):
    kind = "quota_exceeded"


class TransientSearchError(SearchBackendError):
    kind = "transient"


class PermanentSearchError(SearchBackendError):
    kind = "permanent"


class SearchBackend(Protocol):
    name: str

    def execute(self, query: str) -> Dict[str, Any]:
        ...


def _default_timeout() -> int:
    return getattr(settings, "SEARCH_REQUEST_TIMEOUT", 30)


class GoogleCustomSearchBackend:
    """
    Google Custom Search JSON API.

    Usage:
        backend = GoogleCustomSearchBackend(api_key="...", engine_id="...")
        content = backend.execute('site:lieferando.de planted')
    """

    BASE_URL = "https://www.googleapis.com/customsearch/v1"
    QUOTA_REASONS = {"dailyLimitExceeded", "rateLimitExceeded", "userRateLimitExceeded"}

    def __init__(self, api_key: str, engine_id: str, name: str = "google_cse", timeout: int = None):
        self.api_key = api_key
        self.engine_id = engine_id
        self.name = name
        self.timeout = timeout or _default_timeout()

    def execute(self, query: str) -> Dict[str, Any]:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": 10,
        }
        try:
            response = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientSearchError(f"{self.name}: {e}") from e
        except requests.RequestException as e:
            raise PermanentSearchError(f"{self.name}: {e}") from e

        if response.status_code != 200:
            self._raise_for_error(response)

        try:
            data = response.json()
        except ValueError as e:
            # Captcha and interstitial pages come back as 200 HTML
            raise TransientSearchError(f"{self.name}: non-JSON response", response.status_code) from e
        if not isinstance(data, dict):
            raise TransientSearchError(f"{self.name}: unexpected response shape", response.status_code)
        items = [
            {
                "title": item.get("title", ""),
                "link": item.get("link", ""),
                "snippet": item.get("snippet", ""),
            }
            for item in data.get("items", []) or []
        ]
        return {"items": items, "engine": self.name}

    def _raise_for_error(self, response: requests.Response) -> None:
        status = response.status_code
        reasons = set()
        try:
            error = response.json().get("error", {})
            reasons = {e.get("reason", "") for e in error.get("errors", [])}
            message = error.get("message", response.text[:200])
        except ValueError:
            message = response.text[:200]

        if status == 429 or reasons & self.QUOTA_REASONS:
            raise QuotaExceededError(f"{self.name}: {message}", status)
        if status >= 500:
            raise TransientSearchError(f"{self.name}: HTTP {status} {message}", status)
        raise PermanentSearchError(f"{self.name}: HTTP {status} {message}", status)


class SerpApiBackend:
    """
    SerpAPI Google organic search.

    Usage:
        backend = SerpApiBackend(api_key="...")
        content = backend.execute('site:ubereats.com/fr planted')
    """

    BASE_URL = "https://serpapi.com/search"

    def __init__(self, api_key: str, name: str = "serpapi", timeout: int = None):
        self.api_key = api_key
        self.name = name
        self.timeout = timeout or _default_timeout()

    def execute(self, query: str) -> Dict[str, Any]:
        params = {
            "engine": "google",
            "q": query,
            "num": 10,
            "api_key": self.api_key,
        }
        try:
            response = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientSearchError(f"{self.name}: {e}") from e
        except requests.RequestException as e:
            raise PermanentSearchError(f"{self.name}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        error = data.get("error", "") if isinstance(data, dict) else ""
        status = response.status_code
        if status == 429 or "run out of searches" in error.lower():
            raise QuotaExceededError(f"{self.name}: {error or 'HTTP 429'}", status)
        if status >= 500:
            raise TransientSearchError(f"{self.name}: HTTP {status}", status)
        if status != 200 or error:
            raise PermanentSearchError(f"{self.name}: {error or f'HTTP {status}'}", status)

        return {"items": self._parse_organic(data), "engine": self.name}

    @staticmethod
    def _parse_organic(data: Dict[str, Any]) -> List[Dict[str, str]]:
        items = []
        for result in data.get("organic_results", []):
            link = result.get("link")
            if not link:
                continue
            items.append(
                {
                    "title": result.get("title", ""),
                    "link": link,
                    "snippet": result.get("snippet", ""),
                }
            )
        return items


def build_backend(credential) -> SearchBackend:
    """Create the backend client for a SearchEngineCredential."""
    from scout.models import SearchBackendType

    if credential.backend == SearchBackendType.SERPAPI:
        return SerpApiBackend(api_key=credential.api_key, name=credential.name)
    return GoogleCustomSearchBackend(
        api_key=credential.api_key,
        engine_id=credential.engine_id,
        name=credential.name,
    )
