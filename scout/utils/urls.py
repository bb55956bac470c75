"""
URL normalization for venue deduplication.
"""

from urllib.parse import urlsplit


def normalize_url(url: str) -> str:
    """
    Normalize a venue URL for consistent comparison.

    Lowercases scheme and host, drops "www.", the query string, the fragment
    and any trailing slash. The path keeps its case since some platforms use
    case-sensitive store ids.

    Example:
        >>> normalize_url("https://WWW.Lieferando.de/speisekarte/Burger-Bar/?utm=x")
        'https://lieferando.de/speisekarte/Burger-Bar'
    """
    if not url:
        return ""

    parts = urlsplit(url.strip())
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    scheme = (parts.scheme or "https").lower()
    path = parts.path.rstrip("/")
    return f"{scheme}://{host}{path}"
