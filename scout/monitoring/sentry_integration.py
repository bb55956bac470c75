"""
Sentry error reporting for discovery and extraction.

The SDK itself is initialised in config/settings/base.py. These helpers add
pipeline context (platform, country, stage, url) and strip credentials
such as API keys and engine ids before anything leaves the process.

Usage:
    from scout.monitoring import capture_pipeline_error

    try:
        page = adapter.parse_venue_page(content)
    except Exception as e:
        capture_pipeline_error(e, stage="extraction", platform="lieferando", url=url)
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Sensitive fields to filter from Sentry events
SENSITIVE_FIELDS = {
    "api_key",
    "apikey",
    "api-key",
    "key",
    "cx",
    "engine_id",
    "authorization",
    "cookie",
    "password",
    "secret",
    "token",
}


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values whose key looks like a credential; recurses into dicts."""
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if key_lower in SENSITIVE_FIELDS or any(
            s in key_lower for s in ("api_key", "secret", "token", "password")
        ):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = _filter_sensitive_data(value)
        else:
            filtered[key] = value
    return filtered


def add_pipeline_breadcrumb(
    stage: str,
    message: str,
    platform: Optional[str] = None,
    country: Optional[str] = None,
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a breadcrumb so later errors show the steps that led to them."""
    data = {"stage": stage, "platform": platform, "country": country}
    if extra_data:
        data.update(_filter_sensitive_data(extra_data))

    sentry_sdk.add_breadcrumb(category="pipeline", message=message, level=level, data=data)


def capture_pipeline_error(
    error: Exception,
    stage: str,
    platform: Optional[str] = None,
    country: Optional[str] = None,
    url: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """Capture an exception with pipeline context."""
    add_pipeline_breadcrumb(
        stage=stage,
        message=f"Error: {type(error).__name__}",
        platform=platform,
        country=country,
        level="error",
        extra_data=extra_context,
    )

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("scout.stage", stage)
        if platform:
            scope.set_tag("scout.platform", platform)
        if country:
            scope.set_tag("scout.country", country)
        if url:
            scope.set_extra("url", url)
        if extra_context:
            scope.set_extra("context", _filter_sensitive_data(extra_context))

        sentry_sdk.capture_exception(error)


def capture_alert(
    message: str,
    level: str = "warning",
    platform: Optional[str] = None,
    country: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """Capture a threshold/monitoring alert as a Sentry message."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("alert.type", "threshold_breach")
        if platform:
            scope.set_tag("scout.platform", platform)
        if country:
            scope.set_tag("scout.country", country)
        if extra_data:
            scope.set_extra("alert_data", _filter_sensitive_data(extra_data))

        sentry_sdk.capture_message(message, level=level)
