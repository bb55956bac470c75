"""
Monitoring and alerting for the scout pipeline.

- Sentry error reporting with pipeline context
- Consecutive failure tracking per (platform, country)
- Dead-letter queue for failed venue operations
"""

from .dead_letter import DeadLetterQueue, get_dead_letter_queue
from .platform_health import PlatformHealthTracker, get_platform_health_tracker
from .sentry_integration import add_pipeline_breadcrumb, capture_alert, capture_pipeline_error

__all__ = [
    "DeadLetterQueue",
    "get_dead_letter_queue",
    "PlatformHealthTracker",
    "get_platform_health_tracker",
    "add_pipeline_breadcrumb",
    "capture_alert",
    "capture_pipeline_error",
]
