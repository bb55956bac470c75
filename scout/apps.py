"""
Scout application configuration.
"""

from django.apps import AppConfig


class ScoutConfig(AppConfig):
    """Configuration for the scout Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "scout"
    verbose_name = "Delivery Scout"
