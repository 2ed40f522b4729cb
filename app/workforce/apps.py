"""
Workforce app configuration.
"""

from django.apps import AppConfig


class WorkforceConfig(AppConfig):
    """Configuration for the workforce application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "workforce"
    verbose_name = "Workforce"
