"""Embedded sign-in app configuration."""

from django.apps import AppConfig


class EmbedConfig(AppConfig):
    """Configuration for embed app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.embed"
