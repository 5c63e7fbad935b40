"""Devices app configuration."""

from django.apps import AppConfig


class DevicesConfig(AppConfig):
    """Configuration for devices app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.devices"
