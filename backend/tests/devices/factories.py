"""
Factories for devices app models.

Used in tests to create test data.
"""

from typing import Any

import factory
from django.utils import timezone
from factory.django import DjangoModelFactory

from apps.devices.models import DeviceAssociation


class DeviceAssociationFactory(DjangoModelFactory[DeviceAssociation]):
    """Factory for DeviceAssociation model. The passkey's user owns the association."""

    class Meta:
        model = DeviceAssociation

    passkey: Any = factory.SubFactory("tests.passkeys.factories.PasskeyFactory")
    user: Any = factory.LazyAttribute(lambda o: o.passkey.user)
    fingerprint = factory.Sequence(lambda n: f"{n:064x}-Chrome")
    details = factory.LazyFunction(
        lambda: {
            "browser_family": "Chrome",
            "os_family": "macOS",
            "device_class": "desktop",
            "name": "Chrome on macOS",
        }
    )
    last_used_at = factory.LazyFunction(timezone.now)
    device_token_hash = ""
    device_token_expires_at = None
