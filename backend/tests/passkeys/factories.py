"""
Factories for passkeys app models.
"""

from datetime import timedelta

import factory
from django.utils import timezone
from factory.django import DjangoModelFactory

from apps.passkeys.models import Challenge, ChallengeKind, DeviceType, Passkey
from tests.accounts.factories import UserFactory


class PasskeyFactory(DjangoModelFactory[Passkey]):
    """Factory for creating Passkey instances."""

    class Meta:
        model = Passkey

    user = factory.SubFactory(UserFactory)
    credential_id = factory.Sequence(lambda n: f"credential_{n}".encode())
    public_key = factory.Sequence(lambda n: f"public_key_{n}".encode())
    sign_count = 0
    name = factory.Sequence(lambda n: f"Test Passkey {n}")
    aaguid = ""
    device_type = DeviceType.SINGLE_DEVICE
    backed_up = False
    transports = factory.LazyFunction(list)


class ChallengeFactory(DjangoModelFactory[Challenge]):
    """Factory for Challenge rows; ``value`` is base64url as stored."""

    class Meta:
        model = Challenge

    id = factory.Sequence(lambda n: f"auth_test{n:06d}")
    kind = ChallengeKind.AUTHENTICATION
    value = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
    context = factory.LazyFunction(dict)
    created_at = factory.LazyFunction(timezone.now)
    expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(seconds=120))
