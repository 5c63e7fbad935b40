"""
Shared pytest fixtures for all tests.

Factories
---------
Import factories directly from their modules:

    from tests.accounts.factories import UserFactory, AuthSessionFactory
    from tests.passkeys.factories import PasskeyFactory, ChallengeFactory
    from tests.devices.factories import DeviceAssociationFactory

The software authenticator in ``tests.helpers.software_authenticator``
produces real WebAuthn responses for end-to-end ceremony tests.
"""

from collections.abc import Iterator

import pytest
from django.core.cache import cache
from django.test import Client, RequestFactory

from tests.helpers.software_authenticator import SoftwareAuthenticator, SoftwarePlatform
from tests.helpers.user_agents import CHROME_UA


@pytest.fixture(autouse=True)
def clear_cache() -> Iterator[None]:
    """Rate limit counters and cached challenges must not leak between tests."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def request_factory() -> RequestFactory:
    """
    Django request factory for unit testing views.

    Use this when you need to test view functions directly without going through
    the full HTTP stack.
    """
    return RequestFactory()


@pytest.fixture
def api_client() -> Client:
    """
    Django test client for full HTTP request/response cycle tests.

    Example:
        def test_api_returns_200(api_client):
            response = api_client.get("/api/v1/health")
            assert response.status_code == 200
    """
    return Client(HTTP_USER_AGENT=CHROME_UA, HTTP_ORIGIN="http://localhost:3000")


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator()


@pytest.fixture
def platform(authenticator: SoftwareAuthenticator) -> SoftwarePlatform:
    return SoftwarePlatform(authenticator=authenticator)
