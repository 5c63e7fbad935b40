"""
Tests for passkey API endpoints.

Requests go through the full Django and ninja stack with the test client;
credentials come from the software authenticator.
"""

import json
from typing import Any

import pytest
from django.test import Client, override_settings

from apps.accounts.services import create_session
from apps.passkeys.models import Passkey
from tests.accounts.factories import UserFactory
from tests.helpers.software_authenticator import SoftwareAuthenticator, b64url_encode
from tests.helpers.user_agents import CHROME_UA
from tests.passkeys.factories import PasskeyFactory

CHROME_CLIENT = {
    "webauthn": True,
    "conditionalMediation": True,
    "platformAuthenticator": True,
    "secureContext": True,
}

DEVICE = {
    "platform": "MacIntel",
    "language": "en-US",
    "screenResolution": "1920x1080",
    "timezone": "Europe/Berlin",
}


def post(client: Client, path: str, data: dict[str, Any], **extra):
    return client.post(f"/api/v1{path}", data=json.dumps(data), content_type="application/json", **extra)


def register(client: Client, authenticator: SoftwareAuthenticator, email: str = "alice@example.com"):
    options = post(client, "/auth/register/options", {"email": email, "displayName": "Alice"}).json()
    return post(
        client,
        "/auth/register/verify",
        {
            "challengeId": options["challengeId"],
            "credential": authenticator.make_credential(options["options"]),
            "device": DEVICE,
        },
    )


def bearer(user) -> dict[str, str]:
    return {"HTTP_AUTHORIZATION": f"Bearer {create_session(user).token}"}


@pytest.mark.django_db
class TestRegistrationEndpoints:
    """Tests for /auth/register/options and /auth/register/verify."""

    def test_options_shape(self, api_client: Client):
        response = post(
            api_client,
            "/auth/register/options",
            {"email": "alice@example.com", "displayName": "Alice", "client": CHROME_CLIENT},
        )

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"challengeId", "options"}
        assert body["options"]["rp"]["id"] == "localhost"
        assert body["options"]["authenticatorSelection"]["authenticatorAttachment"] == "platform"

    def test_invalid_email(self, api_client: Client):
        response = post(api_client, "/auth/register/options", {"email": "not-an-email"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request", "code": "invalid_request"}

    def test_email_in_use(self, api_client: Client):
        PasskeyFactory(user__email="alice@example.com")

        response = post(api_client, "/auth/register/options", {"email": "alice@example.com"})

        assert response.status_code == 409
        assert response.json()["code"] == "email_in_use"

    def test_signed_in_user_can_add_passkey(self, api_client: Client):
        passkey = PasskeyFactory(user__email="alice@example.com")

        response = post(
            api_client,
            "/auth/register/options",
            {"email": "alice@example.com"},
            **bearer(passkey.user),
        )

        assert response.status_code == 200
        assert len(response.json()["options"]["excludeCredentials"]) == 1

    def test_verify_creates_account_and_session(self, api_client: Client, authenticator):
        response = register(api_client, authenticator)

        assert response.status_code == 200
        body = response.json()
        assert body["registered"] is True
        assert body["user"]["email"] == "alice@example.com"
        assert body["user"]["displayName"] == "Alice"
        assert body["passkey"]["name"] == "Chrome on macOS"
        assert body["passkey"]["deviceType"] == "single_device"
        assert response.cookies["session"]["httponly"]
        assert response.cookies["session"]["samesite"] == "Lax"
        assert response.cookies["device_token"]["samesite"] == "Strict"

        session = api_client.get("/api/v1/auth/session").json()
        assert session["authenticated"] is True

    def test_verify_unknown_challenge(self, api_client: Client, authenticator):
        options = post(api_client, "/auth/register/options", {"email": "alice@example.com"}).json()

        response = post(
            api_client,
            "/auth/register/verify",
            {"challengeId": "reg_unknown", "credential": authenticator.make_credential(options["options"])},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid or expired challenge", "code": "invalid_challenge"}

    def test_verify_wrong_origin(self, api_client: Client, authenticator):
        options = post(api_client, "/auth/register/options", {"email": "alice@example.com"}).json()
        credential = authenticator.make_credential(options["options"], origin="https://evil.example.com")

        response = post(
            api_client,
            "/auth/register/verify",
            {"challengeId": options["challengeId"], "credential": credential},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "verification_failed"
        assert not Passkey.objects.exists()

    def test_verify_malformed_credential(self, api_client: Client):
        options = post(api_client, "/auth/register/options", {"email": "alice@example.com"}).json()

        response = post(
            api_client,
            "/auth/register/verify",
            {"challengeId": options["challengeId"], "credential": {"id": "abc", "response": {}}},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_request"


@pytest.mark.django_db
class TestAuthenticationEndpoints:
    """Tests for the /auth/authenticate endpoints."""

    def test_discoverable_sign_in(self, api_client: Client, authenticator):
        register(api_client, authenticator)
        fresh = Client(HTTP_USER_AGENT=CHROME_UA, HTTP_ORIGIN="http://localhost:3000")

        options = post(fresh, "/auth/authenticate/options", {}).json()
        assert options["mediation"] == "optional"
        assert options["options"]["allowCredentials"] == []
        assert options["passkeyOptions"] is None

        response = post(
            fresh,
            "/auth/authenticate/verify",
            {
                "challengeId": options["challengeId"],
                "credential": authenticator.get_assertion(options["options"]),
                "device": DEVICE,
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["authenticated"] is True
        assert body["user"]["email"] == "alice@example.com"
        assert body["sessionToken"]
        assert body["expiresAt"]
        # Same browser signals as at registration
        assert body["deviceRecognized"] is True
        assert response.cookies["session"].value == body["sessionToken"]

    def test_email_scoped_options(self, api_client: Client):
        passkey = PasskeyFactory(user__email="alice@example.com", user__display_name="Alice")

        response = post(api_client, "/auth/authenticate/options", {"email": "alice@example.com"})

        body = response.json()
        assert [c["id"] for c in body["options"]["allowCredentials"]] == [passkey.credential_id_b64]
        assert body["passkeyOptions"] == {
            "id": None,
            "username": "alice@example.com",
            "displayName": "Alice",
        }

    def test_malformed_credential_hint(self, api_client: Client):
        response = post(api_client, "/auth/authenticate/options", {"credentialId": "a"})

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_request"

    def test_padded_credential_hint_signs_in(self, api_client: Client, authenticator):
        register(api_client, authenticator)
        (raw_id,) = authenticator.credentials
        canonical = b64url_encode(raw_id)

        options = post(api_client, "/auth/authenticate/options", {"credentialId": canonical + "="}).json()

        assert [c["id"] for c in options["options"]["allowCredentials"]] == [canonical]
        assert options["passkeyOptions"]["id"] == canonical
        response = post(
            api_client,
            "/auth/authenticate/verify",
            {"challengeId": options["challengeId"], "credential": authenticator.get_assertion(options["options"])},
        )
        assert response.status_code == 200
        assert response.json()["authenticated"] is True

    def test_conditional_options(self, api_client: Client):
        response = post(api_client, "/auth/authenticate/conditional", {"client": CHROME_CLIENT})

        assert response.status_code == 200
        assert response.json()["mediation"] == "conditional"

    def test_conditional_unsupported(self, api_client: Client):
        response = post(api_client, "/auth/authenticate/conditional", {"client": {"webauthn": True}})

        assert response.status_code == 400
        assert response.json()["code"] == "unsupported_browser"

    def test_replayed_assertion(self, api_client: Client, authenticator):
        register(api_client, authenticator)
        options = post(api_client, "/auth/authenticate/options", {}).json()
        payload = {
            "challengeId": options["challengeId"],
            "credential": authenticator.get_assertion(options["options"]),
        }

        assert post(api_client, "/auth/authenticate/verify", payload).status_code == 200
        replay = post(api_client, "/auth/authenticate/verify", payload)

        assert replay.status_code == 400
        assert replay.json()["code"] == "invalid_challenge"

    def test_clone_suspected(self, api_client: Client, authenticator):
        register(api_client, authenticator)
        Passkey.objects.update(sign_count=50)
        options = post(api_client, "/auth/authenticate/options", {}).json()

        response = post(
            api_client,
            "/auth/authenticate/verify",
            {"challengeId": options["challengeId"], "credential": authenticator.get_assertion(options["options"])},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "clone_suspected"

    @override_settings(AUTH_OPTIONS_RATE_LIMIT=2)
    def test_options_rate_limited(self, api_client: Client):
        for _ in range(2):
            assert post(api_client, "/auth/authenticate/options", {}).status_code == 200

        response = post(api_client, "/auth/authenticate/options", {})

        assert response.status_code == 429
        assert response.json()["code"] == "rate_limited"
        assert response["Retry-After"] == "60"


@pytest.mark.django_db
class TestLookupEndpoints:
    """Tests for /auth/check-user, /auth/device-passkeys and /auth/browser-support."""

    def test_check_user_unknown(self, api_client: Client):
        response = post(api_client, "/auth/check-user", {"email": "nobody@example.com"})

        assert response.status_code == 200
        assert response.json()["suggestedAction"] == "register"

    def test_check_user_with_passkeys(self, api_client: Client):
        PasskeyFactory(user__email="alice@example.com")

        body = post(api_client, "/auth/check-user", {"email": "alice@example.com"}).json()

        assert body["exists"] is True
        assert body["hasPasskeys"] is True
        assert body["suggestedAction"] == "authenticate"
        assert body["passkeyCount"] == 1

    def test_check_user_rate_limited(self, api_client: Client):
        for _ in range(5):
            post(api_client, "/auth/check-user", {"email": "alice@example.com"})

        response = post(api_client, "/auth/check-user", {"email": "alice@example.com"})

        assert response.status_code == 429

    def test_device_passkeys_same_device(self, api_client: Client, authenticator):
        register(api_client, authenticator)

        response = post(api_client, "/auth/device-passkeys", {"email": "alice@example.com", "device": DEVICE})

        assert response.status_code == 200
        assert response.json() == {"hasPasskeysOnDevice": True, "credentialCount": 1}

    def test_device_passkeys_other_device(self, api_client: Client, authenticator):
        register(api_client, authenticator)
        elsewhere = {**DEVICE, "timezone": "Asia/Tokyo"}

        body = post(api_client, "/auth/device-passkeys", {"email": "alice@example.com", "device": elsewhere}).json()

        assert body == {"hasPasskeysOnDevice": False, "credentialCount": 0}

    def test_device_passkeys_without_signals(self, api_client: Client, authenticator):
        register(api_client, authenticator)

        body = post(api_client, "/auth/device-passkeys", {"email": "alice@example.com"}).json()

        assert body["hasPasskeysOnDevice"] is False

    def test_device_passkeys_unknown_email(self, api_client: Client):
        body = post(api_client, "/auth/device-passkeys", {"email": "nobody@example.com", "device": DEVICE}).json()

        assert body == {"hasPasskeysOnDevice": False, "credentialCount": 0}

    def test_browser_support(self, api_client: Client):
        response = post(api_client, "/auth/browser-support", {"client": CHROME_CLIENT})

        assert response.status_code == 200
        body = response.json()
        assert body["supportsWebauthn"] is True
        assert body["browserFamily"] == "Chrome"
        assert body["browserVersion"] == 120
        assert body["conditionalUi"] == "full"
        assert body["recommendedAction"] is None
        assert body["limitations"] == []


@pytest.mark.django_db
class TestPasskeyManagementEndpoints:
    """Tests for GET/DELETE /auth/passkeys."""

    def test_list_requires_session(self, api_client: Client):
        response = api_client.get("/api/v1/auth/passkeys")

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required", "code": "unauthorized"}

    def test_list_own_passkeys(self, api_client: Client):
        passkey = PasskeyFactory(transports=["internal"])
        PasskeyFactory()

        response = api_client.get("/api/v1/auth/passkeys", **bearer(passkey.user))

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["passkeys"][0]["id"] == passkey.id
        assert body["passkeys"][0]["transports"] == ["internal"]
        assert "credentialId" not in body["passkeys"][0]

    def test_list_with_session_cookie(self, api_client: Client, authenticator):
        register(api_client, authenticator)

        response = api_client.get("/api/v1/auth/passkeys")

        assert response.json()["count"] == 1

    def test_revoked_session_is_rejected(self, api_client: Client):
        issued = create_session(UserFactory())
        issued.session.revoke()

        response = api_client.get("/api/v1/auth/passkeys", HTTP_AUTHORIZATION=f"Bearer {issued.token}")

        assert response.status_code == 401

    def test_delete_own_passkey(self, api_client: Client):
        passkey = PasskeyFactory()

        response = api_client.delete(f"/api/v1/auth/passkeys/{passkey.id}", **bearer(passkey.user))

        assert response.status_code == 204
        assert not Passkey.objects.exists()

    def test_delete_other_users_passkey(self, api_client: Client):
        passkey = PasskeyFactory()
        other = UserFactory()

        response = api_client.delete(f"/api/v1/auth/passkeys/{passkey.id}", **bearer(other))

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"
        assert Passkey.objects.filter(pk=passkey.id).exists()
