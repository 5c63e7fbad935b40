"""
Pydantic schemas for passkey API endpoints.

Everything is camelCase on the wire; see CamelSchema.
"""

from datetime import datetime
from typing import Any

from pydantic import EmailStr, Field

from apps.accounts.schemas import UserInfo
from apps.core.schemas import CamelSchema

# --- Shared ---


class ClientCapabilities(CamelSchema):
    """Capabilities the browser detected about itself. Omitted flags are unknown."""

    webauthn: bool | None = None
    conditional_mediation: bool | None = None
    platform_authenticator: bool | None = None
    secure_context: bool | None = None


class DeviceSignalsIn(CamelSchema):
    """Low-entropy signals used for device recognition."""

    platform: str = Field(default="", max_length=100)
    language: str = Field(default="", max_length=35)
    screen_resolution: str = Field(default="", max_length=20)
    timezone: str = Field(default="", max_length=64)


class OptionsResponse(CamelSchema):
    """Ceremony options and the challenge id to send back with the response."""

    challenge_id: str = Field(description="Challenge ID to include in verification request")
    options: dict[str, Any] = Field(description="WebAuthn options, base64url-encoded binary fields")


class PasskeyItem(CamelSchema):
    """Single passkey in list responses."""

    id: int
    name: str
    device_type: str
    backed_up: bool
    transports: list[str]
    created_at: datetime | None = None
    last_used_at: datetime | None = None


# --- Registration ---


class RegistrationOptionsRequest(CamelSchema):
    email: EmailStr
    display_name: str = Field(default="", max_length=255)
    client: ClientCapabilities | None = None


class RegistrationVerifyRequest(CamelSchema):
    """Request to verify passkey registration."""

    challenge_id: str = Field(min_length=1, max_length=64)
    credential: dict[str, Any] = Field(description="Credential from navigator.credentials.create()")
    name: str | None = Field(
        default=None,
        max_length=100,
        description="User-friendly name for the passkey (e.g., 'iPhone 15')",
    )
    device: DeviceSignalsIn | None = None


class RegistrationVerifyResponse(CamelSchema):
    registered: bool
    user: UserInfo
    passkey: PasskeyItem


# --- Authentication ---


class AuthenticationOptionsRequest(CamelSchema):
    """
    Request for authentication options.

    Send neither field for a discoverable (usernameless) request.
    """

    email: EmailStr | None = None
    credential_id: str | None = Field(default=None, max_length=1024)
    client: ClientCapabilities | None = None


class ConditionalOptionsRequest(CamelSchema):
    client: ClientCapabilities | None = None


class PasskeyOptions(CamelSchema):
    """Hint for an SDK that renders its own account picker."""

    id: str | None = None
    username: str
    display_name: str


class AuthenticationOptionsResponse(OptionsResponse):
    mediation: str = Field(description="Mediation to pass to navigator.credentials.get()")
    passkey_options: PasskeyOptions | None = None


class AuthenticationVerifyRequest(CamelSchema):
    challenge_id: str = Field(min_length=1, max_length=64)
    credential: dict[str, Any] = Field(description="Credential from navigator.credentials.get()")
    device: DeviceSignalsIn | None = None


class AuthenticationVerifyResponse(CamelSchema):
    """Response after successful passkey authentication."""

    authenticated: bool
    user: UserInfo
    session_token: str = Field(description="Session token for callers that cannot use cookies")
    expires_at: datetime
    device_recognized: bool = False


# --- Lookup ---


class CheckUserRequest(CamelSchema):
    email: EmailStr
    device: DeviceSignalsIn | None = None


class CheckUserResponse(CamelSchema):
    exists: bool
    has_passkeys: bool
    suggested_action: str = Field(description="One of: authenticate, addPasskey, register")
    passkey_count: int = 0
    device_types: list[str] = Field(default_factory=list)
    device_recognized: bool = False


class DevicePasskeysRequest(CamelSchema):
    email: EmailStr
    device: DeviceSignalsIn | None = None


class DevicePasskeysResponse(CamelSchema):
    """Whether the email has passkeys that were used from this device."""

    has_passkeys_on_device: bool
    credential_count: int = 0


class BrowserSupportRequest(CamelSchema):
    client: ClientCapabilities | None = None


class BrowserSupportResponse(CamelSchema):
    """What the server makes of the caller's browser."""

    supports_webauthn: bool
    browser_family: str
    browser_version: int | None = None
    conditional_ui: str
    recommended_action: str | None = None
    limitations: list[str] = Field(default_factory=list)


# --- Management ---


class PasskeyListResponse(CamelSchema):
    passkeys: list[PasskeyItem]
    count: int
