"""
Passkey (WebAuthn) API endpoints.

Provides endpoints for passkey registration, authentication, user lookup and
passkey management. Domain errors propagate as ServiceError subclasses and
are rendered by the API exception handler.
"""

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from ninja import Router
from ninja.errors import HttpError

from apps.accounts.api import user_info
from apps.accounts.services import IssuedSession
from apps.core.schemas import ErrorResponse
from apps.core.security import get_optional_user, session_auth
from apps.core.throttling import check_rate_limit
from apps.core.utils import get_client_ip
from apps.devices.fingerprint import DeviceSignals
from apps.devices.services import IssuedDeviceToken
from apps.passkeys.capabilities import (
    ReportedCapabilities,
    adapt_authentication_policy,
    detect,
    limitations,
    recommended_action,
)
from apps.passkeys.repository import StoredCredential
from apps.passkeys.schemas import (
    AuthenticationOptionsRequest,
    AuthenticationOptionsResponse,
    AuthenticationVerifyRequest,
    AuthenticationVerifyResponse,
    BrowserSupportRequest,
    BrowserSupportResponse,
    CheckUserRequest,
    CheckUserResponse,
    ClientCapabilities,
    ConditionalOptionsRequest,
    DevicePasskeysRequest,
    DevicePasskeysResponse,
    DeviceSignalsIn,
    OptionsResponse,
    PasskeyItem,
    PasskeyListResponse,
    PasskeyOptions,
    RegistrationOptionsRequest,
    RegistrationVerifyRequest,
    RegistrationVerifyResponse,
)
from apps.passkeys.services import CeremonyClient, OptionsResult, get_passkey_service

router = Router(tags=["passkeys"])

CEREMONY_ERRORS = {400: ErrorResponse, 401: ErrorResponse, 409: ErrorResponse, 503: ErrorResponse}


def _user_agent(request: HttpRequest) -> str:
    return request.headers.get("User-Agent", "")


def _ceremony_client(
    request: HttpRequest,
    capabilities: ClientCapabilities | None = None,
    device: DeviceSignalsIn | None = None,
) -> CeremonyClient:
    """Everything the service needs to know about the calling browser."""
    capabilities = capabilities or ClientCapabilities()
    user_agent = _user_agent(request)
    snapshot = detect(
        ReportedCapabilities(
            user_agent_header=user_agent,
            webauthn=capabilities.webauthn,
            conditional_mediation=capabilities.conditional_mediation,
            platform_authenticator=capabilities.platform_authenticator,
            is_secure_context=capabilities.secure_context,
            origin=request.headers.get("Origin", ""),
        )
    )
    signals = None
    if device is not None:
        signals = DeviceSignals(
            user_agent=user_agent,
            platform=device.platform,
            language=device.language,
            screen_resolution=device.screen_resolution,
            timezone=device.timezone,
        )
    return CeremonyClient(
        snapshot=snapshot,
        signals=signals,
        user_agent=user_agent,
        ip_address=get_client_ip(request),
        device_token=request.COOKIES.get(settings.DEVICE_TOKEN_COOKIE_NAME),
    )


def _passkey_item(credential: StoredCredential) -> PasskeyItem:
    return PasskeyItem(
        id=credential.id,
        name=credential.name,
        device_type=credential.device_type,
        backed_up=credential.backed_up,
        transports=list(credential.transports),
        created_at=credential.created_at,
        last_used_at=credential.last_used_at,
    )


def _authentication_options_response(result: OptionsResult) -> AuthenticationOptionsResponse:
    passkey_options = None
    if result.passkey_options is not None:
        passkey_options = PasskeyOptions(**result.passkey_options)
    return AuthenticationOptionsResponse(
        challenge_id=result.challenge_id,
        options=result.options,
        mediation=result.mediation.value,
        passkey_options=passkey_options,
    )


def _set_auth_cookies(
    response: HttpResponse,
    session: IssuedSession,
    device_token: IssuedDeviceToken | None,
) -> None:
    secure = not settings.DEBUG
    response.set_cookie(
        settings.AUTH_SESSION_COOKIE_NAME,
        session.token,
        expires=session.expires_at,
        httponly=True,
        secure=secure,
        samesite="Lax",
    )
    if device_token is not None:
        response.set_cookie(
            settings.DEVICE_TOKEN_COOKIE_NAME,
            device_token.token,
            expires=device_token.expires_at,
            httponly=True,
            secure=secure,
            samesite="Strict",
        )


def _rate_limit(request: HttpRequest, bucket: str, max_requests: int) -> None:
    check_rate_limit(
        f"{bucket}:{get_client_ip(request, 'unknown')}",
        max_requests=max_requests,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )


# --- Registration ---


@router.post(
    "/register/options",
    response={200: OptionsResponse, **CEREMONY_ERRORS},
    by_alias=True,
    operation_id="getRegistrationOptions",
    summary="Get passkey registration options",
)
def get_registration_options(
    request: HttpRequest, payload: RegistrationOptionsRequest
) -> OptionsResponse:
    """
    Generate WebAuthn options for registering a passkey.

    New emails need no session. Adding a passkey to an account that already
    has one requires being signed in as that account.
    """
    _rate_limit(request, "register_options", settings.AUTH_OPTIONS_RATE_LIMIT)
    session_user = get_optional_user(request)

    result = get_passkey_service().generate_registration_options(
        email=payload.email,
        display_name=payload.display_name,
        client=_ceremony_client(request, payload.client),
        session_user_id=session_user.id if session_user else None,
    )
    return OptionsResponse(challenge_id=result.challenge_id, options=result.options)


@router.post(
    "/register/verify",
    response={200: RegistrationVerifyResponse, **CEREMONY_ERRORS},
    by_alias=True,
    operation_id="verifyRegistration",
    summary="Complete passkey registration",
)
def verify_registration(
    request: HttpRequest,
    response: HttpResponse,
    payload: RegistrationVerifyRequest,
) -> RegistrationVerifyResponse:
    """Verify the attestation, store the passkey and start a session."""
    result = get_passkey_service().verify_registration(
        challenge_id=payload.challenge_id,
        credential=payload.credential,
        name=payload.name,
        client=_ceremony_client(request, device=payload.device),
    )
    _set_auth_cookies(response, result.session, result.device_token)
    return RegistrationVerifyResponse(
        registered=True,
        user=user_info(result.user),
        passkey=_passkey_item(result.credential),
    )


# --- Authentication ---


@router.post(
    "/authenticate/options",
    response={200: AuthenticationOptionsResponse, 400: ErrorResponse, 429: ErrorResponse},
    by_alias=True,
    operation_id="getAuthenticationOptions",
    summary="Get passkey authentication options",
)
def get_authentication_options(
    request: HttpRequest, payload: AuthenticationOptionsRequest
) -> AuthenticationOptionsResponse:
    """Generate authentication options, scoped to an email or credential when given."""
    _rate_limit(request, "auth_options", settings.AUTH_OPTIONS_RATE_LIMIT)
    result = get_passkey_service().generate_authentication_options(
        email=payload.email,
        credential_id=payload.credential_id,
        client=_ceremony_client(request, payload.client),
    )
    return _authentication_options_response(result)


@router.post(
    "/authenticate/conditional",
    response={200: AuthenticationOptionsResponse, 400: ErrorResponse, 429: ErrorResponse},
    by_alias=True,
    operation_id="getConditionalAuthenticationOptions",
    summary="Get passkey autofill options",
)
def get_conditional_options(
    request: HttpRequest, payload: ConditionalOptionsRequest
) -> AuthenticationOptionsResponse:
    """Discoverable options for conditional mediation (passkey autofill)."""
    _rate_limit(request, "auth_options", settings.AUTH_OPTIONS_RATE_LIMIT)
    result = get_passkey_service().generate_authentication_options(
        client=_ceremony_client(request, payload.client),
        conditional=True,
    )
    return _authentication_options_response(result)


@router.post(
    "/authenticate/verify",
    response={200: AuthenticationVerifyResponse, **CEREMONY_ERRORS},
    by_alias=True,
    operation_id="verifyAuthentication",
    summary="Complete passkey authentication",
)
def verify_authentication(
    request: HttpRequest,
    response: HttpResponse,
    payload: AuthenticationVerifyRequest,
) -> AuthenticationVerifyResponse:
    """Verify the assertion and create a session."""
    result = get_passkey_service().verify_authentication(
        challenge_id=payload.challenge_id,
        credential=payload.credential,
        client=_ceremony_client(request, device=payload.device),
    )
    _set_auth_cookies(response, result.session, result.device_token)
    return AuthenticationVerifyResponse(
        authenticated=True,
        user=user_info(result.user),
        session_token=result.session.token,
        expires_at=result.session.expires_at,
        device_recognized=result.device_recognized,
    )


# --- Lookup ---


@router.post(
    "/check-user",
    response={200: CheckUserResponse, 400: ErrorResponse, 429: ErrorResponse},
    by_alias=True,
    operation_id="checkUser",
    summary="Check whether an email has passkeys",
)
def check_user(request: HttpRequest, payload: CheckUserRequest) -> CheckUserResponse:
    """
    Tell the sign-in UI which flow to offer for an email.

    Rate limited tightly since it reveals whether an account exists.
    """
    _rate_limit(request, "check_user", settings.CHECK_USER_RATE_LIMIT)
    client = _ceremony_client(request, device=payload.device)
    result = get_passkey_service().check_user(payload.email, client.signals)
    return CheckUserResponse(
        exists=result.exists,
        has_passkeys=result.has_passkeys,
        suggested_action=result.suggested_action,
        passkey_count=result.passkey_count,
        device_types=result.device_types,
        device_recognized=result.device_recognized,
    )


@router.post(
    "/device-passkeys",
    response={200: DevicePasskeysResponse, 400: ErrorResponse, 429: ErrorResponse},
    by_alias=True,
    operation_id="checkDevicePasskeys",
    summary="Check whether an email has passkeys used from this device",
)
def device_passkeys(request: HttpRequest, payload: DevicePasskeysRequest) -> DevicePasskeysResponse:
    """Shares the check-user limit since it also reveals whether an account has passkeys."""
    _rate_limit(request, "check_user", settings.CHECK_USER_RATE_LIMIT)
    client = _ceremony_client(request, device=payload.device)
    credentials = get_passkey_service().passkeys_on_device(payload.email, client.signals)
    return DevicePasskeysResponse(
        has_passkeys_on_device=bool(credentials),
        credential_count=len(credentials),
    )


@router.post(
    "/browser-support",
    response=BrowserSupportResponse,
    by_alias=True,
    operation_id="getBrowserSupport",
    summary="Describe passkey support in the caller's browser",
)
def browser_support(request: HttpRequest, payload: BrowserSupportRequest) -> BrowserSupportResponse:
    snapshot = _ceremony_client(request, payload.client).snapshot
    policy = adapt_authentication_policy(snapshot, timeout_ms=settings.PASSKEY_CEREMONY_TIMEOUT_MS)
    return BrowserSupportResponse(
        supports_webauthn=snapshot.supports_webauthn,
        browser_family=snapshot.browser_family.value,
        browser_version=snapshot.browser_version,
        conditional_ui=policy.conditional_ui.value,
        recommended_action=recommended_action(snapshot),
        limitations=limitations(snapshot),
    )


# --- Management (requires session) ---


@router.get(
    "/passkeys",
    response={200: PasskeyListResponse, 401: ErrorResponse},
    auth=session_auth,
    by_alias=True,
    operation_id="listPasskeys",
    summary="List the caller's passkeys",
)
def list_passkeys(request: HttpRequest) -> PasskeyListResponse:
    credentials = get_passkey_service().list_passkeys(request.auth.id)  # type: ignore[attr-defined]
    return PasskeyListResponse(
        passkeys=[_passkey_item(c) for c in credentials],
        count=len(credentials),
    )


@router.delete(
    "/passkeys/{passkey_id}",
    response={204: None, 401: ErrorResponse, 404: ErrorResponse},
    auth=session_auth,
    operation_id="deletePasskey",
    summary="Delete a passkey",
)
def delete_passkey(request: HttpRequest, passkey_id: int):
    """Delete a passkey owned by the caller. Other users' passkeys are reported as missing."""
    if not get_passkey_service().revoke_passkey(passkey_id, request.auth.id):  # type: ignore[attr-defined]
        raise HttpError(404, "Passkey not found")
    return 204, None
