"""
Browser capability snapshot and per-browser ceremony policy.

Capabilities are detected once per request into an immutable
CapabilitySnapshot and passed explicitly to the policy functions. The policy
functions are pure: the same snapshot always yields the same policy, so every
browser tie-break here is testable without a browser.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TypeVar

from webauthn.helpers.structs import (
    AuthenticatorAttachment,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from apps.core.logging import get_logger

logger = get_logger(__name__)

# Safari and unknown browsers abort ceremonies that run longer than this
STRICT_TIMEOUT_CAP_MS = 120_000

T = TypeVar("T")


class BrowserFamily(StrEnum):
    SAFARI = "Safari"
    CHROME = "Chrome"
    EDGE = "Edge"
    FIREFOX = "Firefox"
    UNKNOWN = "Unknown"


class Mediation(StrEnum):
    CONDITIONAL = "conditional"
    OPTIONAL = "optional"


class ConditionalUISupport(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(frozen=True)
class CapabilitySnapshot:
    """What the caller's browser can do, as of this request."""

    supports_webauthn: bool = False
    supports_conditional_mediation: bool = False
    supports_platform_authenticator: bool = False
    browser_family: BrowserFamily = BrowserFamily.UNKNOWN
    secure_context: bool = False
    browser_version: int | None = None
    is_mobile: bool = False


@dataclass(frozen=True)
class AuthenticatorSelectionPolicy:
    """Registration-time authenticator selection, shaped by browser."""

    resident_key: ResidentKeyRequirement
    user_verification: UserVerificationRequirement
    authenticator_attachment: AuthenticatorAttachment | None
    timeout_ms: int


@dataclass(frozen=True)
class VerificationPolicy:
    """Authentication-time verification requirements, shaped by browser."""

    user_verification: UserVerificationRequirement
    timeout_ms: int
    mediation: Mediation
    conditional_ui: ConditionalUISupport


class CapabilitySource(Protocol):
    def user_agent(self) -> str: ...

    def supports_webauthn(self) -> bool: ...

    def supports_conditional_mediation(self) -> bool: ...

    def supports_platform_authenticator(self) -> bool: ...

    def secure_context(self) -> bool: ...


@dataclass(frozen=True)
class ReportedCapabilities:
    """
    Source of capabilities the browser reported alongside its request.

    Flags the client did not report are treated as unsupported, except WebAuthn
    itself: a caller asking for ceremony options is assumed to be able to run
    one unless it says otherwise.
    """

    user_agent_header: str = ""
    webauthn: bool | None = None
    conditional_mediation: bool | None = None
    platform_authenticator: bool | None = None
    is_secure_context: bool | None = None
    origin: str = ""

    def user_agent(self) -> str:
        return self.user_agent_header

    def supports_webauthn(self) -> bool:
        return True if self.webauthn is None else self.webauthn

    def supports_conditional_mediation(self) -> bool:
        return bool(self.conditional_mediation)

    def supports_platform_authenticator(self) -> bool:
        return bool(self.platform_authenticator)

    def secure_context(self) -> bool:
        if self.is_secure_context is not None:
            return self.is_secure_context
        return self.origin.startswith("https://") or self.origin.startswith("http://localhost")


_IOS_RE = re.compile(r"iPhone|iPad|iPod")
_VERSION_PATTERNS: dict[BrowserFamily, re.Pattern[str]] = {
    BrowserFamily.EDGE: re.compile(r"Edg(?:A|iOS)?/(\d+)"),
    BrowserFamily.FIREFOX: re.compile(r"(?:Firefox|FxiOS)/(\d+)"),
    BrowserFamily.CHROME: re.compile(r"(?:Chrome|CriOS)/(\d+)"),
    BrowserFamily.SAFARI: re.compile(r"Version/(\d+)"),
}


def parse_browser(user_agent: str) -> tuple[BrowserFamily, int | None]:
    """
    Classify a User-Agent string into a browser family and major version.

    Order matters: Edge and Chrome user agents also contain "Safari/", and
    Edge's also contains "Chrome/". Every browser on iOS runs WebKit, so iOS
    user agents are classified as Safari regardless of the branded app.
    """
    if not user_agent:
        return BrowserFamily.UNKNOWN, None

    if _IOS_RE.search(user_agent) and "AppleWebKit" in user_agent:
        family = BrowserFamily.SAFARI
        match = _VERSION_PATTERNS[BrowserFamily.SAFARI].search(user_agent)
        if match is None:
            # Branded iOS browsers omit Version/; the OS version is the WebKit version
            match = re.search(r"OS (\d+)_", user_agent)
        return family, int(match.group(1)) if match else None

    if "Edg/" in user_agent or "EdgA/" in user_agent:
        family = BrowserFamily.EDGE
    elif "Firefox/" in user_agent:
        family = BrowserFamily.FIREFOX
    elif "Chrome/" in user_agent or "Chromium/" in user_agent:
        family = BrowserFamily.CHROME
    elif "Safari/" in user_agent and "Version/" in user_agent:
        family = BrowserFamily.SAFARI
    else:
        return BrowserFamily.UNKNOWN, None

    match = _VERSION_PATTERNS[family].search(user_agent)
    return family, int(match.group(1)) if match else None


def is_mobile_user_agent(user_agent: str) -> bool:
    return bool(re.search(r"Mobile|Android|iPhone|iPad|iPod", user_agent))


def _check(name: str, fn: Callable[[], T], fallback: T) -> T:
    try:
        return fn()
    except Exception as e:  # noqa: BLE001 - a failing check means "unsupported"
        logger.info("capability_check_failed", check=name, error=str(e))
        return fallback


def detect(source: CapabilitySource) -> CapabilitySnapshot:
    """
    Take a capability snapshot from a capability source.

    A check that raises degrades to False for that capability; detection
    itself never raises.
    """
    user_agent = _check("user_agent", source.user_agent, "")
    family, version = parse_browser(user_agent)
    return CapabilitySnapshot(
        supports_webauthn=_check("webauthn", source.supports_webauthn, False),
        supports_conditional_mediation=_check(
            "conditional_mediation", source.supports_conditional_mediation, False
        ),
        supports_platform_authenticator=_check(
            "platform_authenticator", source.supports_platform_authenticator, False
        ),
        browser_family=family,
        secure_context=_check("secure_context", source.secure_context, False),
        browser_version=version,
        is_mobile=is_mobile_user_agent(user_agent),
    )


def _timeout_for(family: BrowserFamily, timeout_ms: int) -> int:
    if family in (BrowserFamily.SAFARI, BrowserFamily.UNKNOWN):
        return min(timeout_ms, STRICT_TIMEOUT_CAP_MS)
    return timeout_ms


def _user_verification_for(family: BrowserFamily) -> UserVerificationRequirement:
    # Safari and Firefox fail the ceremony outright on devices without
    # biometrics/PIN when verification is required
    if family in (BrowserFamily.SAFARI, BrowserFamily.FIREFOX):
        return UserVerificationRequirement.PREFERRED
    return UserVerificationRequirement.REQUIRED


def adapt_registration_policy(
    snapshot: CapabilitySnapshot,
    *,
    timeout_ms: int,
    require_cross_platform: bool = False,
) -> AuthenticatorSelectionPolicy:
    """Authenticator selection for a registration ceremony in this browser."""
    if snapshot.browser_family == BrowserFamily.UNKNOWN:
        resident_key = ResidentKeyRequirement.PREFERRED
    else:
        resident_key = ResidentKeyRequirement.REQUIRED

    if require_cross_platform:
        attachment: AuthenticatorAttachment | None = AuthenticatorAttachment.CROSS_PLATFORM
    elif snapshot.supports_platform_authenticator:
        attachment = AuthenticatorAttachment.PLATFORM
    else:
        attachment = None

    return AuthenticatorSelectionPolicy(
        resident_key=resident_key,
        user_verification=_user_verification_for(snapshot.browser_family),
        authenticator_attachment=attachment,
        timeout_ms=_timeout_for(snapshot.browser_family, timeout_ms),
    )


def adapt_authentication_policy(
    snapshot: CapabilitySnapshot,
    *,
    timeout_ms: int,
) -> VerificationPolicy:
    """Verification requirements for an authentication ceremony in this browser."""
    family = snapshot.browser_family
    if not snapshot.supports_conditional_mediation or family == BrowserFamily.UNKNOWN:
        conditional_ui = ConditionalUISupport.NONE
    elif family == BrowserFamily.FIREFOX:
        conditional_ui = ConditionalUISupport.PARTIAL
    else:
        conditional_ui = ConditionalUISupport.FULL

    return VerificationPolicy(
        user_verification=_user_verification_for(family),
        timeout_ms=_timeout_for(family, timeout_ms),
        mediation=Mediation.OPTIONAL
        if conditional_ui == ConditionalUISupport.NONE
        else Mediation.CONDITIONAL,
        conditional_ui=conditional_ui,
    )


def recommended_action(snapshot: CapabilitySnapshot) -> str | None:
    """The single most useful thing the user could do to improve passkey support."""
    if not snapshot.supports_webauthn:
        return "Update to a modern browser that supports WebAuthn"
    if not snapshot.secure_context:
        return "Access the site using HTTPS"
    if not snapshot.supports_platform_authenticator:
        return "Set up device biometrics or PIN for better security"
    return None


def limitations(snapshot: CapabilitySnapshot) -> list[str]:
    """Known passkey limitations of the snapshot's browser version."""
    notes: list[str] = []
    family, version = snapshot.browser_family, snapshot.browser_version
    if family == BrowserFamily.SAFARI and version is not None and version < 16:
        notes.append("Passkeys require Safari 16 or later")
    elif family in (BrowserFamily.CHROME, BrowserFamily.EDGE) and version is not None and version < 108:
        notes.append(f"Passkeys require {family} 108 or later")
    elif family == BrowserFamily.FIREFOX:
        notes.append("Passkey autofill is only partially supported in Firefox")
    elif family == BrowserFamily.UNKNOWN:
        notes.append("Passkey support in this browser is unknown")
    return notes
