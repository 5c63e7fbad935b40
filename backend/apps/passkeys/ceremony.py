"""
Client-side ceremony state machine.

CeremonyOrchestrator drives one registration or authentication ceremony
against a PlatformCredentialAPI (the browser's navigator.credentials, or an
embedding's equivalent):

    idle -> options_ready -> awaiting_user_gesture -> ceremony_in_progress
         -> ceremony_succeeded | ceremony_cancelled | ceremony_failed

Options are decoded into the platform's binary form when they are loaded, so
``on_user_gesture`` goes straight to the platform call. Safari only honours
a WebAuthn call made directly from the user's input event; any work
scheduled between the gesture and the call breaks the ceremony.

The platform call is the only blocking point. A ceremony is never retried
with identical parameters: the single exception is one fallback attempt with
relaxed parameters after NotSupportedError.
"""

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from webauthn.helpers import base64url_to_bytes

from apps.core.exceptions import InvalidRequestError
from apps.core.logging import get_logger
from apps.passkeys.capabilities import Mediation
from apps.passkeys.encoding import normalize_credential_response
from apps.passkeys.models import ChallengeKind

logger = get_logger(__name__)


class CeremonyState(StrEnum):
    IDLE = "idle"
    OPTIONS_READY = "options_ready"
    AWAITING_USER_GESTURE = "awaiting_user_gesture"
    IN_PROGRESS = "ceremony_in_progress"
    SUCCEEDED = "ceremony_succeeded"
    CANCELLED = "ceremony_cancelled"
    FAILED = "ceremony_failed"


TERMINAL_STATES = frozenset({CeremonyState.SUCCEEDED, CeremonyState.CANCELLED, CeremonyState.FAILED})


class FailureCategory(StrEnum):
    UNSUPPORTED = "unsupported"
    SECURITY = "security"
    CONSTRAINT = "constraint"
    ABORTED = "aborted"
    CONCURRENT = "concurrent"
    INVALID_STATE = "invalid_state"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


FAILURE_MESSAGES: dict[FailureCategory, tuple[str, str]] = {
    FailureCategory.UNSUPPORTED: (
        "Passkeys are not supported in this browser",
        "Update your browser or use a device that supports passkeys",
    ),
    FailureCategory.SECURITY: (
        "The browser blocked the passkey request for security reasons",
        "Use HTTPS and open the site on its own domain",
    ),
    FailureCategory.CONSTRAINT: (
        "This device cannot meet the passkey requirements",
        "Set up a screen lock, biometrics or a PIN on this device",
    ),
    FailureCategory.ABORTED: (
        "The passkey request was interrupted",
        "Start again",
    ),
    FailureCategory.CONCURRENT: (
        "Another passkey request is already in progress",
        "Finish or close the other passkey prompt, then try again",
    ),
    FailureCategory.INVALID_STATE: (
        "This passkey is already registered on this device",
        "Sign in with your existing passkey instead",
    ),
    FailureCategory.INVALID_RESPONSE: (
        "The browser returned an unreadable passkey response",
        "Try again, or use a different browser",
    ),
    FailureCategory.UNKNOWN: (
        "Something went wrong with the passkey request",
        "Try again, or use a different device",
    ),
}

_PLATFORM_ERROR_CATEGORIES = {
    "NotSupportedError": FailureCategory.UNSUPPORTED,
    "SecurityError": FailureCategory.SECURITY,
    "ConstraintError": FailureCategory.CONSTRAINT,
    "AbortError": FailureCategory.ABORTED,
    "InvalidStateError": FailureCategory.INVALID_STATE,
}

_CONCURRENT_RE = re.compile(r"concurren|pending|already in progress", re.IGNORECASE)


class PlatformError(Exception):
    """An error reported by the platform credential API (a DOMException)."""

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(f"{name}: {message}" if message else name)
        self.name = name
        self.message = message


class CeremonyStateError(Exception):
    """Operation not allowed in the orchestrator's current state."""


class PlatformCredentialAPI(Protocol):
    def create(self, options: dict[str, Any]) -> Mapping[str, Any]: ...

    def get(self, options: dict[str, Any], *, mediation: str) -> Mapping[str, Any]: ...


@dataclass(frozen=True)
class CeremonyFailure:
    category: FailureCategory
    message: str
    remedy: str
    platform_error: str | None = None

    @classmethod
    def for_category(
        cls, category: FailureCategory, platform_error: str | None = None
    ) -> "CeremonyFailure":
        message, remedy = FAILURE_MESSAGES[category]
        return cls(category=category, message=message, remedy=remedy, platform_error=platform_error)


@dataclass(frozen=True)
class CeremonyOutcome:
    state: CeremonyState
    challenge_id: str
    credential: dict[str, Any] | None = None
    failure: CeremonyFailure | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == CeremonyState.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.state == CeremonyState.CANCELLED


def classify_platform_error(error: PlatformError) -> tuple[CeremonyState, FailureCategory | None]:
    """
    Map a platform error to a terminal state.

    NotAllowedError is how browsers report a dismissed prompt, which is a
    cancellation, not a failure, unless the message says another request
    was pending.
    """
    if error.name == "NotAllowedError":
        if _CONCURRENT_RE.search(error.message):
            return CeremonyState.FAILED, FailureCategory.CONCURRENT
        return CeremonyState.CANCELLED, None
    return CeremonyState.FAILED, _PLATFORM_ERROR_CATEGORIES.get(error.name, FailureCategory.UNKNOWN)


def _decode_descriptors(descriptors: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [{**d, "id": base64url_to_bytes(d["id"])} for d in descriptors or []]


def decode_options(kind: ChallengeKind, options: Mapping[str, Any]) -> dict[str, Any]:
    """Convert JSON options (base64url strings) to the platform's binary form."""
    try:
        decoded: dict[str, Any] = dict(options)
        decoded["challenge"] = base64url_to_bytes(options["challenge"])
        if kind == ChallengeKind.REGISTRATION:
            decoded["user"] = {**options["user"], "id": base64url_to_bytes(options["user"]["id"])}
            decoded["excludeCredentials"] = _decode_descriptors(options.get("excludeCredentials"))
            decoded["authenticatorSelection"] = dict(options.get("authenticatorSelection") or {})
        else:
            decoded["allowCredentials"] = _decode_descriptors(options.get("allowCredentials"))
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidRequestError("Malformed ceremony options") from e
    return decoded


@dataclass
class _Attempt:
    options: dict[str, Any]
    mediation: Mediation
    label: str = "initial"
    number: int = 1


@dataclass
class CeremonyOrchestrator:
    """Runs a single ceremony; create a new orchestrator for every attempt."""

    platform: PlatformCredentialAPI
    state: CeremonyState = CeremonyState.IDLE
    kind: ChallengeKind | None = None
    challenge_id: str | None = None
    mediation: Mediation = Mediation.OPTIONAL
    _platform_options: dict[str, Any] | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def load_options(
        self,
        kind: ChallengeKind,
        options: Mapping[str, Any],
        challenge_id: str,
        *,
        mediation: Mediation = Mediation.OPTIONAL,
    ) -> None:
        """idle -> options_ready. ``options`` is the server's JSON options."""
        if self.state != CeremonyState.IDLE:
            raise CeremonyStateError(f"Cannot load options in state {self.state}")
        if kind == ChallengeKind.REGISTRATION and mediation == Mediation.CONDITIONAL:
            mediation = Mediation.OPTIONAL
        self._platform_options = decode_options(kind, options)
        self.kind = kind
        self.challenge_id = challenge_id
        self.mediation = mediation
        self._transition(CeremonyState.OPTIONS_READY)

    def await_user_gesture(self) -> None:
        """options_ready -> awaiting_user_gesture (the prompt is showing)."""
        if self.state != CeremonyState.OPTIONS_READY:
            raise CeremonyStateError(f"Cannot wait for a gesture in state {self.state}")
        self._transition(CeremonyState.AWAITING_USER_GESTURE)

    def on_user_gesture(self) -> CeremonyOutcome:
        """
        Run the ceremony from the user's input event.

        A call made while another is in flight fails with the concurrent
        category and leaves the in-flight ceremony alone.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("ceremony_concurrent_call", challenge_id=self.challenge_id)
            return CeremonyOutcome(
                state=CeremonyState.FAILED,
                challenge_id=self.challenge_id or "",
                failure=CeremonyFailure.for_category(FailureCategory.CONCURRENT),
            )
        try:
            if self.state == CeremonyState.OPTIONS_READY:
                self._transition(CeremonyState.AWAITING_USER_GESTURE)
            if self.state != CeremonyState.AWAITING_USER_GESTURE:
                raise CeremonyStateError(f"Cannot start a ceremony in state {self.state}")
            assert self._platform_options is not None
            return self._run(_Attempt(options=self._platform_options, mediation=self.mediation))
        finally:
            self._lock.release()

    def _run(self, attempt: _Attempt) -> CeremonyOutcome:
        while True:
            self._transition(CeremonyState.IN_PROGRESS)
            try:
                raw = self._invoke(attempt)
            except PlatformError as e:
                fallback = self._fallback_for(e, attempt)
                if fallback is not None:
                    logger.warning(
                        "ceremony_fallback_attempt",
                        challenge_id=self.challenge_id,
                        platform_error=e.name,
                        fallback=fallback.label,
                        attempt=fallback.number,
                    )
                    attempt = fallback
                    continue
                return self._finish_with_error(e, attempt)

            try:
                credential = normalize_credential_response(raw)
            except InvalidRequestError as e:
                logger.warning(
                    "ceremony_response_unreadable", challenge_id=self.challenge_id, error=str(e)
                )
                return self._finish(
                    CeremonyState.FAILED,
                    attempt,
                    failure=CeremonyFailure.for_category(FailureCategory.INVALID_RESPONSE),
                )
            return self._finish(CeremonyState.SUCCEEDED, attempt, credential=credential)

    def _invoke(self, attempt: _Attempt) -> Mapping[str, Any]:
        if self.kind == ChallengeKind.REGISTRATION:
            return self.platform.create(attempt.options)
        return self.platform.get(attempt.options, mediation=attempt.mediation.value)

    def _fallback_for(self, error: PlatformError, attempt: _Attempt) -> _Attempt | None:
        """One relaxed retry after NotSupportedError, never more."""
        if error.name != "NotSupportedError" or attempt.number > 1:
            return None

        if self.kind == ChallengeKind.AUTHENTICATION and attempt.mediation == Mediation.CONDITIONAL:
            return _Attempt(
                options=attempt.options,
                mediation=Mediation.OPTIONAL,
                label="modal_mediation",
                number=attempt.number + 1,
            )

        selection = attempt.options.get("authenticatorSelection") or {}
        if self.kind == ChallengeKind.REGISTRATION and selection.get("residentKey") == "required":
            relaxed = {
                **attempt.options,
                "authenticatorSelection": {
                    **selection,
                    "residentKey": "preferred",
                    "requireResidentKey": False,
                },
            }
            return _Attempt(
                options=relaxed,
                mediation=attempt.mediation,
                label="resident_key_preferred",
                number=attempt.number + 1,
            )
        return None

    def _finish_with_error(self, error: PlatformError, attempt: _Attempt) -> CeremonyOutcome:
        state, category = classify_platform_error(error)
        if state == CeremonyState.CANCELLED:
            logger.info("ceremony_cancelled", challenge_id=self.challenge_id)
            return self._finish(state, attempt)

        assert category is not None
        logger.warning(
            "ceremony_failed",
            challenge_id=self.challenge_id,
            category=category.value,
            platform_error=error.name,
            attempts=attempt.number,
        )
        return self._finish(
            state, attempt, failure=CeremonyFailure.for_category(category, platform_error=error.name)
        )

    def _finish(
        self,
        state: CeremonyState,
        attempt: _Attempt,
        *,
        credential: dict[str, Any] | None = None,
        failure: CeremonyFailure | None = None,
    ) -> CeremonyOutcome:
        self._transition(state)
        return CeremonyOutcome(
            state=state,
            challenge_id=self.challenge_id or "",
            credential=credential,
            failure=failure,
            attempts=attempt.number,
        )

    def _transition(self, state: CeremonyState) -> None:
        logger.debug("ceremony_transition", challenge_id=self.challenge_id, old=self.state, new=state)
        self.state = state
