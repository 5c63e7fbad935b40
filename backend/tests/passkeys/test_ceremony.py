"""
Tests for the client-side ceremony state machine.
"""

import threading
import uuid

import pytest
from webauthn.helpers.structs import ResidentKeyRequirement, UserVerificationRequirement

from apps.core.exceptions import InvalidRequestError
from apps.passkeys.capabilities import (
    AuthenticatorSelectionPolicy,
    ConditionalUISupport,
    Mediation,
    VerificationPolicy,
)
from apps.passkeys.ceremony import (
    CeremonyOrchestrator,
    CeremonyState,
    CeremonyStateError,
    FailureCategory,
    PlatformError,
    classify_platform_error,
    decode_options,
)
from apps.passkeys.models import ChallengeKind
from apps.passkeys.options import OptionBuilder
from apps.passkeys.repository import UserRecord
from tests.helpers.software_authenticator import SoftwarePlatform


def registration_options() -> dict:
    user = UserRecord(id=None, email="alice@example.com", display_name="Alice", handle=uuid.uuid4().bytes)
    policy = AuthenticatorSelectionPolicy(
        resident_key=ResidentKeyRequirement.REQUIRED,
        user_verification=UserVerificationRequirement.REQUIRED,
        authenticator_attachment=None,
        timeout_ms=60000,
    )
    return OptionBuilder("localhost", "Test").build_registration_options(user, [], policy).to_json()


def authentication_options() -> dict:
    policy = VerificationPolicy(
        user_verification=UserVerificationRequirement.PREFERRED,
        timeout_ms=60000,
        mediation=Mediation.CONDITIONAL,
        conditional_ui=ConditionalUISupport.FULL,
    )
    return OptionBuilder("localhost", "Test").build_authentication_options([], policy).to_json()


def loaded(platform, kind=ChallengeKind.REGISTRATION, mediation=Mediation.OPTIONAL):
    orchestrator = CeremonyOrchestrator(platform=platform)
    options = registration_options() if kind == ChallengeKind.REGISTRATION else authentication_options()
    orchestrator.load_options(kind, options, "challenge-1", mediation=mediation)
    return orchestrator


class TestDecodeOptions:
    """Tests for decode_options."""

    def test_registration_fields_become_bytes(self):
        decoded = decode_options(ChallengeKind.REGISTRATION, registration_options())

        assert isinstance(decoded["challenge"], bytes)
        assert isinstance(decoded["user"]["id"], bytes)
        assert decoded["excludeCredentials"] == []

    def test_malformed_options_are_rejected(self):
        with pytest.raises(InvalidRequestError):
            decode_options(ChallengeKind.AUTHENTICATION, {"allowCredentials": []})


class TestStateMachine:
    """Tests for state transitions."""

    def test_happy_path_transitions(self, platform: SoftwarePlatform):
        orchestrator = CeremonyOrchestrator(platform=platform)
        assert orchestrator.state == CeremonyState.IDLE

        orchestrator.load_options(ChallengeKind.REGISTRATION, registration_options(), "challenge-1")
        assert orchestrator.state == CeremonyState.OPTIONS_READY

        orchestrator.await_user_gesture()
        assert orchestrator.state == CeremonyState.AWAITING_USER_GESTURE

        outcome = orchestrator.on_user_gesture()
        assert outcome.succeeded
        assert orchestrator.state == CeremonyState.SUCCEEDED
        assert outcome.challenge_id == "challenge-1"
        assert outcome.attempts == 1

    def test_success_returns_normalized_credential(self, platform: SoftwarePlatform):
        outcome = loaded(platform).on_user_gesture()

        credential = outcome.credential
        assert credential is not None
        assert credential["id"] == credential["rawId"]
        assert set(credential["response"]) >= {"clientDataJSON", "attestationObject"}

    def test_platform_receives_binary_options(self, platform: SoftwarePlatform):
        loaded(platform).on_user_gesture()

        options = platform.calls[0]["options"]
        assert isinstance(options["challenge"], bytes)

    def test_terminal_orchestrator_refuses_reuse(self, platform: SoftwarePlatform):
        orchestrator = loaded(platform)
        orchestrator.on_user_gesture()

        with pytest.raises(CeremonyStateError):
            orchestrator.on_user_gesture()
        assert len(platform.calls) == 1

    def test_gesture_before_options_is_refused(self, platform: SoftwarePlatform):
        with pytest.raises(CeremonyStateError):
            CeremonyOrchestrator(platform=platform).on_user_gesture()

    def test_options_cannot_be_loaded_twice(self, platform: SoftwarePlatform):
        orchestrator = loaded(platform)

        with pytest.raises(CeremonyStateError):
            orchestrator.load_options(ChallengeKind.REGISTRATION, registration_options(), "other")

    def test_registration_never_uses_conditional_mediation(self, platform: SoftwarePlatform):
        orchestrator = loaded(platform, mediation=Mediation.CONDITIONAL)

        assert orchestrator.mediation == Mediation.OPTIONAL

    def test_unreadable_platform_response_fails(self):
        class BrokenPlatform:
            def create(self, options):
                return {"type": "public-key"}

            def get(self, options, *, mediation):
                return {}

        outcome = loaded(BrokenPlatform()).on_user_gesture()

        assert outcome.state == CeremonyState.FAILED
        assert outcome.failure.category == FailureCategory.INVALID_RESPONSE


class TestPlatformErrors:
    """Tests for platform error classification."""

    def test_not_allowed_is_cancellation(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("NotAllowedError", "The operation either timed out or was not allowed."))

        outcome = loaded(platform).on_user_gesture()

        assert outcome.cancelled
        assert outcome.failure is None

    def test_not_allowed_with_pending_request_is_concurrent_failure(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("NotAllowedError", "A request is already pending."))

        outcome = loaded(platform).on_user_gesture()

        assert outcome.state == CeremonyState.FAILED
        assert outcome.failure.category == FailureCategory.CONCURRENT

    @pytest.mark.parametrize(
        ("name", "category"),
        [
            ("SecurityError", FailureCategory.SECURITY),
            ("ConstraintError", FailureCategory.CONSTRAINT),
            ("AbortError", FailureCategory.ABORTED),
            ("InvalidStateError", FailureCategory.INVALID_STATE),
            ("TypeError", FailureCategory.UNKNOWN),
        ],
    )
    def test_taxonomy(self, name, category):
        state, mapped = classify_platform_error(PlatformError(name))

        assert state == CeremonyState.FAILED
        assert mapped == category

    def test_security_error_suggests_https(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("SecurityError"))

        outcome = loaded(platform).on_user_gesture()

        assert "HTTPS" in outcome.failure.remedy
        assert outcome.failure.platform_error == "SecurityError"

    def test_failures_are_not_retried(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("AbortError"))

        loaded(platform).on_user_gesture()

        assert len(platform.calls) == 1


class TestFallback:
    """One relaxed retry after NotSupportedError."""

    def test_conditional_falls_back_to_modal(self, platform: SoftwarePlatform):
        platform.authenticator.make_credential(registration_options())
        platform.errors.append(PlatformError("NotSupportedError"))

        outcome = loaded(platform, ChallengeKind.AUTHENTICATION, Mediation.CONDITIONAL).on_user_gesture()

        assert outcome.succeeded
        assert outcome.attempts == 2
        assert [c["mediation"] for c in platform.calls] == ["conditional", "optional"]

    def test_resident_key_relaxed_for_registration(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("NotSupportedError"))

        outcome = loaded(platform).on_user_gesture()

        assert outcome.succeeded
        first, second = platform.calls
        assert first["options"]["authenticatorSelection"]["residentKey"] == "required"
        assert second["options"]["authenticatorSelection"]["residentKey"] == "preferred"

    def test_only_one_fallback(self, platform: SoftwarePlatform):
        platform.errors.extend([PlatformError("NotSupportedError"), PlatformError("NotSupportedError")])

        outcome = loaded(platform).on_user_gesture()

        assert outcome.state == CeremonyState.FAILED
        assert outcome.failure.category == FailureCategory.UNSUPPORTED
        assert outcome.attempts == 2
        assert len(platform.calls) == 2

    def test_modal_authentication_has_no_fallback(self, platform: SoftwarePlatform):
        platform.errors.append(PlatformError("NotSupportedError"))

        outcome = loaded(platform, ChallengeKind.AUTHENTICATION, Mediation.OPTIONAL).on_user_gesture()

        assert outcome.failure.category == FailureCategory.UNSUPPORTED
        assert len(platform.calls) == 1


class TestConcurrency:
    """A second gesture during an in-flight ceremony."""

    def test_second_gesture_fails_without_disturbing_first(self, platform: SoftwarePlatform):
        entered = threading.Event()
        release = threading.Event()

        class BlockingPlatform:
            def create(self, options):
                entered.set()
                release.wait(timeout=5)
                return platform.create(options)

            def get(self, options, *, mediation):
                raise AssertionError("not used")

        orchestrator = loaded(BlockingPlatform())
        results = {}
        worker = threading.Thread(target=lambda: results.setdefault("first", orchestrator.on_user_gesture()))
        worker.start()
        assert entered.wait(timeout=5)

        second = orchestrator.on_user_gesture()
        assert orchestrator.state == CeremonyState.IN_PROGRESS

        release.set()
        worker.join(timeout=5)

        assert second.state == CeremonyState.FAILED
        assert second.failure.category == FailureCategory.CONCURRENT
        assert results["first"].succeeded
        assert len(platform.calls) == 1
