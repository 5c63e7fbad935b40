"""
Ceremony response verification.

The verifier consumes the challenge before looking at anything else about
it, so a challenge id is good for exactly one attempt whatever the outcome.
Apart from that consumption it has no side effects: persisting the new
counter and timestamps is the caller's job.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from webauthn import verify_authentication_response, verify_registration_response
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.structs import UserVerificationRequirement

from apps.core.exceptions import InvalidRequestError
from apps.core.logging import get_logger
from apps.passkeys.challenges import ChallengeStore, ConsumedChallenge
from apps.passkeys.encoding import normalize_credential_response
from apps.passkeys.exceptions import (
    CloneSuspectedError,
    CredentialNotFoundError,
    VerificationError,
)
from apps.passkeys.models import ChallengeKind
from apps.passkeys.options import SUPPORTED_ALGORITHMS, parse_transports
from apps.passkeys.repository import CredentialRepository, StoredCredential

logger = get_logger(__name__)

REGISTRATION_FIELDS = ("clientDataJSON", "attestationObject")
AUTHENTICATION_FIELDS = ("clientDataJSON", "authenticatorData", "signature")


@dataclass(frozen=True)
class VerifiedRegistration:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    device_type: str
    backed_up: bool
    aaguid: str
    transports: tuple[str, ...]
    user_verified: bool
    challenge: ConsumedChallenge


@dataclass(frozen=True)
class VerifiedAuthentication:
    credential: StoredCredential
    new_sign_count: int
    device_type: str
    backed_up: bool
    user_verified: bool
    challenge: ConsumedChallenge


def counter_regressed(new_sign_count: int, stored_sign_count: int) -> bool:
    """
    True when an assertion's counter fails to advance past the stored one.

    Authenticators without counters report 0 forever, which is accepted
    while the stored counter is also 0. Once a credential has reported a
    nonzero counter, every later assertion must report a larger one.
    """
    return (new_sign_count > 0 or stored_sign_count > 0) and new_sign_count <= stored_sign_count


def _require_fields(credential: Mapping[str, Any], fields: Sequence[str]) -> None:
    missing = [f for f in fields if not credential["response"].get(f)]
    if missing:
        raise InvalidRequestError(f"Credential response is missing: {', '.join(missing)}")


def _requires_user_verification(challenge: ConsumedChallenge) -> bool:
    return challenge.context.get("user_verification") == UserVerificationRequirement.REQUIRED.value


class CeremonyVerifier:
    """Verifies registration and authentication responses for one relying party."""

    def __init__(
        self,
        challenge_store: ChallengeStore,
        repository: CredentialRepository,
        *,
        rp_id: str,
        origins: Sequence[str],
    ) -> None:
        self.challenge_store = challenge_store
        self.repository = repository
        self.rp_id = rp_id
        self.origins = list(origins)

    def verify_registration(
        self, response: Mapping[str, Any], challenge_id: str
    ) -> VerifiedRegistration:
        """
        Verify an attestation response.

        Raises:
            InvalidRequestError: Malformed response; the challenge is left untouched.
            ChallengeError: Unknown, expired or already-used challenge.
            VerificationError: Challenge, origin, RP ID or attestation mismatch.
        """
        credential = normalize_credential_response(response)
        _require_fields(credential, REGISTRATION_FIELDS)

        challenge = self.challenge_store.consume(challenge_id, kind=ChallengeKind.REGISTRATION)

        try:
            verification = verify_registration_response(
                credential=credential,
                expected_challenge=challenge.value,
                expected_rp_id=self.rp_id,
                expected_origin=self.origins,
                require_user_verification=_requires_user_verification(challenge),
                supported_pub_key_algs=SUPPORTED_ALGORITHMS,
            )
        except Exception as e:
            logger.warning(
                "passkey_registration_verification_failed",
                challenge_id=challenge_id,
                credential_id=credential["id"],
                error=str(e),
            )
            raise VerificationError() from e

        transports = tuple(
            t.value for t in parse_transports(credential["response"].get("transports") or [])
        )
        return VerifiedRegistration(
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            device_type=verification.credential_device_type.value,
            backed_up=verification.credential_backed_up,
            aaguid=verification.aaguid or "",
            transports=transports,
            user_verified=verification.user_verified,
            challenge=challenge,
        )

    def verify_authentication(
        self,
        response: Mapping[str, Any],
        challenge_id: str,
        stored_credential: StoredCredential | None = None,
    ) -> VerifiedAuthentication:
        """
        Verify an assertion response.

        When ``stored_credential`` is not given it is looked up by the
        response's credential id, after the challenge has been consumed.
        That is the discoverable flow, where the server did not know which
        credential would answer.

        Raises:
            InvalidRequestError: Malformed response; the challenge is left untouched.
            ChallengeError: Unknown, expired or already-used challenge.
            CredentialNotFoundError: The credential is not registered.
            CloneSuspectedError: The signature counter did not advance.
            VerificationError: Any other signature, binding or origin failure.
        """
        credential = normalize_credential_response(response)
        _require_fields(credential, AUTHENTICATION_FIELDS)

        challenge = self.challenge_store.consume(challenge_id, kind=ChallengeKind.AUTHENTICATION)

        raw_id = base64url_to_bytes(credential["rawId"])
        if stored_credential is None:
            stored_credential = self.repository.get_credential_by_credential_id(raw_id)
            if stored_credential is None:
                logger.warning(
                    "passkey_authentication_unknown_credential",
                    challenge_id=challenge_id,
                    credential_id=credential["rawId"],
                )
                raise CredentialNotFoundError()
        elif stored_credential.credential_id != raw_id:
            logger.warning("passkey_authentication_credential_mismatch", challenge_id=challenge_id)
            raise VerificationError()

        self._check_bindings(credential, challenge, stored_credential)

        try:
            # Counter is checked below so a regression is reported distinctly
            verification = verify_authentication_response(
                credential=credential,
                expected_challenge=challenge.value,
                expected_rp_id=self.rp_id,
                expected_origin=self.origins,
                credential_public_key=stored_credential.public_key,
                credential_current_sign_count=0,
                require_user_verification=_requires_user_verification(challenge),
            )
        except Exception as e:
            logger.warning(
                "passkey_authentication_verification_failed",
                challenge_id=challenge_id,
                credential_id=credential["rawId"],
                user_id=stored_credential.user_id,
                error=str(e),
            )
            raise VerificationError() from e

        if counter_regressed(verification.new_sign_count, stored_credential.sign_count):
            logger.error(
                "passkey_clone_suspected",
                credential_id=credential["rawId"],
                user_id=stored_credential.user_id,
                stored_sign_count=stored_credential.sign_count,
                new_sign_count=verification.new_sign_count,
            )
            raise CloneSuspectedError()

        return VerifiedAuthentication(
            credential=stored_credential,
            new_sign_count=verification.new_sign_count,
            device_type=verification.credential_device_type.value,
            backed_up=verification.credential_backed_up,
            user_verified=verification.user_verified,
            challenge=challenge,
        )

    def _check_bindings(
        self,
        credential: Mapping[str, Any],
        challenge: ConsumedChallenge,
        stored: StoredCredential,
    ) -> None:
        """The challenge context and userHandle must agree with the resolved credential."""
        bound_user_id = challenge.context.get("user_id")
        if bound_user_id is not None and bound_user_id != stored.user_id:
            logger.warning(
                "passkey_authentication_binding_failed",
                reason="user_mismatch",
                challenge_id=challenge.challenge_id,
            )
            raise VerificationError()

        bound_credential_id = challenge.context.get("credential_id")
        if bound_credential_id is not None and bound_credential_id != bytes_to_base64url(
            stored.credential_id
        ):
            logger.warning(
                "passkey_authentication_binding_failed",
                reason="credential_mismatch",
                challenge_id=challenge.challenge_id,
            )
            raise VerificationError()

        user_handle = credential["response"].get("userHandle")
        if user_handle and base64url_to_bytes(user_handle) != stored.user_handle:
            logger.warning(
                "passkey_authentication_binding_failed",
                reason="user_handle_mismatch",
                challenge_id=challenge.challenge_id,
            )
            raise VerificationError()
