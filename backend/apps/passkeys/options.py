"""
WebAuthn ceremony option construction.

OptionBuilder is side-effect free: it generates a fresh challenge and
returns it alongside the options, and the caller decides where the
challenge is stored. py_webauthn does the actual structure building.
"""

import json
import secrets
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from webauthn import generate_authentication_options, generate_registration_options
from webauthn.helpers import options_to_json
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
)

from apps.passkeys.capabilities import AuthenticatorSelectionPolicy, VerificationPolicy
from apps.passkeys.models import ChallengeKind
from apps.passkeys.repository import StoredCredential, UserRecord

CHALLENGE_BYTES = 32

# ES256 first; RS256 for Windows Hello and older security keys
SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]

# Advertised when a credential has no recorded transports. Safari will not
# offer a credential whose descriptor lists no transport it can use.
ALL_TRANSPORTS = [
    AuthenticatorTransport.INTERNAL,
    AuthenticatorTransport.HYBRID,
    AuthenticatorTransport.BLE,
    AuthenticatorTransport.NFC,
    AuthenticatorTransport.USB,
]

_KNOWN_TRANSPORTS = {t.value for t in AuthenticatorTransport}


@dataclass(frozen=True)
class CeremonyOptions:
    """Options for one ceremony plus the raw challenge they embed."""

    kind: ChallengeKind
    options: PublicKeyCredentialCreationOptions | PublicKeyCredentialRequestOptions
    challenge: bytes

    def to_json(self) -> dict[str, Any]:
        """JSON-ready options with base64url binary fields."""
        data = json.loads(options_to_json(self.options))
        # py_webauthn omits empty lists; clients expect the keys to be present
        if self.kind == ChallengeKind.REGISTRATION:
            data.setdefault("excludeCredentials", [])
        else:
            data.setdefault("allowCredentials", [])
        return data


def parse_transports(values: Iterable[str]) -> list[AuthenticatorTransport]:
    """Known transports from stored/reported strings; unknown values are dropped."""
    return [AuthenticatorTransport(v) for v in values if v in _KNOWN_TRANSPORTS]


def credential_descriptor(credential: StoredCredential) -> PublicKeyCredentialDescriptor:
    transports = parse_transports(credential.transports) or list(ALL_TRANSPORTS)
    return PublicKeyCredentialDescriptor(id=credential.credential_id, transports=transports)


class OptionBuilder:
    """Builds registration and authentication options for one relying party."""

    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        challenge_factory: Callable[[], bytes] | None = None,
    ) -> None:
        self.rp_id = rp_id
        self.rp_name = rp_name
        self._challenge_factory = challenge_factory or (lambda: secrets.token_bytes(CHALLENGE_BYTES))

    def build_registration_options(
        self,
        user: UserRecord,
        existing_credentials: Sequence[StoredCredential],
        policy: AuthenticatorSelectionPolicy,
    ) -> CeremonyOptions:
        """
        Options for navigator.credentials.create().

        Every credential in ``existing_credentials`` is excluded, so an
        authenticator that already holds one of the user's passkeys is not
        registered twice.
        """
        challenge = self._challenge_factory()
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=user.handle,
            user_name=user.email,
            user_display_name=user.display_name or user.email,
            challenge=challenge,
            timeout=policy.timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=policy.authenticator_attachment,
                resident_key=policy.resident_key,
                user_verification=policy.user_verification,
            ),
            exclude_credentials=[credential_descriptor(c) for c in existing_credentials],
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
        return CeremonyOptions(kind=ChallengeKind.REGISTRATION, options=options, challenge=challenge)

    def build_authentication_options(
        self,
        allow_credentials: Sequence[StoredCredential],
        policy: VerificationPolicy,
    ) -> CeremonyOptions:
        """
        Options for navigator.credentials.get().

        An empty ``allow_credentials`` produces a discoverable-credential
        request: the authenticator picks the credential and the verifier
        resolves the user from it.
        """
        challenge = self._challenge_factory()
        options = generate_authentication_options(
            rp_id=self.rp_id,
            challenge=challenge,
            timeout=policy.timeout_ms,
            allow_credentials=[credential_descriptor(c) for c in allow_credentials] or None,
            user_verification=policy.user_verification,
        )
        return CeremonyOptions(kind=ChallengeKind.AUTHENTICATION, options=options, challenge=challenge)
