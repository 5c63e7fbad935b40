"""
Software WebAuthn authenticator for tests.

Performs registration and authentication ceremonies without hardware, using
ECDSA P-256 keys and "none" attestation, so responses pass real py_webauthn
verification. ``SoftwarePlatform`` wraps it as a PlatformCredentialAPI for
driving CeremonyOrchestrator.
"""

import hashlib
import json
import os
import struct
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass, field
from typing import Any

import cbor2
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.hashes import SHA256

from apps.passkeys.ceremony import PlatformError

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40

DEFAULT_ORIGIN = "http://localhost:3000"


def b64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Base64url decode with padding restoration."""
    return urlsafe_b64decode(s + "=" * (-len(s) % 4))


def _as_bytes(value: bytes | str) -> bytes:
    return value if isinstance(value, bytes) else b64url_decode(value)


def _as_b64url(value: bytes | str) -> str:
    return b64url_encode(value) if isinstance(value, bytes) else value


def _encode_cose_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """EC2 P-256 public key as a COSE_Key CBOR map (alg ES256)."""
    numbers = public_key.public_numbers()
    cose_key = {
        1: 2,
        3: -7,
        -1: 1,
        -2: numbers.x.to_bytes(32, "big"),
        -3: numbers.y.to_bytes(32, "big"),
    }
    return cbor2.dumps(cose_key)


@dataclass
class SoftwareCredential:
    """A credential held by the software authenticator."""

    credential_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str
    user_handle: bytes
    sign_count: int = 0


@dataclass
class SoftwareAuthenticator:
    """
    Software authenticator keyed by credential id.

    ``counter_step`` of 0 emulates authenticators without a signature
    counter (most synced passkeys), which always report 0.
    """

    credentials: dict[bytes, SoftwareCredential] = field(default_factory=dict)
    aaguid: bytes = field(default=b"\x00" * 16)
    counter_step: int = 1
    user_verified: bool = True
    backup_eligible: bool = False
    backed_up: bool = False

    def _flags(self, *extra: int) -> int:
        flags = FLAG_UP
        if self.user_verified:
            flags |= FLAG_UV
        if self.backup_eligible:
            flags |= FLAG_BE
        if self.backed_up:
            flags |= FLAG_BS
        for flag in extra:
            flags |= flag
        return flags

    def make_credential(self, options: dict[str, Any], origin: str = DEFAULT_ORIGIN) -> dict[str, Any]:
        """
        navigator.credentials.create(). Accepts JSON options (base64url
        strings) or decoded options (bytes).
        """
        rp_id = options["rp"]["id"]
        private_key = ec.generate_private_key(ec.SECP256R1())
        credential_id = os.urandom(32)
        self.credentials[credential_id] = SoftwareCredential(
            credential_id=credential_id,
            private_key=private_key,
            rp_id=rp_id,
            user_handle=_as_bytes(options["user"]["id"]),
        )

        client_data = self._client_data("webauthn.create", options["challenge"], origin)
        rp_id_hash = hashlib.sha256(rp_id.encode("utf-8")).digest()
        auth_data = (
            rp_id_hash
            + struct.pack(">BI", self._flags(FLAG_AT), 0)
            + self.aaguid
            + struct.pack(">H", len(credential_id))
            + credential_id
            + _encode_cose_public_key(private_key.public_key())
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})

        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": b64url_encode(attestation_object),
                "transports": ["internal", "hybrid"],
            },
            "authenticatorAttachment": "platform",
        }

    def get_assertion(
        self,
        options: dict[str, Any],
        origin: str = DEFAULT_ORIGIN,
        credential_id: bytes | None = None,
        *,
        include_user_handle: bool = True,
    ) -> dict[str, Any]:
        """
        navigator.credentials.get(). With no allowed credentials, the first
        credential for the RP is used (discoverable flow).
        """
        rp_id = options.get("rpId", "localhost")
        if credential_id is None:
            allowed = [_as_bytes(d["id"]) for d in options.get("allowCredentials") or []]
            if allowed:
                credential_id = next((c for c in allowed if c in self.credentials), None)
            else:
                credential_id = next(
                    (c.credential_id for c in self.credentials.values() if c.rp_id == rp_id), None
                )
        if credential_id is None or credential_id not in self.credentials:
            raise ValueError("No matching credential found for assertion")

        stored = self.credentials[credential_id]
        stored.sign_count += self.counter_step

        client_data = self._client_data("webauthn.get", options["challenge"], origin)
        rp_id_hash = hashlib.sha256(stored.rp_id.encode("utf-8")).digest()
        auth_data = rp_id_hash + struct.pack(">BI", self._flags(), stored.sign_count)
        signature = stored.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(SHA256()),
        )

        response = {
            "clientDataJSON": b64url_encode(client_data),
            "authenticatorData": b64url_encode(auth_data),
            "signature": b64url_encode(signature),
        }
        if include_user_handle:
            response["userHandle"] = b64url_encode(stored.user_handle)
        return {
            "id": b64url_encode(credential_id),
            "rawId": b64url_encode(credential_id),
            "type": "public-key",
            "response": response,
            "authenticatorAttachment": "platform",
        }

    @staticmethod
    def _client_data(ceremony_type: str, challenge: bytes | str, origin: str) -> bytes:
        return json.dumps(
            {
                "type": ceremony_type,
                "challenge": _as_b64url(challenge),
                "origin": origin,
                "crossOrigin": False,
            },
            separators=(",", ":"),
        ).encode("utf-8")


@dataclass
class SoftwarePlatform:
    """
    PlatformCredentialAPI over a SoftwareAuthenticator.

    Errors queued in ``errors`` are raised by the next platform calls, one
    per call, to emulate browser DOMExceptions.
    """

    authenticator: SoftwareAuthenticator = field(default_factory=SoftwareAuthenticator)
    origin: str = DEFAULT_ORIGIN
    errors: list[PlatformError] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    def create(self, options: dict[str, Any]) -> dict[str, Any]:
        self.calls.append({"method": "create", "options": options})
        if self.errors:
            raise self.errors.pop(0)
        return self.authenticator.make_credential(options, self.origin)

    def get(self, options: dict[str, Any], *, mediation: str) -> dict[str, Any]:
        self.calls.append({"method": "get", "options": options, "mediation": mediation})
        if self.errors:
            raise self.errors.pop(0)
        return self.authenticator.get_assertion(options, self.origin)
