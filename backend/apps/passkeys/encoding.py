"""
Canonical encoding of WebAuthn binary fields.

Platform credential APIs hand back the same logical response in different
shapes: ArrayBuffers, typed arrays serialized as lists or index-keyed
objects, standard base64 or base64url strings, camelCase or snake_case keys.
Everything crossing into the verifier goes through ``normalize_credential_response``
first and comes out as unpadded base64url under the WebAuthn JSON key names.

Normalization is idempotent: normalizing an already-normalized response
returns it unchanged.
"""

import base64
import binascii
from collections.abc import Mapping
from typing import Any

from webauthn.helpers import bytes_to_base64url

from apps.core.exceptions import InvalidRequestError

BINARY_RESPONSE_FIELDS = (
    "clientDataJSON",
    "attestationObject",
    "authenticatorData",
    "signature",
    "userHandle",
    "publicKey",
)

_KEY_ALIASES = {
    "raw_id": "rawId",
    "client_data_json": "clientDataJSON",
    "clientDataJson": "clientDataJSON",
    "attestation_object": "attestationObject",
    "authenticator_data": "authenticatorData",
    "user_handle": "userHandle",
    "public_key": "publicKey",
    "public_key_algorithm": "publicKeyAlgorithm",
    "authenticator_attachment": "authenticatorAttachment",
    "client_extension_results": "clientExtensionResults",
}


def _decode_str(value: str) -> bytes:
    text = value.strip()
    text = text.rstrip("=")
    if "+" in text or "/" in text:
        text = text.replace("+", "-").replace("/", "_")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise InvalidRequestError("Malformed binary field in credential response") from e


def to_bytes(value: Any) -> bytes:
    """Decode any supported binary representation to raw bytes."""
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value)
    if isinstance(value, str):
        return _decode_str(value)
    if isinstance(value, list | tuple):
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError("Malformed byte array in credential response") from e
    if isinstance(value, Mapping) and all(str(k).isdigit() for k in value):
        # Uint8Array passed through JSON.stringify: {"0": 12, "1": 250, ...}
        return to_bytes([value[k] for k in sorted(value, key=lambda k: int(k))])
    raise InvalidRequestError("Unsupported binary field type in credential response")


def to_base64url(value: Any) -> str:
    """Canonical unpadded base64url for any supported binary representation."""
    return bytes_to_base64url(to_bytes(value))


def _canonical_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_KEY_ALIASES.get(key, key): value for key, value in data.items()}


def normalize_credential_response(raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Convert a platform credential response to its canonical JSON form.

    Raises:
        InvalidRequestError: If the credential id or response body is missing,
            or a binary field cannot be decoded.
    """
    if not isinstance(raw, Mapping):
        raise InvalidRequestError("Credential response must be an object")

    data = _canonical_keys(raw)
    raw_id = data.get("rawId") or data.get("id")
    if not raw_id:
        raise InvalidRequestError("Missing credential ID in response")
    response = data.get("response")
    if not isinstance(response, Mapping):
        raise InvalidRequestError("Missing response body in credential")

    normalized_id = to_base64url(raw_id)
    normalized_response: dict[str, Any] = {}
    for key, value in _canonical_keys(response).items():
        if key in BINARY_RESPONSE_FIELDS:
            if value is None or value == "":
                continue
            normalized_response[key] = to_base64url(value)
        else:
            normalized_response[key] = value

    normalized: dict[str, Any] = {
        "id": normalized_id,
        "rawId": normalized_id,
        "type": data.get("type") or "public-key",
        "response": normalized_response,
        "clientExtensionResults": data.get("clientExtensionResults") or {},
    }
    if data.get("authenticatorAttachment"):
        normalized["authenticatorAttachment"] = data["authenticatorAttachment"]
    return normalized
