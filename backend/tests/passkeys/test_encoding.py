"""
Tests for canonical encoding of credential responses.
"""

import base64

import pytest

from apps.core.exceptions import InvalidRequestError
from apps.passkeys.encoding import normalize_credential_response, to_base64url, to_bytes

RAW = bytes(range(250, 256)) + b"\x00\x01\xfb\xff"


class TestToBytes:
    """Every representation a platform may hand back decodes to the same bytes."""

    @pytest.mark.parametrize(
        "value",
        [
            RAW,
            bytearray(RAW),
            memoryview(RAW),
            list(RAW),
            {str(i): b for i, b in enumerate(RAW)},
            base64.b64encode(RAW).decode(),
            base64.urlsafe_b64encode(RAW).decode(),
            base64.urlsafe_b64encode(RAW).decode().rstrip("="),
        ],
        ids=["bytes", "bytearray", "memoryview", "int-list", "index-dict", "b64", "b64url", "b64url-unpadded"],
    )
    def test_representations(self, value):
        assert to_bytes(value) == RAW

    def test_index_dict_is_ordered_numerically(self):
        value = {"10": 10, "2": 2, "1": 1, "0": 0, "3": 3, "4": 4, "5": 5, "6": 6, "7": 7, "8": 8, "9": 9}
        assert to_bytes(value) == bytes(range(11))

    def test_rejects_invalid_base64(self):
        with pytest.raises(InvalidRequestError):
            to_bytes("not base64!!")

    def test_rejects_out_of_range_ints(self):
        with pytest.raises(InvalidRequestError):
            to_bytes([1, 2, 300])

    def test_rejects_unsupported_types(self):
        with pytest.raises(InvalidRequestError):
            to_bytes(12345)

    def test_to_base64url_is_unpadded(self):
        encoded = to_base64url(RAW)
        assert "=" not in encoded
        assert "+" not in encoded and "/" not in encoded


class TestNormalizeCredentialResponse:
    """Tests for normalize_credential_response."""

    def _raw(self):
        return {
            "raw_id": list(RAW),
            "type": "public-key",
            "response": {
                "client_data_json": base64.b64encode(b'{"type":"webauthn.get"}').decode(),
                "authenticatorData": bytearray(b"auth-data"),
                "signature": memoryview(b"sig"),
                "userHandle": None,
            },
            "authenticator_attachment": "platform",
        }

    def test_canonicalizes_keys_and_binary_fields(self):
        normalized = normalize_credential_response(self._raw())

        assert normalized["id"] == normalized["rawId"] == to_base64url(RAW)
        assert normalized["type"] == "public-key"
        assert normalized["authenticatorAttachment"] == "platform"
        assert normalized["clientExtensionResults"] == {}
        response = normalized["response"]
        assert to_bytes(response["clientDataJSON"]) == b'{"type":"webauthn.get"}'
        assert to_bytes(response["authenticatorData"]) == b"auth-data"
        assert to_bytes(response["signature"]) == b"sig"
        assert "userHandle" not in response

    def test_is_idempotent(self):
        once = normalize_credential_response(self._raw())
        twice = normalize_credential_response(once)
        assert once == twice

    def test_non_binary_fields_pass_through(self):
        raw = self._raw()
        raw["response"]["transports"] = ["internal", "hybrid"]

        normalized = normalize_credential_response(raw)

        assert normalized["response"]["transports"] == ["internal", "hybrid"]

    def test_missing_id_is_rejected(self):
        raw = self._raw()
        del raw["raw_id"]
        with pytest.raises(InvalidRequestError, match="credential ID"):
            normalize_credential_response(raw)

    def test_missing_response_is_rejected(self):
        raw = self._raw()
        del raw["response"]
        with pytest.raises(InvalidRequestError, match="response body"):
            normalize_credential_response(raw)

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidRequestError):
            normalize_credential_response(["not", "a", "dict"])  # type: ignore[arg-type]
