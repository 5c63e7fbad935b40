"""
HTTP client for the passkey API.

Used by the embedded sign-in flow and by merchant backends that drive
ceremonies through their own UI. Error bodies are turned into
PasskeyAPIError carrying the API's stable error code.
"""

from types import TracebackType
from typing import Any

import httpx

from apps.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


class PasskeyAPIError(Exception):
    """The passkey API returned an error, or could not be reached (status 0)."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class PasskeyAPIClient:
    def __init__(
        self,
        base_url: str,
        *,
        session_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if session_token:
            headers["Authorization"] = f"Bearer {session_token}"
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "PasskeyAPIClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # --- Registration ---

    def registration_options(
        self,
        email: str,
        display_name: str = "",
        client: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self._post(
            "/auth/register/options",
            {"email": email, "displayName": display_name, "client": client},
        )

    def verify_registration(
        self,
        challenge_id: str,
        credential: dict[str, Any],
        name: str | None = None,
        device: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self._post(
            "/auth/register/verify",
            {"challengeId": challenge_id, "credential": credential, "name": name, "device": device},
        )

    # --- Authentication ---

    def authentication_options(
        self,
        email: str | None = None,
        credential_id: str | None = None,
        client: dict[str, Any] | None = None,
        *,
        conditional: bool = False,
    ) -> dict[str, Any]:
        if conditional:
            return self._post("/auth/authenticate/conditional", {"client": client})
        return self._post(
            "/auth/authenticate/options",
            {"email": email, "credentialId": credential_id, "client": client},
        )

    def verify_authentication(
        self,
        challenge_id: str,
        credential: dict[str, Any],
        device: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self._post(
            "/auth/authenticate/verify",
            {"challengeId": challenge_id, "credential": credential, "device": device},
        )

    def check_user(self, email: str, device: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._post("/auth/check-user", {"email": email, "device": device})

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in body.items() if value is not None}
        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("passkey_api_timeout", path=path)
            raise PasskeyAPIError(0, "timeout", "Passkey API request timed out") from e
        except httpx.TransportError as e:
            logger.warning("passkey_api_unreachable", path=path, error=str(e))
            raise PasskeyAPIError(0, "network_error", str(e)) from e

        if response.is_success:
            return response.json()

        try:
            error_body = response.json()
        except ValueError:
            error_body = {}
        if not isinstance(error_body, dict):
            error_body = {}
        raise PasskeyAPIError(
            response.status_code,
            error_body.get("code", "error"),
            error_body.get("error", response.reason_phrase),
        )
