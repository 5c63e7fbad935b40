"""
Sign-in flow for the embeddable frame.

Message sequence, host page on the left:

    init         ->   fetch authentication options, load the orchestrator
                 <-   auth_ready
    auth_request ->   (user clicked) run the ceremony, verify it
                 <-   auth_success | auth_cancel | error
    close        ->   tear the session down

Options are fetched on ``init`` so that nothing but the platform call sits
between the user's click and the ceremony.
"""

from collections.abc import Callable
from typing import Any

from apps.core.exceptions import InvalidRequestError
from apps.core.logging import get_logger
from apps.embed.client import PasskeyAPIClient, PasskeyAPIError
from apps.embed.messaging import Envelope, MessageBus, MessageType
from apps.passkeys.capabilities import Mediation
from apps.passkeys.ceremony import (
    CeremonyOrchestrator,
    CeremonyStateError,
    PlatformCredentialAPI,
)
from apps.passkeys.models import ChallengeKind

logger = get_logger(__name__)


class EmbedAuthFlow:
    """
    One embedded sign-in attempt bound to a bus session.

    With ``verify=False`` the flow stops after the ceremony and posts the
    raw credential as ``auth_response``, for hosts that verify server-side.
    """

    def __init__(
        self,
        bus: MessageBus,
        api: PasskeyAPIClient,
        platform: PlatformCredentialAPI,
        session_id: str,
        *,
        verify: bool = True,
    ) -> None:
        self.bus = bus
        self.api = api
        self.platform = platform
        self.session_id = session_id
        self.verify = verify
        self.orchestrator: CeremonyOrchestrator | None = None
        self._device: dict[str, Any] | None = None
        self._unsubscribers: list[Callable[[], None]] = [
            bus.subscribe(session_id, MessageType.INIT, self._on_init),
            bus.subscribe(session_id, MessageType.AUTH_REQUEST, self._on_auth_request),
            bus.subscribe(session_id, MessageType.CLOSE, self._on_close),
        ]

    def _send(self, message_type: MessageType, payload: dict[str, Any] | None = None) -> None:
        self.bus.post(Envelope(type=message_type, session_id=self.session_id, payload=payload or {}))

    def _send_error(self, code: str, message: str, **extra: Any) -> None:
        self._send(MessageType.ERROR, {"code": code, "message": message, **extra})

    def _on_init(self, envelope: Envelope) -> None:
        if self.orchestrator is not None:
            logger.info("embed_init_ignored", session_id=self.session_id)
            return

        payload = envelope.payload
        self._device = payload.get("device")
        try:
            result = self.api.authentication_options(
                email=payload.get("email"),
                client=payload.get("client"),
                conditional=bool(payload.get("conditional")),
            )
        except PasskeyAPIError as e:
            self._send_error(e.code, e.message)
            return

        orchestrator = CeremonyOrchestrator(platform=self.platform)
        try:
            orchestrator.load_options(
                ChallengeKind.AUTHENTICATION,
                result["options"],
                result["challengeId"],
                mediation=Mediation(result.get("mediation", Mediation.OPTIONAL.value)),
            )
        except (InvalidRequestError, KeyError, ValueError) as e:
            logger.warning("embed_options_unusable", session_id=self.session_id, error=str(e))
            self._send_error("invalid_options", "Sign-in options could not be loaded")
            return
        orchestrator.await_user_gesture()
        self.orchestrator = orchestrator
        self._send(
            MessageType.AUTH_READY,
            {"challengeId": result["challengeId"], "mediation": orchestrator.mediation.value},
        )

    def _on_auth_request(self, envelope: Envelope) -> None:
        if self.orchestrator is None:
            self._send_error("not_ready", "Sign-in options have not been loaded")
            return

        try:
            outcome = self.orchestrator.on_user_gesture()
        except CeremonyStateError:
            self._send_error("ceremony_finished", "This sign-in attempt has already finished")
            return

        if outcome.cancelled:
            self._send(MessageType.AUTH_CANCEL, {"challengeId": outcome.challenge_id})
            return
        if not outcome.succeeded:
            failure = outcome.failure
            assert failure is not None
            self._send_error(failure.category.value, failure.message, remedy=failure.remedy)
            return

        assert outcome.credential is not None
        if not self.verify:
            self._send(
                MessageType.AUTH_RESPONSE,
                {"challengeId": outcome.challenge_id, "credential": outcome.credential},
            )
            return

        try:
            result = self.api.verify_authentication(
                outcome.challenge_id, outcome.credential, device=self._device
            )
        except PasskeyAPIError as e:
            self._send_error(e.code, e.message)
            return

        logger.info("embed_sign_in_succeeded", session_id=self.session_id)
        self._send(MessageType.AUTH_SUCCESS, result)

    def _on_close(self, envelope: Envelope) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.bus.close_session(self.session_id)
