"""
Passkey (WebAuthn) service layer.

Ties the ceremony pieces together for the HTTP endpoints. Options flow:
capability snapshot -> policy -> OptionBuilder -> challenge store. Verify
flow: CeremonyVerifier -> repository writes -> device association -> session.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from apps.accounts.models import User
from apps.accounts.services import IssuedSession, create_session
from apps.core.exceptions import InvalidRequestError
from apps.core.logging import get_logger
from apps.core.utils import normalize_email
from apps.devices.fingerprint import (
    DeviceDetails,
    DeviceSignals,
    compute_fingerprint,
    describe_device,
)
from apps.devices.models import DeviceAssociation
from apps.devices.services import (
    IssuedDeviceToken,
    credentials_for_device,
    is_recognized,
    issue_device_token,
    record_association,
    recognize_device_token,
)
from apps.passkeys.capabilities import (
    CapabilitySnapshot,
    ConditionalUISupport,
    Mediation,
    adapt_authentication_policy,
    adapt_registration_policy,
)
from apps.passkeys.challenges import ChallengeStore, get_challenge_store
from apps.passkeys.encoding import to_bytes
from apps.passkeys.exceptions import (
    EmailInUseError,
    RepositoryUnavailableError,
    UnsupportedBrowserError,
)
from apps.passkeys.models import ChallengeKind
from apps.passkeys.options import OptionBuilder
from apps.passkeys.repository import (
    CredentialRepository,
    DeviceAssociationRecord,
    NewCredential,
    StoredCredential,
    UserRecord,
    get_credential_repository,
)
from apps.passkeys.verification import CeremonyVerifier

logger = get_logger(__name__)

DEFAULT_PASSKEY_NAME = "Passkey"


def _default_passkey_name(details: DeviceDetails) -> str:
    if details.device_class == "unknown":
        return DEFAULT_PASSKEY_NAME
    return details.name


@dataclass
class OptionsResult:
    """Options returned to the client, with the id it must send back."""

    options: dict[str, Any]
    challenge_id: str
    mediation: Mediation = Mediation.OPTIONAL
    passkey_options: dict[str, Any] | None = None


@dataclass
class CeremonyClient:
    """What we know about the browser running the ceremony."""

    snapshot: CapabilitySnapshot = field(default_factory=CapabilitySnapshot)
    signals: DeviceSignals | None = None
    user_agent: str = ""
    ip_address: str | None = None
    device_token: str | None = None


@dataclass
class RegistrationResult:
    user: User
    credential: StoredCredential
    session: IssuedSession
    device_token: IssuedDeviceToken | None = None


@dataclass
class AuthenticationResult:
    """Result of successful passkey authentication."""

    user: User
    credential: StoredCredential
    session: IssuedSession
    device_recognized: bool = False
    device_token: IssuedDeviceToken | None = None


@dataclass
class CheckUserResult:
    exists: bool
    has_passkeys: bool
    suggested_action: str
    passkey_count: int = 0
    device_types: list[str] = field(default_factory=list)
    device_recognized: bool = False


class PasskeyService:
    """
    Service for WebAuthn passkey operations.

    Collaborators are injectable; by default they come from settings.
    """

    def __init__(
        self,
        challenge_store: ChallengeStore | None = None,
        repository: CredentialRepository | None = None,
        option_builder: OptionBuilder | None = None,
    ) -> None:
        self.rp_id: str = settings.WEBAUTHN_RP_ID
        self.rp_name: str = settings.WEBAUTHN_RP_NAME
        self.origins: list[str] = list(settings.WEBAUTHN_ORIGINS)
        self.timeout_ms: int = settings.PASSKEY_CEREMONY_TIMEOUT_MS

        self.challenge_store = challenge_store or get_challenge_store()
        self.repository = repository or get_credential_repository()
        self.option_builder = option_builder or OptionBuilder(self.rp_id, self.rp_name)
        self.verifier = CeremonyVerifier(
            self.challenge_store,
            self.repository,
            rp_id=self.rp_id,
            origins=self.origins,
        )

    # --- Registration ---

    def generate_registration_options(
        self,
        *,
        email: str,
        display_name: str = "",
        client: CeremonyClient | None = None,
        session_user_id: int | None = None,
    ) -> OptionsResult:
        """
        Generate options for passkey registration.

        A new email gets a provisional user handle that is only turned into
        a user row once the attestation verifies. An email that already owns
        passkeys may only add another from a session for that same user.

        Raises:
            EmailInUseError: The email owns passkeys and the caller is not its session.
        """
        client = client or CeremonyClient()
        email = normalize_email(email)

        user = self.repository.get_user_by_email(email)
        existing: list[StoredCredential] = []
        if user is not None:
            existing = self.repository.get_credentials_by_user_id(user.id)  # type: ignore[arg-type]
            if existing and session_user_id != user.id:
                logger.info("registration_rejected_email_in_use", user_id=user.id)
                raise EmailInUseError()
        else:
            user = UserRecord(
                id=None,
                email=email,
                display_name=display_name,
                handle=uuid.uuid4().bytes,
            )

        policy = adapt_registration_policy(
            client.snapshot,
            timeout_ms=self.timeout_ms,
            require_cross_platform=settings.PASSKEY_REQUIRE_CROSS_PLATFORM,
        )
        built = self.option_builder.build_registration_options(user, existing, policy)

        challenge_id = self.challenge_store.issue(
            ChallengeKind.REGISTRATION,
            built.challenge,
            {
                "user_id": user.id,
                "email": user.email,
                "display_name": user.display_name or display_name,
                "user_handle": bytes_to_base64url(user.handle),
                "user_verification": policy.user_verification.value,
            },
        )

        logger.info(
            "registration_options_issued",
            user_id=user.id,
            challenge_id=challenge_id,
            browser=client.snapshot.browser_family.value,
            excluded_credentials=len(existing),
        )
        return OptionsResult(options=built.to_json(), challenge_id=challenge_id)

    def verify_registration(
        self,
        *,
        challenge_id: str,
        credential: dict[str, Any],
        name: str | None = None,
        client: CeremonyClient | None = None,
    ) -> RegistrationResult:
        """
        Verify a registration response, store the passkey and sign the user in.

        Raises:
            InvalidRequestError, ChallengeError, VerificationError,
            CredentialConflictError, EmailInUseError
        """
        client = client or CeremonyClient()
        verified = self.verifier.verify_registration(credential, challenge_id)
        context = verified.challenge.context

        user_record = self._resolve_registering_user(context)
        details = describe_device(client.user_agent)

        stored = self.repository.store_credential(
            NewCredential(
                user_id=user_record.id,  # type: ignore[arg-type]
                credential_id=verified.credential_id,
                public_key=verified.public_key,
                sign_count=verified.sign_count,
                name=name or _default_passkey_name(details),
                device_type=verified.device_type,
                backed_up=verified.backed_up,
                transports=verified.transports,
                aaguid=verified.aaguid,
            )
        )

        association = self._record_device(stored, client, details.as_dict())
        device_token = self._safe_issue_token(association)

        user = User.objects.get(pk=stored.user_id)
        session = create_session(user, user_agent=client.user_agent, ip_address=client.ip_address)

        logger.info(
            "passkey_registered",
            user_id=user.id,
            passkey_id=stored.id,
            device_type=stored.device_type,
            backed_up=stored.backed_up,
        )
        return RegistrationResult(
            user=user, credential=stored, session=session, device_token=device_token
        )

    def _resolve_registering_user(self, context: dict[str, Any]) -> UserRecord:
        handle = base64url_to_bytes(context["user_handle"])
        if context.get("user_id") is not None:
            user = self.repository.get_user_by_id(context["user_id"])
            if user is not None:
                return user

        user = self.repository.get_user_by_email(context["email"])
        if user is None:
            return self.repository.create_user(
                context["email"], context.get("display_name") or "", handle=handle
            )
        if user.handle != handle:
            # Someone else created this account while the ceremony was running
            raise EmailInUseError()
        return user

    # --- Authentication ---

    def generate_authentication_options(
        self,
        *,
        email: str | None = None,
        credential_id: str | None = None,
        client: CeremonyClient | None = None,
        conditional: bool = False,
    ) -> OptionsResult:
        """
        Generate options for passkey authentication.

        Three shapes:
        - no hint: discoverable request with an empty allow list
        - credential_id: just that credential, bound to the challenge
        - email: that user's credentials, bound to the challenge

        Unknown emails and credential ids fall back to a discoverable request
        so the response does not reveal which accounts exist.

        Raises:
            UnsupportedBrowserError: ``conditional`` requested but unavailable.
            InvalidRequestError: ``credential_id`` is not valid base64url.
        """
        client = client or CeremonyClient()
        policy = adapt_authentication_policy(client.snapshot, timeout_ms=self.timeout_ms)
        if conditional and policy.conditional_ui == ConditionalUISupport.NONE:
            raise UnsupportedBrowserError("Passkey autofill is not supported in this browser")

        allow: list[StoredCredential] = []
        context: dict[str, Any] = {}
        passkey_options: dict[str, Any] | None = None

        if credential_id:
            try:
                raw_id = to_bytes(credential_id)
            except InvalidRequestError as e:
                raise InvalidRequestError("Malformed credentialId") from e
            stored = self.repository.get_credential_by_credential_id(raw_id)
            if stored is not None:
                credential_id = bytes_to_base64url(raw_id)
                allow = [stored]
                context = {"user_id": stored.user_id, "credential_id": credential_id}
                owner = self.repository.get_user_by_id(stored.user_id)
                if owner is not None:
                    passkey_options = {
                        "id": credential_id,
                        "username": owner.email,
                        "display_name": owner.display_name or owner.email,
                    }
        elif email:
            user = self.repository.get_user_by_email(email)
            if user is not None:
                allow = self.repository.get_credentials_by_user_id(user.id)  # type: ignore[arg-type]
                if allow:
                    context = {"user_id": user.id}
                    passkey_options = {
                        "id": None,
                        "username": user.email,
                        "display_name": user.display_name or user.email,
                    }

        built = self.option_builder.build_authentication_options(allow, policy)
        context["user_verification"] = policy.user_verification.value
        challenge_id = self.challenge_store.issue(ChallengeKind.AUTHENTICATION, built.challenge, context)

        mediation = Mediation.CONDITIONAL if conditional else Mediation.OPTIONAL
        logger.info(
            "authentication_options_issued",
            challenge_id=challenge_id,
            discoverable=not allow,
            mediation=mediation.value,
            browser=client.snapshot.browser_family.value,
        )
        return OptionsResult(
            options=built.to_json(),
            challenge_id=challenge_id,
            mediation=mediation,
            passkey_options=passkey_options,
        )

    def verify_authentication(
        self,
        *,
        challenge_id: str,
        credential: dict[str, Any],
        client: CeremonyClient | None = None,
    ) -> AuthenticationResult:
        """
        Verify an authentication response and sign the user in.

        The counter update is a compare-and-set against the counter the
        verifier checked, so two concurrent assertions cannot both advance
        it from the same value.

        Raises:
            InvalidRequestError, ChallengeError, CredentialNotFoundError,
            CloneSuspectedError, VerificationError
        """
        client = client or CeremonyClient()
        verified = self.verifier.verify_authentication(credential, challenge_id)
        stored = verified.credential

        updated = self.repository.update_credential(
            stored.credential_id,
            expected_sign_count=stored.sign_count,
            sign_count=verified.new_sign_count,
            last_used_at=timezone.now(),
            backed_up=verified.backed_up,
        )

        fingerprint = compute_fingerprint(client.signals)
        token_match = self._safe_recognize_token(client.device_token)
        device_recognized = (
            token_match is not None and token_match.user_id == stored.user_id
        ) or self._safe_is_recognized(stored.user_id, fingerprint.value)

        association = self._record_device(
            updated, client, describe_device(client.user_agent).as_dict(), fingerprint=fingerprint.value
        )
        device_token = self._safe_issue_token(association)

        user = User.objects.get(pk=stored.user_id)
        session = create_session(user, user_agent=client.user_agent, ip_address=client.ip_address)

        logger.info(
            "passkey_authenticated",
            user_id=user.id,
            passkey_id=updated.id,
            sign_count=updated.sign_count,
            device_recognized=device_recognized,
        )
        return AuthenticationResult(
            user=user,
            credential=updated,
            session=session,
            device_recognized=device_recognized,
            device_token=device_token,
        )

    # --- Lookup and management ---

    def check_user(self, email: str, signals: DeviceSignals | None = None) -> CheckUserResult:
        """Whether an email has an account and passkeys, and what the UI should offer."""
        user = self.repository.get_user_by_email(email)
        if user is None:
            return CheckUserResult(exists=False, has_passkeys=False, suggested_action="register")

        credentials = self.repository.get_credentials_by_user_id(user.id)  # type: ignore[arg-type]
        has_passkeys = bool(credentials)
        fingerprint = compute_fingerprint(signals)
        recognized = has_passkeys and self._safe_is_recognized(user.id, fingerprint.value)  # type: ignore[arg-type]
        return CheckUserResult(
            exists=True,
            has_passkeys=has_passkeys,
            suggested_action="authenticate" if has_passkeys else "addPasskey",
            passkey_count=len(credentials),
            device_types=sorted({c.device_type for c in credentials}),
            device_recognized=recognized,
        )

    def passkeys_on_device(self, email: str, signals: DeviceSignals | None = None) -> list[StoredCredential]:
        """
        The email's passkeys that have been used from this device.

        Unknown emails, placeholder fingerprints and recognition outages all
        yield an empty list; the answer only decides which prompt to show.
        """
        credentials = self.repository.get_credentials_by_email(email)
        if not credentials:
            return []

        user_id = credentials[0].user_id
        fingerprint = compute_fingerprint(signals)
        try:
            used_here = set(credentials_for_device(user_id, fingerprint, repository=self.repository))
        except RepositoryUnavailableError:
            logger.warning("device_recognition_unavailable", user_id=user_id)
            return []
        return [c for c in credentials if c.credential_id in used_here]

    def list_passkeys(self, user_id: int) -> list[StoredCredential]:
        return self.repository.get_credentials_by_user_id(user_id)

    def revoke_passkey(self, passkey_id: int, user_id: int) -> bool:
        """Delete a passkey the user owns. Returns False if there was none."""
        deleted = self.repository.delete_credential(passkey_id, user_id)
        if deleted:
            logger.info("passkey_revoked", user_id=user_id, passkey_id=passkey_id)
        return deleted

    def _safe_is_recognized(self, user_id: int, fingerprint: str) -> bool:
        try:
            return is_recognized(user_id, fingerprint, repository=self.repository)
        except RepositoryUnavailableError:
            logger.warning("device_recognition_unavailable", user_id=user_id)
            return False

    def _safe_recognize_token(self, token: str | None) -> DeviceAssociation | None:
        try:
            return recognize_device_token(token)
        except DatabaseError as e:
            logger.warning("device_token_lookup_failed", error=str(e))
            return None

    def _safe_issue_token(self, association: DeviceAssociationRecord | None) -> IssuedDeviceToken | None:
        """A sign-in without a fresh device token just loses frictionless recognition."""
        if association is None:
            return None
        try:
            return issue_device_token(association.id)
        except DatabaseError as e:
            logger.warning("device_token_rotation_failed", device_id=association.id, error=str(e))
            return None

    def _record_device(
        self,
        credential: StoredCredential,
        client: CeremonyClient,
        details: dict[str, Any],
        fingerprint: str | None = None,
    ) -> DeviceAssociationRecord | None:
        """Associations only shape UX, so failing to write one must not fail the ceremony."""
        if fingerprint is None:
            fingerprint = compute_fingerprint(client.signals).value
        try:
            return record_association(
                credential.user_id,
                credential.credential_id,
                fingerprint,
                details,
                repository=self.repository,
            )
        except RepositoryUnavailableError:
            logger.warning(
                "device_association_failed",
                user_id=credential.user_id,
                passkey_id=credential.id,
            )
            return None


def get_passkey_service() -> PasskeyService:
    """Get a PasskeyService instance."""
    return PasskeyService()
