"""
Exceptions for passkeys app.

Every ceremony failure is one of these typed errors; the API layer renders
them from ``status_code``/``code`` and never inspects messages.
"""

from apps.core.exceptions import InvalidRequestError, ServiceError

__all__ = [
    "ChallengeError",
    "ChallengeExpiredError",
    "ChallengeNotFoundError",
    "CloneSuspectedError",
    "CredentialConflictError",
    "CredentialNotFoundError",
    "EmailInUseError",
    "InvalidRequestError",
    "RepositoryUnavailableError",
    "UnsupportedBrowserError",
    "VerificationError",
]

CHALLENGE_ERROR_MESSAGE = "Invalid or expired challenge"


class ChallengeError(ServiceError):
    """
    Challenge is unknown, expired, already consumed, or for the other ceremony.

    The public message is the same for every reason; ``reason`` is for logs.
    """

    status_code = 400
    code = "invalid_challenge"
    default_message = CHALLENGE_ERROR_MESSAGE
    reason = "mismatch"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(CHALLENGE_ERROR_MESSAGE)
        if reason is not None:
            self.reason = reason


class ChallengeNotFoundError(ChallengeError):
    """Unknown or already-consumed challenge id."""

    reason = "not_found"


class ChallengeExpiredError(ChallengeError):
    """Challenge existed but its TTL had passed."""

    reason = "expired"


class VerificationError(ServiceError):
    """Cryptographic verification of a ceremony response failed."""

    status_code = 401
    code = "verification_failed"
    default_message = "Passkey verification failed"


class CredentialNotFoundError(VerificationError):
    """The asserted credential is not registered."""

    code = "credential_not_found"
    default_message = "Passkey not recognized"


class CloneSuspectedError(VerificationError):
    """Signature counter did not advance; the authenticator may be cloned."""

    code = "clone_suspected"
    default_message = "Passkey verification failed"


class CredentialConflictError(ServiceError):
    """Credential id already registered to another account."""

    status_code = 409
    code = "credential_in_use"
    default_message = "This passkey is already registered to another account"


class EmailInUseError(ServiceError):
    """Registration for an email that already owns passkeys, without its session."""

    status_code = 409
    code = "email_in_use"
    default_message = "An account with this email already exists. Sign in to add a passkey."


class UnsupportedBrowserError(ServiceError):
    """The caller's browser cannot run the requested ceremony."""

    status_code = 400
    code = "unsupported_browser"
    default_message = "This browser does not support the requested passkey flow"


class RepositoryUnavailableError(ServiceError):
    """Datastore failure; the whole ceremony may be retried from options."""

    status_code = 503
    code = "datastore_unavailable"
    default_message = "Service temporarily unavailable. Please try again."
