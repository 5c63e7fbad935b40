"""
Account services - session issuance.

Sessions are the output of a successful passkey ceremony. Each one is an
AuthSession row plus an HS256 JWT (signed with SECRET_KEY) carrying the row id,
so tokens can be revoked server-side before they expire.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from django.conf import settings
from django.utils import timezone

from apps.accounts.models import AuthSession, User
from apps.core.logging import get_logger

logger = get_logger(__name__)

SESSION_TOKEN_TYPE = "session"
SESSION_ALGORITHM = "HS256"


@dataclass
class IssuedSession:
    """A freshly created session and its bearer token."""

    token: str
    session: AuthSession
    expires_at: datetime


def create_session(
    user: User,
    *,
    user_agent: str = "",
    ip_address: str | None = None,
) -> IssuedSession:
    """
    Create a session for a user who just completed a passkey ceremony.

    Args:
        user: The authenticated user
        user_agent: Request User-Agent, stored for the session list
        ip_address: Client IP, stored for the session list

    Returns:
        IssuedSession with the signed token
    """
    now = timezone.now()
    expires_at = now + timedelta(seconds=settings.AUTH_SESSION_TTL_SECONDS)

    session = AuthSession.objects.create(
        user=user,
        expires_at=expires_at,
        user_agent=user_agent[:512],
        ip_address=ip_address,
    )

    payload = {
        "sub": str(user.id),
        "sid": str(session.id),
        "typ": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=SESSION_ALGORITHM)

    logger.info("session_created", user_id=user.id, session_id=str(session.id))
    return IssuedSession(token=token, session=session, expires_at=expires_at)


def resolve_session(token: str) -> AuthSession | None:
    """
    Resolve a session token to its active AuthSession.

    Returns None for malformed, expired, revoked or unknown tokens.
    """
    if not token:
        return None

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[SESSION_ALGORITHM],
            options={"require": ["exp", "sub", "sid"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("session_token_expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("session_token_invalid", error=str(e))
        return None

    if payload.get("typ") != SESSION_TOKEN_TYPE:
        return None

    session = (
        AuthSession.objects.select_related("user")
        .filter(id=payload["sid"], user_id=payload["sub"])
        .first()
    )
    if session is None or not session.is_active or not session.user.is_active:
        return None
    return session


def revoke_session(session: AuthSession) -> None:
    """Revoke a session; already-revoked sessions are left untouched."""
    if session.revoked_at is not None:
        return
    session.revoke()
    logger.info("session_revoked", user_id=session.user_id, session_id=str(session.id))
