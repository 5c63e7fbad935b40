"""
Core security - authentication classes for the API.

Both classes resolve the same signed session token: browsers carry it in the
session cookie, SDK and server-to-server callers in the Authorization header.
The resolved AuthSession is attached as ``request.auth_session``; the value
ninja exposes as ``request.auth`` is the session's user.
"""

from django.conf import settings
from django.http import HttpRequest
from ninja.security import APIKeyCookie, HttpBearer

from apps.accounts.models import User
from apps.accounts.services import resolve_session


def _authenticate_token(request: HttpRequest, token: str | None) -> User | None:
    session = resolve_session(token or "")
    if session is None:
        return None
    request.auth_session = session  # type: ignore[attr-defined]
    return session.user


class SessionCookieAuth(APIKeyCookie):
    """Session token from the session cookie."""

    param_name = settings.AUTH_SESSION_COOKIE_NAME

    def __init__(self) -> None:
        # Session cookies are SameSite; the JSON API takes no form posts
        super().__init__(csrf=False)

    def authenticate(self, request: HttpRequest, key: str | None) -> User | None:
        return _authenticate_token(request, key)


class BearerAuth(HttpBearer):
    """Session token from the Authorization header."""

    def authenticate(self, request: HttpRequest, token: str) -> User | None:
        return _authenticate_token(request, token)


session_auth = [SessionCookieAuth(), BearerAuth()]


def get_optional_user(request: HttpRequest) -> User | None:
    """
    Resolve the caller's session if one is present, without requiring it.

    Used by public endpoints whose behavior differs for signed-in callers.
    """
    token = request.COOKIES.get(settings.AUTH_SESSION_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[len("Bearer ") :].strip()
    return _authenticate_token(request, token)
