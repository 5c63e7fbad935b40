"""
Auth API endpoints - session inspection and logout.

Sessions are created by the passkey authentication endpoints; these endpoints
only read and revoke them.
"""

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from ninja import Router

from apps.accounts.models import User
from apps.accounts.schemas import MessageResponse, SessionResponse, UserInfo
from apps.accounts.services import revoke_session
from apps.core.schemas import ErrorResponse
from apps.core.security import get_optional_user, session_auth

router = Router(tags=["auth"])


def user_info(user: User) -> UserInfo:
    return UserInfo(id=user.id, email=user.email, display_name=user.display_name)


@router.get(
    "/session",
    response=SessionResponse,
    by_alias=True,
    operation_id="getSession",
    summary="Get current session",
)
def get_session(request: HttpRequest) -> SessionResponse:
    """Report whether the caller holds a valid session, and for whom."""
    user = get_optional_user(request)
    if user is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=user_info(user))


@router.post(
    "/logout",
    response={200: MessageResponse, 401: ErrorResponse},
    auth=session_auth,
    by_alias=True,
    operation_id="logout",
    summary="Revoke current session",
)
def logout(request: HttpRequest, response: HttpResponse) -> MessageResponse:
    """Revoke the current session and clear the session cookie."""
    revoke_session(request.auth_session)  # type: ignore[attr-defined]
    response.delete_cookie(settings.AUTH_SESSION_COOKIE_NAME)
    return MessageResponse(message="Logged out successfully")
