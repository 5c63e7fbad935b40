"""
Auth API schemas - Pydantic models for request/response.
"""

from apps.core.schemas import CamelSchema


class UserInfo(CamelSchema):
    """Public view of a user."""

    id: int
    email: str
    display_name: str


class SessionResponse(CamelSchema):
    """Current session state."""

    authenticated: bool
    user: UserInfo | None = None


class MessageResponse(CamelSchema):
    """Generic message response."""

    message: str
