"""
Pydantic schemas for device API endpoints.
"""

from datetime import datetime

from pydantic import Field

from apps.core.schemas import CamelSchema


class DeviceResponse(CamelSchema):
    """Single known device in list response."""

    id: int
    name: str = Field(description="Display name, e.g. 'Safari on iOS'")
    browser_family: str
    os_family: str
    device_class: str = Field(description="desktop, mobile, tablet or unknown")
    passkey_id: int
    passkey_name: str
    last_used_at: datetime | None = None
    created_at: datetime


class DeviceListResponse(CamelSchema):
    """Response with list of user's known devices."""

    devices: list[DeviceResponse]
    count: int
