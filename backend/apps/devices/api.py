"""
Device API endpoints.

Lists and forgets the devices a user has completed passkey ceremonies on.
Forgetting a device does not revoke its passkey.
"""

from django.http import HttpRequest
from ninja import Router
from ninja.errors import HttpError

from apps.core.schemas import ErrorResponse
from apps.core.security import session_auth
from apps.devices.models import DeviceAssociation
from apps.devices.schemas import DeviceListResponse, DeviceResponse
from apps.devices.services import list_user_devices, remove_device

router = Router(tags=["devices"])


def _device_response(association: DeviceAssociation) -> DeviceResponse:
    details = association.details or {}
    return DeviceResponse(
        id=association.id,
        name=details.get("name") or "Unknown device",
        browser_family=details.get("browser_family", "Unknown"),
        os_family=details.get("os_family", "Unknown"),
        device_class=details.get("device_class", "unknown"),
        passkey_id=association.passkey_id,
        passkey_name=association.passkey.name,
        last_used_at=association.last_used_at,
        created_at=association.created_at,
    )


@router.get(
    "/",
    response={200: DeviceListResponse, 401: ErrorResponse},
    auth=session_auth,
    by_alias=True,
    operation_id="listDevices",
    summary="List known devices",
)
def list_devices(request: HttpRequest) -> DeviceListResponse:
    """List all known devices for the authenticated user."""
    devices = list_user_devices(request.auth)  # type: ignore[arg-type]

    return DeviceListResponse(
        devices=[_device_response(d) for d in devices],
        count=len(devices),
    )


@router.delete(
    "/{device_id}",
    response={204: None, 401: ErrorResponse, 404: ErrorResponse},
    auth=session_auth,
    operation_id="deleteDevice",
    summary="Forget a device",
)
def delete_device(request: HttpRequest, device_id: int):
    """Forget a device owned by the authenticated user."""
    try:
        remove_device(device_id=device_id, user=request.auth)  # type: ignore[arg-type]
    except DeviceAssociation.DoesNotExist:
        raise HttpError(404, "Device not found") from None

    return 204, None
