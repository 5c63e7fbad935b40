"""
Device recognition services.

Recognition is advisory. Nothing here is consulted when deciding whether a
ceremony succeeded; it only decides which prompts a returning user sees and
what appears in their known-devices list.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from django.conf import settings
from django.utils import timezone

from apps.accounts.models import User
from apps.core.logging import get_logger
from apps.devices.fingerprint import PLACEHOLDER_FINGERPRINT, Fingerprint
from apps.devices.models import DeviceAssociation
from apps.passkeys.repository import (
    CredentialRepository,
    DeviceAssociationRecord,
    get_credential_repository,
)

logger = get_logger(__name__)

DEVICE_TOKEN_BYTES = 32


@dataclass
class IssuedDeviceToken:
    """A new device token; only its hash is stored."""

    token: str
    expires_at: datetime


def _hash_token(token: str) -> str:
    """Create SHA-256 hash of token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def _fingerprint_value(fingerprint: Fingerprint | str) -> str:
    return fingerprint.value if isinstance(fingerprint, Fingerprint) else fingerprint


def is_recognized(
    user_id: int,
    fingerprint: Fingerprint | str,
    repository: CredentialRepository | None = None,
) -> bool:
    """
    Whether this device has been associated with the user before.

    The placeholder fingerprint carries no information and never matches.
    """
    value = _fingerprint_value(fingerprint)
    if not value or value == PLACEHOLDER_FINGERPRINT:
        return False
    repository = repository or get_credential_repository()
    return any(a.fingerprint == value for a in repository.get_device_associations(user_id))


def credentials_for_device(
    user_id: int,
    fingerprint: Fingerprint | str,
    repository: CredentialRepository | None = None,
) -> list[bytes]:
    """Credential ids the user has used on this device, most recent first."""
    value = _fingerprint_value(fingerprint)
    if not value or value == PLACEHOLDER_FINGERPRINT:
        return []
    repository = repository or get_credential_repository()
    return [a.credential_id for a in repository.get_device_associations(user_id) if a.fingerprint == value]


def record_association(
    user_id: int,
    credential_id: bytes,
    fingerprint: Fingerprint | str,
    details: dict[str, Any],
    repository: CredentialRepository | None = None,
) -> DeviceAssociationRecord:
    """
    Create or refresh the association for (user, credential).

    Re-registering or re-using a credential updates the existing row, so
    there is at most one association per credential.
    """
    repository = repository or get_credential_repository()
    record = repository.upsert_device_association(
        user_id=user_id,
        credential_id=credential_id,
        fingerprint=_fingerprint_value(fingerprint),
        details=details,
    )
    logger.info(
        "device_association_recorded",
        user_id=user_id,
        device_id=record.id,
        device_name=details.get("name"),
    )
    return record


def issue_device_token(association_id: int) -> IssuedDeviceToken:
    """
    Issue a new device token for an association, replacing any previous one.

    Called on every successful authentication, so a stolen token stops
    working as soon as the real device signs in again.
    """
    token = secrets.token_urlsafe(DEVICE_TOKEN_BYTES)
    expires_at = timezone.now() + timedelta(days=settings.DEVICE_TOKEN_TTL_DAYS)
    DeviceAssociation.objects.filter(pk=association_id).update(
        device_token_hash=_hash_token(token),
        device_token_expires_at=expires_at,
        updated_at=timezone.now(),
    )
    logger.info("device_token_rotated", device_id=association_id)
    return IssuedDeviceToken(token=token, expires_at=expires_at)


def recognize_device_token(token: str | None) -> DeviceAssociation | None:
    """Resolve a device token cookie to its association, if still valid."""
    if not token:
        return None
    association = (
        DeviceAssociation.objects.select_related("user", "passkey")
        .filter(device_token_hash=_hash_token(token))
        .first()
    )
    if association is None or not association.has_valid_device_token:
        return None
    return association


def list_user_devices(user: User) -> list[DeviceAssociation]:
    """
    List all known devices for a user.

    Args:
        user: User to list devices for

    Returns:
        Associations, most recently used first
    """
    return list(
        DeviceAssociation.objects.select_related("passkey")
        .filter(user=user)
        .order_by("-last_used_at", "-created_at")
    )


def remove_device(device_id: int, user: User) -> None:
    """
    Forget a device. The passkey itself is not revoked.

    Raises:
        DeviceAssociation.DoesNotExist: If device not found or not owned by user
    """
    association = DeviceAssociation.objects.get(id=device_id, user=user)
    association.delete()

    logger.info(
        "device_removed",
        user_id=user.id,
        device_id=device_id,
    )
