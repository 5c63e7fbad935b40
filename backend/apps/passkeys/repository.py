"""
Credential repository.

The ceremony code reads and writes users, passkeys and device associations
only through the CredentialRepository protocol, which speaks plain frozen
dataclasses and returns None for "not found". DjangoCredentialRepository is
the ORM-backed implementation; any database failure surfaces as
RepositoryUnavailableError so callers can restart the ceremony.
"""

import functools
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TypeVar

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from apps.accounts.models import User
from apps.core.logging import get_logger
from apps.core.utils import normalize_email
from apps.devices.models import DeviceAssociation
from apps.passkeys.exceptions import (
    CloneSuspectedError,
    CredentialConflictError,
    CredentialNotFoundError,
    RepositoryUnavailableError,
)
from apps.passkeys.models import Passkey

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

UPDATABLE_CREDENTIAL_FIELDS = frozenset(
    {"sign_count", "last_used_at", "name", "backed_up", "device_type", "transports"}
)


@dataclass(frozen=True)
class UserRecord:
    """
    A user as the ceremony code sees it.

    ``id`` is None for a user who does not exist yet: registration options
    are built for them before their first credential is verified.
    """

    id: int | None
    email: str
    display_name: str
    handle: bytes


@dataclass(frozen=True)
class StoredCredential:
    id: int
    user_id: int
    credential_id: bytes
    public_key: bytes
    sign_count: int
    user_handle: bytes
    device_type: str = "single_device"
    backed_up: bool = False
    transports: tuple[str, ...] = ()
    name: str = ""
    aaguid: str = ""
    created_at: datetime | None = None
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class NewCredential:
    user_id: int
    credential_id: bytes
    public_key: bytes
    sign_count: int
    name: str
    device_type: str = "single_device"
    backed_up: bool = False
    transports: tuple[str, ...] = ()
    aaguid: str = ""


@dataclass(frozen=True)
class DeviceAssociationRecord:
    id: int
    user_id: int
    passkey_id: int
    credential_id: bytes
    fingerprint: str
    details: dict[str, Any] = field(default_factory=dict)
    last_used_at: datetime | None = None
    created_at: datetime | None = None


class CredentialRepository(Protocol):
    def get_user_by_email(self, email: str) -> UserRecord | None: ...

    def get_user_by_id(self, user_id: int) -> UserRecord | None: ...

    def create_user(
        self, email: str, display_name: str = "", *, handle: bytes | None = None
    ) -> UserRecord: ...

    def get_credentials_by_user_id(self, user_id: int) -> list[StoredCredential]: ...

    def get_credentials_by_email(self, email: str) -> list[StoredCredential]: ...

    def get_credential_by_credential_id(self, credential_id: bytes) -> StoredCredential | None: ...

    def store_credential(self, record: NewCredential) -> StoredCredential: ...

    def update_credential(
        self,
        credential_id: bytes,
        *,
        expected_sign_count: int | None = None,
        **changes: Any,
    ) -> StoredCredential: ...

    def delete_credential(self, passkey_id: int, user_id: int) -> bool: ...

    def get_device_associations(self, user_id: int) -> list[DeviceAssociationRecord]: ...

    def upsert_device_association(
        self,
        user_id: int,
        credential_id: bytes,
        fingerprint: str,
        details: dict[str, Any],
    ) -> DeviceAssociationRecord: ...


def _translate_database_errors(func: F) -> F:
    """Surface ORM failures as RepositoryUnavailableError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DatabaseError as e:
            logger.error("credential_repository_unavailable", operation=func.__name__, error=str(e))
            raise RepositoryUnavailableError() from e

    return wrapper  # type: ignore[return-value]


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        handle=user.user_handle,
    )


def _credential_record(passkey: Passkey) -> StoredCredential:
    return StoredCredential(
        id=passkey.id,
        user_id=passkey.user_id,
        credential_id=bytes(passkey.credential_id),
        public_key=bytes(passkey.public_key),
        sign_count=passkey.sign_count,
        user_handle=passkey.user.user_handle,
        device_type=passkey.device_type,
        backed_up=passkey.backed_up,
        transports=tuple(passkey.transports or ()),
        name=passkey.name,
        aaguid=passkey.aaguid,
        created_at=passkey.created_at,
        last_used_at=passkey.last_used_at,
    )


def _association_record(association: DeviceAssociation) -> DeviceAssociationRecord:
    return DeviceAssociationRecord(
        id=association.id,
        user_id=association.user_id,
        passkey_id=association.passkey_id,
        credential_id=bytes(association.passkey.credential_id),
        fingerprint=association.fingerprint,
        details=dict(association.details or {}),
        last_used_at=association.last_used_at,
        created_at=association.created_at,
    )


class DjangoCredentialRepository:
    """CredentialRepository over the accounts, passkeys and devices models."""

    @_translate_database_errors
    def get_user_by_email(self, email: str) -> UserRecord | None:
        user = User.objects.get_by_email(email)
        return _user_record(user) if user is not None else None

    @_translate_database_errors
    def get_user_by_id(self, user_id: int) -> UserRecord | None:
        user = User.objects.filter(pk=user_id).first()
        return _user_record(user) if user is not None else None

    @_translate_database_errors
    def create_user(
        self, email: str, display_name: str = "", *, handle: bytes | None = None
    ) -> UserRecord:
        email = normalize_email(email)
        extra: dict[str, Any] = {"display_name": display_name}
        if handle is not None:
            extra["handle"] = uuid.UUID(bytes=handle)
        try:
            with transaction.atomic():
                user = User.objects.create_user(email=email, **extra)
        except IntegrityError:
            # Concurrent insert won the race, fetch the winner
            user = User.objects.get(email=email)
        else:
            logger.info("user_created", user_id=user.id)
        return _user_record(user)

    @_translate_database_errors
    def get_credentials_by_user_id(self, user_id: int) -> list[StoredCredential]:
        passkeys = Passkey.objects.select_related("user").filter(user_id=user_id)
        return [_credential_record(p) for p in passkeys]

    @_translate_database_errors
    def get_credentials_by_email(self, email: str) -> list[StoredCredential]:
        passkeys = Passkey.objects.select_related("user").filter(user__email=normalize_email(email))
        return [_credential_record(p) for p in passkeys]

    @_translate_database_errors
    def get_credential_by_credential_id(self, credential_id: bytes) -> StoredCredential | None:
        passkey = Passkey.objects.select_related("user").filter(credential_id=credential_id).first()
        return _credential_record(passkey) if passkey is not None else None

    @_translate_database_errors
    def store_credential(self, record: NewCredential) -> StoredCredential:
        """
        Insert a verified credential.

        Re-registering a credential the same user already owns updates its
        name instead of duplicating it; a credential owned by anyone else is
        a conflict.
        """
        existing = (
            Passkey.objects.select_related("user")
            .filter(credential_id=record.credential_id)
            .first()
        )
        if existing is not None:
            if existing.user_id != record.user_id:
                raise CredentialConflictError()
            existing.name = record.name
            existing.save(update_fields=["name", "updated_at"])
            return _credential_record(existing)

        try:
            with transaction.atomic():
                passkey = Passkey.objects.create(
                    user_id=record.user_id,
                    credential_id=record.credential_id,
                    public_key=record.public_key,
                    sign_count=record.sign_count,
                    name=record.name,
                    device_type=record.device_type,
                    backed_up=record.backed_up,
                    transports=list(record.transports),
                    aaguid=record.aaguid,
                )
        except IntegrityError:
            raise CredentialConflictError() from None

        passkey = Passkey.objects.select_related("user").get(pk=passkey.pk)
        return _credential_record(passkey)

    @_translate_database_errors
    def update_credential(
        self,
        credential_id: bytes,
        *,
        expected_sign_count: int | None = None,
        **changes: Any,
    ) -> StoredCredential:
        """
        Apply ``changes`` to a credential.

        With ``expected_sign_count`` the write is a compare-and-set on the
        stored counter: if another authentication advanced it first, nothing
        is written and CloneSuspectedError is raised.
        """
        unknown = set(changes) - UPDATABLE_CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"Cannot update credential fields: {sorted(unknown)}")

        queryset = Passkey.objects.filter(credential_id=credential_id)
        if expected_sign_count is not None:
            queryset = queryset.filter(sign_count=expected_sign_count)

        updated = queryset.update(**changes, updated_at=timezone.now())
        if updated == 0:
            if not Passkey.objects.filter(credential_id=credential_id).exists():
                raise CredentialNotFoundError()
            logger.error(
                "passkey_counter_conflict",
                expected_sign_count=expected_sign_count,
                new_sign_count=changes.get("sign_count"),
            )
            raise CloneSuspectedError()

        passkey = Passkey.objects.select_related("user").get(credential_id=credential_id)
        return _credential_record(passkey)

    @_translate_database_errors
    def delete_credential(self, passkey_id: int, user_id: int) -> bool:
        deleted, _ = Passkey.objects.filter(pk=passkey_id, user_id=user_id).delete()
        return deleted > 0

    @_translate_database_errors
    def get_device_associations(self, user_id: int) -> list[DeviceAssociationRecord]:
        associations = DeviceAssociation.objects.select_related("passkey").filter(user_id=user_id)
        return [_association_record(a) for a in associations]

    @_translate_database_errors
    def upsert_device_association(
        self,
        user_id: int,
        credential_id: bytes,
        fingerprint: str,
        details: dict[str, Any],
    ) -> DeviceAssociationRecord:
        """Create or refresh the single association for (user, credential)."""
        passkey = Passkey.objects.filter(credential_id=credential_id, user_id=user_id).first()
        if passkey is None:
            raise CredentialNotFoundError()

        now = timezone.now()
        with transaction.atomic():
            association, _ = DeviceAssociation.objects.update_or_create(
                user_id=user_id,
                passkey=passkey,
                defaults={
                    "fingerprint": fingerprint,
                    "details": details,
                    "last_used_at": now,
                },
            )
        association.passkey = passkey
        return _association_record(association)


def get_credential_repository() -> CredentialRepository:
    """Get the credential repository."""
    return DjangoCredentialRepository()
