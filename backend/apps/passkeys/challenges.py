"""
One-time challenge storage.

A challenge binds an options response to the verification request that
follows it. Callers only ever see the opaque challenge id; the raw value is
read back exactly once, by ``consume``, which removes the record before
anything about it is inspected. Whether the record was expired or issued for
the other ceremony is decided after deletion, so a failed attempt still burns
the challenge.

Two backends share the same contract:

- DatabaseChallengeStore: rows in ``passkeys_challenge``. The number of rows
  removed by ``DELETE ... WHERE id = %s`` decides which concurrent consumer
  wins; the loser sees ChallengeNotFoundError.
- CacheChallengeStore: Django cache entries. ``cache.delete()`` returns whether
  the key existed, which serves the same purpose on backends that report it
  atomically (Redis, database cache).
"""

import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError
from django.utils import timezone
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url

from apps.core.logging import get_logger
from apps.passkeys.exceptions import (
    ChallengeError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    RepositoryUnavailableError,
)
from apps.passkeys.models import Challenge, ChallengeKind

logger = get_logger(__name__)

CHALLENGE_ID_PREFIXES = {
    ChallengeKind.REGISTRATION: "reg",
    ChallengeKind.AUTHENTICATION: "auth",
}
CACHE_KEY_PREFIX = "passkey:challenge:"
MIN_CHALLENGE_BYTES = 16

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class ConsumedChallenge:
    """A challenge that has been removed from the store and may be verified against."""

    challenge_id: str
    kind: ChallengeKind
    value: bytes
    context: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


class ChallengeStore(Protocol):
    def issue(
        self, kind: ChallengeKind, value: bytes, context: dict[str, Any] | None = None
    ) -> str: ...

    def consume(
        self, challenge_id: str, *, kind: ChallengeKind | None = None
    ) -> ConsumedChallenge: ...

    def sweep(self) -> int: ...


def new_challenge_id(kind: ChallengeKind) -> str:
    return f"{CHALLENGE_ID_PREFIXES[ChallengeKind(kind)]}_{secrets.token_urlsafe(32)}"


def _check_value(value: bytes) -> None:
    if len(value) < MIN_CHALLENGE_BYTES:
        raise ValueError(f"Challenge must carry at least {MIN_CHALLENGE_BYTES} random bytes")


def _validate_consumed(
    consumed: ConsumedChallenge,
    *,
    now: datetime,
    kind: ChallengeKind | None,
) -> ConsumedChallenge:
    """Post-deletion checks shared by both backends."""
    if consumed.expires_at is not None and now >= consumed.expires_at:
        logger.info(
            "challenge_rejected",
            challenge_id=consumed.challenge_id,
            reason="expired",
            expired_at=consumed.expires_at.isoformat(),
        )
        raise ChallengeExpiredError()
    if kind is not None and consumed.kind != kind:
        logger.warning(
            "challenge_rejected",
            challenge_id=consumed.challenge_id,
            reason="kind_mismatch",
            expected=str(kind),
            actual=str(consumed.kind),
        )
        raise ChallengeError("kind_mismatch")
    return consumed


class DatabaseChallengeStore:
    """Challenge store backed by the Challenge model."""

    def __init__(self, ttl_seconds: int, clock: Clock = timezone.now) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(
        self, kind: ChallengeKind, value: bytes, context: dict[str, Any] | None = None
    ) -> str:
        _check_value(value)
        now = self._clock()
        challenge_id = new_challenge_id(kind)
        try:
            Challenge.objects.create(
                id=challenge_id,
                kind=kind,
                value=bytes_to_base64url(value),
                context=context or {},
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        except DatabaseError as e:
            logger.error("challenge_store_unavailable", operation="issue", error=str(e))
            raise RepositoryUnavailableError() from e

        logger.debug("challenge_issued", challenge_id=challenge_id, kind=str(kind))
        return challenge_id

    def consume(
        self, challenge_id: str, *, kind: ChallengeKind | None = None
    ) -> ConsumedChallenge:
        try:
            record = Challenge.objects.filter(pk=challenge_id).first()
            if record is None:
                logger.info("challenge_rejected", challenge_id=challenge_id, reason="not_found")
                raise ChallengeNotFoundError()

            deleted, _ = Challenge.objects.filter(pk=challenge_id).delete()
        except DatabaseError as e:
            logger.error("challenge_store_unavailable", operation="consume", error=str(e))
            raise RepositoryUnavailableError() from e

        if deleted == 0:
            # Another request consumed it between our read and delete
            logger.warning("challenge_rejected", challenge_id=challenge_id, reason="lost_race")
            raise ChallengeNotFoundError()

        consumed = ConsumedChallenge(
            challenge_id=record.id,
            kind=ChallengeKind(record.kind),
            value=base64url_to_bytes(record.value),
            context=dict(record.context or {}),
            expires_at=record.expires_at,
        )
        return _validate_consumed(consumed, now=self._clock(), kind=kind)

    def sweep(self) -> int:
        deleted, _ = Challenge.objects.filter(expires_at__lte=self._clock()).delete()
        if deleted:
            logger.info("challenges_swept", count=deleted)
        return deleted


class CacheChallengeStore:
    """
    Challenge store backed by the Django cache.

    Entries outlive their TTL by a grace period so a late verification is
    reported as expired rather than unknown; the cache evicts them afterwards,
    so ``sweep`` has nothing to do.
    """

    GRACE_SECONDS = 60

    def __init__(self, ttl_seconds: int, clock: Clock = timezone.now) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _key(self, challenge_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}{challenge_id}"

    def issue(
        self, kind: ChallengeKind, value: bytes, context: dict[str, Any] | None = None
    ) -> str:
        _check_value(value)
        now = self._clock()
        challenge_id = new_challenge_id(kind)
        cache.set(
            self._key(challenge_id),
            {
                "kind": str(kind),
                "value": bytes_to_base64url(value),
                "context": context or {},
                "expires_at": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
            },
            timeout=self.ttl_seconds + self.GRACE_SECONDS,
        )
        logger.debug("challenge_issued", challenge_id=challenge_id, kind=str(kind))
        return challenge_id

    def consume(
        self, challenge_id: str, *, kind: ChallengeKind | None = None
    ) -> ConsumedChallenge:
        key = self._key(challenge_id)
        data = cache.get(key)
        if data is None:
            logger.info("challenge_rejected", challenge_id=challenge_id, reason="not_found")
            raise ChallengeNotFoundError()

        if not cache.delete(key):
            logger.warning("challenge_rejected", challenge_id=challenge_id, reason="lost_race")
            raise ChallengeNotFoundError()

        consumed = ConsumedChallenge(
            challenge_id=challenge_id,
            kind=ChallengeKind(data["kind"]),
            value=base64url_to_bytes(data["value"]),
            context=dict(data["context"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
        return _validate_consumed(consumed, now=self._clock(), kind=kind)

    def sweep(self) -> int:
        return 0


def get_challenge_store() -> ChallengeStore:
    """Get the challenge store selected by PASSKEY_CHALLENGE_STORE."""
    ttl_seconds: int = settings.PASSKEY_CHALLENGE_TTL_SECONDS
    if settings.PASSKEY_CHALLENGE_STORE == "cache":
        return CacheChallengeStore(ttl_seconds)
    return DatabaseChallengeStore(ttl_seconds)
