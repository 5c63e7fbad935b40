"""
Device models - browsers/devices a user has completed a passkey ceremony on.
"""

from django.db import models
from django.utils import timezone

from apps.core.models import TimestampedModel


class DeviceAssociation(TimestampedModel):
    """
    Link between a user, one of their passkeys, and the device it was used on.

    The fingerprint and rotating device token are recognition hints for UX
    (skipping "set up a passkey on this device" prompts, the known-devices
    list). They never authorize anything; only a verified ceremony does.
    """

    user = models.ForeignKey(
        "accounts.User",
        on_delete=models.CASCADE,
        related_name="device_associations",
        help_text="User who owns this device",
    )
    passkey = models.ForeignKey(
        "passkeys.Passkey",
        on_delete=models.CASCADE,
        related_name="device_associations",
        help_text="Passkey used on this device",
    )
    fingerprint = models.CharField(
        max_length=128,
        db_index=True,
        help_text="Browser-qualified hash of stable device signals",
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Descriptive only: browser family, OS, device class",
    )
    last_used_at = models.DateTimeField(null=True, blank=True)
    device_token_hash = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="SHA-256 hash of the current rotating device token",
    )
    device_token_expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-last_used_at", "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "passkey"],
                name="unique_device_association_per_passkey",
            ),
        ]

    def __str__(self) -> str:
        name = self.details.get("name") if self.details else None
        return f"{name or self.fingerprint[:12]} - {self.user.email}"

    @property
    def has_valid_device_token(self) -> bool:
        return bool(
            self.device_token_hash
            and self.device_token_expires_at
            and self.device_token_expires_at > timezone.now()
        )

    def clear_device_token(self) -> None:
        self.device_token_hash = ""
        self.device_token_expires_at = None
        self.save(update_fields=["device_token_hash", "device_token_expires_at", "updated_at"])
