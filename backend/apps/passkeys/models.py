"""
Passkey (WebAuthn) models.

Stores WebAuthn credentials linked to users, and the short-lived challenges
that bind an options request to its verification request.
"""

from django.db import models
from django.utils import timezone
from webauthn.helpers import bytes_to_base64url

from apps.core.models import TimestampedModel


class DeviceType(models.TextChoices):
    """Backup eligibility as reported by the authenticator at registration."""

    SINGLE_DEVICE = "single_device", "Single device"
    MULTI_DEVICE = "multi_device", "Multi device"


class Passkey(TimestampedModel):
    """
    WebAuthn credential stored for a user.

    Each passkey represents a registered authenticator. Credentials are bound
    to the relying party (domain) and cannot be used on other sites.
    """

    user = models.ForeignKey(
        "accounts.User",
        on_delete=models.CASCADE,
        related_name="passkeys",
        help_text="User who owns this passkey",
    )

    # WebAuthn credential fields
    credential_id = models.BinaryField(
        unique=True,
        help_text="Raw credential ID assigned by the authenticator",
    )
    public_key = models.BinaryField(
        help_text="COSE public key for signature verification",
    )
    sign_count = models.PositiveBigIntegerField(
        default=0,
        help_text="Signature counter for clone detection (0 if unsupported)",
    )

    # Metadata
    name = models.CharField(
        max_length=100,
        help_text="User-friendly name (e.g., 'iPhone 15', 'YubiKey')",
    )
    aaguid = models.CharField(
        max_length=36,
        blank=True,
        default="",
        help_text="Authenticator Attestation GUID (identifies authenticator model)",
    )

    # Credential flags
    device_type = models.CharField(
        max_length=20,
        choices=DeviceType.choices,
        default=DeviceType.SINGLE_DEVICE,
    )
    backed_up = models.BooleanField(
        default=False,
        help_text="Whether the credential is currently backed up (e.g., iCloud Keychain)",
    )

    # Transports (for UX hints during authentication)
    transports = models.JSONField(
        default=list,
        blank=True,
        help_text="Supported transports: usb, nfc, ble, internal, hybrid",
    )

    # Usage tracking
    last_used_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time this passkey was used for authentication",
    )

    class Meta:
        verbose_name = "Passkey"
        verbose_name_plural = "Passkeys"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.name} ({self.user.email})"

    @property
    def credential_id_b64(self) -> str:
        """Return credential ID as base64url string."""
        return bytes_to_base64url(bytes(self.credential_id))


class ChallengeKind(models.TextChoices):
    REGISTRATION = "registration", "Registration"
    AUTHENTICATION = "authentication", "Authentication"


class Challenge(models.Model):
    """
    One-time WebAuthn challenge.

    Deleted on the first verification attempt that references it, whatever
    the outcome; expired rows left behind by abandoned ceremonies are removed
    by ``sweep_challenges``.
    """

    id = models.CharField(max_length=64, primary_key=True)
    kind = models.CharField(max_length=20, choices=ChallengeKind.choices)
    value = models.CharField(
        max_length=128,
        help_text="Base64URL-encoded challenge bytes",
    )
    context = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.kind} challenge {self.id}"

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at
