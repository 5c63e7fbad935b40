import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Challenge",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[("registration", "Registration"), ("authentication", "Authentication")],
                        max_length=20,
                    ),
                ),
                ("value", models.CharField(help_text="Base64URL-encoded challenge bytes", max_length=128)),
                ("context", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("expires_at", models.DateTimeField(db_index=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Passkey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "credential_id",
                    models.BinaryField(help_text="Raw credential ID assigned by the authenticator", unique=True),
                ),
                ("public_key", models.BinaryField(help_text="COSE public key for signature verification")),
                (
                    "sign_count",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Signature counter for clone detection (0 if unsupported)"
                    ),
                ),
                (
                    "name",
                    models.CharField(help_text="User-friendly name (e.g., 'iPhone 15', 'YubiKey')", max_length=100),
                ),
                (
                    "aaguid",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Authenticator Attestation GUID (identifies authenticator model)",
                        max_length=36,
                    ),
                ),
                (
                    "device_type",
                    models.CharField(
                        choices=[("single_device", "Single device"), ("multi_device", "Multi device")],
                        default="single_device",
                        max_length=20,
                    ),
                ),
                (
                    "backed_up",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the credential is currently backed up (e.g., iCloud Keychain)",
                    ),
                ),
                (
                    "transports",
                    models.JSONField(
                        blank=True, default=list, help_text="Supported transports: usb, nfc, ble, internal, hybrid"
                    ),
                ),
                (
                    "last_used_at",
                    models.DateTimeField(
                        blank=True, help_text="Last time this passkey was used for authentication", null=True
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User who owns this passkey",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="passkeys",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Passkey",
                "verbose_name_plural": "Passkeys",
                "ordering": ["-created_at"],
            },
        ),
    ]
