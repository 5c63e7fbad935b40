import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("passkeys", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DeviceAssociation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "fingerprint",
                    models.CharField(
                        db_index=True, help_text="Browser-qualified hash of stable device signals", max_length=128
                    ),
                ),
                (
                    "details",
                    models.JSONField(
                        blank=True, default=dict, help_text="Descriptive only: browser family, OS, device class"
                    ),
                ),
                ("last_used_at", models.DateTimeField(blank=True, null=True)),
                (
                    "device_token_hash",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="SHA-256 hash of the current rotating device token",
                        max_length=64,
                    ),
                ),
                ("device_token_expires_at", models.DateTimeField(blank=True, null=True)),
                (
                    "passkey",
                    models.ForeignKey(
                        help_text="Passkey used on this device",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="device_associations",
                        to="passkeys.passkey",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User who owns this device",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="device_associations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-last_used_at", "-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "passkey"), name="unique_device_association_per_passkey"
                    )
                ],
            },
        ),
    ]
