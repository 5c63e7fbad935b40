"""Admin configuration for passkeys app."""

from django.contrib import admin

from apps.passkeys.models import Challenge, Passkey


@admin.register(Passkey)
class PasskeyAdmin(admin.ModelAdmin):
    """Admin for Passkey model. Key material is never editable."""

    list_display = ["name", "user", "device_type", "backed_up", "sign_count", "last_used_at"]
    list_filter = ["device_type", "backed_up"]
    search_fields = ["name", "user__email", "aaguid"]
    readonly_fields = [
        "credential_id_b64",
        "sign_count",
        "aaguid",
        "transports",
        "last_used_at",
        "created_at",
        "updated_at",
    ]
    exclude = ["credential_id", "public_key"]
    ordering = ["-created_at"]


@admin.register(Challenge)
class ChallengeAdmin(admin.ModelAdmin):
    list_display = ["id", "kind", "created_at", "expires_at", "expired"]
    list_filter = ["kind"]
    readonly_fields = ["id", "kind", "value", "context", "created_at", "expires_at"]
    ordering = ["-created_at"]

    @admin.display(boolean=True, description="Expired")
    def expired(self, obj: Challenge) -> bool:
        return obj.is_expired

    def has_add_permission(self, request) -> bool:
        return False
