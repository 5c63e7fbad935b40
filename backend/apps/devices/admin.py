"""Admin configuration for devices app."""

from django.contrib import admin

from apps.devices.models import DeviceAssociation


@admin.register(DeviceAssociation)
class DeviceAssociationAdmin(admin.ModelAdmin):
    """Admin for DeviceAssociation model."""

    list_display = ["id", "device_name", "user", "passkey", "token_status", "last_used_at"]
    search_fields = ["user__email", "fingerprint"]
    readonly_fields = ["fingerprint", "device_token_hash", "created_at", "updated_at"]
    ordering = ["-last_used_at"]

    @admin.display(description="Device")
    def device_name(self, obj: DeviceAssociation) -> str:
        return (obj.details or {}).get("name", "")

    @admin.display(description="Device token")
    def token_status(self, obj: DeviceAssociation) -> str:
        """Show device token status."""
        if not obj.device_token_hash:
            return "None"
        if obj.has_valid_device_token:
            return "Valid"
        return "Expired"
