"""Admin configuration for accounts app."""

from django.contrib import admin

from apps.accounts.models import AuthSession, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """Admin for User model."""

    list_display = ["email", "display_name", "is_active", "is_staff", "created_at"]
    list_filter = ["is_active", "is_staff"]
    search_fields = ["email", "display_name"]
    readonly_fields = ["handle", "created_at", "updated_at", "last_login"]
    exclude = ["password"]
    ordering = ["-created_at"]


@admin.register(AuthSession)
class AuthSessionAdmin(admin.ModelAdmin):
    """Admin for AuthSession model."""

    list_display = ["id", "user", "created_at", "expires_at", "is_active"]
    search_fields = ["user__email"]
    readonly_fields = ["id", "user", "created_at", "updated_at", "user_agent", "ip_address"]
    ordering = ["-created_at"]

    @admin.display(boolean=True, description="Active")
    def is_active(self, obj: AuthSession) -> bool:
        return obj.is_active
