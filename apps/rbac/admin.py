"""
Django admin configuration for RBAC app.

Role and assignment edits made here bypass the role store, so they do not
invalidate cached permission sets; changes become visible within the cache
TTL. Use the API or ``seed_roles`` for changes that must apply immediately.
"""
from django.contrib import admin
from .models import (
    User,
    Permission,
    Role,
    RolePermission,
    UserRoleAssignment,
    AuditLog,
)


class UserRoleAssignmentInline(admin.TabularInline):
    model = UserRoleAssignment
    fk_name = 'user'
    extra = 0
    fields = ['role', 'is_default', 'is_active', 'expires_at', 'assigned_by', 'assigned_at']
    readonly_fields = ['assigned_at']
    raw_id_fields = ['role', 'assigned_by']


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin for the email-based User model.

    Passwords are set with ``manage.py changepassword``; the hash is read-only here.
    """
    list_display = ['email', 'name', 'company', 'role', 'is_active', 'is_superuser', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'role', 'created_at']
    search_fields = ['email', 'name', 'company__name']
    ordering = ['-created_at']
    raw_id_fields = ['company']
    inlines = [UserRoleAssignmentInline]

    fieldsets = (
        (None, {
            'fields': ('email', 'name', 'password_hash')
        }),
        ('Company', {
            'fields': ('company', 'role')
        }),
        ('Status', {
            'fields': ('is_active', 'is_superuser')
        }),
        ('Activity', {
            'fields': ('last_login_at', 'created_at', 'updated_at')
        }),
    )
    readonly_fields = ['password_hash', 'created_at', 'updated_at', 'last_login_at']


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    """Permissions mirror the catalog; they are synced, not edited."""
    list_display = ['code', 'label', 'category', 'resource', 'verb']
    list_filter = ['category', 'resource']
    search_fields = ['code', 'label']
    readonly_fields = ['code', 'label', 'category', 'resource', 'verb', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0
    raw_id_fields = ['permission']


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ['name', 'display_name', 'company', 'is_system', 'permission_count', 'created_at']
    list_filter = ['is_system', 'created_at']
    search_fields = ['name', 'display_name', 'company__name']
    raw_id_fields = ['company']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [RolePermissionInline]

    def permission_count(self, obj):
        return obj.role_permissions.count()
    permission_count.short_description = 'Permissions'

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_system:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""
    list_display = ['created_at', 'company', 'user_name', 'user_role', 'action', 'resource', 'resource_id']
    list_filter = ['action', 'resource', 'created_at']
    search_fields = ['user_name', 'action', 'request_id']
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
