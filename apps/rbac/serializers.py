"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Permission catalog
- Roles and role assignments
- Audit logs (camelCase wire shape relied on by compliance tooling)
"""
from rest_framework import serializers

from apps.core.exceptions import ValidationError as OpsdeskValidationError
from apps.rbac.catalog import parse_actions
from apps.rbac.models import AuditLog, Role, UserRoleAssignment


class PermissionActionsField(serializers.ListField):
    """List of catalog actions; unknown values are rejected."""

    child = serializers.CharField()

    def to_internal_value(self, data):
        values = super().to_internal_value(data)
        try:
            return parse_actions(values)
        except OpsdeskValidationError as e:
            raise serializers.ValidationError(e.message)


class PermissionDefinitionSerializer(serializers.Serializer):
    code = serializers.CharField(source='action.value')
    label = serializers.CharField()
    category = serializers.CharField()
    resource = serializers.CharField()
    verb = serializers.CharField()


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role with its permission codes."""

    company_id = serializers.IntegerField(read_only=True, allow_null=True)
    permissions = serializers.SerializerMethodField()
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'display_name', 'description', 'is_system',
            'company_id', 'permissions', 'user_count', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_permissions(self, obj):
        return sorted(rp.permission.code for rp in obj.role_permissions.all())

    def get_user_count(self, obj):
        return obj.user_assignments.count()


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    display_name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    permissions = PermissionActionsField(required=False, default=list)


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)
    display_name = serializers.CharField(max_length=255, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    permissions = PermissionActionsField(required=False)


class RoleSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Role
        fields = ['id', 'name', 'display_name', 'is_system']
        read_only_fields = fields


class UserRoleAssignmentSerializer(serializers.ModelSerializer):
    role = RoleSummarySerializer(read_only=True)

    class Meta:
        model = UserRoleAssignment
        fields = ['id', 'role', 'is_default', 'is_active', 'expires_at', 'assigned_by', 'assigned_at']
        read_only_fields = fields


class AssignRoleSerializer(serializers.Serializer):
    role_id = serializers.IntegerField(min_value=1)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)


class AuditLogSerializer(serializers.ModelSerializer):
    """Persisted audit entry shape."""

    companyId = serializers.IntegerField(source='company_id')
    userId = serializers.IntegerField(source='user_id', allow_null=True)
    userName = serializers.CharField(source='user_name', allow_null=True)
    userRole = serializers.CharField(source='user_role', allow_null=True)
    resourceId = serializers.IntegerField(source='resource_id', allow_null=True)
    ipAddress = serializers.CharField(source='ip_address', allow_null=True)
    userAgent = serializers.CharField(source='user_agent', allow_null=True)
    createdAt = serializers.DateTimeField(source='created_at')

    class Meta:
        model = AuditLog
        fields = [
            'id', 'companyId', 'userId', 'userName', 'userRole', 'action',
            'resource', 'resourceId', 'details', 'ipAddress', 'userAgent', 'createdAt',
        ]
        read_only_fields = fields


class AuditLogQuerySerializer(serializers.Serializer):
    user_id = serializers.IntegerField(required=False, min_value=1)
    action = serializers.CharField(required=False, max_length=100)
    resource = serializers.CharField(required=False, max_length=50)
    resource_id = serializers.IntegerField(required=False, min_value=1)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, default=50, min_value=1, max_value=200)
    offset = serializers.IntegerField(required=False, default=0, min_value=0)
