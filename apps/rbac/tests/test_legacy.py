"""
Tests for the legacy permission adapters.
"""
import pytest
from apps.core.exceptions import ForbiddenError, ValidationError
from apps.rbac.catalog import PermissionAction
from apps.rbac.legacy import (
    LegacyPermission, PERMISSION_MIGRATION_MAP, authorize_legacy, can_assign_role,
    migrate_permission, role_permissions,
)
from apps.rbac.models import UserRole


class TestMigratePermission:

    def test_mapping_is_total(self):
        assert set(PERMISSION_MIGRATION_MAP) == set(LegacyPermission)

    def test_mapping_targets_catalog_actions(self):
        assert all(isinstance(a, PermissionAction) for a in PERMISSION_MIGRATION_MAP.values())

    def test_migrate_by_member_and_value(self):
        assert migrate_permission(LegacyPermission.VIEW_ORDERS) == PermissionAction.LEAD_READ
        assert migrate_permission('ASSIGN_TASKS') == PermissionAction.TASK_ASSIGN
        assert migrate_permission('CREATE_PAYMENTS') == PermissionAction.PAYMENT_RECORD

    def test_unknown_legacy_permission(self):
        with pytest.raises(ValidationError):
            migrate_permission('LAUNCH_ROCKETS')


class TestRoleHelpers:

    def test_role_permissions(self):
        technician = role_permissions(UserRole.TECHNICIAN)
        assert PermissionAction.ATTENDANCE_CLOCK in technician
        assert PermissionAction.USER_CREATE not in technician

    def test_role_permissions_unknown_role(self):
        with pytest.raises(ValidationError):
            role_permissions('ASTRONAUT')

    def test_can_assign_role(self):
        assert can_assign_role(UserRole.ADMIN, UserRole.ADMIN)
        assert not can_assign_role(UserRole.HR, UserRole.ADMIN)
        # HR's default set lacks role.manage
        assert not can_assign_role(UserRole.HR, UserRole.TECHNICIAN)
        assert not can_assign_role(UserRole.TECHNICIAN, UserRole.TECHNICIAN)


@pytest.mark.django_db
class TestAuthorizeLegacy:

    def test_legacy_check_uses_authorizer(self, company, system_roles, make_user, act_as):
        act_as(make_user(company, role=UserRole.SUPERVISOR))

        ctx = authorize_legacy(LegacyPermission.ASSIGN_TASKS)
        assert PermissionAction.TASK_ASSIGN in ctx.permissions

        with pytest.raises(ForbiddenError):
            authorize_legacy('MANAGE_USERS')
