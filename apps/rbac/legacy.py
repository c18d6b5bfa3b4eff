"""
Adapters for the pre-catalog permission model.

Older call sites check coarse permissions (``VIEW_ORDERS``) or a user's
primary role instead of catalog actions. These helpers translate once at
the boundary and then defer to the authorizer, so both call shapes reach
the same decision.
"""
from enum import Enum
from typing import Dict, FrozenSet

from apps.core.exceptions import ValidationError
from apps.rbac import access
from apps.rbac.catalog import PermissionAction, SYSTEM_ROLE_BY_USER_ROLE, SYSTEM_ROLE_PERMISSIONS
from apps.rbac.models import UserRole
from apps.rbac.policies import can_assign


class LegacyPermission(str, Enum):
    VIEW_ORDERS = 'VIEW_ORDERS'
    CREATE_ORDERS = 'CREATE_ORDERS'
    UPDATE_ORDERS = 'UPDATE_ORDERS'
    DELETE_ORDERS = 'DELETE_ORDERS'
    VIEW_PAYMENTS = 'VIEW_PAYMENTS'
    CREATE_PAYMENTS = 'CREATE_PAYMENTS'
    UPDATE_PAYMENTS = 'UPDATE_PAYMENTS'
    DELETE_PAYMENTS = 'DELETE_PAYMENTS'
    VIEW_MANUFACTURING = 'VIEW_MANUFACTURING'
    UPDATE_MANUFACTURING_STAGE = 'UPDATE_MANUFACTURING_STAGE'
    MANAGE_MANUFACTURING = 'MANAGE_MANUFACTURING'
    VIEW_QUOTATIONS = 'VIEW_QUOTATIONS'
    CREATE_QUOTATIONS = 'CREATE_QUOTATIONS'
    UPDATE_QUOTATIONS = 'UPDATE_QUOTATIONS'
    SEND_QUOTATIONS = 'SEND_QUOTATIONS'
    VIEW_POS = 'VIEW_POS'
    CREATE_POS = 'CREATE_POS'
    UPDATE_POS = 'UPDATE_POS'
    VIEW_DELIVERY_NOTES = 'VIEW_DELIVERY_NOTES'
    CREATE_DELIVERY_NOTES = 'CREATE_DELIVERY_NOTES'
    UPDATE_DELIVERY_NOTES = 'UPDATE_DELIVERY_NOTES'
    VIEW_CLIENTS = 'VIEW_CLIENTS'
    CREATE_CLIENTS = 'CREATE_CLIENTS'
    UPDATE_CLIENTS = 'UPDATE_CLIENTS'
    MANAGE_USERS = 'MANAGE_USERS'
    MANAGE_COMPANIES = 'MANAGE_COMPANIES'
    VIEW_REPORTS = 'VIEW_REPORTS'
    SYSTEM_SETTINGS = 'SYSTEM_SETTINGS'
    VIEW_ATTENDANCE = 'VIEW_ATTENDANCE'
    MANAGE_ATTENDANCE = 'MANAGE_ATTENDANCE'
    VIEW_TASKS = 'VIEW_TASKS'
    CREATE_TASKS = 'CREATE_TASKS'
    UPDATE_TASKS = 'UPDATE_TASKS'
    ASSIGN_TASKS = 'ASSIGN_TASKS'
    VIEW_WORKLOGS = 'VIEW_WORKLOGS'
    SUBMIT_WORKLOGS = 'SUBMIT_WORKLOGS'
    APPROVE_WORKLOGS = 'APPROVE_WORKLOGS'
    VIEW_OVERTIME = 'VIEW_OVERTIME'
    APPROVE_OVERTIME = 'APPROVE_OVERTIME'
    VIEW_KPI = 'VIEW_KPI'
    MANAGE_KPI = 'MANAGE_KPI'
    SUBMIT_REVIEWS = 'SUBMIT_REVIEWS'
    VIEW_REVIEWS = 'VIEW_REVIEWS'


L = LegacyPermission
A = PermissionAction

PERMISSION_MIGRATION_MAP: Dict[LegacyPermission, PermissionAction] = {
    # Orders, manufacturing, purchase orders and delivery notes are leads
    L.VIEW_ORDERS: A.LEAD_READ,
    L.CREATE_ORDERS: A.LEAD_CREATE,
    L.UPDATE_ORDERS: A.LEAD_UPDATE,
    L.DELETE_ORDERS: A.LEAD_DELETE,
    L.VIEW_MANUFACTURING: A.LEAD_READ,
    L.UPDATE_MANUFACTURING_STAGE: A.LEAD_MOVE_STAGE,
    L.MANAGE_MANUFACTURING: A.LEAD_UPDATE,
    L.VIEW_POS: A.LEAD_READ,
    L.CREATE_POS: A.LEAD_CREATE,
    L.UPDATE_POS: A.LEAD_UPDATE,
    L.VIEW_DELIVERY_NOTES: A.LEAD_READ,
    L.CREATE_DELIVERY_NOTES: A.LEAD_CREATE,
    L.UPDATE_DELIVERY_NOTES: A.LEAD_UPDATE,

    # Payments and quotations are finance
    L.VIEW_PAYMENTS: A.INVOICE_READ,
    L.CREATE_PAYMENTS: A.PAYMENT_RECORD,
    L.UPDATE_PAYMENTS: A.PAYMENT_RECORD,
    L.DELETE_PAYMENTS: A.INVOICE_DELETE,
    L.VIEW_QUOTATIONS: A.INVOICE_READ,
    L.CREATE_QUOTATIONS: A.INVOICE_CREATE,
    L.UPDATE_QUOTATIONS: A.INVOICE_UPDATE,
    L.SEND_QUOTATIONS: A.INVOICE_UPDATE,

    L.VIEW_CLIENTS: A.CLIENT_READ,
    L.CREATE_CLIENTS: A.CLIENT_CREATE,
    L.UPDATE_CLIENTS: A.CLIENT_UPDATE,

    L.MANAGE_USERS: A.USER_UPDATE,
    L.MANAGE_COMPANIES: A.SETTING_UPDATE,
    L.SYSTEM_SETTINGS: A.SETTING_UPDATE,

    L.VIEW_REPORTS: A.REPORT_VIEW,
    L.VIEW_KPI: A.REPORT_VIEW,
    L.MANAGE_KPI: A.REPORT_GENERATE,

    # Overtime is attendance
    L.VIEW_ATTENDANCE: A.ATTENDANCE_READ,
    L.MANAGE_ATTENDANCE: A.ATTENDANCE_MANAGE,
    L.VIEW_OVERTIME: A.ATTENDANCE_READ,
    L.APPROVE_OVERTIME: A.ATTENDANCE_MANAGE,

    # Work logs and reviews are task comments
    L.VIEW_TASKS: A.TASK_READ,
    L.CREATE_TASKS: A.TASK_CREATE,
    L.UPDATE_TASKS: A.TASK_UPDATE,
    L.ASSIGN_TASKS: A.TASK_ASSIGN,
    L.VIEW_WORKLOGS: A.TASK_READ,
    L.SUBMIT_WORKLOGS: A.TASK_COMMENT,
    L.APPROVE_WORKLOGS: A.TASK_COMPLETE,
    L.SUBMIT_REVIEWS: A.TASK_COMMENT,
    L.VIEW_REVIEWS: A.TASK_READ,
}

del L, A


def migrate_permission(permission) -> PermissionAction:
    """
    Translate a legacy permission into its catalog action.

    Raises:
        ValidationError: The value is not a legacy permission
    """
    try:
        legacy = LegacyPermission(permission)
    except ValueError:
        raise ValidationError(
            f"Unknown legacy permission: {permission!r}",
            details={'permission': str(permission)}
        )
    return PERMISSION_MIGRATION_MAP[legacy]


def authorize_legacy(permission):
    """Authorize a legacy permission through the regular authorizer."""
    return access.authorize(migrate_permission(permission))


def role_permissions(role) -> FrozenSet[PermissionAction]:
    """Default permission set of a primary role (``UserRole`` value)."""
    role_name = SYSTEM_ROLE_BY_USER_ROLE.get(role)
    if role_name is None:
        raise ValidationError(f"Unknown role: {role!r}", details={'role': str(role)})
    return frozenset(SYSTEM_ROLE_PERMISSIONS[role_name])


def can_assign_role(assigner_role, target_role) -> bool:
    """
    Primary-role check for granting ``target_role``.

    Admins may grant anything; HR and operations managers never grant
    admin; anyone else needs ``role.manage`` in their default set.
    """
    if assigner_role == UserRole.ADMIN:
        return True
    if not can_assign(assigner_role, target_role, PermissionAction.ROLE_MANAGE):
        return False
    return PermissionAction.ROLE_MANAGE in role_permissions(assigner_role)
