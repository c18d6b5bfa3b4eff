"""
Permission catalog.

The closed set of permission actions the system understands. Every action is
a ``resource.verb`` string grouped into a display category. The catalog is
defined in code and changes only with a deploy; the ``permissions`` table is a
mirror of it kept in sync by ``Permission.objects.sync_from_catalog``.
"""
from dataclasses import dataclass
from typing import Dict, List, Tuple

from django.db import models

from apps.core.exceptions import ValidationError


class PermissionAction(models.TextChoices):
    """Every action a role can grant. Values are stable and persisted."""

    # Users
    USER_CREATE = 'user.create', 'Create users'
    USER_READ = 'user.read', 'View users'
    USER_UPDATE = 'user.update', 'Update users'
    USER_DELETE = 'user.delete', 'Delete users'
    ROLE_MANAGE = 'role.manage', 'Manage roles and permissions'

    # Clients
    CLIENT_CREATE = 'client.create', 'Create clients'
    CLIENT_READ = 'client.read', 'View clients'
    CLIENT_UPDATE = 'client.update', 'Update clients'
    CLIENT_DELETE = 'client.delete', 'Delete clients'

    # Leads (orders)
    LEAD_CREATE = 'lead.create', 'Create orders'
    LEAD_READ = 'lead.read', 'View orders'
    LEAD_UPDATE = 'lead.update', 'Update orders'
    LEAD_DELETE = 'lead.delete', 'Delete orders'
    LEAD_MOVE_STAGE = 'lead.move_stage', 'Move orders between stages'

    # Tasks
    TASK_CREATE = 'task.create', 'Create tasks'
    TASK_READ = 'task.read', 'View tasks'
    TASK_UPDATE = 'task.update', 'Update tasks'
    TASK_DELETE = 'task.delete', 'Delete tasks'
    TASK_ASSIGN = 'task.assign', 'Assign tasks'
    TASK_COMPLETE = 'task.complete', 'Complete tasks'
    TASK_COMMENT = 'task.comment', 'Comment on tasks'
    TASK_CHANGE_PRIORITY = 'task.change_priority', 'Change task priority'

    # Attendance
    ATTENDANCE_CLOCK = 'attendance.clock', 'Clock in and out'
    ATTENDANCE_READ = 'attendance.read', 'View attendance'
    ATTENDANCE_MANAGE = 'attendance.manage', 'Manage attendance'

    # Finance
    INVOICE_CREATE = 'invoice.create', 'Create invoices and quotations'
    INVOICE_READ = 'invoice.read', 'View invoices and quotations'
    INVOICE_UPDATE = 'invoice.update', 'Update invoices and quotations'
    INVOICE_DELETE = 'invoice.delete', 'Delete invoices and quotations'
    PAYMENT_RECORD = 'payment.record', 'Record payments'
    FINANCE_REPORTS = 'finance.reports', 'View finance reports'

    # Purchase orders
    PO_CREATE = 'po.create', 'Create purchase orders'
    PO_READ = 'po.read', 'View purchase orders'
    PO_UPDATE = 'po.update', 'Update purchase orders'
    PO_DELETE = 'po.delete', 'Delete purchase orders'

    # Dashboard
    OVERVIEW_VIEW = 'overview.view', 'View overview dashboard'

    # HR
    HR_VIEW = 'hr.view', 'View HR records'
    HR_MANAGE = 'hr.manage', 'Manage HR records'
    PAYROLL_MANAGE = 'payroll.manage', 'Manage payroll'

    # Reports
    REPORT_VIEW = 'report.view', 'View reports'
    REPORT_GENERATE = 'report.generate', 'Generate reports'

    # Files
    FILE_UPLOAD = 'file.upload', 'Upload files'
    FILE_READ = 'file.read', 'View files'
    FILE_DELETE = 'file.delete', 'Delete files'

    # System
    SETTING_VIEW = 'setting.view', 'View settings'
    SETTING_UPDATE = 'setting.update', 'Update settings'
    AUDIT_READ = 'audit.read', 'View audit logs'


@dataclass(frozen=True)
class PermissionDefinition:
    """Catalog entry: an action tagged with its category/resource/verb triple."""

    action: PermissionAction
    category: str
    resource: str
    verb: str
    label: str


# Display category for each resource prefix
CATEGORY_BY_RESOURCE = {
    'user': 'Users',
    'role': 'Users',
    'client': 'Clients',
    'lead': 'Leads',
    'task': 'Tasks',
    'attendance': 'Attendance',
    'invoice': 'Finance',
    'payment': 'Finance',
    'finance': 'Finance',
    'po': 'Purchase Orders',
    'overview': 'Dashboard',
    'hr': 'HR',
    'payroll': 'HR',
    'report': 'Reports',
    'file': 'Files',
    'setting': 'System',
    'audit': 'System',
}


def _build_catalog() -> Dict[PermissionAction, PermissionDefinition]:
    catalog = {}
    for action in PermissionAction:
        resource, _, verb = action.value.partition('.')
        catalog[action] = PermissionDefinition(
            action=action,
            category=CATEGORY_BY_RESOURCE[resource],
            resource=resource,
            verb=verb,
            label=action.label,
        )
    return catalog


_CATALOG = _build_catalog()
_VALUES = frozenset(action.value for action in PermissionAction)


def list_actions() -> Tuple[PermissionAction, ...]:
    """Return every catalog action in declaration order."""
    return tuple(_CATALOG)


def is_valid(action) -> bool:
    """
    Check whether ``action`` is a catalog entry.

    Accepts enum members or their string values; never raises.
    """
    if isinstance(action, PermissionAction):
        return True
    return isinstance(action, str) and action in _VALUES


def get_definition(action: PermissionAction) -> PermissionDefinition:
    """Return the catalog entry for an action."""
    return _CATALOG[PermissionAction(action)]


def get_permissions_by_category() -> Dict[str, List[PermissionAction]]:
    """Group catalog actions by display category, preserving catalog order."""
    categories: Dict[str, List[PermissionAction]] = {}
    for definition in _CATALOG.values():
        categories.setdefault(definition.category, []).append(definition.action)
    return categories


A = PermissionAction

# Default permission sets for the system roles provisioned in every deployment.
# Keys are role names; the legacy ``User.role`` value maps onto them through
# ``SYSTEM_ROLE_BY_USER_ROLE``.
SYSTEM_ROLE_PERMISSIONS: Dict[str, Tuple[PermissionAction, ...]] = {
    'admin': tuple(PermissionAction),
    'operation_manager': (
        A.CLIENT_CREATE, A.CLIENT_READ, A.CLIENT_UPDATE,
        A.LEAD_CREATE, A.LEAD_READ, A.LEAD_UPDATE, A.LEAD_DELETE, A.LEAD_MOVE_STAGE,
        A.TASK_CREATE, A.TASK_READ, A.TASK_UPDATE, A.TASK_DELETE, A.TASK_ASSIGN,
        A.TASK_COMPLETE, A.TASK_COMMENT, A.TASK_CHANGE_PRIORITY,
        A.ATTENDANCE_READ,
        A.REPORT_VIEW, A.REPORT_GENERATE,
        A.FILE_READ, A.FILE_UPLOAD,
        A.SETTING_VIEW,
    ),
    'accountant': (
        A.INVOICE_CREATE, A.INVOICE_READ, A.INVOICE_UPDATE,
        A.PAYMENT_RECORD,
        A.FINANCE_REPORTS,
        A.CLIENT_READ,
    ),
    'hr': (
        A.HR_VIEW, A.HR_MANAGE,
        A.ATTENDANCE_READ, A.ATTENDANCE_MANAGE,
        A.USER_READ, A.USER_UPDATE,
        A.FILE_READ, A.FILE_UPLOAD,
    ),
    'supervisor': (
        A.TASK_CREATE, A.TASK_READ, A.TASK_UPDATE, A.TASK_ASSIGN,
        A.TASK_COMMENT, A.TASK_COMPLETE,
        A.ATTENDANCE_READ,
        A.CLIENT_READ,
    ),
    'technician': (
        A.TASK_READ, A.TASK_UPDATE, A.TASK_COMMENT,
        A.ATTENDANCE_CLOCK,
        A.FILE_UPLOAD,
    ),
    'factory_supervisor': (
        A.LEAD_READ, A.LEAD_UPDATE, A.LEAD_MOVE_STAGE,
        A.TASK_READ, A.TASK_UPDATE, A.TASK_COMPLETE, A.TASK_COMMENT,
        A.FILE_READ,
    ),
    'sales_rep': (
        A.CLIENT_CREATE, A.CLIENT_READ, A.CLIENT_UPDATE,
        A.LEAD_CREATE, A.LEAD_READ, A.LEAD_UPDATE, A.LEAD_MOVE_STAGE,
        A.REPORT_VIEW,
        A.FILE_UPLOAD, A.FILE_READ,
    ),
    'client': (
        A.LEAD_READ,
        A.FILE_READ,
    ),
}

SYSTEM_ROLE_DISPLAY_NAMES = {
    'admin': 'Administrator',
    'operation_manager': 'Operations Manager',
    'accountant': 'Accountant',
    'hr': 'HR',
    'supervisor': 'Supervisor',
    'technician': 'Technician',
    'factory_supervisor': 'Factory Supervisor',
    'sales_rep': 'Sales Representative',
    'client': 'Client',
}

SYSTEM_ROLE_BY_USER_ROLE = {
    'ADMIN': 'admin',
    'OPERATIONS_MANAGER': 'operation_manager',
    'ACCOUNTANT': 'accountant',
    'HR': 'hr',
    'SUPERVISOR': 'supervisor',
    'TECHNICIAN': 'technician',
    'FACTORY_SUPERVISOR': 'factory_supervisor',
    'SALES_REP': 'sales_rep',
    'CLIENT': 'client',
}

del A


# Names of the pre-consolidation action aliases still found in stored
# configuration and client code; each collapses onto one catalog action.
LEGACY_ACTION_ALIASES: Dict[str, PermissionAction] = {
    'TEAM_MEMBERS_CREATE': PermissionAction.USER_CREATE,
    'TEAM_MEMBERS_READ': PermissionAction.USER_READ,
    'TEAM_MEMBERS_UPDATE': PermissionAction.USER_UPDATE,
    'TEAM_MEMBERS_DELETE': PermissionAction.USER_DELETE,
    'TEAM_MEMBERS_ASSIGN_ROLE': PermissionAction.ROLE_MANAGE,
    'ATTENDANCE_CREATE': PermissionAction.ATTENDANCE_CLOCK,
    'ATTENDANCE_READ_OWN': PermissionAction.ATTENDANCE_READ,
    'ATTENDANCE_READ_ALL': PermissionAction.ATTENDANCE_READ,
    'ATTENDANCE_UPDATE': PermissionAction.ATTENDANCE_MANAGE,
    'ATTENDANCE_APPROVE': PermissionAction.ATTENDANCE_MANAGE,
    'ATTENDANCE_DELETE': PermissionAction.ATTENDANCE_MANAGE,
    'TASKS_CREATE': PermissionAction.TASK_CREATE,
    'TASKS_READ_OWN': PermissionAction.TASK_READ,
    'TASKS_READ_ALL': PermissionAction.TASK_READ,
    'TASKS_UPDATE_OWN': PermissionAction.TASK_UPDATE,
    'TASKS_UPDATE_ALL': PermissionAction.TASK_UPDATE,
    'TASKS_DELETE': PermissionAction.TASK_DELETE,
    'TASKS_MARK_COMPLETED': PermissionAction.TASK_COMPLETE,
    'TASKS_ASSIGN': PermissionAction.TASK_ASSIGN,
    'ACCESS_DASHBOARD': PermissionAction.SETTING_VIEW,
    'ACCESS_ORDERS': PermissionAction.SETTING_VIEW,
    'ACCESS_CLIENTS': PermissionAction.SETTING_VIEW,
    'ACCESS_SETTINGS': PermissionAction.SETTING_UPDATE,
    'ORDERS_CREATE': PermissionAction.LEAD_CREATE,
    'ORDERS_READ': PermissionAction.LEAD_READ,
    'ORDERS_UPDATE': PermissionAction.LEAD_UPDATE,
    'ORDERS_DELETE': PermissionAction.LEAD_DELETE,
    'ORDERS_UPDATE_STATUS': PermissionAction.LEAD_MOVE_STAGE,
    'ORDERS_UPDATE_STAGE': PermissionAction.LEAD_MOVE_STAGE,
    'ORDERS_VIEW_ALL': PermissionAction.LEAD_READ,
    'CLIENTS_CREATE': PermissionAction.CLIENT_CREATE,
    'CLIENTS_READ': PermissionAction.CLIENT_READ,
    'CLIENTS_UPDATE': PermissionAction.CLIENT_UPDATE,
    'CLIENTS_DELETE': PermissionAction.CLIENT_DELETE,
    'CLIENTS_APPROVE': PermissionAction.CLIENT_UPDATE,
    'CLIENTS_REJECT': PermissionAction.CLIENT_UPDATE,
    'INVOICES_CREATE': PermissionAction.INVOICE_CREATE,
    'INVOICES_READ': PermissionAction.INVOICE_READ,
    'INVOICES_UPDATE': PermissionAction.INVOICE_UPDATE,
    'INVOICES_DELETE': PermissionAction.INVOICE_DELETE,
    'INVOICES_SEND': PermissionAction.INVOICE_UPDATE,
    'INVOICES_MARK_PAID': PermissionAction.PAYMENT_RECORD,
    'QUOTATIONS_CREATE': PermissionAction.INVOICE_CREATE,
    'QUOTATIONS_READ': PermissionAction.INVOICE_READ,
    'QUOTATIONS_UPDATE': PermissionAction.INVOICE_UPDATE,
    'QUOTATIONS_DELETE': PermissionAction.INVOICE_DELETE,
    'QUOTATIONS_SEND': PermissionAction.INVOICE_UPDATE,
    'QUOTATIONS_ACCEPT': PermissionAction.INVOICE_UPDATE,
    'QUOTATIONS_REJECT': PermissionAction.INVOICE_UPDATE,
    'AUDIT_LOGS_READ': PermissionAction.AUDIT_READ,
    'REPORTS_VIEW': PermissionAction.REPORT_VIEW,
    'REPORTS_EXPORT': PermissionAction.REPORT_GENERATE,
}


def parse_action(value) -> PermissionAction:
    """
    Convert external input into a catalog action.

    This is the only place a free-form string becomes a ``PermissionAction``.
    Accepts members, catalog values (``'task.assign'``), member names
    (``'TASK_ASSIGN'``) and legacy alias names.

    Raises:
        ValidationError: If the value names no catalog action
    """
    if isinstance(value, PermissionAction):
        return value
    if isinstance(value, str):
        if value in _VALUES:
            return PermissionAction(value)
        if value in PermissionAction.names:
            return PermissionAction[value]
        if value in LEGACY_ACTION_ALIASES:
            return LEGACY_ACTION_ALIASES[value]
    raise ValidationError(
        f"Unknown permission action: {value!r}",
        details={'permission': str(value)}
    )


def parse_actions(values) -> Tuple[PermissionAction, ...]:
    """Parse an iterable of actions, de-duplicating while keeping order."""
    if isinstance(values, (str, PermissionAction)):
        values = [values]
    seen = {}
    for value in values:
        seen.setdefault(parse_action(value), None)
    return tuple(seen)
