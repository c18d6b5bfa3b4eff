"""
Caller-facing authorization API.

Each privileged operation calls exactly one ``authorize*`` function before
acting and ``create_audit_log`` after any state change::

    from apps.rbac import access
    from apps.rbac.catalog import PermissionAction

    ctx = access.authorize(PermissionAction.USER_CREATE)
    user = create_user(...)
    access.create_audit_log(AuditLogEntry(company_id=ctx.company_id, ...))
"""
from apps.rbac.audit import AuditLogEntry, AuditLogFilter, AuditLogPage, Page
from apps.rbac.authorization import AuthorizationContext
from apps.rbac.engine import get_engine
from apps.rbac.policies import ContextualInput


def authorize(action) -> AuthorizationContext:
    return get_engine().authorizer.authorize(action)


def authorize_any(actions) -> AuthorizationContext:
    return get_engine().authorizer.authorize_any(actions)


def authorize_all(actions) -> AuthorizationContext:
    return get_engine().authorizer.authorize_all(actions)


def authorize_contextual(action, ctx: ContextualInput) -> AuthorizationContext:
    return get_engine().authorizer.authorize_contextual(action, ctx)


def authorize_resource_access(action, ctx: ContextualInput) -> AuthorizationContext:
    return get_engine().authorizer.authorize_resource_access(action, ctx)


def get_user_permissions(user_id, company_id):
    """Effective permission set of a user in a company."""
    return get_engine().resolver.get_effective_permissions(user_id, company_id)


def has_permission(user_id, company_id, action) -> bool:
    return get_engine().resolver.has_permission(user_id, company_id, action)


def has_any_permission(user_id, company_id, actions) -> bool:
    return get_engine().resolver.has_any_permission(user_id, company_id, actions)


def has_all_permissions(user_id, company_id, actions) -> bool:
    return get_engine().resolver.has_all_permissions(user_id, company_id, actions)


def create_audit_log(entry: AuditLogEntry) -> None:
    """Record an audit entry. Never raises."""
    get_engine().audit_logger.record(entry)


def get_audit_logs(filter: AuditLogFilter, page: Page = Page()) -> AuditLogPage:
    """
    Read audit entries.

    The caller must already hold ``audit.read``; the audit logger does not
    check who reads it.
    """
    return get_engine().audit_logger.query(filter, page)
