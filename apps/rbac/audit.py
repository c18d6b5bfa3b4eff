"""
Audit logger.

Records authorization decisions and privileged mutations in the append-only
``audit_logs`` table. Recording is a side channel: it never raises into the
caller, and a failed write never rolls back the operation it describes.
"""
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.core.logging import SecurityLogger
from apps.core.middleware.request_tracking import get_client_ip
from apps.rbac.models import AuditLog, User

logger = logging.getLogger(__name__)


class AuditAction:
    """Audit action values. Persisted; never renumber or rename."""

    # User Management
    USER_CREATED = 'user.created'
    USER_UPDATED = 'user.updated'
    USER_DELETED = 'user.deleted'
    USER_ROLE_CHANGED = 'user.role_changed'
    USER_STATUS_CHANGED = 'user.status_changed'
    USER_PASSWORD_CHANGED = 'user.password_changed'

    # Attendance Management
    ATTENDANCE_CREATED = 'attendance.created'
    ATTENDANCE_UPDATED = 'attendance.updated'
    ATTENDANCE_DELETED = 'attendance.deleted'
    ATTENDANCE_APPROVED = 'attendance.approved'
    ATTENDANCE_REJECTED = 'attendance.rejected'

    # Task Management
    TASK_CREATED = 'task.created'
    TASK_UPDATED = 'task.updated'
    TASK_DELETED = 'task.deleted'
    TASK_COMPLETED = 'task.completed'
    TASK_ASSIGNED = 'task.assigned'

    # Order Management
    ORDER_CREATED = 'order.created'
    ORDER_UPDATED = 'order.updated'
    ORDER_DELETED = 'order.deleted'
    ORDER_STATUS_CHANGED = 'order.status_changed'
    ORDER_STAGE_CHANGED = 'order.stage_changed'

    # Client Management
    CLIENT_CREATED = 'client.created'
    CLIENT_UPDATED = 'client.updated'
    CLIENT_DELETED = 'client.deleted'
    CLIENT_APPROVED = 'client.approved'
    CLIENT_REJECTED = 'client.rejected'

    # Invoice Management
    INVOICE_CREATED = 'invoice.created'
    INVOICE_UPDATED = 'invoice.updated'
    INVOICE_DELETED = 'invoice.deleted'
    INVOICE_SENT = 'invoice.sent'
    INVOICE_PAID = 'invoice.paid'

    # Quotation Management
    QUOTATION_CREATED = 'quotation.created'
    QUOTATION_UPDATED = 'quotation.updated'
    QUOTATION_DELETED = 'quotation.deleted'
    QUOTATION_SENT = 'quotation.sent'
    QUOTATION_ACCEPTED = 'quotation.accepted'
    QUOTATION_REJECTED = 'quotation.rejected'

    # System Settings
    SETTINGS_UPDATED = 'settings.updated'
    COMPANY_SETTINGS_UPDATED = 'company.settings_updated'
    OFFICE_LOCATION_UPDATED = 'company.location_updated'

    # Permission Management
    PERMISSION_GRANTED = 'permission.granted'
    PERMISSION_REVOKED = 'permission.revoked'
    ROLE_PERMISSIONS_UPDATED = 'role.permissions_updated'
    ROLE_CREATED = 'role.created'
    ROLE_UPDATED = 'role.updated'
    ROLE_DELETED = 'role.deleted'
    ROLE_ASSIGNED = 'role.assigned'
    ROLE_REMOVED = 'role.removed'

    # Authorization
    ACCESS_DENIED = 'access.denied'


class AuditResource:
    """Audit resource categories. Persisted; never renumber or rename."""

    USER = 'user'
    ATTENDANCE = 'attendance'
    TASK = 'task'
    ORDER = 'order'
    CLIENT = 'client'
    INVOICE = 'invoice'
    QUOTATION = 'quotation'
    SETTINGS = 'settings'
    COMPANY = 'company'
    ROLE = 'role'
    PERMISSION = 'permission'


@dataclass(frozen=True)
class AuditLogEntry:
    """One audit record before it is written."""

    company_id: int
    action: str
    resource: str
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    resource_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def stamped(self) -> 'AuditLogEntry':
        """Return a copy carrying a timestamp, keeping an existing one."""
        if self.created_at is not None:
            return self
        return replace(self, created_at=timezone.now())

    def to_payload(self) -> Dict[str, Any]:
        """Serializable form used to hand the entry to a Celery worker."""
        payload = asdict(self)
        if self.created_at is not None:
            payload['created_at'] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'AuditLogEntry':
        data = dict(payload)
        if isinstance(data.get('created_at'), str):
            data['created_at'] = parse_datetime(data['created_at'])
        return cls(**data)


@dataclass(frozen=True)
class AuditLogFilter:
    company_id: int
    user_id: Optional[int] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True)
class Page:
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class AuditLogPage:
    entries: List[AuditLog]
    total: int
    limit: int
    offset: int


def audit_context_from_request(request) -> Dict[str, Optional[str]]:
    """
    Extract client IP, user agent and request id from a request.

    Accepts Django or DRF requests; returns an empty dict for None.
    """
    if request is None:
        return {}
    return {
        'ip_address': get_client_ip(request),
        'user_agent': request.META.get('HTTP_USER_AGENT') or None,
        'request_id': getattr(request, 'request_id', None),
    }


class AuditLogger:
    """
    Fire-and-forget audit recorder.

    Writes synchronously by default. With ``async_writes`` entries are
    handed to the ``rbac.record_audit_log`` Celery task; the timestamp is
    taken when ``record`` is called so entries keep their order.
    """

    MAX_PAGE_SIZE = 200

    def __init__(self, enabled: bool = True, async_writes: bool = False):
        self.enabled = enabled
        self.async_writes = async_writes

    @classmethod
    def from_settings(cls):
        config = getattr(settings, 'RBAC', {})
        return cls(
            enabled=config.get('AUDIT_LOGGING_ENABLED', True),
            async_writes=config.get('AUDIT_ASYNC', False),
        )

    def record(self, entry: AuditLogEntry) -> None:
        """Record an entry. Never raises."""
        if not self.enabled:
            return
        try:
            entry = entry.stamped()
            if self.async_writes:
                from apps.rbac.tasks import record_audit_log
                record_audit_log.delay(entry.to_payload())
            else:
                self.write(entry)
        except Exception as e:
            # Audit logging must not break the operation being audited
            logger.error(
                f"Failed to create audit log: {str(e)}",
                extra={'action': entry.action, 'company_id': entry.company_id},
                exc_info=True
            )
            SecurityLogger.log_audit_failure(entry.action, entry.company_id, e)

    def write(self, entry: AuditLogEntry) -> AuditLog:
        """
        Persist an entry. Raises on database errors.

        Runs in its own savepoint so a failure leaves an enclosing
        transaction usable.
        """
        user_name, user_role = entry.user_name, entry.user_role
        if entry.user_id is not None and (user_name is None or user_role is None):
            row = User.objects.filter(pk=entry.user_id).values_list('name', 'email', 'role').first()
            if row is not None:
                name, email, role = row
                user_name = user_name if user_name is not None else (name or email)
                user_role = user_role if user_role is not None else role

        with transaction.atomic():
            log = AuditLog.objects.create(
                company_id=entry.company_id,
                user_id=entry.user_id,
                user_name=user_name,
                user_role=user_role,
                action=str(entry.action),
                resource=str(entry.resource),
                resource_id=entry.resource_id,
                details=entry.details or {},
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                request_id=entry.request_id,
                created_at=entry.created_at or timezone.now(),
            )
        logger.info(
            "Audit log created",
            extra={
                'action': log.action,
                'resource': log.resource,
                'resource_id': log.resource_id,
                'user_id': log.user_id,
                'company_id': log.company_id,
            }
        )
        return log

    def query(self, filter: AuditLogFilter, page: Page = Page()) -> AuditLogPage:
        """Return one page of entries, newest first, plus the total count."""
        qs = AuditLog.objects.for_company(filter.company_id)
        if filter.user_id is not None:
            qs = qs.filter(user_id=filter.user_id)
        if filter.action:
            qs = qs.filter(action=filter.action)
        if filter.resource:
            qs = qs.filter(resource=filter.resource)
        if filter.resource_id is not None:
            qs = qs.filter(resource_id=filter.resource_id)
        if filter.start_date is not None:
            qs = qs.filter(created_at__gte=filter.start_date)
        if filter.end_date is not None:
            qs = qs.filter(created_at__lte=filter.end_date)

        limit = max(1, min(page.limit, self.MAX_PAGE_SIZE))
        offset = max(0, page.offset)
        qs = qs.order_by('-created_at', '-id')
        return AuditLogPage(
            entries=list(qs[offset:offset + limit]),
            total=qs.count(),
            limit=limit,
            offset=offset,
        )
