"""
Celery tasks for the RBAC app.
"""
import logging
from celery import shared_task
from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(
    base=LoggedTask,
    name='rbac.record_audit_log',
    ignore_result=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=3,
)
def record_audit_log(payload):
    """
    Write an audit entry handed off by ``AuditLogger.record``.

    Args:
        payload: ``AuditLogEntry.to_payload()`` output; carries the original
            event timestamp
    """
    from apps.rbac.audit import AuditLogEntry, AuditLogger

    AuditLogger().write(AuditLogEntry.from_payload(payload))
