"""
Sentry utilities for adding context and breadcrumbs.

Every helper is a no-op when ``SENTRY_DSN`` is not configured.
"""
import sentry_sdk
from django.conf import settings


def set_actor_context(identity):
    """
    Tag Sentry events with the acting user and company.

    Args:
        identity: ``apps.rbac.identity.Identity`` of the actor
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_user({
        "id": str(identity.id),
        "role": identity.role_hint,
    })
    if identity.company_id is not None:
        sentry_sdk.set_tag("company_id", str(identity.company_id))


def add_breadcrumb(category, message, level="info", data=None):
    """
    Add a breadcrumb to Sentry for debugging.

    Args:
        category: Category of the breadcrumb (e.g., "authz", "audit", "task")
        message: Human-readable message
        level: Severity level (debug, info, warning, error)
        data: Optional dictionary of additional data
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )


def capture_exception(exception, **kwargs):
    """Capture an exception in Sentry, attaching each kwarg as a context."""
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_exception(exception)


def capture_message(message, level="info", **kwargs):
    """Capture a message in Sentry, attaching each kwarg as a context."""
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_message(message, level=level)
