"""
RBAC signals.

Keeps the permissions table in sync with the catalog after migrations and
assigns the default role when a user account is created.
"""
import logging
from django.db.models.signals import post_migrate, post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


def sync_permissions_after_migrate(sender, **kwargs):
    """Mirror the catalog into the permissions table after ``migrate``."""
    from apps.rbac.models import Permission

    created, updated, removed = Permission.objects.sync_from_catalog()
    if created or removed:
        logger.info(
            "Permission table synced",
            extra={'created_count': created, 'updated_count': updated, 'removed_count': removed}
        )


@receiver(post_save, sender='rbac.User')
def assign_default_role_on_user_creation(sender, instance, created, raw=False, **kwargs):
    """
    Assign the system role matching a new user's primary role.

    Skipped for fixture loading and for users without a company.
    """
    if not created or raw or instance.company_id is None:
        return

    from apps.rbac.engine import get_engine

    get_engine().role_store.assign_default_role(instance)
