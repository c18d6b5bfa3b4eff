"""
RBAC app configuration.
"""
from django.apps import AppConfig
from django.db.models.signals import post_migrate


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """Connect signals and build the authorization engine."""
        import apps.rbac.signals  # noqa
        from apps.rbac.engine import get_engine

        post_migrate.connect(apps.rbac.signals.sync_permissions_after_migrate, sender=self)
        get_engine()
