from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Misconfigured authorization settings must fail the process at boot
        rather than surface as silent allow/deny behaviour at request time.
        """
        self._validate_rbac_settings()
        logger.debug("RBAC settings validated")

    def _validate_rbac_settings(self):
        """Validate the RBAC settings dictionary."""
        rbac = getattr(settings, 'RBAC', None)
        if rbac is None:
            raise ImproperlyConfigured("RBAC settings dictionary must be defined")

        ttl = rbac.get('PERMISSION_CACHE_TTL')
        if not isinstance(ttl, int) or ttl <= 0:
            raise ImproperlyConfigured(
                f"RBAC['PERMISSION_CACHE_TTL'] must be a positive integer number of seconds, got {ttl!r}"
            )

        strategy = rbac.get('INVALIDATION_STRATEGY')
        if strategy not in ('precise', 'flush'):
            raise ImproperlyConfigured(
                f"RBAC['INVALIDATION_STRATEGY'] must be 'precise' or 'flush', got {strategy!r}"
            )

        alias = rbac.get('PERMISSION_CACHE_ALIAS', 'default')
        if alias not in settings.CACHES:
            raise ImproperlyConfigured(
                f"RBAC['PERMISSION_CACHE_ALIAS'] refers to unknown cache '{alias}'"
            )

        stores = rbac.get('RESOURCE_STORES', {})
        if not isinstance(stores, dict):
            raise ImproperlyConfigured("RBAC['RESOURCE_STORES'] must be a dict of resource type to dotted path")
