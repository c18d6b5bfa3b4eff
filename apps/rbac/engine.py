"""
Engine wiring.

Builds the cache, resolver, role store, policy engine, audit logger and
authorizer from settings once at startup (``RbacConfig.ready``). Tests and
management commands may install their own engine with ``set_engine``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from apps.rbac.audit import AuditLogger
from apps.rbac.authorization import Authorizer
from apps.rbac.cache import PermissionCache
from apps.rbac.identity import IdentityProvider, RequestIdentityProvider
from apps.rbac.policies import PolicyEngine
from apps.rbac.resources import ResourceStoreRegistry
from apps.rbac.services import PermissionResolver, RoleStore

logger = logging.getLogger(__name__)


@dataclass
class RBACEngine:
    cache: PermissionCache
    resolver: PermissionResolver
    role_store: RoleStore
    resources: ResourceStoreRegistry
    policy_engine: PolicyEngine
    audit_logger: AuditLogger
    authorizer: Authorizer

    @classmethod
    def build(cls, identity_provider: Optional[IdentityProvider] = None,
              cache: Optional[PermissionCache] = None,
              resources: Optional[ResourceStoreRegistry] = None,
              audit_logger: Optional[AuditLogger] = None):
        """Assemble an engine from the ``RBAC`` settings dict."""
        config = getattr(settings, 'RBAC', {})
        cache = cache or PermissionCache.from_settings()
        resources = resources or ResourceStoreRegistry.from_settings()
        audit_logger = audit_logger or AuditLogger.from_settings()

        resolver = PermissionResolver(cache)
        policy_engine = PolicyEngine(resources)
        return cls(
            cache=cache,
            resolver=resolver,
            role_store=RoleStore(
                cache,
                invalidation_strategy=config.get('INVALIDATION_STRATEGY', 'precise'),
                precise_limit=config.get('PRECISE_INVALIDATION_LIMIT', 500),
            ),
            resources=resources,
            policy_engine=policy_engine,
            audit_logger=audit_logger,
            authorizer=Authorizer(
                resolver=resolver,
                identity_provider=identity_provider or RequestIdentityProvider(),
                policy_engine=policy_engine,
                audit_logger=audit_logger,
                audit_denials=config.get('AUDIT_DENIALS', True),
            ),
        )


_engine: Optional[RBACEngine] = None


def get_engine() -> RBACEngine:
    """Return the process-wide engine, building it on first use."""
    global _engine
    if _engine is None:
        _engine = RBACEngine.build()
        logger.info("RBAC engine initialised")
    return _engine


def set_engine(engine: Optional[RBACEngine]) -> Optional[RBACEngine]:
    """
    Install an engine (None resets to lazy rebuild).

    Returns:
        The previously installed engine
    """
    global _engine
    previous, _engine = _engine, engine
    return previous
