"""
Effective-permission cache.

A read-through cache of resolved permission sets keyed by (user, company).
Entries expire per key after ``RBAC['PERMISSION_CACHE_TTL']`` seconds, which
bounds how long a revoked permission can survive without an explicit
invalidation. Full flushes bump a generation counter instead of clearing the
backend, so unrelated cache keys are never touched.
"""
import logging
from typing import FrozenSet, Iterable, Optional, Tuple

from django.conf import settings
from django.core.cache import caches

from apps.rbac.catalog import PermissionAction, is_valid

logger = logging.getLogger(__name__)


class CacheKeys:
    """Cache key templates for the permission cache."""

    EFFECTIVE_PERMISSIONS = "rbac:permissions:g{generation}:{user_id}:{company_id}"
    GENERATION = "rbac:permissions:generation"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        return key_template.format(**kwargs)


class PermissionCache:
    """
    Cache of effective permission sets.

    Wraps a Django cache alias so the backend can be swapped (local memory in
    a single process, Redis across instances) without touching the resolver.
    Backend errors are logged and treated as misses.
    """

    def __init__(self, alias: str = 'default', ttl: int = 30):
        self.alias = alias
        self.ttl = ttl

    @classmethod
    def from_settings(cls):
        """Build the cache from the ``RBAC`` settings dict."""
        config = getattr(settings, 'RBAC', {})
        return cls(
            alias=config.get('PERMISSION_CACHE_ALIAS', 'default'),
            ttl=config.get('PERMISSION_CACHE_TTL', 30),
        )

    @property
    def backend(self):
        return caches[self.alias]

    def _generation(self) -> int:
        try:
            generation = self.backend.get(CacheKeys.GENERATION)
        except Exception as e:
            logger.error(f"Permission cache generation read failed: {str(e)}")
            return 0
        return generation or 0

    def _key(self, user_id, company_id, generation: Optional[int] = None) -> str:
        if generation is None:
            generation = self._generation()
        return CacheKeys.format(
            CacheKeys.EFFECTIVE_PERMISSIONS,
            generation=generation,
            user_id=user_id,
            company_id=company_id,
        )

    def get(self, user_id, company_id) -> Optional[FrozenSet[PermissionAction]]:
        """Return the cached set, or None on a miss."""
        key = self._key(user_id, company_id)
        try:
            value = self.backend.get(key)
        except Exception as e:
            logger.error(f"Permission cache get error for key {key}: {str(e)}")
            return None

        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        if not all(is_valid(code) for code in value):
            # Entries can outlive a catalog action across a deploy
            logger.warning(f"Permission cache entry with unknown actions treated as a miss: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return frozenset(PermissionAction(code) for code in value)

    def set(self, user_id, company_id, permissions: Iterable[PermissionAction]) -> bool:
        """Store a resolved set. Returns False if the backend failed."""
        key = self._key(user_id, company_id)
        value = sorted(PermissionAction(action).value for action in permissions)
        try:
            self.backend.set(key, value, timeout=self.ttl)
        except Exception as e:
            logger.error(f"Permission cache set error for key {key}: {str(e)}")
            return False
        logger.debug(f"Cache SET: {key} (TTL: {self.ttl}s)")
        return True

    def invalidate(self, pairs: Iterable[Tuple[object, object]]) -> int:
        """
        Drop the cached sets for (user_id, company_id) pairs.

        Returns:
            Number of keys deleted
        """
        generation = self._generation()
        keys = {self._key(user_id, company_id, generation) for user_id, company_id in pairs}
        if not keys:
            return 0
        try:
            self.backend.delete_many(list(keys))
        except Exception as e:
            logger.error(f"Permission cache invalidation failed: {str(e)}")
            return 0
        logger.debug(f"Cache DELETE: {len(keys)} permission keys")
        return len(keys)

    def clear(self) -> None:
        """Invalidate every cached set by moving to a new generation."""
        try:
            try:
                self.backend.incr(CacheKeys.GENERATION)
            except ValueError:
                # Counter missing or evicted; start a generation no live key uses
                if not self.backend.add(CacheKeys.GENERATION, 1, timeout=None):
                    self.backend.incr(CacheKeys.GENERATION)
        except Exception as e:
            logger.error(f"Permission cache flush failed: {str(e)}")
            return
        logger.info("Permission cache flushed")
