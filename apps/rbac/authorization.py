"""
Authorizer.

The single entry point every privileged operation calls before acting. It
resolves the current identity, checks the effective permission set and,
for contextual operations, the policy engine. Every failure raises; no
check ever returns a boolean the caller could forget to test.
"""
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

from django.db import DatabaseError

from apps.core.exceptions import ForbiddenError
from apps.core.logging import SecurityLogger
from apps.core.middleware.request_tracking import get_current_request, get_request_id
from apps.core.sentry_utils import add_breadcrumb, set_actor_context
from apps.rbac.audit import AuditAction, AuditLogEntry, AuditLogger, audit_context_from_request
from apps.rbac.catalog import PermissionAction, get_definition, parse_action, parse_actions
from apps.rbac.identity import Identity, IdentityProvider
from apps.rbac.policies import ContextualInput, PolicyEngine
from apps.rbac.services import PermissionResolver

logger = logging.getLogger(__name__)

# Internal denial reasons (audit and logs only)
MISSING_PERMISSION = 'missing_permission'
LOOKUP_FAILED = 'lookup_failed'

LOOKUP_ERRORS = (DatabaseError, TimeoutError)


@dataclass(frozen=True)
class AuthorizationContext:
    """Returned by every successful authorization."""

    user_id: int
    company_id: int
    permissions: FrozenSet[PermissionAction]

    def has(self, action) -> bool:
        return parse_action(action) in self.permissions


class Authorizer:
    """
    Authorization entry point.

    Read-only with respect to roles and assignments. Lookup failures in
    the resolver or in resource stores are denials, never implicit allows.
    """

    def __init__(self, resolver: PermissionResolver, identity_provider: IdentityProvider,
                 policy_engine: PolicyEngine, audit_logger: AuditLogger,
                 audit_denials: bool = True):
        self.resolver = resolver
        self.identity_provider = identity_provider
        self.policy_engine = policy_engine
        self.audit_logger = audit_logger
        self.audit_denials = audit_denials

    def authorize(self, action) -> AuthorizationContext:
        """
        Require one action.

        Raises:
            UnauthorizedError: No current identity
            ForbiddenError: Action not in the effective set
        """
        action = parse_action(action)
        identity = self._identity()
        permissions = self._resolve(identity, (action,))
        if action not in permissions:
            self._deny(identity, (action,), MISSING_PERMISSION)
        return self._context(identity, permissions)

    def authorize_any(self, actions: Iterable) -> AuthorizationContext:
        """Require at least one of the actions."""
        actions = self._required(actions)
        identity = self._identity()
        permissions = self._resolve(identity, actions)
        if not any(action in permissions for action in actions):
            self._deny(identity, actions, MISSING_PERMISSION)
        return self._context(identity, permissions)

    def authorize_all(self, actions: Iterable) -> AuthorizationContext:
        """Require every one of the actions."""
        actions = self._required(actions)
        identity = self._identity()
        permissions = self._resolve(identity, actions)
        if not all(action in permissions for action in actions):
            self._deny(identity, actions, MISSING_PERMISSION)
        return self._context(identity, permissions)

    def authorize_contextual(self, action, ctx: ContextualInput) -> AuthorizationContext:
        """
        Require an action, then evaluate the contextual predicates.

        A contextual failure raises the same ForbiddenError as a missing
        permission; only its internal reason differs.
        """
        action = parse_action(action)
        identity = self._identity()
        permissions = self._resolve(identity, (action,))
        if action not in permissions:
            self._deny(identity, (action,), MISSING_PERMISSION, ctx)

        failed = self._evaluate(identity, action, ctx)
        if failed is not None:
            self._deny(identity, (action,), failed, ctx)
        return self._context(identity, permissions)

    def authorize_resource_access(self, action, ctx: ContextualInput) -> AuthorizationContext:
        """
        Access one resource with an owner fallback.

        Holders of ``action`` need only the company match. Anyone else must
        own the resource (creator or assignee) and match its company.
        """
        action = parse_action(action)
        if ctx.resource_id is None:
            raise ValueError("authorize_resource_access requires a resource id")

        identity = self._identity()
        permissions = self._resolve(identity, (action,))
        if action in permissions:
            failed = self._evaluate(identity, action, ctx)
        else:
            failed = self._evaluate(
                identity, action,
                ContextualInput(
                    resource_type=ctx.resource_type,
                    resource_id=ctx.resource_id,
                    target_user_id=ctx.target_user_id,
                    target_role=ctx.target_role,
                    predicates=tuple(ctx.predicates) + ('ownership',),
                )
            )
        if failed is not None:
            self._deny(identity, (action,), failed, ctx)
        return self._context(identity, permissions)

    # Helpers

    def _identity(self) -> Identity:
        identity = self.identity_provider.current_user()
        set_actor_context(identity)
        return identity

    def _required(self, actions) -> Tuple[PermissionAction, ...]:
        actions = parse_actions(actions)
        if not actions:
            raise ValueError("At least one permission action is required")
        return actions

    def _resolve(self, identity: Identity, required) -> FrozenSet[PermissionAction]:
        try:
            return self.resolver.get_effective_permissions(identity.id, identity.company_id)
        except LOOKUP_ERRORS as e:
            logger.error(
                f"Permission lookup failed: {str(e)}",
                extra={'user_id': identity.id, 'company_id': identity.company_id},
                exc_info=True
            )
            self._deny(identity, required, LOOKUP_FAILED)

    def _evaluate(self, identity: Identity, action: PermissionAction, ctx: ContextualInput) -> Optional[str]:
        try:
            return self.policy_engine.evaluate(identity, action, ctx)
        except LOOKUP_ERRORS as e:
            logger.error(
                f"Resource lookup failed: {str(e)}",
                extra={
                    'user_id': identity.id,
                    'resource_type': ctx.resource_type,
                    'resource_id': ctx.resource_id,
                },
                exc_info=True
            )
            return LOOKUP_FAILED

    def _context(self, identity: Identity, permissions) -> AuthorizationContext:
        return AuthorizationContext(
            user_id=identity.id,
            company_id=identity.company_id,
            permissions=frozenset(permissions),
        )

    def _deny(self, identity: Identity, required, reason: str, ctx: Optional[ContextualInput] = None):
        required_values = [action.value for action in required]
        SecurityLogger.log_permission_denied(
            identity.id, identity.company_id, required_values, reason,
            request_id=get_request_id()
        )
        add_breadcrumb(
            category="authz",
            message="Access denied",
            level="warning",
            data={'required': required_values, 'reason': reason}
        )

        if self.audit_denials and identity.company_id is not None:
            details = {'required': required_values, 'reason': reason}
            if ctx is not None and ctx.resource_type:
                details['resource_type'] = ctx.resource_type
            if ctx is not None and ctx.target_user_id is not None:
                details['target_user_id'] = ctx.target_user_id
            self.audit_logger.record(AuditLogEntry(
                company_id=identity.company_id,
                user_id=identity.id,
                user_role=identity.role_hint,
                action=AuditAction.ACCESS_DENIED,
                resource=(ctx.resource_type if ctx is not None and ctx.resource_type
                          else get_definition(required[0]).resource),
                resource_id=ctx.resource_id if ctx is not None else None,
                details=details,
                **audit_context_from_request(get_current_request()),
            ))

        raise ForbiddenError(reason=reason)
