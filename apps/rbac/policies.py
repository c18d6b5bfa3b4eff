"""
Contextual policy engine.

Business rules evaluated after a flat permission check has passed. Each rule
is a named predicate over a ``PolicyRequest``. Call sites declare which
predicates they need; ``company_match`` is added automatically, and runs
first, whenever a resource id is supplied.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from django.core.exceptions import ImproperlyConfigured

from apps.rbac.catalog import PermissionAction, SYSTEM_ROLE_BY_USER_ROLE
from apps.rbac.identity import Identity
from apps.rbac.models import UserRole
from apps.rbac.resources import OwnershipDescriptor, ResourceStoreRegistry

logger = logging.getLogger(__name__)

COMPANY_MATCH = 'company_match'
OWNERSHIP = 'ownership'
ROLE_COMPATIBILITY = 'role_compatibility'
TEAM_MEMBERSHIP = 'team_membership'

# Denial reasons that are not predicate names
NOT_FOUND = 'not_found'


@dataclass(frozen=True)
class ContextualInput:
    """
    What a call site knows about the target of an operation.

    Attributes:
        resource_type: Registered resource store name (e.g. ``'task'``)
        resource_id: Target resource id; triggers the company match
        target_user_id: User receiving an assignment or role
        target_role: Role being granted, as a ``UserRole`` value or a
            system role name
        predicates: Extra predicates this call site requires
    """

    resource_type: Optional[str] = None
    resource_id: Optional[int] = None
    target_user_id: Optional[int] = None
    target_role: Optional[str] = None
    predicates: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PolicyRequest:
    """Everything a predicate may look at."""

    actor: Identity
    action: PermissionAction
    context: ContextualInput
    descriptor: Optional[OwnershipDescriptor]
    registry: ResourceStoreRegistry

    def actor_role(self) -> Optional[str]:
        return self.actor.role_hint or self.registry.users.get_user_role(self.actor.id)


# The only target roles an actor role may assign to, per action.
ASSIGNABLE_ROLES: Dict[PermissionAction, Dict[str, FrozenSet[str]]] = {
    PermissionAction.TASK_ASSIGN: {
        UserRole.SUPERVISOR: frozenset({UserRole.TECHNICIAN}),
    },
}

# Target roles an actor role may never assign to, per action.
FORBIDDEN_TARGET_ROLES: Dict[PermissionAction, Dict[str, FrozenSet[str]]] = {
    PermissionAction.ROLE_MANAGE: {
        UserRole.HR: frozenset({UserRole.ADMIN}),
        UserRole.OPERATIONS_MANAGER: frozenset({UserRole.ADMIN}),
    },
}

_USER_ROLE_BY_SYSTEM_ROLE = {name: user_role for user_role, name in SYSTEM_ROLE_BY_USER_ROLE.items()}


def normalize_role(role: Optional[str]) -> Optional[str]:
    """Map a system role name (``'technician'``) onto its ``UserRole`` value."""
    if role is None:
        return None
    return _USER_ROLE_BY_SYSTEM_ROLE.get(role, role)


def can_assign(actor_role, target_role, action) -> bool:
    """
    Check the assignment rules for one actor role and one target role.

    Actor roles without an entry in either table are unrestricted once the
    flat permission check passed.
    """
    if actor_role == UserRole.ADMIN:
        return True
    if target_role in FORBIDDEN_TARGET_ROLES.get(action, {}).get(actor_role, ()):
        return False
    allowed = ASSIGNABLE_ROLES.get(action, {}).get(actor_role)
    return allowed is None or target_role in allowed


def company_match(request: PolicyRequest) -> bool:
    descriptor = request.descriptor
    return descriptor is not None and descriptor.company_id == request.actor.company_id


def ownership(request: PolicyRequest) -> bool:
    descriptor = request.descriptor
    if descriptor is None:
        return False
    return request.actor.id in (descriptor.owner_id, descriptor.assignee_id)


def role_compatibility(request: PolicyRequest) -> bool:
    """
    The actor's role must be allowed to assign to the target's role.

    Targets outside the actor's company are denied. For ``role.manage`` the
    role being granted is checked as well as the target's current role.
    """
    target_user_id = request.context.target_user_id
    if target_user_id is None:
        return False

    users = request.registry.users
    if users.get_user_company(target_user_id) != request.actor.company_id:
        return False

    actor_role = request.actor_role()
    target_roles = {users.get_user_role(target_user_id)}
    if request.context.target_role is not None:
        target_roles.add(normalize_role(request.context.target_role))

    return all(can_assign(actor_role, role, request.action) for role in target_roles)


def team_membership(request: PolicyRequest) -> bool:
    """Same company, and admin, same role, or supervisor over technician."""
    target_user_id = request.context.target_user_id
    if target_user_id is None:
        return False

    users = request.registry.users
    if users.get_user_company(target_user_id) != request.actor.company_id:
        return False

    actor_role = request.actor_role()
    target_role = users.get_user_role(target_user_id)
    if actor_role == UserRole.SUPERVISOR and target_role == UserRole.TECHNICIAN:
        return True
    return actor_role == target_role or actor_role == UserRole.ADMIN


DEFAULT_PREDICATES: Dict[str, Callable[[PolicyRequest], bool]] = {
    COMPANY_MATCH: company_match,
    OWNERSHIP: ownership,
    ROLE_COMPATIBILITY: role_compatibility,
    TEAM_MEMBERSHIP: team_membership,
}


class PolicyEngine:
    """
    Registry and evaluator of contextual predicates.

    ``evaluate`` returns the name of the first failing predicate (or
    ``not_found`` for a missing resource), or None when every predicate
    holds. The name is for audit records only.
    """

    def __init__(self, registry: ResourceStoreRegistry, predicates=None):
        self.registry = registry
        self._predicates = dict(DEFAULT_PREDICATES)
        self._predicates.update(predicates or {})

    def register(self, name: str, predicate: Callable[[PolicyRequest], bool]) -> None:
        self._predicates[name] = predicate

    def predicate_names(self):
        return tuple(self._predicates)

    def evaluate(self, actor: Identity, action: PermissionAction, context: ContextualInput) -> Optional[str]:
        names = list(context.predicates)
        for name in names:
            if name not in self._predicates:
                raise ImproperlyConfigured(f"Unknown policy predicate: {name}")

        descriptor = None
        if context.resource_id is not None:
            store = self.registry.get(context.resource_type)
            if store is None:
                raise ImproperlyConfigured(
                    f"No resource store registered for '{context.resource_type}'"
                )
            descriptor = store.get_ownership_descriptor(context.resource_id)
            if descriptor is None:
                return NOT_FOUND
            names = [COMPANY_MATCH] + [name for name in names if name != COMPANY_MATCH]

        request = PolicyRequest(
            actor=actor,
            action=action,
            context=context,
            descriptor=descriptor,
            registry=self.registry,
        )
        for name in names:
            if not self._predicates[name](request):
                logger.debug(
                    f"Policy predicate failed: {name}",
                    extra={'user_id': actor.id, 'action': action.value}
                )
                return name
        return None
