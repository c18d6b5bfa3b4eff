"""
Role store and permission resolution.

Implements:
- PermissionResolver: effective permission sets per (user, company), cached
- RoleStore: role CRUD, permission replacement, role assignment, direct grants
"""
import logging
from typing import FrozenSet, Iterable, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.rbac.cache import PermissionCache
from apps.rbac.catalog import (
    PermissionAction, SYSTEM_ROLE_BY_USER_ROLE, SYSTEM_ROLE_DISPLAY_NAMES, SYSTEM_ROLE_PERMISSIONS,
    get_definition, is_valid, parse_action, parse_actions,
)
from apps.rbac.models import (
    Permission, Role, RolePermission, User, UserRoleAssignment,
)

logger = logging.getLogger(__name__)

# Name prefix of the single-permission roles that model direct grants
GRANT_ROLE_PREFIX = 'grant.'


def grant_role_name(user_id, action: PermissionAction) -> str:
    return f"{GRANT_ROLE_PREFIX}u{user_id}.{action.value}"


class PermissionResolver:
    """
    Computes effective permission sets.

    The effective set of a user in a company is the union of the permissions
    of every active, unexpired role assigned to the user whose company is
    null or equals that company. Sets are cached per (user, company) for the
    cache TTL. Database errors propagate to the caller.
    """

    def __init__(self, cache: PermissionCache):
        self.cache = cache

    def get_effective_permissions(self, user_id, company_id) -> FrozenSet[PermissionAction]:
        """
        Resolve the effective set for a user acting in a company.

        Never fails for an unknown user; returns the empty set.
        """
        cached = self.cache.get(user_id, company_id)
        if cached is not None:
            return cached

        permissions = self._load(user_id, company_id)
        self.cache.set(user_id, company_id, permissions)
        return permissions

    def _load(self, user_id, company_id) -> FrozenSet[PermissionAction]:
        role_ids = UserRoleAssignment.objects.effective().filter(
            user_id=user_id
        ).filter(
            Q(role__company__isnull=True) | Q(role__company_id=company_id)
        ).values_list('role_id', flat=True)

        codes = RolePermission.objects.filter(
            role_id__in=list(role_ids)
        ).values_list('permission__code', flat=True).distinct()

        # Rows left behind by a catalog change grant nothing
        return frozenset(PermissionAction(code) for code in codes if is_valid(code))

    def has_permission(self, user_id, company_id, action) -> bool:
        """Check if a user holds one action."""
        return parse_action(action) in self.get_effective_permissions(user_id, company_id)

    def has_any_permission(self, user_id, company_id, actions) -> bool:
        """Check if a user holds at least one of the actions."""
        permissions = self.get_effective_permissions(user_id, company_id)
        for action in parse_actions(actions):
            if action in permissions:
                return True
        return False

    def has_all_permissions(self, user_id, company_id, actions) -> bool:
        """Check if a user holds every one of the actions."""
        permissions = self.get_effective_permissions(user_id, company_id)
        for action in parse_actions(actions):
            if action not in permissions:
                return False
        return True


class RoleStore:
    """
    Service for role administration.

    Every mutation that can change someone's effective set invalidates the
    affected cache entries once the database work is done. Invalidation is
    precise (per holder) unless configured to flush, or unless the role has
    more holders than ``precise_limit``.
    """

    def __init__(self, cache: PermissionCache, invalidation_strategy: str = 'precise',
                 precise_limit: int = 500):
        self.cache = cache
        self.invalidation_strategy = invalidation_strategy
        self.precise_limit = precise_limit

    # Roles

    def create_role(self, name, display_name, description=None, company_id=None,
                    permissions=(), is_system=False) -> Role:
        """
        Create a role holding a set of catalog actions.

        Raises:
            ValidationError: Blank name, reserved name or unknown action
            ConflictError: A role with this name already exists
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError("Role name is required", details={'field': 'name'})
        if name.startswith(GRANT_ROLE_PREFIX):
            raise ValidationError(
                f"Role names may not start with '{GRANT_ROLE_PREFIX}'",
                details={'field': 'name'}
            )
        actions = parse_actions(permissions)
        return self._create_role(
            name=name,
            display_name=display_name or name,
            description=description,
            company_id=company_id,
            actions=actions,
            is_system=is_system,
        )

    def _create_role(self, name, display_name, description, company_id, actions, is_system) -> Role:
        if Role.objects.filter(name=name).exists():
            raise ConflictError(f"Role '{name}' already exists", details={'name': name})

        try:
            with transaction.atomic():
                role = Role.objects.create(
                    name=name,
                    display_name=display_name,
                    description=description or '',
                    company_id=company_id,
                    is_system=is_system,
                )
                self._set_permissions(role, actions)
        except IntegrityError:
            raise ConflictError(f"Role '{name}' already exists", details={'name': name})

        logger.info(
            f"Role created: {name}",
            extra={'role_id': role.id, 'company_id': company_id, 'permission_count': len(actions)}
        )
        return role

    def get_role(self, role_id) -> Role:
        """Raises NotFoundError if the role does not exist."""
        role = Role.objects.filter(pk=role_id).first()
        if role is None:
            raise NotFoundError("Role not found", details={'role_id': role_id})
        return role

    def list_roles(self, company_id):
        """Global roles plus the company's own roles, without direct-grant roles."""
        return Role.objects.visible_to(company_id).exclude(
            name__startswith=GRANT_ROLE_PREFIX
        ).prefetch_related('role_permissions__permission')

    def update_role(self, role_id, display_name=None, description=None, name=None, actor=None) -> Role:
        """
        Update a role's descriptive fields.

        Raises:
            NotFoundError: Role does not exist
            ForbiddenError: Renaming a system role, or the actor may not manage it
            ConflictError: New name already taken
        """
        with transaction.atomic():
            role = self._lock_role(role_id)
            self._check_actor(role, actor)

            update_fields = []
            if name is not None and name != role.name:
                if role.is_system:
                    raise ForbiddenError(reason='system_role')
                name = name.strip()
                if not name or name.startswith(GRANT_ROLE_PREFIX):
                    raise ValidationError("Invalid role name", details={'field': 'name'})
                if Role.objects.filter(name=name).exclude(pk=role.pk).exists():
                    raise ConflictError(f"Role '{name}' already exists", details={'name': name})
                role.name = name
                update_fields.append('name')
            if display_name is not None:
                role.display_name = display_name
                update_fields.append('display_name')
            if description is not None:
                role.description = description
                update_fields.append('description')

            if update_fields:
                role.save(update_fields=update_fields + ['updated_at'])
        return role

    def update_role_permissions(self, role_id, permissions, actor=None) -> Role:
        """
        Replace a role's permission set atomically.

        The role row is locked for the duration of the replacement so that
        concurrent edits of the same role serialise.

        Args:
            role_id: Role to update
            permissions: Iterable of catalog actions
            actor: AuthorizationContext of the caller (None for provisioning)

        Raises:
            ValidationError: Unknown action
            NotFoundError: Role does not exist
            ForbiddenError: Actor lacks role.manage or the role is outside its company
        """
        actions = parse_actions(permissions)
        if actor is not None and PermissionAction.ROLE_MANAGE not in actor.permissions:
            raise ForbiddenError(reason='missing_permission')

        with transaction.atomic():
            role = self._lock_role(role_id)
            self._check_actor(role, actor)
            before = role.get_permission_actions()
            self._set_permissions(role, actions)
            role.save(update_fields=['updated_at'])

        if before != frozenset(actions):
            self._invalidate_role_holders(role)
        logger.info(
            f"Role permissions updated: {role.name}",
            extra={
                'role_id': role.id,
                'added': sorted(a.value for a in frozenset(actions) - before),
                'removed': sorted(a.value for a in before - frozenset(actions)),
            }
        )
        return role

    def delete_role(self, role_id, actor=None) -> None:
        """
        Delete a role.

        Raises:
            NotFoundError: Role does not exist
            ForbiddenError: System role, or the actor may not manage it
            ConflictError: Some user still holds the role
        """
        with transaction.atomic():
            role = self._lock_role(role_id)
            self._check_actor(role, actor)
            if role.is_system:
                raise ForbiddenError(reason='system_role')
            if role.user_assignments.exists():
                raise ConflictError(
                    "Role is assigned to users and cannot be deleted",
                    details={'role_id': role.id}
                )
            role.delete()
        logger.info(f"Role deleted: {role.name}", extra={'role_id': role_id})

    def provision_system_roles(self) -> List[str]:
        """
        Create or resync the global system roles (idempotent).

        Returns:
            Names of the roles that were created
        """
        created = []
        for name, actions in SYSTEM_ROLE_PERMISSIONS.items():
            with transaction.atomic():
                role, was_created = Role.objects.get_or_create(
                    name=name,
                    defaults={
                        'display_name': SYSTEM_ROLE_DISPLAY_NAMES[name],
                        'is_system': True,
                    }
                )
                if not role.is_system:
                    role.is_system = True
                    role.save(update_fields=['is_system', 'updated_at'])
                before = role.get_permission_actions()
                self._set_permissions(role, actions)
            if was_created:
                created.append(name)
            elif before != frozenset(actions):
                self._invalidate_role_holders(role)
        return created

    # Assignments

    def assign_role(self, user_id, role_id, assigned_by=None, expires_at=None,
                    is_default=False, actor=None) -> UserRoleAssignment:
        """
        Assign a role to a user, reactivating an existing assignment.

        Raises:
            NotFoundError: User or role does not exist
            ValidationError: Role belongs to another company than the user
            ForbiddenError: The actor is outside the user's company
        """
        user = self._get_user(user_id)
        role = self.get_role(role_id)
        if actor is not None and user.company_id != actor.company_id:
            raise ForbiddenError(reason='company_match')
        if role.company_id is not None and role.company_id != user.company_id:
            raise ValidationError(
                "Role belongs to another company",
                details={'role_id': role.id, 'user_id': user.id}
            )

        assignment, _ = UserRoleAssignment.objects.update_or_create(
            user=user,
            role=role,
            defaults={
                'is_active': True,
                'is_default': is_default,
                'expires_at': expires_at,
                'assigned_by_id': getattr(assigned_by, 'id', assigned_by),
                'assigned_at': timezone.now(),
            }
        )
        self._invalidate_users([user.id])
        logger.info(
            f"Role assigned: {role.name}",
            extra={'user_id': user.id, 'role_id': role.id, 'company_id': user.company_id}
        )
        return assignment

    def remove_role(self, user_id, role_id, actor=None) -> None:
        """Raises NotFoundError if the user does not hold the role."""
        assignment = UserRoleAssignment.objects.filter(
            user_id=user_id, role_id=role_id
        ).select_related('user').first()
        if assignment is None:
            raise NotFoundError(
                "Role assignment not found",
                details={'user_id': user_id, 'role_id': role_id}
            )
        if actor is not None and assignment.user.company_id != actor.company_id:
            raise ForbiddenError(reason='company_match')

        assignment.delete()
        self._invalidate_users([user_id])
        logger.info("Role removed", extra={'user_id': user_id, 'role_id': role_id})

    def get_user_roles(self, user_id):
        """All assignments of a user, including inactive and expired ones."""
        return UserRoleAssignment.objects.for_user(user_id).select_related('role')

    def assign_default_role(self, user) -> Optional[UserRoleAssignment]:
        """
        Assign the system role matching the user's primary role.

        Returns None when no such system role has been provisioned.
        """
        role_name = SYSTEM_ROLE_BY_USER_ROLE.get(user.role)
        role = Role.objects.filter(name=role_name, is_system=True).first() if role_name else None
        if role is None:
            logger.warning(
                f"No system role for primary role {user.role}",
                extra={'user_id': user.id}
            )
            return None
        return self.assign_role(user.id, role.id, is_default=True)

    # Direct grants

    def grant_permission(self, user_id, action, assigned_by=None) -> Role:
        """
        Grant one action directly to a user.

        Modelled as a single-permission role scoped to the user's company so
        that resolution stays a plain union over roles.
        """
        action = parse_action(action)
        user = self._get_user(user_id)
        name = grant_role_name(user.id, action)

        role = Role.objects.filter(name=name).first()
        if role is None:
            role = self._create_role(
                name=name,
                display_name=f"Direct grant: {get_definition(action).label}",
                description=None,
                company_id=user.company_id,
                actions=(action,),
                is_system=False,
            )
        self.assign_role(user.id, role.id, assigned_by=assigned_by)
        return role

    def revoke_permission(self, user_id, action) -> bool:
        """
        Revoke a direct grant.

        Returns:
            True if a grant existed, False otherwise
        """
        action = parse_action(action)
        role = Role.objects.filter(name=grant_role_name(user_id, action)).first()
        if role is None:
            return False
        role.delete()
        self._invalidate_users([user_id])
        return True

    # Helpers

    def _lock_role(self, role_id) -> Role:
        role = Role.objects.select_for_update().filter(pk=role_id).first()
        if role is None:
            raise NotFoundError("Role not found", details={'role_id': role_id})
        return role

    def _get_user(self, user_id) -> User:
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            raise NotFoundError("User not found", details={'user_id': user_id})
        return user

    def _check_actor(self, role: Role, actor) -> None:
        """
        Only provisioning (no actor) may touch global roles; an actor may
        only manage its own company's roles.
        """
        if actor is not None and role.company_id != actor.company_id:
            raise ForbiddenError(reason='company_match')

    def _permission_rows(self, actions: Iterable[PermissionAction]):
        actions = list(actions)
        rows = list(Permission.objects.for_actions(actions))
        if len(rows) != len(set(actions)):
            Permission.objects.sync_from_catalog()
            rows = list(Permission.objects.for_actions(actions))
        return rows

    def _set_permissions(self, role: Role, actions) -> None:
        """Make the role hold exactly ``actions``."""
        target = {row.id: row for row in self._permission_rows(actions)}
        current = set(
            RolePermission.objects.for_role(role).values_list('permission_id', flat=True)
        )

        to_remove = current - set(target)
        if to_remove:
            RolePermission.objects.filter(role=role, permission_id__in=to_remove).delete()

        RolePermission.objects.bulk_create([
            RolePermission(role=role, permission=target[permission_id])
            for permission_id in set(target) - current
        ])

    def _invalidate_role_holders(self, role: Role) -> None:
        holder_ids = UserRoleAssignment.objects.holder_ids(role.id)
        if self.invalidation_strategy == 'flush' or len(holder_ids) > self.precise_limit:
            self.cache.clear()
            return
        self._invalidate_users(holder_ids, extra_company_id=role.company_id)

    def _invalidate_users(self, user_ids, extra_company_id=None) -> None:
        if self.invalidation_strategy == 'flush':
            self.cache.clear()
            return
        pairs = set()
        for user_id, company_id in User.objects.filter(id__in=user_ids).values_list('id', 'company_id'):
            pairs.add((user_id, company_id))
            if extra_company_id is not None:
                pairs.add((user_id, extra_company_id))
        self.cache.invalidate(pairs)
