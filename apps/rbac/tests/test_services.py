"""
Unit tests for RBAC services.

Tests permission resolution, role CRUD, role assignment, direct grants
and cache invalidation.
"""
import pytest
from datetime import timedelta
from django.db import transaction
from django.utils import timezone
from hypothesis import given, settings, strategies as st, HealthCheck

from apps.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.rbac.authorization import AuthorizationContext
from apps.rbac.cache import PermissionCache
from apps.rbac.catalog import PermissionAction, SYSTEM_ROLE_PERMISSIONS, list_actions
from apps.rbac.models import Permission, Role, RolePermission, UserRole, UserRoleAssignment
from apps.rbac.services import PermissionResolver, RoleStore, grant_role_name

A = PermissionAction


@pytest.fixture
def store(engine):
    return engine.role_store


@pytest.fixture
def resolver(engine):
    return engine.resolver


def actor_for(user, *actions):
    return AuthorizationContext(user_id=user.id, company_id=user.company_id, permissions=frozenset(actions))


@pytest.mark.django_db
class TestPermissionResolution:
    """Test effective permission sets."""

    def test_single_role(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('field-crew', 'Field Crew', company_id=company.id,
                                 permissions=[A.TASK_READ, A.ATTENDANCE_CLOCK])
        store.assign_role(user.id, role.id)

        assert resolver.get_effective_permissions(user.id, company.id) == {A.TASK_READ, A.ATTENDANCE_CLOCK}

    def test_union_of_overlapping_roles(self, company, make_user, store, resolver):
        user = make_user(company)
        first = store.create_role('crew-a', 'Crew A', company_id=company.id,
                                  permissions=[A.TASK_READ, A.TASK_UPDATE])
        second = store.create_role('crew-b', 'Crew B', company_id=company.id,
                                   permissions=[A.TASK_UPDATE, A.FILE_UPLOAD])
        store.assign_role(user.id, first.id)
        store.assign_role(user.id, second.id)

        assert resolver.get_effective_permissions(user.id, company.id) == {
            A.TASK_READ, A.TASK_UPDATE, A.FILE_UPLOAD
        }

    def test_unknown_user_has_empty_set(self, company, resolver):
        assert resolver.get_effective_permissions(999999, company.id) == frozenset()

    def test_inactive_assignment_grants_nothing(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        assignment = store.assign_role(user.id, role.id)
        UserRoleAssignment.objects.filter(pk=assignment.pk).update(is_active=False)

        assert resolver.get_effective_permissions(user.id, company.id) == frozenset()

    def test_expired_assignment_grants_nothing(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('temp', 'Temp', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id, expires_at=timezone.now() - timedelta(minutes=1))

        assert resolver.get_effective_permissions(user.id, company.id) == frozenset()

    def test_future_expiry_still_grants(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('temp', 'Temp', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id, expires_at=timezone.now() + timedelta(days=1))

        assert resolver.has_permission(user.id, company.id, A.TASK_READ)

    def test_global_roles_apply_in_every_company(self, company, other_company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('auditor', 'Auditor', permissions=[A.AUDIT_READ])
        store.assign_role(user.id, role.id)

        assert resolver.has_permission(user.id, company.id, A.AUDIT_READ)
        assert resolver.has_permission(user.id, other_company.id, A.AUDIT_READ)

    def test_company_role_does_not_apply_elsewhere(self, company, other_company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id)

        assert resolver.get_effective_permissions(user.id, other_company.id) == frozenset()

    def test_stale_permission_rows_are_ignored(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id)
        stale = Permission.objects.create(code='task.teleport', label='Teleport', category='Tasks',
                                          resource='task', verb='teleport')
        RolePermission.objects.create(role=role, permission=stale)

        assert resolver.get_effective_permissions(user.id, company.id) == {A.TASK_READ}

    def test_has_any_and_all(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id,
                                 permissions=[A.TASK_READ, A.ATTENDANCE_CLOCK])
        store.assign_role(user.id, role.id)

        assert resolver.has_any_permission(user.id, company.id, [A.USER_CREATE, A.TASK_READ])
        assert not resolver.has_any_permission(user.id, company.id, [A.USER_CREATE])
        assert resolver.has_all_permissions(user.id, company.id, ['task.read', 'attendance.clock'])
        assert not resolver.has_all_permissions(user.id, company.id, [A.TASK_READ, A.USER_CREATE])

    def test_results_are_cached(self, company, make_user, store, resolver, django_assert_num_queries):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id)
        resolver.get_effective_permissions(user.id, company.id)

        with django_assert_num_queries(0):
            assert resolver.has_permission(user.id, company.id, A.TASK_READ)

    @given(role_sets=st.lists(
        st.frozensets(st.sampled_from(list_actions()), max_size=8),
        min_size=1, max_size=4,
    ))
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture]
    )
    def test_effective_set_is_union_of_assigned_roles(self, company, make_user, role_sets):
        """Property: the effective set equals the union of the assigned roles' sets."""
        store = RoleStore(PermissionCache(ttl=30))
        resolver = PermissionResolver(store.cache)

        with transaction.atomic():
            user = make_user(company)
            for index, actions in enumerate(role_sets):
                role = store.create_role(f'prop-{user.id}-{index}', f'Prop {index}',
                                         company_id=company.id, permissions=actions)
                store.assign_role(user.id, role.id)

            expected = frozenset().union(*role_sets)
            assert resolver.get_effective_permissions(user.id, company.id) == expected
            transaction.set_rollback(True)


@pytest.mark.django_db
class TestCacheConsistency:
    """Test that permission changes become visible."""

    def test_revocation_visible_after_update(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id,
                                 permissions=[A.TASK_READ, A.TASK_UPDATE])
        store.assign_role(user.id, role.id)
        assert resolver.has_permission(user.id, company.id, A.TASK_UPDATE)

        store.update_role_permissions(role.id, [A.TASK_READ])

        assert not resolver.has_permission(user.id, company.id, A.TASK_UPDATE)

    def test_entry_with_retired_action_is_recomputed(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id)
        cache = resolver.cache
        cache.backend.set(cache._key(user.id, company.id), ['task.read', 'task.teleport'], timeout=30)

        assert resolver.get_effective_permissions(user.id, company.id) == {A.TASK_READ}
        assert cache.get(user.id, company.id) == frozenset({A.TASK_READ})

    def test_revocation_visible_within_ttl_without_invalidation(self, company, make_user):
        """Direct table edits bypass invalidation; the TTL bounds staleness."""
        import time

        store = RoleStore(PermissionCache(ttl=1))
        resolver = PermissionResolver(store.cache)
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_UPDATE])
        store.assign_role(user.id, role.id)
        assert resolver.has_permission(user.id, company.id, A.TASK_UPDATE)

        RolePermission.objects.filter(role=role).delete()
        assert resolver.has_permission(user.id, company.id, A.TASK_UPDATE)

        time.sleep(1.2)

        assert not resolver.has_permission(user.id, company.id, A.TASK_UPDATE)

    def test_flush_strategy(self, company, make_user):
        store = RoleStore(PermissionCache(ttl=30), invalidation_strategy='flush')
        resolver = PermissionResolver(store.cache)
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        store.assign_role(user.id, role.id)
        assert resolver.has_permission(user.id, company.id, A.TASK_READ)

        store.update_role_permissions(role.id, [A.FILE_READ])

        assert resolver.get_effective_permissions(user.id, company.id) == {A.FILE_READ}

    def test_large_roles_fall_back_to_flush(self, company, make_user):
        store = RoleStore(PermissionCache(ttl=30), precise_limit=1)
        resolver = PermissionResolver(store.cache)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        users = [make_user(company), make_user(company)]
        for user in users:
            store.assign_role(user.id, role.id)
            resolver.get_effective_permissions(user.id, company.id)

        store.update_role_permissions(role.id, [A.FILE_READ])

        for user in users:
            assert resolver.get_effective_permissions(user.id, company.id) == {A.FILE_READ}

    def test_assignment_and_removal_invalidate(self, company, make_user, store, resolver):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])
        assert not resolver.has_permission(user.id, company.id, A.TASK_READ)

        store.assign_role(user.id, role.id)
        assert resolver.has_permission(user.id, company.id, A.TASK_READ)

        store.remove_role(user.id, role.id)
        assert not resolver.has_permission(user.id, company.id, A.TASK_READ)


@pytest.mark.django_db
class TestRoleStore:
    """Test role CRUD."""

    def test_create_role(self, company, store):
        role = store.create_role('night-lead', 'Night Lead', description='Night shift',
                                 company_id=company.id, permissions=['task.read', 'TASK_ASSIGN'])

        assert role.company_id == company.id
        assert not role.is_system
        assert role.get_permission_actions() == {A.TASK_READ, A.TASK_ASSIGN}

    def test_unknown_action_rejected_at_creation(self, company, store):
        with pytest.raises(ValidationError):
            store.create_role('broken', 'Broken', company_id=company.id,
                              permissions=[A.TASK_READ, 'task.teleport'])
        assert not Role.objects.filter(name='broken').exists()

    def test_blank_name_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_role('   ', 'Blank')

    def test_reserved_prefix_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_role('grant.sneaky', 'Sneaky')

    def test_duplicate_name_conflicts_across_companies(self, company, other_company, store):
        store.create_role('shared-name', 'Shared', company_id=company.id)

        with pytest.raises(ConflictError):
            store.create_role('shared-name', 'Shared', company_id=other_company.id)

    def test_get_role_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.get_role(424242)

    def test_list_roles_scoping(self, company, other_company, store, make_user):
        store.create_role('global-role', 'Global')
        store.create_role('own-role', 'Own', company_id=company.id)
        store.create_role('foreign-role', 'Foreign', company_id=other_company.id)
        user = make_user(company)
        store.grant_permission(user.id, A.AUDIT_READ)

        names = {role.name for role in store.list_roles(company.id)}

        assert {'global-role', 'own-role'} <= names
        assert 'foreign-role' not in names
        assert not any(name.startswith('grant.') for name in names)

    def test_update_role(self, company, make_user, store):
        role = store.create_role('crew', 'Crew', company_id=company.id)
        actor = actor_for(make_user(company), A.ROLE_MANAGE)

        updated = store.update_role(role.id, display_name='Field Crew', description='Outdoors',
                                    name='field-crew', actor=actor)

        assert updated.name == 'field-crew'
        assert updated.display_name == 'Field Crew'
        assert Role.objects.get(pk=role.id).description == 'Outdoors'

    def test_system_role_cannot_be_renamed(self, system_roles, store):
        with pytest.raises(ForbiddenError):
            store.update_role(system_roles['technician'].id, name='tech')

    def test_rename_conflict(self, company, store):
        store.create_role('alpha', 'Alpha', company_id=company.id)
        beta = store.create_role('beta', 'Beta', company_id=company.id)

        with pytest.raises(ConflictError):
            store.update_role(beta.id, name='alpha')

    def test_actor_cannot_edit_foreign_or_global_roles(self, company, other_company, make_user, store):
        actor = actor_for(make_user(company), A.ROLE_MANAGE)
        foreign = store.create_role('foreign', 'Foreign', company_id=other_company.id)
        global_role = store.create_role('global', 'Global')

        with pytest.raises(ForbiddenError):
            store.update_role_permissions(foreign.id, [A.TASK_READ], actor=actor)
        with pytest.raises(ForbiddenError):
            store.update_role(global_role.id, display_name='Mine now', actor=actor)
        with pytest.raises(ForbiddenError):
            store.delete_role(foreign.id, actor=actor)

    def test_update_permissions_requires_role_manage(self, company, make_user, store):
        role = store.create_role('crew', 'Crew', company_id=company.id)
        actor = actor_for(make_user(company), A.TASK_READ)

        with pytest.raises(ForbiddenError):
            store.update_role_permissions(role.id, [A.TASK_READ], actor=actor)

    def test_update_permissions_replaces_set(self, company, store):
        role = store.create_role('crew', 'Crew', company_id=company.id,
                                 permissions=[A.TASK_READ, A.TASK_UPDATE])

        store.update_role_permissions(role.id, [A.TASK_UPDATE, A.FILE_READ])

        assert role.get_permission_actions() == {A.TASK_UPDATE, A.FILE_READ}

    def test_update_permissions_rejects_unknown(self, company, store):
        role = store.create_role('crew', 'Crew', company_id=company.id, permissions=[A.TASK_READ])

        with pytest.raises(ValidationError):
            store.update_role_permissions(role.id, ['task.teleport'])
        assert role.get_permission_actions() == {A.TASK_READ}

    def test_delete_role(self, company, store):
        role = store.create_role('crew', 'Crew', company_id=company.id)
        store.delete_role(role.id)
        assert not Role.objects.filter(pk=role.id).exists()

    def test_cannot_delete_system_role(self, system_roles, store):
        with pytest.raises(ForbiddenError):
            store.delete_role(system_roles['admin'].id)

    def test_cannot_delete_held_role(self, company, make_user, store):
        role = store.create_role('crew', 'Crew', company_id=company.id)
        store.assign_role(make_user(company).id, role.id)

        with pytest.raises(ConflictError):
            store.delete_role(role.id)


@pytest.mark.django_db
class TestProvisioning:

    def test_provision_is_idempotent(self, store):
        created = store.provision_system_roles()
        assert set(created) == set(SYSTEM_ROLE_PERMISSIONS)

        assert store.provision_system_roles() == []
        assert Role.objects.system_roles().count() == len(SYSTEM_ROLE_PERMISSIONS)

    def test_provision_resyncs_permissions(self, store):
        store.provision_system_roles()
        technician = Role.objects.get(name='technician')
        store.update_role_permissions(technician.id, [A.TASK_READ])

        store.provision_system_roles()

        assert technician.get_permission_actions() == set(SYSTEM_ROLE_PERMISSIONS['technician'])


@pytest.mark.django_db
class TestAssignments:

    def test_assign_role_reactivates(self, company, make_user, store):
        user = make_user(company)
        role = store.create_role('crew', 'Crew', company_id=company.id)
        assignment = store.assign_role(user.id, role.id)
        UserRoleAssignment.objects.filter(pk=assignment.pk).update(is_active=False)

        again = store.assign_role(user.id, role.id)

        assert again.pk == assignment.pk
        assert again.is_active

    def test_assign_foreign_company_role_rejected(self, company, other_company, make_user, store):
        user = make_user(company)
        role = store.create_role('foreign', 'Foreign', company_id=other_company.id)

        with pytest.raises(ValidationError):
            store.assign_role(user.id, role.id)

    def test_actor_outside_company_forbidden(self, company, other_company, make_user, store):
        user = make_user(company)
        actor = actor_for(make_user(other_company), A.ROLE_MANAGE)
        role = store.create_role('global', 'Global')

        with pytest.raises(ForbiddenError):
            store.assign_role(user.id, role.id, actor=actor)

    def test_assign_unknown_user(self, company, store):
        role = store.create_role('crew', 'Crew', company_id=company.id)
        with pytest.raises(NotFoundError):
            store.assign_role(424242, role.id)

    def test_remove_missing_assignment(self, company, make_user, store):
        with pytest.raises(NotFoundError):
            store.remove_role(make_user(company).id, 424242)

    def test_assign_default_role(self, company, make_user, store):
        user = make_user(company, role=UserRole.ACCOUNTANT)
        assert store.assign_default_role(user) is None

        store.provision_system_roles()
        assignment = store.assign_default_role(user)

        assert assignment.is_default
        assert assignment.role.name == 'accountant'


@pytest.mark.django_db
class TestDirectGrants:

    def test_grant_and_revoke(self, company, make_user, store, resolver):
        user = make_user(company)

        role = store.grant_permission(user.id, 'audit.read')

        assert role.name == grant_role_name(user.id, A.AUDIT_READ)
        assert role.company_id == company.id
        assert resolver.has_permission(user.id, company.id, A.AUDIT_READ)

        assert store.revoke_permission(user.id, A.AUDIT_READ) is True
        assert not resolver.has_permission(user.id, company.id, A.AUDIT_READ)
        assert store.revoke_permission(user.id, A.AUDIT_READ) is False

    def test_grant_is_idempotent(self, company, make_user, store):
        user = make_user(company)
        store.grant_permission(user.id, A.AUDIT_READ)
        store.grant_permission(user.id, A.AUDIT_READ)

        assert Role.objects.filter(name=grant_role_name(user.id, A.AUDIT_READ)).count() == 1
