"""
API tests for the RBAC endpoints.
"""
import pytest
from django.urls import reverse
from rest_framework import status

from apps.rbac.catalog import PermissionAction, list_actions
from apps.rbac.models import AuditLog, Role, UserRole, UserRoleAssignment

A = PermissionAction


@pytest.fixture
def admin(company, system_roles, make_user, request_engine):
    return make_user(company, role=UserRole.ADMIN, name='Ada Admin')


@pytest.fixture
def technician(company, system_roles, make_user):
    return make_user(company, role=UserRole.TECHNICIAN, name='Tom Tech')


@pytest.fixture
def people_ops(company, system_roles, make_user, request_engine):
    """HR user who may manage roles."""
    user = make_user(company, role=UserRole.HR, name='Hana HR')
    role = request_engine.role_store.create_role(
        'people-ops', 'People Ops', company_id=company.id,
        permissions=[A.ROLE_MANAGE, A.USER_READ],
    )
    request_engine.role_store.assign_role(user.id, role.id)
    return user


@pytest.mark.django_db
class TestAuthentication:

    def test_unauthenticated_request_is_401(self, api_client, request_engine):
        response = api_client.get(reverse('rbac:role-list'))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.data['code'] == 'AUTHENTICATION_REQUIRED'

    def test_me_requires_authentication(self, api_client, request_engine):
        response = api_client.get(reverse('rbac:my-permissions'))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_forbidden_response_hides_reason(self, api_client, technician, request_engine):
        api_client.force_authenticate(technician)

        response = api_client.get(reverse('rbac:role-list'))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'ACCESS_DENIED'
        assert set(response.data) == {'error', 'code', 'request_id'}
        assert response['X-Request-ID'] == response.data['request_id']

    def test_denial_audited_with_request_context(self, api_client, technician, request_engine):
        api_client.force_authenticate(technician)

        api_client.get(reverse('rbac:audit-log-list'), HTTP_USER_AGENT='pytest-agent',
                       HTTP_X_REQUEST_ID='req-denied-1')

        log = AuditLog.objects.get(action='access.denied')
        assert log.user_id == technician.id
        assert log.details['required'] == ['audit.read']
        assert log.user_agent == 'pytest-agent'
        assert log.request_id == 'req-denied-1'


@pytest.mark.django_db
class TestPermissionEndpoints:

    def test_catalog_grouped_by_category(self, api_client, admin):
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:permission-list'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == len(list_actions())
        codes = {item['code'] for items in response.data['categories'].values() for item in items}
        assert 'task.assign' in codes

    def test_my_permissions(self, api_client, technician, request_engine):
        api_client.force_authenticate(technician)

        response = api_client.get(reverse('rbac:my-permissions'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['user_id'] == technician.id
        assert response.data['role'] == UserRole.TECHNICIAN
        assert 'task.read' in response.data['permissions']
        assert 'user.create' not in response.data['permissions']
        assert response.data['roles'] == [
            {'id': response.data['roles'][0]['id'], 'name': 'technician', 'is_default': True}
        ]


@pytest.mark.django_db
class TestRoleEndpoints:

    def test_list_roles(self, api_client, admin, other_company, request_engine):
        request_engine.role_store.create_role('foreign-crew', 'Foreign Crew', company_id=other_company.id)
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:role-list'))

        assert response.status_code == status.HTTP_200_OK
        names = {role['name'] for role in response.data['roles']}
        assert 'technician' in names
        assert 'foreign-crew' not in names

    def test_create_role(self, api_client, admin, company):
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:role-list'), {
            'name': 'night-lead',
            'display_name': 'Night Lead',
            'permissions': ['task.read', 'task.assign'],
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['company_id'] == company.id
        assert response.data['permissions'] == ['task.assign', 'task.read']
        log = AuditLog.objects.get(action='role.created')
        assert log.resource_id == response.data['id']
        assert log.user_name == 'Ada Admin'

    def test_create_role_rejects_unknown_action(self, api_client, admin):
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:role-list'), {
            'name': 'broken',
            'display_name': 'Broken',
            'permissions': ['task.read', 'task.teleport'],
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'VALIDATION_ERROR'
        assert 'permissions' in response.data['details']
        assert not Role.objects.filter(name='broken').exists()

    def test_duplicate_name_conflicts(self, api_client, admin):
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:role-list'), {
            'name': 'technician',
            'display_name': 'Technician again',
        }, format='json')

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_update_permissions_revokes_immediately(self, api_client, admin, company, make_user,
                                                    request_engine):
        role = request_engine.role_store.create_role('crew', 'Crew', company_id=company.id,
                                                     permissions=[A.TASK_READ, A.TASK_ASSIGN])
        member = make_user(company)
        request_engine.role_store.assign_role(member.id, role.id)
        assert request_engine.resolver.has_permission(member.id, company.id, A.TASK_ASSIGN)
        api_client.force_authenticate(admin)

        response = api_client.patch(reverse('rbac:role-detail', args=[role.id]), {
            'display_name': 'Field Crew',
            'permissions': ['task.read'],
        }, format='json')

        assert response.status_code == status.HTTP_200_OK
        assert response.data['display_name'] == 'Field Crew'
        assert response.data['permissions'] == ['task.read']
        assert not request_engine.resolver.has_permission(member.id, company.id, A.TASK_ASSIGN)
        assert request_engine.resolver.has_permission(member.id, company.id, A.TASK_READ)
        assert set(AuditLog.objects.values_list('action', flat=True)) >= {
            'role.updated', 'role.permissions_updated'
        }

    def test_cannot_edit_global_role(self, api_client, admin, system_roles):
        api_client.force_authenticate(admin)

        response = api_client.patch(reverse('rbac:role-detail', args=[system_roles['technician'].id]), {
            'permissions': ['task.read'],
        }, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_other_company_role_is_forbidden(self, api_client, admin, other_company, request_engine):
        role = request_engine.role_store.create_role('foreign', 'Foreign', company_id=other_company.id)
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:role-detail', args=[role.id]))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_missing_role_is_404(self, api_client, admin):
        api_client.force_authenticate(admin)
        response = api_client.get(reverse('rbac:role-detail', args=[424242]))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_delete_role(self, api_client, admin, company, request_engine):
        role = request_engine.role_store.create_role('temp', 'Temp', company_id=company.id)
        api_client.force_authenticate(admin)

        response = api_client.delete(reverse('rbac:role-detail', args=[role.id]))

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not Role.objects.filter(pk=role.id).exists()
        assert AuditLog.objects.filter(action='role.deleted', resource_id=role.id).exists()

    def test_delete_system_role_forbidden(self, api_client, admin, system_roles):
        api_client.force_authenticate(admin)

        response = api_client.delete(reverse('rbac:role-detail', args=[system_roles['client'].id]))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Role.objects.filter(name='client').exists()


@pytest.mark.django_db
class TestAssignmentEndpoints:

    def test_list_user_roles(self, api_client, admin, technician):
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:user-role-list', args=[technician.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['count'] == 1
        assert response.data['roles'][0]['role']['name'] == 'technician'

    def test_list_user_roles_other_company(self, api_client, admin, other_company, make_user):
        outsider = make_user(other_company)
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:user-role-list', args=[outsider.id]))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_assign_role(self, api_client, admin, technician, system_roles):
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:user-role-list', args=[technician.id]), {
            'role_id': system_roles['supervisor'].id,
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['role']['name'] == 'supervisor'
        assert response.data['assigned_by'] == admin.id
        log = AuditLog.objects.get(action='role.assigned')
        assert log.resource == 'user'
        assert log.resource_id == technician.id

    def test_hr_cannot_grant_admin(self, api_client, people_ops, technician, system_roles):
        api_client.force_authenticate(people_ops)

        response = api_client.post(reverse('rbac:user-role-list', args=[technician.id]), {
            'role_id': system_roles['admin'].id,
        }, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert not UserRoleAssignment.objects.filter(user=technician, role=system_roles['admin']).exists()
        assert AuditLog.objects.get(action='access.denied').details['reason'] == 'role_compatibility'

    def test_hr_can_grant_supervisor(self, api_client, people_ops, technician, system_roles):
        api_client.force_authenticate(people_ops)

        response = api_client.post(reverse('rbac:user-role-list', args=[technician.id]), {
            'role_id': system_roles['supervisor'].id,
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED

    def test_hr_can_grant_tenant_custom_role(self, api_client, people_ops, technician, company,
                                             request_engine):
        night_lead = request_engine.role_store.create_role(
            'night-shift-lead', 'Night Shift Lead', company_id=company.id,
            permissions=[A.TASK_ASSIGN],
        )
        api_client.force_authenticate(people_ops)

        response = api_client.post(reverse('rbac:user-role-list', args=[technician.id]), {
            'role_id': night_lead.id,
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert UserRoleAssignment.objects.filter(user=technician, role=night_lead).exists()
        assert request_engine.resolver.has_permission(technician.id, company.id, A.TASK_ASSIGN)

    def test_assign_to_other_company_user_forbidden(self, api_client, admin, other_company, make_user,
                                                    system_roles):
        outsider = make_user(other_company)
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:user-role-list', args=[outsider.id]), {
            'role_id': system_roles['supervisor'].id,
        }, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_assign_unknown_role_is_404(self, api_client, admin, technician):
        api_client.force_authenticate(admin)

        response = api_client.post(reverse('rbac:user-role-list', args=[technician.id]), {
            'role_id': 424242,
        }, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_remove_role(self, api_client, admin, technician, system_roles, request_engine):
        assert request_engine.resolver.has_permission(technician.id, technician.company_id, A.TASK_READ)
        api_client.force_authenticate(admin)

        response = api_client.delete(
            reverse('rbac:user-role-detail', args=[technician.id, system_roles['technician'].id])
        )

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not request_engine.resolver.has_permission(technician.id, technician.company_id, A.TASK_READ)
        assert AuditLog.objects.filter(action='role.removed', resource_id=technician.id).exists()


@pytest.mark.django_db
class TestAuditLogEndpoint:

    def test_list_uses_camel_case(self, api_client, admin, technician):
        api_client.force_authenticate(technician)
        api_client.get(reverse('rbac:role-list'))
        api_client.force_authenticate(admin)

        response = api_client.get(reverse('rbac:audit-log-list'))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total'] == 1
        assert response.data['limit'] == 50
        assert response.data['offset'] == 0
        log = response.data['logs'][0]
        assert set(log) == {
            'id', 'companyId', 'userId', 'userName', 'userRole', 'action', 'resource',
            'resourceId', 'details', 'ipAddress', 'userAgent', 'createdAt',
        }
        assert log['userId'] == technician.id
        assert log['userName'] == 'Tom Tech'
        assert log['action'] == 'access.denied'

    def test_filters_and_paging(self, api_client, admin, company):
        api_client.force_authenticate(admin)
        for name in ('crew-a', 'crew-b', 'crew-c'):
            api_client.post(reverse('rbac:role-list'), {'name': name, 'display_name': name}, format='json')

        response = api_client.get(reverse('rbac:audit-log-list'), {'action': 'role.created', 'limit': 2})

        assert response.data['total'] == 3
        assert len(response.data['logs']) == 2
        assert response.data['logs'][0]['details']['name'] == 'crew-c'

    def test_invalid_limit_rejected(self, api_client, admin):
        api_client.force_authenticate(admin)
        response = api_client.get(reverse('rbac:audit-log-list'), {'limit': 1000})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
