"""
RBAC REST API views.

Implements endpoints for:
- Permission catalog
- Role management (CRUD, permission sets)
- Role assignments per user
- Audit log viewing
- The caller's own effective permissions

Every endpoint authorizes exactly once, either through
``HasPermissionActions`` or through a single ``access.authorize*`` call,
and records an audit entry after each mutation.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import NotFoundError, ValidationError
from apps.core.permissions import HasPermissionActions, requires_permissions
from apps.rbac import access
from apps.rbac.audit import (
    AuditAction, AuditLogEntry, AuditLogFilter, AuditResource, Page, audit_context_from_request,
)
from apps.rbac.catalog import PermissionAction, get_definition, get_permissions_by_category
from apps.rbac.engine import get_engine
from apps.rbac.models import Role, User
from apps.rbac.policies import ContextualInput, ROLE_COMPATIBILITY
from apps.rbac.serializers import (
    AssignRoleSerializer, AuditLogQuerySerializer, AuditLogSerializer,
    PermissionDefinitionSerializer, RoleCreateSerializer, RoleSerializer,
    RoleUpdateSerializer, UserRoleAssignmentSerializer,
)


def _validated(serializer_class, data):
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationError("Invalid request data", details=serializer.errors)
    return serializer.validated_data


def _audit(request, ctx, action, resource, resource_id=None, details=None):
    access.create_audit_log(AuditLogEntry(
        company_id=ctx.company_id,
        user_id=ctx.user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details or {},
        **audit_context_from_request(request),
    ))


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission catalog',
        description='''
List every action in the permission catalog, grouped by category.

**Required permission:** `role.manage`
        ''',
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Success Response',
                value={
                    'count': 2,
                    'categories': {
                        'Tasks': [
                            {'code': 'task.read', 'label': 'View Tasks', 'category': 'Tasks',
                             'resource': 'task', 'verb': 'read'},
                            {'code': 'task.assign', 'label': 'Assign Tasks', 'category': 'Tasks',
                             'resource': 'task', 'verb': 'assign'},
                        ]
                    }
                },
                response_only=True
            )
        ]
    )
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions

    The catalog is static; this reads it from code, not from the table.
    """
    permission_classes = [HasPermissionActions]
    required_permissions = [PermissionAction.ROLE_MANAGE]

    def get(self, request):
        grouped = get_permissions_by_category()
        categories = {
            category: PermissionDefinitionSerializer([get_definition(a) for a in actions], many=True).data
            for category, actions in grouped.items()
        }
        return Response({
            'count': sum(len(actions) for actions in grouped.values()),
            'categories': categories,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List the global roles plus the roles owned by the caller's company.

**Required permission:** `role.manage`
        ''',
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='''
Create a custom role owned by the caller's company.

Every entry of `permissions` must be a catalog action; unknown values are
rejected with 400. Role names are unique across all companies.

**Required permission:** `role.manage`
        ''',
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Create Role Request',
                value={
                    'name': 'night-shift-lead',
                    'display_name': 'Night Shift Lead',
                    'description': 'Supervises the night shift',
                    'permissions': ['task.read', 'task.assign', 'attendance.read']
                },
                request_only=True
            )
        ]
    )
)
class RoleListView(APIView):
    """
    GET /v1/rbac/roles - List roles
    POST /v1/rbac/roles - Create a company role
    """
    permission_classes = [HasPermissionActions]
    required_permissions = [PermissionAction.ROLE_MANAGE]

    def get(self, request):
        ctx = request.authorization
        roles = get_engine().role_store.list_roles(ctx.company_id)
        return Response({
            'count': len(roles),
            'roles': RoleSerializer(roles, many=True).data,
        })

    def post(self, request):
        ctx = request.authorization
        data = _validated(RoleCreateSerializer, request.data)

        role = get_engine().role_store.create_role(
            name=data['name'],
            display_name=data['display_name'],
            description=data.get('description'),
            company_id=ctx.company_id,
            permissions=data['permissions'],
        )
        _audit(
            request, ctx, AuditAction.ROLE_CREATED, AuditResource.ROLE, role.id,
            {'name': role.name, 'permissions': sorted(a.value for a in data['permissions'])}
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get role',
        responses={200: RoleSerializer, 404: OpenApiTypes.OBJECT},
    ),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='''
Update a role's descriptive fields and, when `permissions` is present,
replace its permission set. System roles cannot be renamed.

**Required permission:** `role.manage`
        ''',
        request=RoleUpdateSerializer,
        responses={200: RoleSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='''
Delete a custom role. System roles and roles still held by users cannot
be deleted.

**Required permission:** `role.manage`
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
class RoleDetailView(APIView):
    """
    GET /v1/rbac/roles/{id}
    PATCH /v1/rbac/roles/{id}
    DELETE /v1/rbac/roles/{id}
    """
    permission_classes = [HasPermissionActions]
    required_permissions = [PermissionAction.ROLE_MANAGE]

    def get_role(self, request, role_id):
        role = get_engine().role_store.get_role(role_id)
        self.check_object_permissions(request, role)
        return role

    def get(self, request, role_id):
        return Response(RoleSerializer(self.get_role(request, role_id)).data)

    def patch(self, request, role_id):
        ctx = request.authorization
        data = _validated(RoleUpdateSerializer, request.data)
        store = get_engine().role_store

        role = self.get_role(request, role_id)
        details = {}
        descriptive = {key: data[key] for key in ('name', 'display_name', 'description') if key in data}
        if descriptive:
            role = store.update_role(role.id, actor=ctx, **descriptive)
            details['changes'] = sorted(descriptive)
            _audit(request, ctx, AuditAction.ROLE_UPDATED, AuditResource.ROLE, role.id, details)

        if 'permissions' in data:
            role = store.update_role_permissions(role.id, data['permissions'], actor=ctx)
            _audit(
                request, ctx, AuditAction.ROLE_PERMISSIONS_UPDATED, AuditResource.ROLE, role.id,
                {'permissions': sorted(a.value for a in data['permissions'])}
            )

        return Response(RoleSerializer(store.get_role(role.id)).data)

    def delete(self, request, role_id):
        ctx = request.authorization
        role = self.get_role(request, role_id)
        name = role.name

        get_engine().role_store.delete_role(role.id, actor=ctx)
        _audit(request, ctx, AuditAction.ROLE_DELETED, AuditResource.ROLE, role_id, {'name': name})
        return Response(status=status.HTTP_204_NO_CONTENT)


def _role_context(user_id, role):
    return ContextualInput(
        resource_type='user',
        resource_id=user_id,
        target_user_id=user_id,
        target_role=role.name if role is not None else None,
        predicates=(ROLE_COMPATIBILITY,),
    )


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Assignments'],
        summary="List a user's roles",
        description='''
List the role assignments of a user in the caller's company, including
inactive and expired ones.

**Required permission:** `user.read`
        ''',
        responses={200: UserRoleAssignmentSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Assign role to user',
        description='''
Assign a role to a user of the caller's company.

**Required permission:** `role.manage`, plus the role compatibility rule:
HR and operations managers cannot grant the admin role.
        ''',
        request=AssignRoleSerializer,
        responses={201: UserRoleAssignmentSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class UserRoleListView(APIView):
    """
    GET /v1/rbac/users/{user_id}/roles
    POST /v1/rbac/users/{user_id}/roles
    """
    permission_classes = [HasPermissionActions]

    @requires_permissions(PermissionAction.USER_READ)
    def get(self, request, user_id):
        user = User.objects.filter(pk=user_id).first()
        if user is None:
            raise NotFoundError("User not found", details={'user_id': user_id})
        self.check_object_permissions(request, user)

        assignments = get_engine().role_store.get_user_roles(user.id)
        return Response({
            'count': len(assignments),
            'roles': UserRoleAssignmentSerializer(assignments, many=True).data,
        })

    def post(self, request, user_id):
        data = _validated(AssignRoleSerializer, request.data)
        role = Role.objects.filter(pk=data['role_id']).first()

        ctx = access.authorize_contextual(PermissionAction.ROLE_MANAGE, _role_context(user_id, role))
        if role is None or role.company_id not in (None, ctx.company_id):
            raise NotFoundError("Role not found", details={'role_id': data['role_id']})

        assignment = get_engine().role_store.assign_role(
            user_id, role.id,
            assigned_by=ctx.user_id,
            expires_at=data.get('expires_at'),
            actor=ctx,
        )
        _audit(
            request, ctx, AuditAction.ROLE_ASSIGNED, AuditResource.USER, user_id,
            {'role_id': role.id, 'role_name': role.name}
        )
        return Response(UserRoleAssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Assignments'],
        summary='Remove role from user',
        description='''
Remove a role assignment. The caller's effective permissions are re-read
from storage on the next check.

**Required permission:** `role.manage`, plus the role compatibility rule.
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class UserRoleDetailView(APIView):
    """
    DELETE /v1/rbac/users/{user_id}/roles/{role_id}
    """
    permission_classes = [HasPermissionActions]

    def delete(self, request, user_id, role_id):
        role = Role.objects.filter(pk=role_id).first()
        ctx = access.authorize_contextual(PermissionAction.ROLE_MANAGE, _role_context(user_id, role))

        get_engine().role_store.remove_role(user_id, role_id, actor=ctx)
        _audit(
            request, ctx, AuditAction.ROLE_REMOVED, AuditResource.USER, user_id,
            {'role_id': role_id, 'role_name': role.name if role is not None else None}
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit logs',
        description='''
List audit entries of the caller's company, newest first.

**Required permission:** `audit.read`

Query parameters:
- `user_id`, `action`, `resource`, `resource_id`: exact filters
- `start_date`, `end_date`: ISO 8601 bounds on `createdAt` (inclusive)
- `limit` (default 50, max 200) and `offset`
        ''',
        parameters=[
            OpenApiParameter('user_id', OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter('action', OpenApiTypes.STR, OpenApiParameter.QUERY),
            OpenApiParameter('resource', OpenApiTypes.STR, OpenApiParameter.QUERY),
            OpenApiParameter('resource_id', OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter('start_date', OpenApiTypes.DATETIME, OpenApiParameter.QUERY),
            OpenApiParameter('end_date', OpenApiTypes.DATETIME, OpenApiParameter.QUERY),
            OpenApiParameter('limit', OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter('offset', OpenApiTypes.INT, OpenApiParameter.QUERY),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
)
class AuditLogListView(APIView):
    """
    GET /v1/rbac/audit-logs
    """
    permission_classes = [HasPermissionActions]
    required_permissions = [PermissionAction.AUDIT_READ]

    def get(self, request):
        ctx = request.authorization
        params = _validated(AuditLogQuerySerializer, request.query_params)

        result = access.get_audit_logs(
            AuditLogFilter(
                company_id=ctx.company_id,
                user_id=params.get('user_id'),
                action=params.get('action'),
                resource=params.get('resource'),
                resource_id=params.get('resource_id'),
                start_date=params.get('start_date'),
                end_date=params.get('end_date'),
            ),
            Page(limit=params['limit'], offset=params['offset']),
        )
        return Response({
            'logs': AuditLogSerializer(result.entries, many=True).data,
            'total': result.total,
            'limit': result.limit,
            'offset': result.offset,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='My effective permissions',
        description='''
Return the caller's effective permission set in their company.

**No permission required** - users can always see their own permissions.
        ''',
        responses={200: OpenApiTypes.OBJECT},
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/rbac/me/permissions
    """
    permission_classes = [HasPermissionActions]

    def get(self, request):
        engine = get_engine()
        identity = engine.authorizer.identity_provider.current_user()
        permissions = engine.resolver.get_effective_permissions(identity.id, identity.company_id)
        assignments = engine.role_store.get_user_roles(identity.id)

        return Response({
            'user_id': identity.id,
            'company_id': identity.company_id,
            'role': identity.role_hint,
            'permissions': sorted(action.value for action in permissions),
            'roles': [
                {'id': a.role_id, 'name': a.role.name, 'is_default': a.is_default}
                for a in assignments if a.is_effective()
            ],
        })
