"""
RBAC API URLs.

Provides endpoints for:
- Permission catalog and the caller's effective permissions
- Role management (CRUD, permission sets)
- Role assignments per user
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    PermissionListView,
    MyPermissionsView,
    RoleListView,
    RoleDetailView,
    UserRoleListView,
    UserRoleDetailView,
    AuditLogListView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<int:role_id>', RoleDetailView.as_view(), name='role-detail'),

    # Assignment endpoints
    path('users/<int:user_id>/roles', UserRoleListView.as_view(), name='user-role-list'),
    path('users/<int:user_id>/roles/<int:role_id>', UserRoleDetailView.as_view(), name='user-role-detail'),

    # Audit log endpoints
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
