"""
DRF permission classes and decorators for RBAC enforcement.

This module provides:
- HasPermissionActions: DRF permission class that runs the authorizer
- @requires_permissions: Decorator to declare required actions on views
"""
import logging
from rest_framework.permissions import BasePermission

from apps.core.exceptions import ForbiddenError
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)

ALL = 'all'
ANY = 'any'


class HasPermissionActions(BasePermission):
    """
    DRF permission class that authorizes requests through the RBAC engine.

    Required actions are read from the handler method first, then from the
    view class. The resulting ``AuthorizationContext`` is stored on
    ``request.authorization`` for the view to use; views guarded this way
    must not call ``authorize*`` again.

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasPermissionActions]
            required_permissions = [PermissionAction.ROLE_MANAGE]

    Or with the decorator:
        class AuditLogListView(APIView):
            permission_classes = [HasPermissionActions]

            @requires_permissions(PermissionAction.AUDIT_READ)
            def get(self, request):
                pass

    Denials raise ``ForbiddenError`` / ``UnauthorizedError`` so the project
    exception handler renders them.
    """

    def _requirements(self, request, view):
        handler = getattr(view, request.method.lower(), None)
        required = getattr(handler, 'required_permissions', None)
        mode = getattr(handler, 'permission_mode', None)
        if required is None:
            required = getattr(view, 'required_permissions', None)
            mode = getattr(view, 'permission_mode', ALL)
        return required, mode or ALL

    def has_permission(self, request, view):
        required, mode = self._requirements(request, view)
        if not required:
            return True

        from apps.rbac import access

        if mode == ANY:
            request.authorization = access.authorize_any(required)
        else:
            request.authorization = access.authorize_all(required)

        logger.debug(
            "Permission granted",
            extra={
                'required_permissions': [str(action) for action in required],
                'view': view.__class__.__name__,
                'request_id': getattr(request, 'request_id', None),
            }
        )
        return True

    def has_object_permission(self, request, view, obj):
        """
        Verify that the object belongs to the actor's company.

        Objects without a company (global roles) are shared by every company.
        """
        authorization = getattr(request, 'authorization', None)
        object_company_id = getattr(obj, 'company_id', None)
        if authorization is None or object_company_id is None:
            return True

        if object_company_id != authorization.company_id:
            SecurityLogger.log_permission_denied(
                authorization.user_id,
                authorization.company_id,
                [],
                'company_match',
                request_id=getattr(request, 'request_id', None),
            )
            raise ForbiddenError(reason='company_match')
        return True


def requires_permissions(*actions, mode=ALL):
    """
    Decorator to declare required permission actions on view classes or methods.

    Args:
        *actions: Catalog actions required for access
        mode: ``'all'`` (default) or ``'any'``

    Returns:
        Decorator that sets ``required_permissions`` and ``permission_mode``
    """
    def decorator(view_or_method):
        view_or_method.required_permissions = tuple(actions)
        view_or_method.permission_mode = mode
        return view_or_method

    return decorator
