"""
Exception taxonomy and the DRF exception handler.
"""
import logging
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class OpsdeskException(Exception):
    """Base exception for Opsdesk-specific errors."""

    status_code = 500
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedError(OpsdeskException):
    """Raised when no verifiable identity is available."""
    status_code = 401
    code = 'AUTHENTICATION_REQUIRED'

    def __init__(self, message='Authentication required', details=None):
        super().__init__(message, details)


class ForbiddenError(OpsdeskException):
    """
    Raised when an identity is verified but a permission or contextual check fails.

    ``reason`` is an internal code (e.g. ``missing_permission``,
    ``company_match``) intended for audit records and operational logs. It is
    never rendered to the caller.
    """
    status_code = 403
    code = 'ACCESS_DENIED'

    def __init__(self, message='Insufficient permissions', details=None, reason='missing_permission'):
        super().__init__(message, details)
        self.reason = reason


class ValidationError(OpsdeskException):
    """Raised when input to an administrative operation is malformed."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class NotFoundError(OpsdeskException):
    """Raised when a role, user or resource does not exist."""
    status_code = 404
    code = 'NOT_FOUND'


class ConflictError(OpsdeskException):
    """Raised on uniqueness conflicts such as a duplicate role name."""
    status_code = 409
    code = 'CONFLICT'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, OpsdeskException):
        log_method = logger.warning if exc.status_code < 500 else logger.error
        log_method(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': exc.message,
                'reason': getattr(exc, 'reason', None),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            }
        )
        data = {
            'error': exc.message,
            'code': exc.code,
            'request_id': request_id,
        }
        # Denials never echo details back; they may describe resources the caller cannot see
        if exc.details and not isinstance(exc, (ForbiddenError, UnauthorizedError)):
            data['details'] = exc.details
        return Response(data, status=exc.status_code)

    # rest_framework.views resolves DEFAULT_PERMISSION_CLASSES on import, which loads this module
    from rest_framework.views import exception_handler

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    logger.error(
        f"API Exception: {exc.__class__.__name__}",
        extra={
            'exception': str(exc),
            'request_id': request_id,
            'path': request.path if request else None,
            'method': request.method if request else None,
        },
        exc_info=response is None
    )

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        return Response(
            {
                'error': 'Internal server error',
                'detail': 'An unexpected error occurred',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
