"""
Request tracking middleware.

Provides request_id tracking and exposes the in-flight request to code that
has no request argument (the authorization engine's identity provider).
"""
import uuid
import logging
import time
from contextvars import ContextVar
from typing import Optional
from django.utils.deprecation import MiddlewareMixin
from django.http import HttpRequest, HttpResponse

from apps.core.logging import PIIMasker

_current_request: ContextVar[Optional[HttpRequest]] = ContextVar('current_request', default=None)


def get_current_request() -> Optional[HttpRequest]:
    """Return the request being processed in this context, if any."""
    return _current_request.get()


def get_request_id() -> Optional[str]:
    """Return the current request ID for logging correlation."""
    request = get_current_request()
    return getattr(request, 'request_id', None) if request is not None else None


def get_client_ip(request: HttpRequest) -> Optional[str]:
    """
    Get client IP address from request headers.

    Takes the first hop of X-Forwarded-For, then X-Real-IP, then REMOTE_ADDR.
    """
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()

    real_ip = request.META.get('HTTP_X_REAL_IP')
    if real_ip:
        return real_ip

    return request.META.get('REMOTE_ADDR')


class RequestTrackingMiddleware(MiddlewareMixin):
    """
    Middleware to track request IDs and publish the current request.

    Generates unique request IDs for each incoming request, binds the request
    to a context variable for the lifetime of the request and logs request
    completion.
    """

    def __init__(self, get_response=None):
        super().__init__(get_response)
        self.logger = logging.getLogger('apps.core.request_tracking')

    def process_request(self, request: HttpRequest) -> Optional[HttpResponse]:
        request.request_id = request.META.get('HTTP_X_REQUEST_ID') or uuid.uuid4().hex
        request.start_time = time.time()
        request._current_request_token = _current_request.set(request)
        return None

    def process_response(self, request: HttpRequest, response: HttpResponse) -> HttpResponse:
        duration = time.time() - getattr(request, 'start_time', time.time())

        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

            status_code = response.status_code
            if status_code >= 500:
                log_method = self.logger.error
            elif status_code >= 400:
                log_method = self.logger.warning
            else:
                log_method = self.logger.info
            log_method(
                f"Request completed: {request.method} {request.path} - {status_code} in {duration:.3f}s",
                extra={
                    'request_id': request.request_id,
                    'method': request.method,
                    'path': request.path,
                    'status_code': status_code,
                    'duration_ms': round(duration * 1000, 2),
                    'event_type': 'request_completion',
                }
            )

        token = getattr(request, '_current_request_token', None)
        if token is not None:
            _current_request.reset(token)
            request._current_request_token = None
        return response

    def process_exception(self, request: HttpRequest, exception: Exception) -> Optional[HttpResponse]:
        self.logger.error(
            f"Request failed: {request.method} {request.path} - {type(exception).__name__}",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'exception_type': type(exception).__name__,
                'exception_message': PIIMasker.mask_text(str(exception)),
                'event_type': 'request_exception',
            },
            exc_info=exception
        )
        return None
