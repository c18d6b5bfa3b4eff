"""
Custom logging formatters for structured JSON logging, and security event logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime
from django.utils import timezone

from apps.core.sentry_utils import capture_message


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    SECRET_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    # Sensitive field names that should be masked
    SENSITIVE_FIELDS = {
        'email', 'email_address', 'user_email',
        'password', 'password_hash', 'passwd',
        'api_key', 'access_token', 'refresh_token', 'session_token',
        'secret', 'secret_key',
    }

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            username, _, domain = match.group(0).partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"
        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_secrets(cls, text):
        """Mask passwords, tokens and keys in text."""
        if not isinstance(text, str):
            return text
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        return cls.mask_secrets(cls.mask_email(text))

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value
        return masked


# Attributes every LogRecord carries; anything else was passed through ``extra``
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'request_id', 'company_id',
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and company_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if hasattr(record, 'company_id'):
            log_data['company_id'] = record.company_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            if isinstance(value, dict):
                value = PIIMasker.mask_dict(value)
            elif isinstance(value, str):
                value = PIIMasker.mask_text(value)
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class PIIMaskingFilter(logging.Filter):
    """Mask emails and secrets in plain-text log messages."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = PIIMasker.mask_text(record.msg)
        return True


class SecurityLogger:
    """
    Centralized security event logging for authorization events.

    Logs security-related events with structured data to the ``security``
    logger and sends critical events to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'cross_tenant_access',
        'audit_write_failed',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, company_id, etc.)

        Example:
            >>> SecurityLogger.log_event(
            ...     'permission_denied',
            ...     user_id=7,
            ...     company_id=3,
            ...     permission='user.create'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            capture_message(
                f"Critical security event: {event_type}",
                level='error',
                security_event=log_data,
            )

    @staticmethod
    def log_permission_denied(user_id, company_id, required, reason, request_id=None):
        """
        Log an authorization denial.

        Args:
            user_id: Acting user id
            company_id: Acting user's company id
            required: Permission action values that were required
            reason: Internal denial reason code
            request_id: Request id for tracing (optional)
        """
        event_type = 'cross_tenant_access' if reason == 'company_match' else 'permission_denied'
        SecurityLogger.log_event(
            event_type,
            level='warning',
            user_id=user_id,
            company_id=company_id,
            required=list(required),
            reason=reason,
            request_id=request_id,
        )

    @staticmethod
    def log_audit_failure(action, company_id, error):
        """Log that an audit row could not be written."""
        SecurityLogger.log_event(
            'audit_write_failed',
            level='error',
            action=action,
            company_id=company_id,
            error=str(error),
        )
