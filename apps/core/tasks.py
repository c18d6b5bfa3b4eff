"""
Base Celery task class with logging and Sentry reporting.
"""
import logging
from celery import Task
from apps.core.logging import PIIMasker
from apps.core.sentry_utils import add_breadcrumb, capture_exception

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Task base class that logs start, completion and failure.

    Failures are sent to Sentry with the (masked) task arguments and then
    re-raised so Celery's own retry and failure handling still applies.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        context = {
            'task_id': task_id,
            'task_name': self.name,
        }

        logger.info(f"Task started: {self.name}", extra=context)
        add_breadcrumb(category="task", message=f"Task started: {self.name}", data=context)

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {self.name}",
                extra={**context, 'exception': str(exc)},
                exc_info=True
            )
            capture_exception(
                exc,
                task={**context, 'kwargs': self._sanitize_kwargs(kwargs)}
            )
            raise

        logger.info(f"Task completed: {self.name}", extra=context)
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'retry_count': self.request.retries,
                'exception': str(exc),
            }
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_kwargs(self, kwargs):
        """Mask sensitive keyword arguments before they leave the process."""
        return PIIMasker.mask_dict(dict(kwargs or {}))
