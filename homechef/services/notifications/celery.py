"""
Celery Notifier

Hands every core event to the external notification worker through the
Celery broker. The worker owns push/SMS/email delivery and its retries.

Version: 4.0.0
"""

import asyncio
import logging

from homechef.core.config import get_settings
from homechef.events import CoreEvent
from homechef.services.notifications.base import (
    BaseNotifier,
    NotificationResult,
    describe_event,
)

logger = logging.getLogger(__name__)


class CeleryNotifier(BaseNotifier):
    """Publishes events to the notification queue."""

    def __init__(self, celery_app=None):
        settings = get_settings()
        if celery_app is None:
            from homechef.celery_worker import celery_app
        self._celery = celery_app
        self._task_name = settings.notification_task_name
        self._queue = settings.notification_queue
        logger.info(f"CeleryNotifier initialized (queue={self._queue})")

    @property
    def provider_name(self) -> str:
        return "celery"

    async def notify(self, event: CoreEvent) -> NotificationResult:
        title, message = describe_event(event)
        payload = {**event.to_dict(), "title": title, "message": message}

        try:
            result = await asyncio.to_thread(
                self._celery.send_task,
                self._task_name,
                args=[payload],
                queue=self._queue,
            )
        except Exception as e:
            logger.error(f"Failed to queue {event.kind} notification: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="celery",
            )

        logger.debug(f"Queued {event.kind} notification as task {result.id}")
        return NotificationResult(
            success=True,
            message_id=result.id,
            provider="celery",
        )

    def _ping(self) -> None:
        with self._celery.connection_for_write() as connection:
            connection.ensure_connection(max_retries=1)

    async def health_check(self) -> bool:
        """Ping the broker."""
        try:
            await asyncio.to_thread(self._ping)
            return True
        except Exception as e:
            logger.error(f"Notification broker unreachable: {e}")
            return False
