"""
Mock Notifier

Simulates notification delivery for development.
No actual messages are sent - just logged and kept in memory.

Version: 4.0.0
"""

import logging
import uuid

from homechef.events import CoreEvent, OrderEvent
from homechef.services.notifications.base import (
    BaseNotifier,
    NotificationResult,
    describe_event,
)

logger = logging.getLogger(__name__)


class MockNotifier(BaseNotifier):
    """Mock notifier for development and tests."""

    def __init__(self):
        self.events: list[CoreEvent] = []
        logger.info("MockNotifier initialized")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def notify(self, event: CoreEvent) -> NotificationResult:
        """Log the notification the event would produce."""
        self.events.append(event)
        title, message = describe_event(event)

        if isinstance(event, OrderEvent):
            subject = f"order {event.order_id}"
        else:
            subject = f"tip {event.tip_id}"

        message_id = f"notif_mock_{uuid.uuid4().hex[:12]}"
        logger.info(f"Mock notification for {subject}: {title} - {message} (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock",
        )

    def clear(self) -> None:
        self.events.clear()

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
