"""
Notifier Factory

Returns the Mock or Celery-backed notifier based on ENV_MODE.

Version: 4.0.0
"""

import logging
from functools import lru_cache

from homechef.core.config import get_settings
from homechef.services.notifications.base import (
    BaseNotifier,
    NotificationResult,
    describe_event,
)
from homechef.services.notifications.mock import MockNotifier

logger = logging.getLogger(__name__)


@lru_cache()
def get_notifier() -> BaseNotifier:
    """Get the configured notifier."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Notifier: Using MockNotifier (development mode)")
        return MockNotifier()

    from homechef.services.notifications.celery import CeleryNotifier

    logger.info(f"Notifier: Using CeleryNotifier ({settings.env_mode.value} mode)")
    return CeleryNotifier()


def reset_notifier() -> None:
    """Clear the cached notifier instance."""
    get_notifier.cache_clear()


__all__ = [
    "get_notifier",
    "reset_notifier",
    "BaseNotifier",
    "NotificationResult",
    "MockNotifier",
    "describe_event",
]
