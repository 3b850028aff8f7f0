"""
Notification Service Factory

Returns the Mock or Expo push provider based on ENV_MODE, and the
NotificationDispatcher built on top of it.

Usage:
    from foodhub.services.notifications import get_notification_dispatcher

    dispatcher = get_notification_dispatcher()
    report = await dispatcher.dispatch(db, draft)
"""

import logging
from functools import lru_cache

from foodhub.core.config import get_settings
from foodhub.services.notifications.base import BasePushProvider, PushResult
from foodhub.services.notifications.dispatcher import (
    DeliveryFailure,
    DeliveryReport,
    NotificationDispatcher,
    UserDelivery,
)
from foodhub.services.notifications.expo import ExpoPushProvider
from foodhub.services.notifications.mock import MockPushProvider
from foodhub.services.notifications.publisher import (
    CeleryEventPublisher,
    InlineEventPublisher,
)
from foodhub.services.notifications.recipients import (
    Broadcast,
    DirectUser,
    FromRestaurant,
    NotificationDraft,
    RestaurantOperator,
    System,
    drafts_for_event,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_push_provider() -> BasePushProvider:
    """Get the configured push provider."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Push Provider: Using MockPushProvider (development mode)")
        return MockPushProvider(failure_rate=0.05)
    else:
        logger.info(f"Push Provider: Using ExpoPushProvider ({settings.env_mode.value} mode)")
        return ExpoPushProvider()


def reset_push_provider() -> None:
    """Clear the cached provider instance."""
    get_push_provider.cache_clear()


def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(get_push_provider())


__all__ = [
    "get_push_provider",
    "reset_push_provider",
    "get_notification_dispatcher",
    "BasePushProvider",
    "PushResult",
    "MockPushProvider",
    "ExpoPushProvider",
    "NotificationDispatcher",
    "DeliveryReport",
    "DeliveryFailure",
    "UserDelivery",
    "InlineEventPublisher",
    "CeleryEventPublisher",
    "Broadcast",
    "DirectUser",
    "RestaurantOperator",
    "System",
    "FromRestaurant",
    "NotificationDraft",
    "drafts_for_event",
]
