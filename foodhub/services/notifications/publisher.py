"""
Lifecycle event publishers.

The lifecycle manager publishes committed events through one of these:

- InlineEventPublisher: dispatches in the current process with its own
  database session (the request's session may already be closed).
- CeleryEventPublisher: enqueues dispatch_lifecycle_event per event.

Selected by NOTIFICATION_DISPATCH_MODE.
"""

import logging
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from foodhub.services.notifications.dispatcher import NotificationDispatcher
from foodhub.services.orders.events import LifecycleEvent

logger = logging.getLogger(__name__)


class InlineEventPublisher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    async def publish(self, events: Sequence[LifecycleEvent]) -> None:
        async with self.session_factory() as db:
            for event in events:
                try:
                    await self.dispatcher.dispatch_event(db, event)
                except Exception:
                    # Replays are deduplicated by dedupe_key
                    logger.exception(f"Inline dispatch failed for '{event.dedupe_key}'")


class CeleryEventPublisher:
    async def publish(self, events: Sequence[LifecycleEvent]) -> None:
        from foodhub.tasks import dispatch_lifecycle_event

        for event in events:
            task = dispatch_lifecycle_event.delay(event.to_dict())
            logger.info(f"Queued notification task {task.id} for '{event.dedupe_key}'")
