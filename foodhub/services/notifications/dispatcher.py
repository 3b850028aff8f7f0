"""
Notification Dispatcher

Turns a NotificationDraft into a persisted Notification plus one push per
registered device token of every resolved user.

    draft ──▶ resolve users ──▶ INSERT notification ──▶ COMMIT
                                                         │
                          tokens of resolved users ◀─────┘
                                     │
                         send() per token, bounded by a semaphore
                                     │
                                DeliveryReport

The record is written first and represents intent, not delivery. Push
failures (returned or raised by the provider) are collected per token and
never propagate; the triggering business operation never depends on them.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.config import get_settings
from foodhub.models import Notification, NotificationToken, User
from foodhub.services import catalog
from foodhub.services.notifications.base import BasePushProvider, PushResult
from foodhub.services.notifications.recipients import (
    Broadcast,
    DirectUser,
    FromRestaurant,
    NotificationDraft,
    Recipient,
    RestaurantOperator,
    Sender,
    System,
    drafts_for_event,
)
from foodhub.services.orders.events import LifecycleEvent

logger = logging.getLogger(__name__)


# =============================================================================
# REPORTS
# =============================================================================

@dataclass
class DeliveryFailure:
    user_id: uuid.UUID
    token: str
    error: str
    error_code: Optional[str] = None


@dataclass
class UserDelivery:
    attempted: int = 0
    succeeded: int = 0


@dataclass
class DeliveryReport:
    """Outcome of one dispatch. A duplicate dispatch attempts nothing."""
    notification_id: Optional[uuid.UUID]
    duplicate: bool = False
    per_user: dict[uuid.UUID, UserDelivery] = field(default_factory=dict)
    failures: list[DeliveryFailure] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(d.attempted for d in self.per_user.values())

    @property
    def succeeded(self) -> int:
        return sum(d.succeeded for d in self.per_user.values())

    @property
    def failed(self) -> int:
        return len(self.failures)


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:
    """Persists notifications and fans them out to device tokens."""

    def __init__(self, provider: BasePushProvider, concurrency: Optional[int] = None):
        self.provider = provider
        self.concurrency = concurrency or get_settings().push_concurrency

    async def _resolve_users(self, db: AsyncSession, recipient: Recipient) -> list[uuid.UUID]:
        if isinstance(recipient, Broadcast):
            result = await db.execute(select(User.id).order_by(User.created_at))
            return list(result.scalars().all())
        if isinstance(recipient, DirectUser):
            user = await catalog.get_user(db, recipient.user_id)
            return [user.id]
        if isinstance(recipient, RestaurantOperator):
            restaurant = await catalog.get_restaurant(db, recipient.restaurant_id)
            return [restaurant.owner_id]
        raise TypeError(f"Unknown recipient {recipient!r}")

    @staticmethod
    def _recipient_column(recipient: Recipient, users: list[uuid.UUID]) -> Optional[uuid.UUID]:
        if isinstance(recipient, Broadcast):
            return None
        return users[0]

    @staticmethod
    def _sender_column(sender: Sender) -> Optional[uuid.UUID]:
        if isinstance(sender, System):
            return None
        if isinstance(sender, FromRestaurant):
            return sender.restaurant_id
        raise TypeError(f"Unknown sender {sender!r}")

    async def _existing(self, db: AsyncSession, dedupe_key: str) -> Optional[Notification]:
        result = await db.execute(
            select(Notification).where(Notification.dedupe_key == dedupe_key)
        )
        return result.scalar_one_or_none()

    async def _persist(
        self,
        db: AsyncSession,
        draft: NotificationDraft,
        users: list[uuid.UUID],
    ) -> tuple[Optional[Notification], bool]:
        """Insert and commit the record; returns (notification, duplicate)."""
        if isinstance(draft.sender, FromRestaurant):
            await catalog.get_restaurant(db, draft.sender.restaurant_id)

        if draft.dedupe_key:
            existing = await self._existing(db, draft.dedupe_key)
            if existing is not None:
                return existing, True

        notification = Notification(
            recipient_id=self._recipient_column(draft.recipient, users),
            sender_id=self._sender_column(draft.sender),
            order_id=draft.order_id,
            ttl_minutes=draft.ttl_minutes,
            title=draft.title,
            body=draft.body,
            dedupe_key=draft.dedupe_key,
        )
        db.add(notification)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent dispatch of the same event won the unique dedupe key
            await db.rollback()
            if draft.dedupe_key:
                return await self._existing(db, draft.dedupe_key), True
            raise
        except Exception:
            await db.rollback()
            raise
        return notification, False

    async def _tokens_for(
        self, db: AsyncSession, recipient: Recipient, users: list[uuid.UUID]
    ) -> list[tuple[uuid.UUID, str]]:
        if not users:
            return []
        query = select(NotificationToken.user_id, NotificationToken.token)
        if isinstance(recipient, Broadcast):
            # Every user; tokens of users created since resolution still count
            query = query.join(User, User.id == NotificationToken.user_id)
        else:
            query = query.where(NotificationToken.user_id.in_(users))
        result = await db.execute(query.order_by(NotificationToken.id))
        return [(row.user_id, row.token) for row in result.all()]

    async def dispatch(self, db: AsyncSession, draft: NotificationDraft) -> DeliveryReport:
        """
        Persist one notification and push it to every token of its
        recipients.

        Raises:
            NotFoundError: the recipient user or restaurant does not exist
        """
        users = await self._resolve_users(db, draft.recipient)
        notification, duplicate = await self._persist(db, draft, users)

        if duplicate:
            logger.info(f"Notification '{draft.dedupe_key}' already dispatched; skipping")
            return DeliveryReport(
                notification_id=notification.id if notification else None,
                duplicate=True,
            )

        report = DeliveryReport(
            notification_id=notification.id,
            per_user={user_id: UserDelivery() for user_id in users},
        )
        tokens = await self._tokens_for(db, draft.recipient, users)
        if not tokens:
            logger.info(f"Notification {notification.id}: no registered tokens, nothing pushed")
            return report

        semaphore = asyncio.Semaphore(self.concurrency)
        data = {"notification_id": str(notification.id)}
        if draft.order_id:
            data["order_id"] = str(draft.order_id)

        async def push(token: str) -> PushResult:
            async with semaphore:
                return await self.provider.send(
                    token, draft.title, draft.body, ttl_minutes=draft.ttl_minutes, data=data
                )

        results = await asyncio.gather(
            *(push(token) for _, token in tokens),
            return_exceptions=True,
        )

        for (user_id, token), result in zip(tokens, results):
            delivery = report.per_user.setdefault(user_id, UserDelivery())
            delivery.attempted += 1
            if isinstance(result, BaseException):
                logger.warning(f"Push to user {user_id} raised: {result!r}")
                report.failures.append(
                    DeliveryFailure(user_id=user_id, token=token, error=repr(result))
                )
            elif result.success:
                delivery.succeeded += 1
            else:
                report.failures.append(
                    DeliveryFailure(
                        user_id=user_id,
                        token=token,
                        error=result.error_message or "push failed",
                        error_code=result.error_code,
                    )
                )

        logger.info(
            f"Notification {notification.id} '{draft.title}': "
            f"{report.succeeded}/{report.attempted} pushes delivered via {self.provider.provider_name}"
        )
        if report.failures:
            logger.warning(
                f"Notification {notification.id}: {report.failed} push(es) failed"
            )
        return report

    async def dispatch_event(
        self, db: AsyncSession, event: LifecycleEvent
    ) -> list[DeliveryReport]:
        """Dispatch every notification a lifecycle event causes."""
        ttl = get_settings().notification_ttl_minutes
        return [await self.dispatch(db, draft) for draft in drafts_for_event(event, ttl)]
