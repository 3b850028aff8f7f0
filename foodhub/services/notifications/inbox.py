"""
Device token registration and notification listings.
"""

import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.exceptions import ValidationError
from foodhub.models import Notification, NotificationToken
from foodhub.services import catalog

logger = logging.getLogger(__name__)


async def _find_token(db: AsyncSession, user_id: uuid.UUID, device_id: str):
    result = await db.execute(
        select(NotificationToken).where(
            NotificationToken.user_id == user_id,
            NotificationToken.device_id == device_id,
        )
    )
    return result.scalar_one_or_none()


async def register_token(
    db: AsyncSession,
    user_id: uuid.UUID,
    device_id: str,
    token: str,
) -> NotificationToken:
    """
    Register a push token for one of the user's devices.

    Re-registering a device replaces its token: the latest write per device
    wins.
    """
    if not device_id.strip() or not token.strip():
        raise ValidationError("device_id and token must not be empty")

    await catalog.get_user(db, user_id)

    for attempt in range(2):
        record = await _find_token(db, user_id, device_id)
        if record is None:
            record = NotificationToken(user_id=user_id, device_id=device_id, token=token)
            db.add(record)
        else:
            record.token = token
        try:
            await db.commit()
            break
        except IntegrityError:
            # Another request registered the same device first; update it instead
            await db.rollback()
            if attempt:
                raise
        except Exception:
            await db.rollback()
            raise

    logger.info(f"Push token registered for user {user_id} device {device_id}")
    return record


async def list_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    skip: int = 0,
    limit: int = 50,
) -> list[Notification]:
    """Notifications addressed to the user plus broadcasts, newest first."""
    await catalog.get_user(db, user_id)
    result = await db.execute(
        select(Notification)
        .where(or_(Notification.recipient_id == user_id, Notification.recipient_id.is_(None)))
        .order_by(Notification.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_for_restaurant(
    db: AsyncSession,
    restaurant_id: uuid.UUID,
    skip: int = 0,
    limit: int = 50,
) -> list[Notification]:
    """Broadcasts sent by a restaurant, newest first."""
    await catalog.get_restaurant(db, restaurant_id)
    result = await db.execute(
        select(Notification)
        .where(
            Notification.sender_id == restaurant_id,
            Notification.recipient_id.is_(None),
        )
        .order_by(Notification.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())
