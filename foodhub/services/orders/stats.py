"""
Restaurant Order Statistics

Sales figures for one restaurant, computed from orders whose payment went
through (paid and every status after it). Cancelled and unpaid orders never
count.

The weekday/hour grid is bucketed in the restaurant's reporting timezone:
row 0 is Monday, column 0 is the hour starting at midnight.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.exceptions import ValidationError
from foodhub.models import Order, OrderLine, OrderStatus, utcnow
from foodhub.services import catalog

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (
    OrderStatus.PAID,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

RANKED_ITEMS = 3


@dataclass
class ItemSales:
    item_name: str
    quantity: int


@dataclass
class RestaurantStats:
    restaurant_id: uuid.UUID
    total_orders: int
    total_revenue: int
    average_order_value: float
    top_items: list[ItemSales] = field(default_factory=list)
    bottom_items: list[ItemSales] = field(default_factory=list)
    orders_per_hour_by_weekday: list[list[int]] = field(
        default_factory=lambda: [[0] * 24 for _ in range(7)]
    )


async def _ranked_items(db: AsyncSession, filters: list, descending: bool) -> list[ItemSales]:
    sold = func.sum(OrderLine.quantity).label("sold")
    query = (
        select(OrderLine.item_name, sold)
        .join(Order, OrderLine.order_id == Order.id)
        .where(*filters)
        .group_by(OrderLine.item_name)
        .order_by(sold.desc() if descending else sold.asc(), OrderLine.item_name)
        .limit(RANKED_ITEMS)
    )
    rows = (await db.execute(query)).all()
    return [ItemSales(item_name=name, quantity=int(quantity)) for name, quantity in rows]


async def restaurant_stats(
    db: AsyncSession,
    restaurant_id: uuid.UUID,
    tz: Optional[tzinfo] = None,
    since_days: Optional[int] = None,
) -> RestaurantStats:
    """
    Compute order statistics for a restaurant.

    Args:
        tz: Timezone for the weekday/hour grid (UTC when omitted)
        since_days: Only count orders created within that many days of now

    Raises:
        NotFoundError: unknown restaurant
        ValidationError: since_days below 1
    """
    await catalog.get_restaurant(db, restaurant_id)
    tz = tz or timezone.utc

    filters = [
        Order.restaurant_id == restaurant_id,
        Order.status.in_(SETTLED_STATUSES),
    ]
    if since_days is not None:
        if since_days < 1:
            raise ValidationError("since_days must be at least 1")
        filters.append(Order.created_at >= utcnow() - timedelta(days=since_days))

    count, revenue = (
        await db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.total), 0)).where(*filters)
        )
    ).one()
    count, revenue = int(count), int(revenue)

    stats = RestaurantStats(
        restaurant_id=restaurant_id,
        total_orders=count,
        total_revenue=revenue,
        average_order_value=revenue / count if count else 0.0,
        top_items=await _ranked_items(db, filters, descending=True),
        bottom_items=await _ranked_items(db, filters, descending=False),
    )

    created = (await db.execute(select(Order.created_at).where(*filters))).scalars()
    for created_at in created:
        # SQLite hands back naive datetimes; they were written as UTC
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        local = created_at.astimezone(tz)
        stats.orders_per_hour_by_weekday[local.weekday()][local.hour] += 1

    logger.debug(
        f"Stats for restaurant {restaurant_id}: {count} order(s), revenue={revenue}"
    )
    return stats
