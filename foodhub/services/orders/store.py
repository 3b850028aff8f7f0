"""
Order Store

Persistence of orders and their line snapshots. Validates the requested
lines, snapshots menu names/prices, computes the integer total and writes
order + lines in one transaction.

The store never triggers payment or notifications and never decides the
status on its own: OrderLifecycleManager.place_order supplies the initial
status and is the only caller of create_order.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.exceptions import NotFoundError, ValidationError
from foodhub.models import Order, OrderLine, OrderStatus, utcnow
from foodhub.services import catalog

logger = logging.getLogger(__name__)

# Quantities, subtotals and totals are stored in 4-byte INTEGER columns
MAX_AMOUNT = 2**31 - 1


@dataclass(frozen=True)
class LineRequest:
    """One requested line: a menu item and how many of it."""
    item_id: uuid.UUID
    quantity: int


def validate_lines(lines: Sequence[LineRequest]) -> None:
    if not lines:
        raise ValidationError("An order needs at least one line")
    for line in lines:
        # bool is an int subclass; True must not count as quantity 1
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise ValidationError(f"Quantity for item {line.item_id} must be an integer")
        if line.quantity <= 0:
            raise ValidationError(f"Quantity for item {line.item_id} must be positive")
        if line.quantity > MAX_AMOUNT:
            raise ValidationError(f"Quantity for item {line.item_id} must not exceed {MAX_AMOUNT}")


def order_total(lines: Sequence[OrderLine]) -> int:
    """Exact integer sum of price * quantity."""
    return sum(line.item_price * line.quantity for line in lines)


class OrderStore:
    """Data access and invariant enforcement for orders."""

    async def create_order(
        self,
        db: AsyncSession,
        restaurant_id: uuid.UUID,
        customer_id: uuid.UUID,
        lines: Sequence[LineRequest],
        status: OrderStatus,
    ) -> Order:
        """
        Create an order with its line snapshots and commit it.

        Raises:
            ValidationError: empty lines, non-positive quantity, or a menu
                item from another restaurant
            NotFoundError: unknown restaurant, customer or menu item
        """
        validate_lines(lines)

        try:
            await catalog.get_restaurant(db, restaurant_id)
            await catalog.get_user(db, customer_id)
            menu = await catalog.get_menu_items(db, (line.item_id for line in lines))

            order_lines = []
            for position, line in enumerate(lines):
                item = menu[line.item_id]
                if item.restaurant_id != restaurant_id:
                    raise ValidationError(
                        f"Menu item {item.id} does not belong to restaurant {restaurant_id}"
                    )
                if item.price * line.quantity > MAX_AMOUNT:
                    raise ValidationError(
                        f"Subtotal for item {item.id} exceeds the maximum order amount"
                    )
                order_lines.append(
                    OrderLine(
                        position=position,
                        item_name=item.name,
                        item_price=item.price,
                        quantity=line.quantity,
                    )
                )

            total = order_total(order_lines)
            if total > MAX_AMOUNT:
                raise ValidationError(f"Order total must not exceed {MAX_AMOUNT}")

            order = Order(
                restaurant_id=restaurant_id,
                customer_id=customer_id,
                total=total,
                status=status,
                lines=order_lines,
            )
            db.add(order)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Order {order.id} created: {len(order_lines)} line(s), total={order.total}"
        )
        return order

    async def get_order(self, db: AsyncSession, order_id: uuid.UUID) -> Order:
        order = await db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def lock_order(self, db: AsyncSession, order_id: uuid.UUID) -> Order:
        """
        Load an order with an exclusive row lock held until the current
        transaction ends.
        """
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        restaurant_id: Optional[uuid.UUID] = None,
        customer_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        since_days: Optional[int] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[int, list[Order]]:
        """
        Newest first; returns (total matching, page).

        since_days keeps only orders created within that many days of now.
        """
        query = select(Order).order_by(Order.created_at.desc())
        count_query = select(func.count(Order.id))

        filters = []
        if restaurant_id is not None:
            filters.append(Order.restaurant_id == restaurant_id)
        if customer_id is not None:
            filters.append(Order.customer_id == customer_id)
        if status is not None:
            filters.append(Order.status == status)
        if since_days is not None:
            if since_days < 1:
                raise ValidationError("since_days must be at least 1")
            filters.append(Order.created_at >= utcnow() - timedelta(days=since_days))
        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(query.offset(skip).limit(limit))
        return total, list(result.scalars().all())
