"""
Order Lifecycle Manager

Owns the order status state machine and is the only writer of
`Order.status`.

    payment_pending ──payment_succeeded──▶ paid ──accept──▶ preparing
          │                                  │                 │
          ├──payment_failed──▶ cancelled ◀───┴──cancel─────────┤
          └──cancel (customer)──▶ cancelled              mark_ready
                                                               ▼
                                     completed ◀──complete── ready

TRANSITIONS is the single source of truth for what is allowed. Every write
happens under the order's row lock: read current status, check the row and
its guard, write the new status plus one history row, commit, then publish
the LifecycleEvent. Publishing is at-least-once and never fails the
transition; the notification side deduplicates.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.config import redact_session_id
from foodhub.core.exceptions import InvalidTransitionError
from foodhub.models import Order, OrderAction, OrderStatus, OrderStatusChange
from foodhub.services.orders.events import (
    Actor,
    CustomerActor,
    LifecycleEvent,
    PaymentActor,
    RestaurantActor,
)
from foodhub.services.orders.store import LineRequest, OrderStore

logger = logging.getLogger(__name__)

INITIAL_STATUS = OrderStatus.PAYMENT_PENDING


# =============================================================================
# GUARDS
# =============================================================================
# A guard returns None when the actor may perform the transition, otherwise
# the reason it may not.

Guard = Callable[[Order, Actor], Optional[str]]


def session_references_order(order: Order, actor: Actor) -> Optional[str]:
    if not isinstance(actor, PaymentActor):
        return "only a payment session outcome can settle payment"
    if actor.order_id != order.id:
        return f"payment session {redact_session_id(actor.session_id)} belongs to another order"
    return None


def owning_restaurant(order: Order, actor: Actor) -> Optional[str]:
    if not isinstance(actor, RestaurantActor):
        return "only the restaurant can perform this action"
    if actor.restaurant_id != order.restaurant_id:
        return "restaurant does not own this order"
    return None


def ordering_customer(order: Order, actor: Actor) -> Optional[str]:
    if not isinstance(actor, CustomerActor):
        return "only the customer can cancel an unpaid order"
    if actor.customer_id != order.customer_id:
        return "customer did not place this order"
    return None


@dataclass(frozen=True)
class Transition:
    to_status: OrderStatus
    guard: Guard


TRANSITIONS: dict[tuple[OrderStatus, OrderAction], Transition] = {
    (OrderStatus.PAYMENT_PENDING, OrderAction.PAYMENT_SUCCEEDED): Transition(OrderStatus.PAID, session_references_order),
    (OrderStatus.PAYMENT_PENDING, OrderAction.PAYMENT_FAILED): Transition(OrderStatus.CANCELLED, session_references_order),
    (OrderStatus.PAYMENT_PENDING, OrderAction.CANCEL): Transition(OrderStatus.CANCELLED, ordering_customer),
    (OrderStatus.PAID, OrderAction.ACCEPT): Transition(OrderStatus.PREPARING, owning_restaurant),
    (OrderStatus.PREPARING, OrderAction.MARK_READY): Transition(OrderStatus.READY, owning_restaurant),
    (OrderStatus.READY, OrderAction.COMPLETE): Transition(OrderStatus.COMPLETED, owning_restaurant),
    (OrderStatus.PAID, OrderAction.CANCEL): Transition(OrderStatus.CANCELLED, owning_restaurant),
    (OrderStatus.PREPARING, OrderAction.CANCEL): Transition(OrderStatus.CANCELLED, owning_restaurant),
}


def allowed_actions(status: OrderStatus) -> list[OrderAction]:
    """Actions that have a row for the given status."""
    return [action for (from_status, action) in TRANSITIONS if from_status == status]


def resolve_transition(order: Order, action: OrderAction, actor: Actor) -> Transition:
    """
    Look up and guard-check a transition without applying it.

    Raises:
        InvalidTransitionError: no row for (status, action) or guard failed
    """
    transition = TRANSITIONS.get((order.status, action))
    if transition is None:
        raise InvalidTransitionError(
            f"Cannot {action.value} an order that is {order.status.value}",
            current_status=order.status.value,
            action=action.value,
        )
    reason = transition.guard(order, actor)
    if reason is not None:
        raise InvalidTransitionError(
            f"Cannot {action.value} order {order.id}: {reason}",
            current_status=order.status.value,
            action=action.value,
        )
    return transition


# =============================================================================
# EVENT PUBLISHING
# =============================================================================

class EventPublisher(Protocol):
    async def publish(self, events: Sequence[LifecycleEvent]) -> None:
        ...


class NullEventPublisher:
    """Drops events; used when nothing listens for lifecycle changes."""

    async def publish(self, events: Sequence[LifecycleEvent]) -> None:
        return None


# =============================================================================
# MANAGER
# =============================================================================

class OrderLifecycleManager:
    """The only component that writes Order.status."""

    def __init__(
        self,
        store: Optional[OrderStore] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.store = store or OrderStore()
        self.publisher = publisher or NullEventPublisher()

    async def place_order(
        self,
        db: AsyncSession,
        restaurant_id: uuid.UUID,
        customer_id: uuid.UUID,
        lines: Sequence[LineRequest],
    ) -> Order:
        """Create the order through the store and open it in payment_pending."""
        return await self.store.create_order(
            db,
            restaurant_id=restaurant_id,
            customer_id=customer_id,
            lines=lines,
            status=INITIAL_STATUS,
        )

    def apply(
        self,
        db: AsyncSession,
        order: Order,
        action: OrderAction,
        actor: Actor,
    ) -> LifecycleEvent:
        """
        Apply a transition to an order the caller has already locked.

        The caller owns the transaction: it must commit before publishing
        the returned event, and roll back if anything fails afterwards.
        """
        transition = resolve_transition(order, action, actor)
        from_status = order.status

        order.status = transition.to_status
        db.add(
            OrderStatusChange(
                order_id=order.id,
                from_status=from_status,
                to_status=transition.to_status,
                action=action,
                actor=actor.label,
            )
        )

        logger.info(
            f"Order {order.id}: {from_status.value} -> {transition.to_status.value} "
            f"({action.value} by {actor.label})"
        )

        return LifecycleEvent(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            customer_id=order.customer_id,
            total=order.total,
            from_status=from_status,
            to_status=transition.to_status,
            action=action,
            actor=actor.label,
        )

    async def transition(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        action: OrderAction,
        actor: Actor,
    ) -> tuple[Order, LifecycleEvent]:
        """
        Lock the order, apply one transition, commit and publish.

        Raises:
            NotFoundError: order does not exist
            InvalidTransitionError: transition not allowed; status unchanged
        """
        try:
            order = await self.store.lock_order(db, order_id)
            event = self.apply(db, order, action, actor)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await self.publish([event])
        return order, event

    async def publish(self, events: Sequence[LifecycleEvent]) -> None:
        """Hand committed events to the publisher; failures are only logged."""
        if not events:
            return
        try:
            await self.publisher.publish(events)
        except Exception:
            logger.exception(
                f"Failed to publish {len(events)} lifecycle event(s); "
                f"orders {[str(e.order_id) for e in events]} are committed"
            )
