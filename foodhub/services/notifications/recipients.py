"""
Who a notification goes to, who it comes from, and which notifications a
lifecycle event produces.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

from foodhub.models import OrderStatus
from foodhub.services.orders.events import LifecycleEvent


# =============================================================================
# RECIPIENTS
# =============================================================================

@dataclass(frozen=True)
class Broadcast:
    """Every user. Users without registered tokens get the inbox record but no push."""


@dataclass(frozen=True)
class DirectUser:
    user_id: uuid.UUID


@dataclass(frozen=True)
class RestaurantOperator:
    """The user operating a restaurant (its owner)."""
    restaurant_id: uuid.UUID


Recipient = Union[Broadcast, DirectUser, RestaurantOperator]


# =============================================================================
# SENDERS
# =============================================================================

@dataclass(frozen=True)
class System:
    pass


@dataclass(frozen=True)
class FromRestaurant:
    restaurant_id: uuid.UUID


Sender = Union[System, FromRestaurant]


@dataclass(frozen=True)
class NotificationDraft:
    """A notification before it is persisted and pushed."""
    recipient: Recipient
    sender: Sender
    title: str
    body: str
    ttl_minutes: int
    order_id: Optional[uuid.UUID] = None
    dedupe_key: Optional[str] = None


# =============================================================================
# EVENT -> NOTIFICATION MAPPING
# =============================================================================

def _short(order_id: uuid.UUID) -> str:
    return str(order_id)[:8]


def _format_amount(total: int) -> str:
    return f"{total / 100:.2f}"


def drafts_for_event(event: LifecycleEvent, ttl_minutes: int) -> list[NotificationDraft]:
    """
    Notifications caused by one lifecycle event.

    paid goes to the restaurant operator; preparing, ready, completed and
    cancelled go to the customer.
    """
    ref = _short(event.order_id)
    status = event.to_status

    if status == OrderStatus.PAID:
        return [
            NotificationDraft(
                recipient=RestaurantOperator(event.restaurant_id),
                sender=System(),
                title="New paid order",
                body=f"Order {ref} has been paid ({_format_amount(event.total)}). Please accept it.",
                ttl_minutes=ttl_minutes,
                order_id=event.order_id,
                dedupe_key=event.dedupe_key,
            )
        ]

    if status == OrderStatus.PREPARING:
        title, body = "Order accepted", f"The restaurant is preparing your order {ref}."
    elif status == OrderStatus.READY:
        title, body = "Order ready", f"Your order {ref} is ready for pickup."
    elif status == OrderStatus.COMPLETED:
        title, body = "Order completed", f"Order {ref} is complete. Enjoy your meal!"
    elif status == OrderStatus.CANCELLED:
        title = "Order cancelled"
        if event.by_restaurant:
            body = f"The restaurant cancelled your order {ref}."
        elif event.actor.startswith("payment:"):
            body = f"Payment for order {ref} failed, so the order was cancelled."
        else:
            body = f"Your order {ref} was cancelled."
    else:
        return []

    sender = FromRestaurant(event.restaurant_id) if event.by_restaurant else System()
    return [
        NotificationDraft(
            recipient=DirectUser(event.customer_id),
            sender=sender,
            title=title,
            body=body,
            ttl_minutes=ttl_minutes,
            order_id=event.order_id,
            dedupe_key=event.dedupe_key,
        )
    ]
