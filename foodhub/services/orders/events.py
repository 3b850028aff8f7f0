"""
Lifecycle events and the actors that cause them.

A LifecycleEvent is emitted after every committed order status transition
and is the only input of the notification layer. Events cross process
boundaries (Celery), so they serialize to plain dicts.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from foodhub.core.config import redact_session_id
from foodhub.models import OrderAction, OrderStatus, utcnow


# =============================================================================
# ACTORS
# =============================================================================

@dataclass(frozen=True)
class PaymentActor:
    """The payment coordinator acting on behalf of a gateway session."""
    order_id: uuid.UUID
    session_id: str

    @property
    def label(self) -> str:
        return f"payment:{redact_session_id(self.session_id)}"


@dataclass(frozen=True)
class RestaurantActor:
    restaurant_id: uuid.UUID

    @property
    def label(self) -> str:
        return f"restaurant:{self.restaurant_id}"


@dataclass(frozen=True)
class CustomerActor:
    customer_id: uuid.UUID

    @property
    def label(self) -> str:
        return f"customer:{self.customer_id}"


Actor = Union[PaymentActor, RestaurantActor, CustomerActor]


# =============================================================================
# EVENTS
# =============================================================================

@dataclass(frozen=True)
class LifecycleEvent:
    order_id: uuid.UUID
    restaurant_id: uuid.UUID
    customer_id: uuid.UUID
    total: int
    from_status: OrderStatus
    to_status: OrderStatus
    action: OrderAction
    actor: str
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def dedupe_key(self) -> str:
        # The state machine is acyclic, so an order reaches each status at most once
        return f"order:{self.order_id}:{self.to_status.value}"

    @property
    def by_restaurant(self) -> bool:
        return self.actor.startswith("restaurant:")

    def to_dict(self) -> dict:
        return {
            "order_id": str(self.order_id),
            "restaurant_id": str(self.restaurant_id),
            "customer_id": str(self.customer_id),
            "total": self.total,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "action": self.action.value,
            "actor": self.actor,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LifecycleEvent":
        return cls(
            order_id=uuid.UUID(data["order_id"]),
            restaurant_id=uuid.UUID(data["restaurant_id"]),
            customer_id=uuid.UUID(data["customer_id"]),
            total=int(data["total"]),
            from_status=OrderStatus(data["from_status"]),
            to_status=OrderStatus(data["to_status"]),
            action=OrderAction(data["action"]),
            actor=data["actor"],
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
        )
