"""
Orders package: persistence (OrderStore), the status state machine
(OrderLifecycleManager), plus per-restaurant sales statistics.
"""

from foodhub.services.orders.events import (
    Actor,
    CustomerActor,
    LifecycleEvent,
    PaymentActor,
    RestaurantActor,
)
from foodhub.services.orders.lifecycle import (
    INITIAL_STATUS,
    TRANSITIONS,
    EventPublisher,
    NullEventPublisher,
    OrderLifecycleManager,
    allowed_actions,
)
from foodhub.services.orders.stats import ItemSales, RestaurantStats, restaurant_stats
from foodhub.services.orders.store import LineRequest, OrderStore, order_total

__all__ = [
    "Actor",
    "CustomerActor",
    "LifecycleEvent",
    "PaymentActor",
    "RestaurantActor",
    "INITIAL_STATUS",
    "TRANSITIONS",
    "EventPublisher",
    "NullEventPublisher",
    "OrderLifecycleManager",
    "allowed_actions",
    "LineRequest",
    "OrderStore",
    "order_total",
    "ItemSales",
    "RestaurantStats",
    "restaurant_stats",
]
