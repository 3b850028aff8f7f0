"""
Tests for the order state machine.
"""

import uuid
from itertools import product

import pytest
from sqlalchemy import select

from foodhub.core.exceptions import InvalidTransitionError, NotFoundError
from foodhub.models import OrderAction, OrderStatus, OrderStatusChange
from foodhub.services.orders import (
    TRANSITIONS,
    CustomerActor,
    LifecycleEvent,
    OrderLifecycleManager,
    PaymentActor,
    RestaurantActor,
    allowed_actions,
)


class RecordingPublisher:
    def __init__(self):
        self.events: list[LifecycleEvent] = []

    async def publish(self, events):
        self.events.extend(events)


class ExplodingPublisher:
    async def publish(self, events):
        raise RuntimeError("broker down")


@pytest.fixture
def recorder():
    return RecordingPublisher()


@pytest.fixture
def manager(recorder):
    return OrderLifecycleManager(publisher=recorder)


async def pay(manager, db, order, session_id="ps_test"):
    return await manager.transition(
        db, order.id, OrderAction.PAYMENT_SUCCEEDED, PaymentActor(order.id, session_id)
    )


class TestTransitionTable:

    def test_terminal_states_have_no_actions(self):
        assert allowed_actions(OrderStatus.COMPLETED) == []
        assert allowed_actions(OrderStatus.CANCELLED) == []

    def test_ready_cannot_be_cancelled(self):
        assert (OrderStatus.READY, OrderAction.CANCEL) not in TRANSITIONS

    def test_every_target_is_a_forward_move(self):
        order_of = {
            OrderStatus.PAYMENT_PENDING: 0,
            OrderStatus.PAID: 1,
            OrderStatus.PREPARING: 2,
            OrderStatus.READY: 3,
            OrderStatus.COMPLETED: 4,
            OrderStatus.CANCELLED: 5,
        }
        for (from_status, _), transition in TRANSITIONS.items():
            assert order_of[transition.to_status] > order_of[from_status]


class TestHappyPath:

    async def test_full_lifecycle(self, db, manager, recorder, order, catalog):
        restaurant = RestaurantActor(catalog.restaurant.id)

        await pay(manager, db, order)
        await manager.transition(db, order.id, OrderAction.ACCEPT, restaurant)
        await manager.transition(db, order.id, OrderAction.MARK_READY, restaurant)
        updated, event = await manager.transition(db, order.id, OrderAction.COMPLETE, restaurant)

        assert updated.status == OrderStatus.COMPLETED
        assert [e.to_status for e in recorder.events] == [
            OrderStatus.PAID,
            OrderStatus.PREPARING,
            OrderStatus.READY,
            OrderStatus.COMPLETED,
        ]
        assert event.from_status == OrderStatus.READY
        assert event.actor == f"restaurant:{catalog.restaurant.id}"

        history = (
            await db.execute(
                select(OrderStatusChange)
                .where(OrderStatusChange.order_id == order.id)
                .order_by(OrderStatusChange.id)
            )
        ).scalars().all()
        assert [(h.from_status, h.to_status) for h in history] == [
            (OrderStatus.PAYMENT_PENDING, OrderStatus.PAID),
            (OrderStatus.PAID, OrderStatus.PREPARING),
            (OrderStatus.PREPARING, OrderStatus.READY),
            (OrderStatus.READY, OrderStatus.COMPLETED),
        ]

    async def test_customer_cancels_unpaid_order(self, db, manager, order, catalog):
        updated, event = await manager.transition(
            db, order.id, OrderAction.CANCEL, CustomerActor(catalog.customer.id)
        )
        assert updated.status == OrderStatus.CANCELLED
        assert event.dedupe_key == f"order:{order.id}:cancelled"

    async def test_restaurant_cancels_paid_order(self, db, manager, order, catalog):
        await pay(manager, db, order)
        updated, _ = await manager.transition(
            db, order.id, OrderAction.CANCEL, RestaurantActor(catalog.restaurant.id)
        )
        assert updated.status == OrderStatus.CANCELLED


class TestRejections:

    async def test_payment_pending_straight_to_ready(self, db, manager, recorder, order, catalog):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await manager.transition(
                db, order.id, OrderAction.MARK_READY, RestaurantActor(catalog.restaurant.id)
            )

        assert exc_info.value.status_code == 409
        assert (await manager.store.get_order(db, order.id)).status == OrderStatus.PAYMENT_PENDING
        assert recorder.events == []

    async def test_completed_never_goes_back_to_preparing(self, db, manager, order, catalog):
        restaurant = RestaurantActor(catalog.restaurant.id)
        await pay(manager, db, order)
        for action in (OrderAction.ACCEPT, OrderAction.MARK_READY, OrderAction.COMPLETE):
            await manager.transition(db, order.id, action, restaurant)

        for action in OrderAction:
            with pytest.raises(InvalidTransitionError):
                await manager.transition(db, order.id, action, restaurant)
        assert (await manager.store.get_order(db, order.id)).status == OrderStatus.COMPLETED

    async def test_other_restaurant_cannot_act(self, db, manager, order, catalog):
        await pay(manager, db, order)
        with pytest.raises(InvalidTransitionError):
            await manager.transition(
                db, order.id, OrderAction.ACCEPT, RestaurantActor(catalog.rival.id)
            )

    async def test_restaurant_cannot_settle_payment(self, db, manager, order, catalog):
        with pytest.raises(InvalidTransitionError):
            await manager.transition(
                db, order.id, OrderAction.PAYMENT_SUCCEEDED, RestaurantActor(catalog.restaurant.id)
            )

    async def test_session_of_another_order_cannot_settle(self, db, manager, order):
        with pytest.raises(InvalidTransitionError):
            await manager.transition(
                db, order.id, OrderAction.PAYMENT_SUCCEEDED, PaymentActor(uuid.uuid4(), "ps_other")
            )

    async def test_customer_cannot_cancel_paid_order(self, db, manager, order, catalog):
        await pay(manager, db, order)
        with pytest.raises(InvalidTransitionError):
            await manager.transition(
                db, order.id, OrderAction.CANCEL, CustomerActor(catalog.customer.id)
            )

    async def test_unknown_order(self, db, manager, catalog):
        with pytest.raises(NotFoundError):
            await manager.transition(
                db, uuid.uuid4(), OrderAction.ACCEPT, RestaurantActor(catalog.restaurant.id)
            )

    async def test_no_sequence_escapes_the_table(self, db, manager, order, catalog):
        """Fire every action from every actor; only table rows may ever apply."""
        actors = [
            RestaurantActor(catalog.restaurant.id),
            CustomerActor(catalog.customer.id),
            PaymentActor(order.id, "ps_any"),
        ]
        for _ in range(3):
            for action, actor in product(OrderAction, actors):
                before = (await manager.store.get_order(db, order.id)).status
                try:
                    _, event = await manager.transition(db, order.id, action, actor)
                except InvalidTransitionError:
                    assert (await manager.store.get_order(db, order.id)).status == before
                else:
                    assert (before, action) in TRANSITIONS
                    assert TRANSITIONS[(before, action)].to_status == event.to_status


class TestPublishing:

    async def test_publisher_failure_does_not_fail_transition(self, db, order):
        manager = OrderLifecycleManager(publisher=ExplodingPublisher())
        updated, _ = await pay(manager, db, order)
        assert updated.status == OrderStatus.PAID

    def test_event_round_trips_through_dict(self):
        event = LifecycleEvent(
            order_id=uuid.uuid4(),
            restaurant_id=uuid.uuid4(),
            customer_id=uuid.uuid4(),
            total=250,
            from_status=OrderStatus.PAID,
            to_status=OrderStatus.PREPARING,
            action=OrderAction.ACCEPT,
            actor="restaurant:x",
        )
        assert LifecycleEvent.from_dict(event.to_dict()) == event
