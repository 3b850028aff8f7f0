"""
Tests for the notification layer: fan-out, failure isolation, dedupe,
event mapping, token registration and the Expo adapter.
"""

import json
import uuid

import httpx
import pytest
from sqlalchemy import event as sa_event
from sqlalchemy import func, select

from foodhub.core.exceptions import NotFoundError, ValidationError
from foodhub.models import Notification, NotificationToken, OrderAction, OrderStatus, User
from foodhub.services.notifications import (
    Broadcast,
    DirectUser,
    ExpoPushProvider,
    FromRestaurant,
    MockPushProvider,
    NotificationDispatcher,
    NotificationDraft,
    RestaurantOperator,
    System,
    drafts_for_event,
)
from foodhub.services.notifications import inbox
from foodhub.services.orders import LifecycleEvent


def draft(recipient, sender=None, **overrides) -> NotificationDraft:
    fields = dict(
        recipient=recipient,
        sender=sender or System(),
        title="Hello",
        body="World",
        ttl_minutes=30,
    )
    fields.update(overrides)
    return NotificationDraft(**fields)


def event(catalog, to_status, actor="restaurant:x", from_status=OrderStatus.PAID, order_id=None) -> LifecycleEvent:
    return LifecycleEvent(
        order_id=order_id or uuid.uuid4(),
        restaurant_id=catalog.restaurant.id,
        customer_id=catalog.customer.id,
        total=250,
        from_status=from_status,
        to_status=to_status,
        action=OrderAction.ACCEPT,
        actor=actor,
    )


class RaisingPushProvider(MockPushProvider):
    async def send(self, token, *args, **kwargs):
        if token == "boom":
            raise ConnectionError("socket closed")
        return await super().send(token, *args, **kwargs)


class TestDispatch:

    async def test_broadcast_reports_per_user_counts(self, db, dispatcher, push, catalog, add_token):
        """Three users, one without tokens."""
        await add_token(catalog.owner.id, "phone", "tok-owner")
        await add_token(catalog.customer.id, "phone", "tok-customer")

        report = await dispatcher.dispatch(db, draft(Broadcast()))

        assert report.attempted == 2
        assert report.succeeded == 2
        assert report.failed == 0
        assert report.per_user[catalog.bystander.id].attempted == 0
        assert report.per_user[catalog.owner.id].succeeded == 1
        assert report.per_user[catalog.customer.id].succeeded == 1
        assert sorted(m["token"] for m in push.sent) == ["tok-customer", "tok-owner"]

        stored = await db.get(Notification, report.notification_id)
        assert stored.recipient_id is None
        assert stored.sender_id is None

    async def test_failing_token_does_not_block_others(self, db, catalog, add_token):
        push = RaisingPushProvider(
            failure_rate=0.0,
            min_latency=0,
            max_latency=0,
            failing_tokens={"tok-bad"},
            unregistered_tokens={"tok-stale"},
        )
        dispatcher = NotificationDispatcher(push, concurrency=2)
        await add_token(catalog.customer.id, "phone", "tok-bad")
        await add_token(catalog.customer.id, "tablet", "tok-good")
        await add_token(catalog.customer.id, "watch", "boom")
        await add_token(catalog.owner.id, "phone", "tok-stale")
        await add_token(catalog.bystander.id, "phone", "tok-fine")

        report = await dispatcher.dispatch(db, draft(Broadcast()))

        assert report.attempted == 5
        assert report.succeeded == 2
        assert {f.token for f in report.failures} == {"tok-bad", "boom", "tok-stale"}
        assert report.per_user[catalog.customer.id].attempted == 3
        assert report.per_user[catalog.customer.id].succeeded == 1
        assert report.per_user[catalog.bystander.id].succeeded == 1
        stale = next(f for f in report.failures if f.token == "tok-stale")
        assert stale.error_code == "DeviceNotRegistered"

    async def test_record_survives_total_delivery_failure(self, db, catalog, add_token):
        push = MockPushProvider(failure_rate=1.0, min_latency=0, max_latency=0)
        await add_token(catalog.customer.id, "phone", "tok")

        report = await NotificationDispatcher(push).dispatch(db, draft(DirectUser(catalog.customer.id)))

        assert report.succeeded == 0 and report.failed == 1
        stored = await db.get(Notification, report.notification_id)
        assert stored.recipient_id == catalog.customer.id

    async def test_no_tokens_is_not_an_error(self, db, dispatcher, catalog):
        report = await dispatcher.dispatch(db, draft(DirectUser(catalog.bystander.id)))
        assert report.attempted == 0
        assert list(report.per_user) == [catalog.bystander.id]
        assert report.notification_id is not None

    async def test_restaurant_operator_resolves_to_owner(self, db, dispatcher, push, catalog, add_token):
        await add_token(catalog.owner.id, "tablet", "tok-kitchen")

        report = await dispatcher.dispatch(db, draft(RestaurantOperator(catalog.restaurant.id)))

        assert list(report.per_user) == [catalog.owner.id]
        assert push.sent[0]["token"] == "tok-kitchen"
        assert push.sent[0]["ttl_minutes"] == 30

    async def test_duplicate_dedupe_key_is_skipped(self, db, dispatcher, push, catalog, add_token):
        await add_token(catalog.customer.id, "phone", "tok")
        message = draft(DirectUser(catalog.customer.id), dedupe_key="order:1:ready")

        first = await dispatcher.dispatch(db, message)
        second = await dispatcher.dispatch(db, message)

        assert not first.duplicate and first.attempted == 1
        assert second.duplicate and second.attempted == 0
        assert second.notification_id == first.notification_id
        assert len(push.sent) == 1
        total = (await db.execute(select(func.count(Notification.id)))).scalar()
        assert total == 1

    async def test_unknown_recipient(self, db, dispatcher):
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(db, draft(DirectUser(uuid.uuid4())))
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(db, draft(RestaurantOperator(uuid.uuid4())))

    async def test_restaurant_sender_is_stored(self, db, dispatcher, catalog):
        report = await dispatcher.dispatch(
            db, draft(Broadcast(), sender=FromRestaurant(catalog.restaurant.id))
        )
        stored = await db.get(Notification, report.notification_id)
        assert stored.sender_id == catalog.restaurant.id

    async def test_broadcast_token_lookup_is_not_a_user_list(self, engine, session_maker, db, dispatcher, catalog):
        """The token query must not bind one parameter per user."""
        async with session_maker() as session:
            crowd = [User(username=f"fan-{i}") for i in range(50)]
            session.add_all(crowd)
            await session.flush()
            session.add_all(
                NotificationToken(user_id=user.id, device_id="phone", token=f"tok-{i}")
                for i, user in enumerate(crowd)
            )
            await session.commit()

        token_queries = []

        def record(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("SELECT") and "notification_tokens" in statement:
                token_queries.append(statement)

        sa_event.listen(engine.sync_engine, "before_cursor_execute", record)
        try:
            report = await dispatcher.dispatch(db, draft(Broadcast()))
        finally:
            sa_event.remove(engine.sync_engine, "before_cursor_execute", record)

        assert report.attempted == 50
        assert report.succeeded == 50
        assert len(report.per_user) == 53
        (statement,) = token_queries
        assert " IN " not in statement.upper()


class TestEventMapping:

    async def test_paid_goes_to_restaurant_operator(self, catalog):
        drafts = drafts_for_event(event(catalog, OrderStatus.PAID, actor="payment:ps_1"), 60)
        assert len(drafts) == 1
        assert drafts[0].recipient == RestaurantOperator(catalog.restaurant.id)
        assert drafts[0].sender == System()
        assert drafts[0].title == "New paid order"

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    )
    async def test_customer_updates(self, catalog, status):
        restaurant_actor = f"restaurant:{catalog.restaurant.id}"
        (only,) = drafts_for_event(event(catalog, status, actor=restaurant_actor), 60)
        assert only.recipient == DirectUser(catalog.customer.id)
        assert only.sender == FromRestaurant(catalog.restaurant.id)
        assert only.dedupe_key.endswith(f":{status.value}")

    async def test_failed_payment_cancellation_explains_why(self, catalog):
        (only,) = drafts_for_event(
            event(catalog, OrderStatus.CANCELLED, actor="payment:ps_1", from_status=OrderStatus.PAYMENT_PENDING),
            60,
        )
        assert only.sender == System()
        assert "Payment" in only.body

    async def test_dispatch_event_is_idempotent(self, db, dispatcher, push, catalog, order, add_token):
        await add_token(catalog.owner.id, "tablet", "tok-kitchen")
        paid = event(catalog, OrderStatus.PAID, actor="payment:ps_1", order_id=order.id)

        await dispatcher.dispatch_event(db, paid)
        reports = await dispatcher.dispatch_event(db, paid)

        assert [r.duplicate for r in reports] == [True]
        assert len(push.sent) == 1


class TestInbox:

    async def test_register_token_latest_write_per_device_wins(self, db, catalog):
        await inbox.register_token(db, catalog.customer.id, "phone", "tok-1")
        await inbox.register_token(db, catalog.customer.id, "phone", "tok-2")
        await inbox.register_token(db, catalog.customer.id, "tablet", "tok-3")

        rows = (
            await db.execute(
                select(NotificationToken.device_id, NotificationToken.token)
                .where(NotificationToken.user_id == catalog.customer.id)
                .order_by(NotificationToken.device_id)
            )
        ).all()
        assert [tuple(r) for r in rows] == [("phone", "tok-2"), ("tablet", "tok-3")]

    async def test_register_token_validation(self, db, catalog):
        with pytest.raises(NotFoundError):
            await inbox.register_token(db, uuid.uuid4(), "phone", "tok")
        with pytest.raises(ValidationError):
            await inbox.register_token(db, catalog.customer.id, " ", "tok")

    async def test_user_inbox_has_direct_and_broadcast(self, db, dispatcher, catalog):
        await dispatcher.dispatch(db, draft(DirectUser(catalog.customer.id), title="for customer"))
        await dispatcher.dispatch(db, draft(DirectUser(catalog.bystander.id), title="for bystander"))
        await dispatcher.dispatch(
            db, draft(Broadcast(), sender=FromRestaurant(catalog.restaurant.id), title="for all")
        )

        titles = {n.title for n in await inbox.list_for_user(db, catalog.customer.id)}
        assert titles == {"for customer", "for all"}

        sent = await inbox.list_for_restaurant(db, catalog.restaurant.id)
        assert [n.title for n in sent] == ["for all"]


class TestExpoProvider:

    def provider(self, handler) -> ExpoPushProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ExpoPushProvider(
            push_url="https://push.test/send",
            access_token="secret",
            client=client,
        )

    async def test_ok_ticket(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "ticket-1"}]})

        provider = self.provider(handler)
        result = await provider.send("ExponentPushToken[a]", "Hi", "There", ttl_minutes=2)
        await provider.close()

        assert result.success
        assert result.message_id == "ticket-1"
        assert seen["body"] == [
            {"to": "ExponentPushToken[a]", "title": "Hi", "body": "There", "sound": "default", "ttl": 120}
        ]

    async def test_device_not_registered(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "status": "error",
                            "message": "not a registered push notification recipient",
                            "details": {"error": "DeviceNotRegistered"},
                        }
                    ]
                },
            )

        result = await self.provider(handler).send("ExponentPushToken[b]", "Hi", "There")
        assert not result.success
        assert result.token_unregistered

    async def test_http_error_is_a_result_not_an_exception(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        result = await self.provider(handler).send("ExponentPushToken[c]", "Hi", "There")
        assert not result.success
        assert result.error_code == "HTTPError"
