"""
Tests for the Stripe adapter with the SDK's network calls stubbed out:
webhook signature checks, event/status mapping and secret redaction.
"""

import hashlib
import hmac
import json
import logging
import time
from types import SimpleNamespace

import pytest
import stripe

from foodhub.core.config import get_settings
from foodhub.models import OrderStatus, PaymentSession, PaymentStatus
from foodhub.services.payment import StripePaymentGateway

WEBHOOK_SECRET = "whsec_foodhub_test"
CLIENT_SECRET = "pi_3Ntest_secret_9f8e7d6c5b4a3210"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(event_type: str, intent_id: str = "pi_3Ntest") -> bytes:
    return json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": intent_id, "object": "payment_intent"}},
        }
    ).encode("utf-8")


@pytest.fixture
def build_gateway(monkeypatch):
    def build(webhook_secret=WEBHOOK_SECRET) -> StripePaymentGateway:
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_foodhub")
        if webhook_secret:
            monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", webhook_secret)
        else:
            monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        get_settings.cache_clear()
        return StripePaymentGateway()

    yield build
    get_settings.cache_clear()


class TestSignedWebhook:

    @pytest.mark.parametrize(
        "event_type, status",
        [
            ("payment_intent.succeeded", PaymentStatus.SUCCESS),
            ("payment_intent.canceled", PaymentStatus.FAILED),
        ],
    )
    async def test_terminal_intent_events(self, build_gateway, event_type, status):
        payload = intent_event(event_type)

        callback = await build_gateway().parse_callback(payload, sign(payload))

        assert callback.status is status
        assert callback.gateway_order_ref == "pi_3Ntest"
        assert callback.session_id is None

    async def test_payment_failed_is_not_terminal(self, build_gateway):
        payload = intent_event("payment_intent.payment_failed")
        assert await build_gateway().parse_callback(payload, sign(payload)) is None

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "garbage",
            sign(intent_event("payment_intent.succeeded"), secret="whsec_someone_else"),
            sign(intent_event("payment_intent.succeeded"), timestamp=int(time.time()) - 3600),
        ],
        ids=["missing", "empty", "malformed", "wrong-secret", "stale"],
    )
    async def test_rejected_signatures(self, build_gateway, header):
        payload = intent_event("payment_intent.succeeded")
        assert await build_gateway().parse_callback(payload, header) is None

    async def test_tampered_body(self, build_gateway):
        payload = intent_event("payment_intent.canceled")
        header = sign(payload)
        tampered = intent_event("payment_intent.succeeded")

        assert await build_gateway().parse_callback(tampered, header) is None


class TestUnverifiedWebhook:

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2]",
            b'{"foo": 1}',
            b'{"type": ["payment_intent.succeeded"]}',
            b'{"type": "payment_intent.succeeded"}',
            b'{"type": "payment_intent.succeeded", "data": "oops"}',
            b'{"type": "payment_intent.succeeded", "data": {"object": "pi_1"}}',
            b'{"type": "payment_intent.succeeded", "data": {"object": {"id": 5}}}',
        ],
    )
    async def test_malformed_events_are_ignored(self, build_gateway, payload):
        assert await build_gateway(webhook_secret=None).parse_callback(payload) is None

    async def test_well_formed_event(self, build_gateway):
        callback = await build_gateway(webhook_secret=None).parse_callback(
            intent_event("payment_intent.succeeded", "pi_plain")
        )
        assert callback.gateway_order_ref == "pi_plain"
        assert callback.status is PaymentStatus.SUCCESS


class TestIntents:

    @pytest.mark.parametrize(
        "intent_status, expected",
        [
            ("succeeded", PaymentStatus.SUCCESS),
            ("canceled", PaymentStatus.FAILED),
            ("processing", PaymentStatus.PENDING),
            ("requires_payment_method", PaymentStatus.PENDING),
        ],
    )
    async def test_fetch_status_mapping(self, monkeypatch, build_gateway, intent_status, expected):
        gateway = build_gateway()
        monkeypatch.setattr(
            stripe.PaymentIntent,
            "retrieve",
            lambda ref: SimpleNamespace(id=ref, status=intent_status),
        )

        result = await gateway.fetch_status("pi_3Ntest")

        assert result.success
        assert result.status is expected
        assert result.gateway_order_ref == "pi_3Ntest"

    async def test_fetch_status_error(self, monkeypatch, build_gateway):
        gateway = build_gateway()

        def unreachable(ref):
            raise stripe.APIConnectionError("connection reset")

        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", unreachable)

        result = await gateway.fetch_status("pi_3Ntest")

        assert not result.success
        assert result.status is None

    async def test_create_session_uses_client_secret(self, monkeypatch, build_gateway, caplog):
        gateway = build_gateway()
        seen = {}

        def create(**params):
            seen.update(params)
            return SimpleNamespace(
                id="pi_3Ntest",
                client_secret=CLIENT_SECRET,
                amount=params["amount"],
                currency=params["currency"],
                status="requires_payment_method",
            )

        monkeypatch.setattr(stripe.PaymentIntent, "create", create)

        with caplog.at_level(logging.DEBUG, logger="foodhub"):
            result = await gateway.create_session(250, "order-1")

        assert result.success
        assert result.session_id == CLIENT_SECRET
        assert result.gateway_order_ref == "pi_3Ntest"
        assert seen["amount"] == 250
        assert seen["metadata"] == {"order_id": "order-1"}
        assert CLIENT_SECRET not in caplog.text


class TestWebhookEndpoint:

    @pytest.fixture
    def gateway(self, build_gateway):
        """Drive the API with the Stripe adapter instead of the mock."""
        return build_gateway()

    async def test_signed_success_pays_the_order(self, client, session_maker, order):
        async with session_maker() as session:
            session.add(
                PaymentSession(
                    session_id=CLIENT_SECRET,
                    order_id=order.id,
                    status=PaymentStatus.PENDING,
                    gateway_order_ref="pi_3Ntest",
                    amount=order.total,
                )
            )
            await session.commit()
        payload = intent_event("payment_intent.succeeded")

        response = await client.post(
            "/webhook/stripe", content=payload, headers={"Stripe-Signature": sign(payload)}
        )

        assert response.status_code == 200
        assert response.json()["reconciled"] is True
        assert response.json()["order_status"] == OrderStatus.PAID.value

    async def test_unsigned_junk_is_acknowledged(self, client):
        response = await client.post("/webhook/stripe", content=b'{"hello": "world"}')

        assert response.status_code == 200
        assert response.json() == {"received": True, "reconciled": False}
