"""
Mock Payment Gateway Implementation

Simulates a hosted-checkout gateway without making real API calls.
Used in development mode (ENV_MODE=development) to:
    - Exercise the full order -> session -> callback flow locally
    - Replay duplicated or out-of-order callbacks on demand
    - Run the simulation script without gateway credentials

Behavior:
    - Simulates response times (min_latency..max_latency seconds)
    - Randomly refuses session creation at failure_rate
    - Issues Stripe-like identifiers (ps_mock_xxx, pi_mock_xxx)
    - Remembers issued sessions so fetch_status and settle() work
"""

import asyncio
import logging
import random
import uuid
from datetime import datetime
from typing import Optional

from foodhub.core.config import get_settings
from foodhub.models import PaymentStatus
from foodhub.services.payment.base import (
    BasePaymentGateway,
    GatewayCallback,
    GatewaySessionResult,
    GatewayStatusResult,
    decode_json,
)

logger = logging.getLogger(__name__)


class MockPaymentGateway(BasePaymentGateway):
    """
    Mock implementation of the payment gateway.

    Attributes:
        failure_rate: Probability that session creation fails (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> gateway = MockPaymentGateway(failure_rate=0.0, min_latency=0, max_latency=0)
        >>> result = await gateway.create_session(250, "order-1")
        >>> callback = gateway.settle(result.gateway_order_ref, PaymentStatus.SUCCESS)
    """

    # Simulated outage reasons
    OUTAGE_REASONS = [
        ("gateway_unavailable", "The payment gateway is temporarily unavailable."),
        ("rate_limited", "Too many requests to the payment gateway."),
        ("processing_error", "An error occurred while creating the session."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.05,
        min_latency: float = 0.1,
        max_latency: float = 0.4,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._currency = get_settings().stripe_currency
        # gateway_order_ref -> {"session_id", "amount", "order_ref", "status"}
        self._payments: dict[str, dict] = {}

        logger.info(
            f"MockPaymentGateway initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    def _generate_session_id(self) -> str:
        return f"ps_mock_{uuid.uuid4().hex[:24]}"

    def _generate_gateway_order_ref(self) -> str:
        return f"pi_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        """Sleep for a random latency and return it in milliseconds."""
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def create_session(
        self,
        amount: int,
        order_ref: str,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> GatewaySessionResult:
        """Simulate creating a hosted checkout session."""
        currency = currency or self._currency

        if amount <= 0:
            return GatewaySessionResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()

        if self._should_fail():
            error_code, error_message = random.choice(self.OUTAGE_REASONS)
            logger.debug(f"Mock: Session creation failed - {error_code}")
            return GatewaySessionResult(
                success=False,
                amount=amount,
                currency=currency,
                error_message=error_message,
                error_code=error_code,
                response_time_ms=latency_ms,
            )

        session_id = self._generate_session_id()
        gateway_order_ref = self._generate_gateway_order_ref()
        self._payments[gateway_order_ref] = {
            "session_id": session_id,
            "amount": amount,
            "order_ref": order_ref,
            "status": PaymentStatus.PENDING,
            "created_at": datetime.now(),
        }

        logger.info(
            f"Mock: Session {gateway_order_ref} created for order {order_ref} ({amount} {currency})"
        )

        return GatewaySessionResult(
            success=True,
            session_id=session_id,
            gateway_order_ref=gateway_order_ref,
            amount=amount,
            currency=currency,
            response_time_ms=latency_ms,
            metadata={"mock": True, "order_ref": order_ref, **(metadata or {})},
        )

    def settle(self, gateway_order_ref: str, status: PaymentStatus) -> GatewayCallback:
        """
        Record the outcome of a simulated checkout and build the callback
        the gateway would deliver for it.
        """
        payment = self._payments[gateway_order_ref]
        payment["status"] = status
        return GatewayCallback(
            session_id=payment["session_id"],
            status=status,
            gateway_order_ref=gateway_order_ref,
        )

    async def fetch_status(self, gateway_order_ref: str) -> GatewayStatusResult:
        await self._simulate_latency()

        payment = self._payments.get(gateway_order_ref)
        if payment is None:
            return GatewayStatusResult(
                success=False,
                gateway_order_ref=gateway_order_ref,
                error_message="Unknown payment reference",
            )
        return GatewayStatusResult(
            success=True,
            status=payment["status"],
            gateway_order_ref=gateway_order_ref,
        )

    async def parse_callback(
        self,
        payload: bytes,
        signature: Optional[str] = None,
    ) -> Optional[GatewayCallback]:
        """
        In mock mode the payload is trusted JSON:
        {"session_id": ..., "status": ..., "gateway_order_ref": ...}
        """
        data = decode_json(payload)
        if data is None:
            logger.warning("Mock: Invalid callback payload")
            return None
        return GatewayCallback.from_payload(data)

    async def health_check(self) -> bool:
        logger.debug("Mock: Health check passed")
        return True
