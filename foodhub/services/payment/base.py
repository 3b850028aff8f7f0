"""
Payment Gateway Abstract Base Class

Defines the contract between the PaymentSessionCoordinator and the external
payment gateway. The mock (development) and Stripe (staging/production)
adapters both implement it, so reconciliation logic never depends on which
one is active.

Gateway adapters report business failures through result objects instead of
raising; the coordinator decides what a failure means for local state.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from foodhub.core.exceptions import ValidationError
from foodhub.models import PaymentStatus


# Words gateways use for each outcome. Session expiry counts as failure.
_STATUS_ALIASES: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "active": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "success": PaymentStatus.SUCCESS,
    "succeeded": PaymentStatus.SUCCESS,
    "paid": PaymentStatus.SUCCESS,
    "failure": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
}


def parse_reported_status(value: str) -> PaymentStatus:
    """
    Map a gateway-reported status string onto the local PaymentStatus.

    Raises:
        ValidationError: unknown status word
    """
    try:
        return _STATUS_ALIASES[value.strip().lower()]
    except (KeyError, AttributeError):
        valid = sorted(_STATUS_ALIASES)
        raise ValidationError(f"Unknown payment status {value!r}. Must be one of: {valid}")


@dataclass
class GatewaySessionResult:
    """
    Result of asking the gateway for a new payment session.

    Attributes:
        success: Whether the gateway issued a session
        session_id: Gateway-issued handle the client uses for checkout
        gateway_order_ref: Gateway-side reference of the payment
        amount: Amount in minor currency units
        currency: Currency code
        error_message: Error description if the request failed
        error_code: Machine-readable error code
        response_time_ms: Time taken by the gateway
    """
    success: bool
    session_id: Optional[str] = None
    gateway_order_ref: Optional[str] = None
    amount: Optional[int] = None
    currency: str = "inr"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: dict = field(default_factory=dict)


@dataclass
class GatewayStatusResult:
    """Result of polling the gateway for the outcome of a payment."""
    success: bool
    status: Optional[PaymentStatus] = None
    gateway_order_ref: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class GatewayCallback:
    """
    An asynchronous outcome report from the gateway.

    session_id may be None when the gateway only identifies the payment by
    its own reference; the coordinator then resolves the session from
    gateway_order_ref.
    """
    session_id: Optional[str]
    status: PaymentStatus
    gateway_order_ref: str

    @classmethod
    def from_payload(cls, data: dict) -> "GatewayCallback":
        try:
            return cls(
                session_id=data.get("session_id"),
                status=parse_reported_status(data["status"]),
                gateway_order_ref=str(data["gateway_order_ref"]),
            )
        except KeyError as e:
            raise ValidationError(f"Callback payload missing field {e.args[0]!r}")


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.

    Example:
        >>> gateway = get_payment_gateway()  # Mock or Stripe
        >>> result = await gateway.create_session(amount=250, order_ref="…")
        >>> if result.success:
        ...     print(result.session_id, result.gateway_order_ref)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the gateway (e.g. "mock", "stripe")."""
        pass

    @abstractmethod
    async def create_session(
        self,
        amount: int,
        order_ref: str,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> GatewaySessionResult:
        """
        Create a checkout session for an order.

        Args:
            amount: Amount in minor currency units
            order_ref: Local order id, attached to the gateway payment
            currency: Currency code (defaults to the configured currency)
            metadata: Additional key-value data to attach
        """
        pass

    @abstractmethod
    async def fetch_status(self, gateway_order_ref: str) -> GatewayStatusResult:
        """Ask the gateway for the current outcome of a payment."""
        pass

    @abstractmethod
    async def parse_callback(
        self,
        payload: bytes,
        signature: Optional[str] = None,
    ) -> Optional[GatewayCallback]:
        """
        Verify and translate a gateway webhook.

        Returns:
            GatewayCallback if the payload is an authentic payment outcome,
            None if it is invalid or an event type we do not reconcile
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the gateway."""
        pass


def decode_json(payload: bytes) -> Optional[dict]:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None
