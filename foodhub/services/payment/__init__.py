"""
Payment Gateway Factory

Provides a single entry point for obtaining the payment gateway adapter.
The rest of the application (the PaymentSessionCoordinator) stays agnostic
about which implementation is active.

Usage:
    from foodhub.services.payment import get_payment_gateway

    # Returns MockPaymentGateway or StripePaymentGateway based on ENV_MODE
    gateway = get_payment_gateway()

Environment Switching:
    - ENV_MODE=development → MockPaymentGateway (no API calls)
    - ENV_MODE=staging → StripePaymentGateway (test keys)
    - ENV_MODE=production → StripePaymentGateway (live keys)
"""

import logging
from functools import lru_cache

from foodhub.core.config import get_settings
from foodhub.services.payment.base import (
    BasePaymentGateway,
    GatewayCallback,
    GatewaySessionResult,
    GatewayStatusResult,
    parse_reported_status,
)
from foodhub.services.payment.coordinator import (
    PaymentSessionCoordinator,
    ReconcileResult,
    SessionStatusView,
)
from foodhub.services.payment.mock import MockPaymentGateway
from foodhub.services.payment.stripe import StripePaymentGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_gateway() -> BasePaymentGateway:
    """
    Get the configured payment gateway instance.

    The instance is cached so the mock keeps its issued sessions and the
    Stripe SDK is configured once.

    Raises:
        ValueError: If staging/production but Stripe key not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Gateway: Using MockPaymentGateway (development mode)")
        return MockPaymentGateway(
            failure_rate=0.05,
            min_latency=0.1,
            max_latency=0.4,
        )

    logger.info(
        f"Payment Gateway: Using StripePaymentGateway "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentGateway()


def reset_payment_gateway() -> None:
    """
    Clear the cached gateway instance.

    The next call to get_payment_gateway() will create a new instance.
    """
    get_payment_gateway.cache_clear()
    logger.debug("Payment gateway cache cleared")


__all__ = [
    "get_payment_gateway",
    "reset_payment_gateway",
    "BasePaymentGateway",
    "GatewayCallback",
    "GatewaySessionResult",
    "GatewayStatusResult",
    "parse_reported_status",
    "MockPaymentGateway",
    "StripePaymentGateway",
    "PaymentSessionCoordinator",
    "ReconcileResult",
    "SessionStatusView",
]
