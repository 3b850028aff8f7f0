"""
Stripe Payment Gateway Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Mapping onto the payment session model:
    - PaymentIntent id   -> gateway_order_ref
    - client_secret      -> session_id handed to the app for checkout
                            (Stripe.js / mobile PaymentSheet)
    - payment_intent.succeeded webhook -> success
    - payment_intent.canceled webhook  -> failed
    - payment_intent.payment_failed is not terminal on Stripe (the customer
      may retry with another card) and is ignored

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Never log full client secrets
    - Always verify webhook signatures
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import stripe
from stripe import (
    APIConnectionError,
    AuthenticationError,
    InvalidRequestError,
    SignatureVerificationError,
    StripeError,
)

from foodhub.core.config import get_settings, redact_session_id
from foodhub.models import PaymentStatus
from foodhub.services.payment.base import (
    BasePaymentGateway,
    GatewayCallback,
    GatewaySessionResult,
    GatewayStatusResult,
    decode_json,
)

logger = logging.getLogger(__name__)

_INTENT_STATUS = {
    "succeeded": PaymentStatus.SUCCESS,
    "canceled": PaymentStatus.FAILED,
}

_WEBHOOK_EVENTS = {
    "payment_intent.succeeded": PaymentStatus.SUCCESS,
    "payment_intent.canceled": PaymentStatus.FAILED,
}


class StripePaymentGateway(BasePaymentGateway):
    """
    Production Stripe gateway.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Uses STRIPE_WEBHOOK_SECRET for webhook verification.
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = "2023-10-16"  # Pin API version for stability

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(
            f"StripePaymentGateway initialized "
            f"(api_version={stripe.api_version})"
        )

    @property
    def provider_name(self) -> str:
        return "stripe"

    async def create_session(
        self,
        amount: int,
        order_ref: str,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> GatewaySessionResult:
        """
        Create a PaymentIntent for client-side confirmation.

        Amounts are already in minor units, which is what Stripe expects.
        """
        start_time = datetime.now()

        if amount <= 0:
            return GatewaySessionResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        try:
            # The SDK is blocking; keep the event loop free
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency or self._currency,
                metadata={"order_id": order_ref, **(metadata or {})},
                automatic_payment_methods={"enabled": True},
            )

            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

            logger.info(
                f"Stripe: PaymentIntent created - {intent.id} for order {order_ref} "
                f"(secret {redact_session_id(intent.client_secret)})"
            )

            return GatewaySessionResult(
                success=True,
                session_id=intent.client_secret,
                gateway_order_ref=intent.id,
                amount=intent.amount,
                currency=intent.currency,
                response_time_ms=elapsed_ms,
                metadata={"status": intent.status},
            )

        except InvalidRequestError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Invalid request - {e}")
            return GatewaySessionResult(
                success=False,
                error_message=str(e),
                error_code="invalid_request",
                response_time_ms=elapsed_ms,
            )

        except AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed - {e}")
            return GatewaySessionResult(
                success=False,
                error_message="Payment service configuration error",
                error_code="authentication_error",
            )

        except APIConnectionError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Connection error - {e}")
            return GatewaySessionResult(
                success=False,
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=elapsed_ms,
            )

        except StripeError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Error - {e}")
            return GatewaySessionResult(
                success=False,
                error_message="Payment processing error",
                error_code="stripe_error",
                response_time_ms=elapsed_ms,
            )

    async def fetch_status(self, gateway_order_ref: str) -> GatewayStatusResult:
        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.retrieve, gateway_order_ref)
        except StripeError as e:
            logger.error(f"Stripe: Failed to retrieve {gateway_order_ref} - {e}")
            return GatewayStatusResult(
                success=False,
                gateway_order_ref=gateway_order_ref,
                error_message=str(e),
            )

        return GatewayStatusResult(
            success=True,
            status=_INTENT_STATUS.get(intent.status, PaymentStatus.PENDING),
            gateway_order_ref=intent.id,
        )

    async def parse_callback(
        self,
        payload: bytes,
        signature: Optional[str] = None,
    ) -> Optional[GatewayCallback]:
        """
        Verify a Stripe webhook and translate PaymentIntent outcomes.

        SECURITY: Unsigned payloads are only accepted when no webhook secret
        is configured (local testing with the Stripe CLI).
        """
        if self._webhook_secret:
            try:
                stripe.WebhookSignature.verify_header(
                    payload.decode("utf-8"),
                    signature or "",
                    self._webhook_secret,
                    tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
                )
            except SignatureVerificationError as e:
                logger.warning(f"Stripe: Webhook signature invalid - {e}")
                return None
            except ValueError as e:
                logger.warning(f"Stripe: Webhook payload invalid - {e}")
                return None
        else:
            logger.warning(
                "Stripe: Webhook secret not configured, skipping verification"
            )

        event = decode_json(payload)
        if event is None:
            logger.warning("Stripe: Webhook body is not a JSON object")
            return None

        event_type = event.get("type")
        status = _WEBHOOK_EVENTS.get(event_type) if isinstance(event_type, str) else None
        if status is None:
            logger.debug(f"Stripe: Ignoring webhook {event_type!r}")
            return None

        data = event.get("data")
        intent = data.get("object") if isinstance(data, dict) else None
        intent_id = intent.get("id") if isinstance(intent, dict) else None
        if not isinstance(intent_id, str) or not intent_id:
            logger.warning(f"Stripe: Webhook {event_type} carries no PaymentIntent id")
            return None

        logger.debug(f"Stripe: Webhook accepted - {event_type} for {intent_id}")

        return GatewayCallback(
            session_id=None,
            status=status,
            gateway_order_ref=intent_id,
        )

    async def health_check(self) -> bool:
        """Make a lightweight API call to verify credentials and connectivity."""
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            logger.debug("Stripe: Health check passed")
            return True
        except StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
