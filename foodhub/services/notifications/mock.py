"""
Mock Push Provider

Simulates push delivery for development.
No actual notifications are sent - just logged and remembered.
"""

import asyncio
import logging
import random
import uuid
from typing import Optional

from foodhub.services.notifications.base import BasePushProvider, PushResult

logger = logging.getLogger(__name__)


class MockPushProvider(BasePushProvider):
    """
    Mock push provider for development and tests.

    Tokens listed in failing_tokens always fail, tokens in
    unregistered_tokens fail as DeviceNotRegistered; the rest fail at
    failure_rate. Every attempt is appended to `sent`.
    """

    def __init__(
        self,
        failure_rate: float = 0.05,
        min_latency: float = 0.05,
        max_latency: float = 0.2,
        failing_tokens: Optional[set[str]] = None,
        unregistered_tokens: Optional[set[str]] = None,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.failing_tokens = set(failing_tokens or ())
        self.unregistered_tokens = set(unregistered_tokens or ())
        self.sent: list[dict] = []
        logger.info(f"MockPushProvider initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        ttl_minutes: Optional[int] = None,
        data: Optional[dict] = None,
    ) -> PushResult:
        """Simulate sending a push."""
        await self._simulate_latency()
        self.sent.append({"token": token, "title": title, "body": body, "ttl_minutes": ttl_minutes})

        if token in self.unregistered_tokens:
            logger.warning(f"Mock push to {token}: device not registered")
            return PushResult(
                success=False,
                error_message=f"{token} is not a registered push notification recipient",
                error_code="DeviceNotRegistered",
                provider="mock",
            )

        if token in self.failing_tokens or self._should_fail():
            logger.warning(f"Mock push failed (simulated) to {token}")
            return PushResult(
                success=False,
                error_message="Simulated push failure",
                error_code="MessageRateExceeded",
                provider="mock",
            )

        message_id = f"push_mock_{uuid.uuid4().hex[:12]}"
        logger.info(f"Mock push sent to {token}: {title} (ID: {message_id})")

        return PushResult(success=True, message_id=message_id, provider="mock")

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
