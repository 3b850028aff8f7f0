"""
Push Provider Abstract Base Class

Defines the interface for delivering one push notification to one device
token. Supports both Mock (development) and Expo (production)
implementations.

Providers report failures through PushResult; the dispatcher also guards
against providers that raise, so one bad token never stops the fan-out.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PushResult:
    """Result from sending one push notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    provider: str = "unknown"

    @property
    def token_unregistered(self) -> bool:
        """The provider says the device token is no longer valid."""
        return self.error_code == "DeviceNotRegistered"


class BasePushProvider(ABC):
    """Abstract base class for push providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        ttl_minutes: Optional[int] = None,
        data: Optional[dict] = None,
    ) -> PushResult:
        """Send a push notification to a single device token."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def close(self) -> None:
        """Release network resources, if any."""
        return None
