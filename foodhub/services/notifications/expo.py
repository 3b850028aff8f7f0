"""
Expo Push Provider

Production implementation that posts to the Expo push HTTP API.
One request per device token; Expo answers with a push ticket whose status
is either "ok" (with a ticket id) or "error" (with an error code such as
DeviceNotRegistered).
"""

import logging
from typing import Optional

import httpx

from foodhub.core.config import get_settings
from foodhub.services.notifications.base import BasePushProvider, PushResult

logger = logging.getLogger(__name__)


class ExpoPushProvider(BasePushProvider):
    """Push provider backed by the Expo push service."""

    def __init__(
        self,
        push_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.push_url = push_url or settings.expo_push_url
        access_token = access_token or settings.expo_access_token

        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        self.client = client or httpx.AsyncClient(
            headers=headers,
            timeout=timeout or settings.push_timeout_seconds,
        )
        logger.info(f"ExpoPushProvider initialized ({self.push_url})")

    @property
    def provider_name(self) -> str:
        return "expo"

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        ttl_minutes: Optional[int] = None,
        data: Optional[dict] = None,
    ) -> PushResult:
        """Send one push message via Expo."""
        message = {"to": token, "title": title, "body": body, "sound": "default"}
        if ttl_minutes is not None:
            message["ttl"] = ttl_minutes * 60
        if data:
            message["data"] = data

        try:
            response = await self.client.post(self.push_url, json=[message])
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Expo push timed out for {token}")
            return PushResult(
                success=False,
                error_message="Push service timed out",
                error_code="Timeout",
                provider="expo",
            )
        except httpx.HTTPStatusError as e:
            logger.warning(f"Expo push rejected ({e.response.status_code}) for {token}")
            return PushResult(
                success=False,
                error_message=f"Expo returned HTTP {e.response.status_code}",
                error_code="HTTPError",
                provider="expo",
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Expo push failed for {token}: {e}")
            return PushResult(
                success=False,
                error_message=str(e),
                provider="expo",
            )

        tickets = payload.get("data") or []
        ticket = tickets[0] if isinstance(tickets, list) and tickets else tickets
        if not isinstance(ticket, dict):
            return PushResult(
                success=False,
                error_message="Expo returned no push ticket",
                provider="expo",
            )

        if ticket.get("status") == "ok":
            logger.info(f"Expo push sent to {token} (ticket: {ticket.get('id')})")
            return PushResult(success=True, message_id=ticket.get("id"), provider="expo")

        details = ticket.get("details") or {}
        error_code = details.get("error")
        logger.warning(f"Expo push error for {token}: {error_code} {ticket.get('message')}")
        return PushResult(
            success=False,
            error_message=ticket.get("message"),
            error_code=error_code,
            provider="expo",
        )

    async def health_check(self) -> bool:
        """Expo has no ping endpoint; a configured URL is the best we can check."""
        return bool(self.push_url)

    async def close(self) -> None:
        await self.client.aclose()
