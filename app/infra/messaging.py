"""
Outbound WhatsApp delivery.

The gateway exposes a single endpoint:
- POST /v1/messages  {number, message, urlMedia}
"""

import logging
from typing import Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class MessagingError(Exception):
    """Raised when the gateway does not accept a message."""
    pass


class OutboundMessenger:
    """Async client for the messaging gateway."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize messenger.

        Args:
            base_url: Gateway base URL (defaults to settings)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url or settings.messaging_api_url
        self.timeout = timeout or settings.messaging_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def deliver(self, destination: str, text: str, media_url: Optional[str] = None) -> None:
        """
        Send one message.

        Args:
            destination: Digits-only phone number
            text: Message body
            media_url: Optional attachment URL

        Raises:
            MessagingError: If the gateway is unreachable or rejects the message
        """
        client = await self._get_client()
        payload = {
            "number": destination,
            "message": text,
            "urlMedia": media_url or None,
        }

        try:
            response = await client.post("/v1/messages", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MessagingError(
                f"Gateway rejected message to {destination}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise MessagingError(f"Gateway unreachable: {e}") from e

        logger.info(f"Message delivered to {destination}")


# Singleton
_messenger: Optional[OutboundMessenger] = None


def get_outbound_messenger() -> OutboundMessenger:
    """Get singleton OutboundMessenger."""
    global _messenger
    if _messenger is None:
        _messenger = OutboundMessenger()
    return _messenger
