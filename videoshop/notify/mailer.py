"""Transactional mail over an HTTP mail API."""

import logging
from typing import Optional

import httpx

from videoshop.config import settings

logger = logging.getLogger(__name__)


class MailClient:
    """Best-effort mail sender. Delivery problems are logged, never raised."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url if api_url is not None else settings.mail_api_url
        self.api_key = api_key if api_key is not None else settings.mail_api_key
        self.from_address = from_address or settings.mail_from_address
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.sent = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=settings.mail_timeout_seconds,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_url)

    async def send(self, to: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        """
        Send one message.

        Args:
            to: Recipient address
            subject: Subject line
            body: Plain-text body
            html: Optional HTML alternative

        Returns:
            True if the mail API accepted the message, False otherwise
        """
        if not self.configured:
            logger.debug(f"Mail API not configured; dropping {subject!r} to {to}")
            return False

        payload = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "text": body,
        }
        if html:
            payload["html"] = html

        try:
            client = await self._get_client()
            response = await client.post(self.api_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Mail to {to} failed: {type(e).__name__}: {e}")
            return False

        if response.status_code in (200, 201, 202):
            self.sent += 1
            logger.debug(f"Mail {subject!r} accepted for {to}")
            return True
        logger.warning(f"Mail API rejected {subject!r} to {to}: HTTP {response.status_code}")
        return False


# Global mail client
mail_client = MailClient()
