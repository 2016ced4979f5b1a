"""HTTP client for WhatsApp API integration."""

import logging
from typing import Any

import httpx

from prima.config import settings
from prima.core.exceptions import WhatsAppAPIError

logger = logging.getLogger(__name__)


class WhatsAppClient:
    """HTTP client for communicating with the WhatsApp API server."""

    def __init__(self, device_id: str | None = None, timeout: float = 30.0):
        self.device_id = device_id or settings.WHATSAPP_DEVICE_ID
        self.base_url = settings.WHATSAPP_API_URL
        self.timeout = timeout
        self.auth = (
            (settings.WHATSAPP_API_USER, settings.WHATSAPP_API_PASSWORD)
            if settings.WHATSAPP_API_USER
            else None
        )
        logger.debug(f"WhatsAppClient initialized: base_url={self.base_url}, auth={'set' if self.auth else 'none'}")

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> dict[str, Any]:
        """Make an HTTP request to the WhatsApp API."""
        url = f"{self.base_url}{path}"
        logger.info(f"WhatsApp API request: {method} {url} (device: {self.device_id})")

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            headers = kwargs.pop("headers", {})
            headers["X-Device-Id"] = self.device_id

            try:
                response = await client.request(
                    method,
                    url,
                    auth=self.auth,
                    headers=headers,
                    **kwargs,
                )

                logger.info(f"WhatsApp API response: {response.status_code}")

                if response.status_code >= 400:
                    logger.error(f"WhatsApp API error: {response.status_code} - {response.text}")
                    raise WhatsAppAPIError(response.text)

                return response.json()

            except httpx.RequestError as e:
                logger.error(f"WhatsApp API connection error: {e}")
                raise WhatsAppAPIError(f"Connection error: {e}")

    async def send_message(self, phone: str, message: str) -> dict[str, Any]:
        """Send a text message to a phone number."""
        return await self._request(
            "POST",
            "/send/message",
            json={"phone": phone, "message": message},
        )
