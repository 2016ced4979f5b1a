"""Outbound notification: sends prompts, clarifications and acknowledgements."""

import logging
from dataclasses import dataclass
from typing import Protocol

from prima.core.exceptions import WhatsAppAPIError
from prima.services.whatsapp_client import WhatsAppClient

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class OutboundNotifier(Protocol):
    async def send(self, recipient: str, body: str) -> SendResult: ...


def extract_message_id(result: dict) -> str | None:
    """Pull the provider message ID out of a send response."""
    results = result.get("results")
    if isinstance(results, dict):
        message_id = results.get("message_id") or results.get("messageId")
        if message_id:
            return str(message_id)
    message_id = result.get("messageId") or result.get("id")
    return str(message_id) if message_id else None


class WhatsAppNotifier:
    """Notifier that delivers text messages through the WhatsApp API."""

    def __init__(self, client: WhatsAppClient | None = None):
        self.client = client or WhatsAppClient()

    async def send(self, recipient: str, body: str) -> SendResult:
        try:
            result = await self.client.send_message(recipient, body)
        except WhatsAppAPIError as e:
            logger.warning(f"Failed to send message to {recipient}: {e.detail}")
            return SendResult(success=False, error=e.detail)

        message_id = extract_message_id(result)
        logger.info(f"Message sent to {recipient} (message_id={message_id})")
        return SendResult(success=True, message_id=message_id)
