"""Webhook endpoints for receiving WhatsApp events."""

import logging

from fastapi import APIRouter

from prima.api.deps import Engine
from prima.schemas import WebhookPayload, WebhookResponse
from prima.services import InboundMessage

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/whatsapp", response_model=WebhookResponse)
async def whatsapp_webhook(
    payload: WebhookPayload,
    engine: Engine,
):
    """Receive webhooks from WhatsApp API server.

    Only ``message`` events from individual chats reach the conversation
    engine. Everything else is acknowledged and ignored.
    """
    if payload.event != "message":
        logger.debug(f"Ignoring webhook event '{payload.event}' from {payload.device_id}")
        return WebhookResponse(status="ignored", event=payload.event, reason="unsupported_event")

    if payload.is_from_me or payload.is_group:
        return WebhookResponse(status="ignored", event=payload.event, reason="not_a_patient_reply")

    sender = payload.sender_address
    text = payload.text
    if not sender or not text:
        logger.debug(f"Ignoring message without sender or text from {payload.device_id}")
        return WebhookResponse(status="ignored", event=payload.event, reason="empty_message")

    outcome = await engine.handle_inbound_message(
        InboundMessage(sender_address=sender, text=text)
    )

    return WebhookResponse(
        status="received",
        event=payload.event,
        outcome=outcome.code,
        retry_after_seconds=(
            outcome.retry_after.total_seconds() if outcome.retry_after else None
        ),
    )
