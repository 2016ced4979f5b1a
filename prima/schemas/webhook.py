"""Webhook schemas."""

from typing import Any

from pydantic import BaseModel, Field


class WebhookPayload(BaseModel):
    """Schema for WhatsApp webhook payload."""

    device_id: str
    event: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def sender_address(self) -> str:
        """Sender phone number with the JID suffix stripped."""
        jid = self.data.get("from", "")
        return jid.split("@")[0].split(":")[0]

    @property
    def text(self) -> str:
        return (self.data.get("body") or "").strip()

    @property
    def is_group(self) -> bool:
        return bool(self.data.get("isGroup", False) or self.data.get("is_group", False))

    @property
    def is_from_me(self) -> bool:
        return bool(self.data.get("fromMe", False))


class WebhookResponse(BaseModel):
    """Result of handling a webhook event."""

    status: str
    event: str
    outcome: str | None = None
    reason: str | None = None
    retry_after_seconds: float | None = None
