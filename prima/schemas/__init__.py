"""Pydantic schemas for request/response models."""

from prima.schemas.conversation import (
    ClearContextResponse,
    ConversationMessageDetail,
    ConversationStateDetail,
    ConversationStateWithMessages,
    OpenContextRequest,
    OpenContextResponse,
)
from prima.schemas.webhook import WebhookPayload, WebhookResponse

__all__ = [
    "ClearContextResponse",
    "ConversationMessageDetail",
    "ConversationStateDetail",
    "ConversationStateWithMessages",
    "OpenContextRequest",
    "OpenContextResponse",
    "WebhookPayload",
    "WebhookResponse",
]
