"""Conversation state schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from prima.models import (
    ConversationContext,
    ExpectedResponseType,
    MessageDirection,
    MessageKind,
    RelatedEntityType,
)


class OpenContextRequest(BaseModel):
    """Schema for opening a conversation context and sending its prompt."""

    patient_id: UUID
    context: ConversationContext = Field(
        ..., description="verification or reminder_confirmation"
    )
    recipient: str | None = Field(
        None, description="WhatsApp number to prompt (defaults to the patient's phone)"
    )
    related_entity_id: UUID | None = Field(
        None, description="Reminder ID, required for reminder_confirmation"
    )
    reminder_message: str | None = Field(None, description="Reminder text for the prompt")


class ConversationMessageDetail(BaseModel):
    """Schema for one message in the conversation audit trail."""

    id: UUID
    direction: MessageDirection
    kind: MessageKind
    body: str
    intent: str | None
    confidence: float | None
    classification_source: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationStateDetail(BaseModel):
    """Schema for conversation state details."""

    id: UUID
    patient_id: UUID
    recipient_address: str
    context: ConversationContext
    expected_response_type: ExpectedResponseType | None
    related_entity_id: UUID | None
    related_entity_type: RelatedEntityType | None
    state_data: dict[str, Any] | None
    attempt_count: int
    message_count: int
    last_message: str | None
    last_message_at: datetime | None
    context_set_at: datetime | None
    last_clarification_sent_at: datetime | None
    expires_at: datetime
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConversationStateWithMessages(ConversationStateDetail):
    messages: list[ConversationMessageDetail] = []


class OpenContextResponse(BaseModel):
    """Result of opening a conversation context."""

    state: ConversationStateDetail
    prompt_sent: bool
    message_id: str | None = None
    error: str | None = None


class ClearContextResponse(BaseModel):
    patient_id: UUID
    cleared: int
