"""SQLAlchemy models."""

from prima.models.conversation_message import (
    ConversationMessage,
    MessageDirection,
    MessageKind,
)
from prima.models.conversation_state import (
    ConversationContext,
    ConversationState,
    ExpectedResponseType,
    RelatedEntityType,
)
from prima.models.patient import Patient, VerificationStatus
from prima.models.reminder import ConfirmationStatus, Reminder, ReminderStatus

__all__ = [
    "ConfirmationStatus",
    "ConversationContext",
    "ConversationMessage",
    "ConversationState",
    "ExpectedResponseType",
    "MessageDirection",
    "MessageKind",
    "Patient",
    "RelatedEntityType",
    "Reminder",
    "ReminderStatus",
    "VerificationStatus",
]
