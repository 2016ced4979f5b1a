"""Repository classes for database operations."""

from prima.db.repositories.base import BaseRepository
from prima.db.repositories.conversation_message import ConversationMessageRepository
from prima.db.repositories.conversation_state import ConversationStateRepository
from prima.db.repositories.patient import PatientRepository
from prima.db.repositories.reminder import ReminderRepository

__all__ = [
    "BaseRepository",
    "ConversationMessageRepository",
    "ConversationStateRepository",
    "PatientRepository",
    "ReminderRepository",
]
