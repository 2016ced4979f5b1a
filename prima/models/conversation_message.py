"""Audit trail of messages exchanged within a conversation context."""

from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prima.db.base import Base
from prima.models.base import TimestampMixin, enum_column


class MessageDirection(str, Enum):
    """Message direction enum."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageKind(str, Enum):
    """Role of the message in the prompt/response exchange."""

    PROMPT = "prompt"
    REPLY = "reply"
    CLARIFICATION = "clarification"
    ACKNOWLEDGEMENT = "acknowledgement"


class ConversationMessage(Base, TimestampMixin):
    """A single inbound reply or outbound prompt tied to a conversation state."""

    __tablename__ = "conversation_messages"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    conversation_state_id: Mapped[UUID] = mapped_column(
        ForeignKey("conversation_states.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[MessageDirection] = mapped_column(
        enum_column(MessageDirection), nullable=False
    )
    kind: Mapped[MessageKind] = mapped_column(enum_column(MessageKind), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    # Classification result for inbound replies
    intent: Mapped[str | None] = mapped_column(String(50))
    confidence: Mapped[float | None] = mapped_column(Float)
    classification_source: Mapped[str | None] = mapped_column(String(20))

    conversation_state: Mapped["ConversationState"] = relationship(  # noqa: F821
        back_populates="messages"
    )

    __table_args__ = (
        Index("ix_conversation_messages_state", "conversation_state_id"),
    )
