"""Conversation state model: the open prompt/response context for a patient."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prima.db.base import Base
from prima.models.base import TimestampMixin, enum_column


class ConversationContext(str, Enum):
    """Which prompt the patient is currently expected to answer."""

    VERIFICATION = "verification"
    REMINDER_CONFIRMATION = "reminder_confirmation"
    NONE = "none"


class ExpectedResponseType(str, Enum):
    """Shape of the reply the open context is waiting for."""

    YES_NO = "yes_no"
    CONFIRMATION = "confirmation"


class RelatedEntityType(str, Enum):
    """Kind of business object a conversation refers to."""

    VERIFICATION = "verification"
    REMINDER = "reminder"


class ConversationState(Base, TimestampMixin):
    """One row per opened context; at most one active row per patient."""

    __tablename__ = "conversation_states"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    patient_id: Mapped[UUID] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    recipient_address: Mapped[str] = mapped_column(String(50), nullable=False)

    context: Mapped[ConversationContext] = mapped_column(
        enum_column(ConversationContext), nullable=False
    )
    expected_response_type: Mapped[ExpectedResponseType | None] = mapped_column(
        enum_column(ExpectedResponseType)
    )
    related_entity_id: Mapped[UUID | None] = mapped_column()
    related_entity_type: Mapped[RelatedEntityType | None] = mapped_column(
        enum_column(RelatedEntityType)
    )
    state_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql")
    )

    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message: Mapped[str | None] = mapped_column(Text)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    context_set_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_clarification_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Bumped on every write; guards compare-and-swap updates
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    messages: Mapped[list["ConversationMessage"]] = relationship(  # noqa: F821
        back_populates="conversation_state", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_conversation_states_patient", "patient_id"),
        Index("ix_conversation_states_recipient", "recipient_address"),
        Index("ix_conversation_states_deleted_at", "deleted_at"),
        Index(
            "uq_conversation_states_active_patient",
            "patient_id",
            unique=True,
            postgresql_where=text("is_active AND deleted_at IS NULL"),
            sqlite_where=text("is_active = 1 AND deleted_at IS NULL"),
        ),
    )
