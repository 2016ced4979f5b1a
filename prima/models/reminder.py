"""Reminder model for scheduled patient reminders awaiting confirmation."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prima.db.base import Base
from prima.models.base import TimestampMixin, enum_column


class ReminderStatus(str, Enum):
    """Delivery status of a reminder."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class ConfirmationStatus(str, Enum):
    """Patient's answer to the reminder confirmation prompt."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MISSED = "MISSED"


class Reminder(Base, TimestampMixin):
    """A reminder instance sent to a patient."""

    __tablename__ = "reminders"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    patient_id: Mapped[UUID] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[ReminderStatus] = mapped_column(
        enum_column(ReminderStatus), default=ReminderStatus.PENDING
    )
    confirmation_status: Mapped[ConfirmationStatus] = mapped_column(
        enum_column(ConfirmationStatus), default=ConfirmationStatus.PENDING
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmation_response_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    patient: Mapped["Patient"] = relationship(back_populates="reminders")  # noqa: F821

    __table_args__ = (
        Index("ix_reminders_patient_status", "patient_id", "confirmation_status"),
    )
