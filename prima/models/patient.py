"""Patient model holding the verification outcome of the WhatsApp opt-in."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prima.db.base import Base
from prima.models.base import TimestampMixin, enum_column


class VerificationStatus(str, Enum):
    """Whether the patient agreed to receive reminders over WhatsApp."""

    UNVERIFIED = "UNVERIFIED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    DECLINED = "DECLINED"


class Patient(Base, TimestampMixin):
    """A monitored patient reachable over WhatsApp."""

    __tablename__ = "patients"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        enum_column(VerificationStatus), default=VerificationStatus.UNVERIFIED
    )
    verification_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verification_response_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    reminders: Mapped[list["Reminder"]] = relationship(  # noqa: F821
        back_populates="patient", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_patients_phone", "phone_number"),)
