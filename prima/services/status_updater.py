"""Applies resolved conversation outcomes to patient and reminder records."""

import logging
from datetime import datetime
from enum import Enum
from typing import Protocol
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prima.core.clock import utcnow
from prima.db.repositories import PatientRepository, ReminderRepository
from prima.models import ConfirmationStatus, VerificationStatus

logger = logging.getLogger(__name__)


class StatusOutcome(str, Enum):
    VERIFICATION_ACCEPTED = "verification_accepted"
    VERIFICATION_DECLINED = "verification_declined"
    REMINDER_CONFIRMED = "reminder_confirmed"
    REMINDER_MISSED = "reminder_missed"


VERIFICATION_TARGETS = {
    StatusOutcome.VERIFICATION_ACCEPTED: VerificationStatus.VERIFIED,
    StatusOutcome.VERIFICATION_DECLINED: VerificationStatus.DECLINED,
}

CONFIRMATION_TARGETS = {
    StatusOutcome.REMINDER_CONFIRMED: ConfirmationStatus.CONFIRMED,
    StatusOutcome.REMINDER_MISSED: ConfirmationStatus.MISSED,
}


class PatientStatusUpdater(Protocol):
    async def apply(
        self,
        patient_id: UUID,
        outcome: StatusOutcome,
        related_entity_id: UUID | None = None,
    ) -> bool: ...


class DatabaseStatusUpdater:
    """
    Writes outcomes to the patients and reminders tables.

    Applying an outcome the record already carries is a no-op that reports
    success, so a retried resolution never double-writes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis | None = None,
    ):
        self.session_factory = session_factory
        self.redis = redis

    async def apply(
        self,
        patient_id: UUID,
        outcome: StatusOutcome,
        related_entity_id: UUID | None = None,
    ) -> bool:
        """
        Apply an outcome.

        Args:
            patient_id: The patient the conversation belongs to
            outcome: The resolved outcome
            related_entity_id: Reminder ID for reminder outcomes

        Returns:
            True if the record carries the outcome afterwards
        """
        now = utcnow()
        async with self.session_factory() as db:
            if outcome in VERIFICATION_TARGETS:
                written = await self._apply_verification(
                    PatientRepository(db), patient_id, VERIFICATION_TARGETS[outcome], now
                )
            else:
                written = await self._apply_confirmation(
                    ReminderRepository(db),
                    patient_id,
                    related_entity_id,
                    CONFIRMATION_TARGETS[outcome],
                    now,
                )

        if written is None:
            return False
        if written:
            await self._invalidate_cache(patient_id)
        return True

    async def _apply_verification(
        self,
        repo: PatientRepository,
        patient_id: UUID,
        target: VerificationStatus,
        now: datetime,
    ) -> bool | None:
        patient = await repo.get(patient_id)
        if patient is None:
            logger.error(f"Cannot apply verification outcome: patient {patient_id} not found")
            return None

        if patient.verification_status == target:
            logger.info(f"Patient {patient_id} already {target.value}; nothing to write")
            return False

        await repo.update(
            patient,
            verification_status=target,
            verification_response_at=now,
        )
        logger.info(f"Patient {patient_id} verification status set to {target.value}")
        return True

    async def _apply_confirmation(
        self,
        repo: ReminderRepository,
        patient_id: UUID,
        reminder_id: UUID | None,
        target: ConfirmationStatus,
        now: datetime,
    ) -> bool | None:
        if reminder_id is None:
            logger.error(f"Cannot apply confirmation outcome for patient {patient_id}: no reminder")
            return None

        reminder = await repo.get_for_patient(reminder_id, patient_id)
        if reminder is None:
            logger.error(
                f"Cannot apply confirmation outcome: reminder {reminder_id} "
                f"not found for patient {patient_id}"
            )
            return None

        if reminder.confirmation_status == target:
            logger.info(f"Reminder {reminder_id} already {target.value}; nothing to write")
            return False

        await repo.update(
            reminder,
            confirmation_status=target,
            confirmation_response_at=now,
        )
        logger.info(f"Reminder {reminder_id} confirmation status set to {target.value}")
        return True

    async def _invalidate_cache(self, patient_id: UUID) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.delete(f"patient:{patient_id}", f"patient:{patient_id}:reminders")
        except RedisError as e:
            logger.warning(f"Failed to invalidate cache for patient {patient_id}: {e}")
