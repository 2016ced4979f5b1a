"""Reminder repository."""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from prima.db.repositories.base import BaseRepository
from prima.models import Reminder


class ReminderRepository(BaseRepository[Reminder]):
    """Repository for reminder operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Reminder)

    async def get_for_patient(self, reminder_id: UUID, patient_id: UUID) -> Reminder | None:
        """Get a reminder only if it belongs to the given patient."""
        reminder = await self.get(reminder_id)
        if reminder is None or reminder.patient_id != patient_id:
            return None
        return reminder
