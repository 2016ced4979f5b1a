"""Patient repository."""

from sqlalchemy.ext.asyncio import AsyncSession

from prima.db.repositories.base import BaseRepository
from prima.models import Patient


class PatientRepository(BaseRepository[Patient]):
    """Repository for patient operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Patient)
