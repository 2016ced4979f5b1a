"""Conversation state repository: the persistent store behind the engine."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import Select, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prima.core.clock import utcnow
from prima.core.exceptions import StateConflictError
from prima.db.repositories.base import BaseRepository
from prima.models import (
    ConversationContext,
    ConversationState,
    ExpectedResponseType,
    RelatedEntityType,
)

logger = logging.getLogger(__name__)


class ConversationStateRepository(BaseRepository[ConversationState]):
    """Repository for conversation state operations.

    Every write bumps ``version``. Callers that read a state and then mutate it
    go through :meth:`update_state`, which only applies when the version they
    read is still current.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ConversationState)

    def _active_query(self, now: datetime) -> Select:
        return (
            select(ConversationState)
            .where(
                ConversationState.is_active.is_(True),
                ConversationState.deleted_at.is_(None),
                ConversationState.expires_at > now,
            )
            .order_by(ConversationState.created_at.desc())
            .execution_options(populate_existing=True)
        )

    async def _pick_single_active(self, stmt: Select, owner: str) -> ConversationState | None:
        result = await self.session.execute(stmt)
        states = list(result.scalars().all())
        if not states:
            return None

        if len(states) > 1:
            logger.error(
                f"Invariant violation: {len(states)} active conversation states for "
                f"{owner} ({', '.join(str(s.id) for s in states)}); "
                f"using most recent {states[0].id}. Operator follow-up required."
            )
        return states[0]

    async def get_active(
        self, patient_id: UUID, now: datetime | None = None
    ) -> ConversationState | None:
        """Get the active, unexpired conversation state for a patient.

        Args:
            patient_id: The patient ID
            now: Reference time for expiry (defaults to current UTC time)

        Returns:
            The active state or None if the patient has no open context
        """
        stmt = self._active_query(now or utcnow()).where(
            ConversationState.patient_id == patient_id
        )
        return await self._pick_single_active(stmt, f"patient {patient_id}")

    async def get_active_for_address(
        self, recipient_address: str, now: datetime | None = None
    ) -> ConversationState | None:
        """Get the active, unexpired conversation state for a sender address."""
        stmt = self._active_query(now or utcnow()).where(
            ConversationState.recipient_address == recipient_address
        )
        return await self._pick_single_active(stmt, f"address {recipient_address}")

    async def update_state(
        self, state_id: UUID, expected_version: int, **values: Any
    ) -> ConversationState | None:
        """Apply a partial update if the row is still at ``expected_version``.

        Args:
            state_id: The conversation state ID
            expected_version: Version the caller read before deciding on the write
            **values: Column values (or SQL expressions) to set

        Returns:
            The refreshed state, or None if another writer got there first
        """
        stmt = (
            update(ConversationState)
            .where(
                ConversationState.id == state_id,
                ConversationState.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            logger.warning(
                f"Version conflict on conversation state {state_id} "
                f"(expected version {expected_version})"
            )
            return None

        await self.session.commit()
        return await self.get_fresh(state_id)

    async def _deactivate_active(self, patient_id: UUID, now: datetime) -> int:
        """Soft-delete every active row for a patient without committing."""
        stmt = (
            update(ConversationState)
            .where(
                ConversationState.patient_id == patient_id,
                ConversationState.is_active.is_(True),
                ConversationState.deleted_at.is_(None),
            )
            .values(
                is_active=False,
                deleted_at=now,
                version=ConversationState.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def open_context(
        self,
        *,
        patient_id: UUID,
        recipient_address: str,
        context: ConversationContext,
        expected_response_type: ExpectedResponseType,
        expires_at: datetime,
        now: datetime,
        related_entity_id: UUID | None = None,
        related_entity_type: RelatedEntityType | None = None,
        state_data: dict[str, Any] | None = None,
    ) -> ConversationState:
        """Supersede any active context for the patient and open a new one.

        The soft delete of the old rows and the insert of the new row commit
        together. A concurrent open from another process trips the partial
        unique index; that is retried once.

        Raises:
            StateConflictError: If the open still conflicts after the retry
        """
        for attempt in range(2):
            try:
                superseded = await self._deactivate_active(patient_id, now)
                state = ConversationState(
                    patient_id=patient_id,
                    recipient_address=recipient_address,
                    context=context,
                    expected_response_type=expected_response_type,
                    related_entity_id=related_entity_id,
                    related_entity_type=related_entity_type,
                    state_data=state_data or {},
                    attempt_count=0,
                    message_count=0,
                    context_set_at=now,
                    expires_at=expires_at,
                    is_active=True,
                    version=1,
                )
                self.session.add(state)
                await self.session.commit()
                await self.session.refresh(state)
            except IntegrityError:
                await self.session.rollback()
                logger.warning(
                    f"Concurrent context open for patient {patient_id} "
                    f"(attempt {attempt + 1})"
                )
                continue

            if superseded:
                logger.info(
                    f"Superseded {superseded} active context(s) for patient {patient_id}"
                )
            return state

        raise StateConflictError(patient_id)

    async def clear(self, patient_id: UUID, now: datetime | None = None) -> int:
        """Clear the patient's context: soft delete, context none, counts reset.

        Returns:
            Number of rows cleared
        """
        now = now or utcnow()
        stmt = (
            update(ConversationState)
            .where(
                ConversationState.patient_id == patient_id,
                ConversationState.is_active.is_(True),
                ConversationState.deleted_at.is_(None),
            )
            .values(
                is_active=False,
                deleted_at=now,
                context=ConversationContext.NONE,
                attempt_count=0,
                message_count=0,
                related_entity_id=None,
                related_entity_type=None,
                version=ConversationState.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        cleared = result.rowcount or 0
        if cleared:
            logger.info(f"Cleared conversation context for patient {patient_id}")
        return cleared

    async def cleanup_expired(
        self, now: datetime | None = None, retention: timedelta = timedelta(days=30)
    ) -> tuple[int, int]:
        """Deactivate expired contexts and purge long-deleted rows.

        Expired rows left claimed by a resolution that never finished are
        soft-deleted here as well.

        Returns:
            Tuple of (deactivated, purged) row counts
        """
        now = now or utcnow()
        deactivate = (
            update(ConversationState)
            .where(
                ConversationState.deleted_at.is_(None),
                ConversationState.expires_at <= now,
            )
            .values(
                is_active=False,
                deleted_at=now,
                version=ConversationState.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        purge = (
            delete(ConversationState)
            .where(ConversationState.deleted_at < now - retention)
            .execution_options(synchronize_session=False)
        )
        deactivated = (await self.session.execute(deactivate)).rowcount or 0
        purged = (await self.session.execute(purge)).rowcount or 0
        await self.session.commit()
        return deactivated, purged
