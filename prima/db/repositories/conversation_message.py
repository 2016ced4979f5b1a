"""Repository for the conversation message audit trail."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prima.db.repositories.base import BaseRepository
from prima.models import ConversationMessage, MessageDirection, MessageKind


class ConversationMessageRepository(BaseRepository[ConversationMessage]):
    """Repository for messages exchanged inside a conversation context."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ConversationMessage)

    async def add_message(
        self,
        conversation_state_id: UUID,
        direction: MessageDirection,
        kind: MessageKind,
        body: str,
        intent: str | None = None,
        confidence: float | None = None,
        classification_source: str | None = None,
    ) -> ConversationMessage:
        """Record a message against a conversation state."""
        return await self.create(
            conversation_state_id=conversation_state_id,
            direction=direction,
            kind=kind,
            body=body,
            intent=intent,
            confidence=confidence,
            classification_source=classification_source,
        )

    async def list_for_state(
        self, conversation_state_id: UUID, limit: int = 50
    ) -> list[ConversationMessage]:
        """Get messages for a conversation state, oldest first."""
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.conversation_state_id == conversation_state_id)
            .order_by(ConversationMessage.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
