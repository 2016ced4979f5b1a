"""Conversation context endpoints used by schedulers and operators."""

import logging
from uuid import UUID

from fastapi import APIRouter

from prima.api.deps import DbSession, Engine
from prima.core.clock import utcnow
from prima.core.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    StateConflictError,
)
from prima.db.repositories import (
    ConversationMessageRepository,
    ConversationStateRepository,
    PatientRepository,
    ReminderRepository,
)
from prima.models import ConversationContext, VerificationStatus
from prima.schemas import (
    ClearContextResponse,
    ConversationMessageDetail,
    ConversationStateDetail,
    ConversationStateWithMessages,
    OpenContextRequest,
    OpenContextResponse,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])
logger = logging.getLogger(__name__)


@router.post("", response_model=OpenContextResponse, status_code=201)
async def open_conversation(
    data: OpenContextRequest,
    db: DbSession,
    engine: Engine,
):
    """Open a context for a patient and send the matching prompt.

    Any context already open for the patient is superseded.
    """
    patient_repo = PatientRepository(db)
    patient = await patient_repo.get(data.patient_id)
    if not patient:
        raise NotFoundError("Patient", str(data.patient_id))

    reminder_message = data.reminder_message
    if data.context == ConversationContext.REMINDER_CONFIRMATION:
        if not data.related_entity_id:
            raise BadRequestError("related_entity_id is required for reminder_confirmation")
        reminder = await ReminderRepository(db).get_for_patient(
            data.related_entity_id, patient.id
        )
        if not reminder:
            raise NotFoundError("Reminder", str(data.related_entity_id))
        reminder_message = reminder_message or reminder.message

    try:
        result = await engine.open_context(
            patient_id=patient.id,
            recipient=data.recipient or patient.phone_number,
            context=data.context,
            related_entity_id=data.related_entity_id,
            subject_name=patient.name,
            reminder_message=reminder_message,
        )
    except ValueError as e:
        raise BadRequestError(str(e))
    except StateConflictError:
        raise ConflictError("Another context was opened for this patient concurrently")

    if result.error == "rate_limited":
        raise RateLimitedError("Outbound message limit reached for this recipient")

    if result.prompt_sent and data.context == ConversationContext.VERIFICATION:
        await patient_repo.update(
            patient,
            verification_status=VerificationStatus.PENDING,
            verification_sent_at=utcnow(),
        )

    return OpenContextResponse(
        state=ConversationStateDetail.model_validate(result.state),
        prompt_sent=result.prompt_sent,
        message_id=result.message_id,
        error=result.error,
    )


@router.get("/{patient_id}", response_model=ConversationStateWithMessages)
async def get_conversation(
    patient_id: UUID,
    db: DbSession,
):
    """Get the active context for a patient with its message history."""
    state = await ConversationStateRepository(db).get_active(patient_id)
    if not state:
        raise NotFoundError("Active conversation for patient", str(patient_id))

    messages = await ConversationMessageRepository(db).list_for_state(state.id)
    detail = ConversationStateDetail.model_validate(state)
    return ConversationStateWithMessages(
        **detail.model_dump(),
        messages=[ConversationMessageDetail.model_validate(m) for m in messages],
    )


@router.delete("/{patient_id}", response_model=ClearContextResponse)
async def clear_conversation(
    patient_id: UUID,
    db: DbSession,
):
    """Clear a patient's context without resolving it."""
    cleared = await ConversationStateRepository(db).clear(patient_id)
    return ClearContextResponse(patient_id=patient_id, cleared=cleared)
