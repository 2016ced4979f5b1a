"""Conversation engine: opens prompt contexts and turns patient replies into outcomes."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prima.config import settings
from prima.core.clock import ensure_utc, utcnow
from prima.core.exceptions import StateConflictError
from prima.core.locks import KeyedLock
from prima.core.telemetry import get_tracer
from prima.db.repositories import ConversationMessageRepository, ConversationStateRepository
from prima.models import (
    ConversationContext,
    ConversationState,
    ExpectedResponseType,
    MessageDirection,
    MessageKind,
    RelatedEntityType,
)
from prima.services import templates
from prima.services.classification import Classification, ClassificationSource, ResponseClassifier
from prima.services.keyword_matcher import Intent
from prima.services.notifier import OutboundNotifier, SendResult
from prima.services.rate_limiter import RateLimiter, RateLimitResult
from prima.services.status_updater import PatientStatusUpdater, StatusOutcome

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

STATUS_OUTCOMES = {
    Intent.ACCEPT: StatusOutcome.VERIFICATION_ACCEPTED,
    Intent.DECLINE: StatusOutcome.VERIFICATION_DECLINED,
    Intent.DONE: StatusOutcome.REMINDER_CONFIRMED,
    Intent.NOT_YET: StatusOutcome.REMINDER_MISSED,
}

# Shared by every engine instance in this process
recipient_locks = KeyedLock()


@dataclass
class EngineConfig:
    verification_ttl: timedelta = timedelta(hours=48)
    confirmation_ttl: timedelta = timedelta(hours=48)
    clarification_min_interval: timedelta = timedelta(seconds=60)
    notifier_timeout: float = 15.0

    @classmethod
    def from_settings(cls) -> "EngineConfig":
        return cls(
            verification_ttl=timedelta(hours=settings.VERIFICATION_CONTEXT_TTL_HOURS),
            confirmation_ttl=timedelta(hours=settings.CONFIRMATION_CONTEXT_TTL_HOURS),
            clarification_min_interval=timedelta(
                seconds=settings.CLARIFICATION_MIN_INTERVAL_SECONDS
            ),
            notifier_timeout=settings.NOTIFIER_TIMEOUT_SECONDS,
        )

    def ttl_for(self, context: ConversationContext) -> timedelta:
        if context == ConversationContext.VERIFICATION:
            return self.verification_ttl
        return self.confirmation_ttl


@dataclass
class InboundMessage:
    sender_address: str
    text: str
    received_at: datetime = field(default_factory=utcnow)


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    PENDING = "pending"
    DROPPED = "dropped"


@dataclass
class InboundOutcome:
    """What happened to one inbound reply.

    ``code`` joins kind and detail, e.g. ``resolved_accept``,
    ``pending_invalid_response`` or ``dropped_no_context``.
    """

    kind: OutcomeKind
    detail: str
    state_id: UUID | None = None
    source: ClassificationSource | None = None
    attempt_count: int | None = None
    retry_after: timedelta | None = None

    @property
    def code(self) -> str:
        return f"{self.kind.value}_{self.detail}"


@dataclass
class OpenContextResult:
    state: ConversationState | None
    prompt_sent: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class StateSnapshot:
    """Plain copy of the fields the engine reads from a conversation state.

    ORM instances are expired by a rollback after a lost version race, so
    decisions are made on this copy instead.
    """

    id: UUID
    version: int
    patient_id: UUID
    context: ConversationContext
    related_entity_id: UUID | None
    attempt_count: int
    message_count: int
    last_clarification_sent_at: datetime | None
    expires_at: datetime
    state_data: dict[str, Any]

    @classmethod
    def of(cls, state: ConversationState) -> "StateSnapshot":
        return cls(
            id=state.id,
            version=state.version,
            patient_id=state.patient_id,
            context=state.context,
            related_entity_id=state.related_entity_id,
            attempt_count=state.attempt_count,
            message_count=state.message_count,
            last_clarification_sent_at=ensure_utc(state.last_clarification_sent_at),
            expires_at=ensure_utc(state.expires_at),
            state_data=dict(state.state_data or {}),
        )

    @property
    def subject_name(self) -> str | None:
        return self.state_data.get("subject_name")


class ConversationEngine:
    """
    Per-patient conversation state machine.

    Each call runs on its own database session. Work for one recipient is
    serialized by a process-wide keyed lock; writes from other processes are
    detected by the version check on the state row and retried once.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: ResponseClassifier,
        notifier: OutboundNotifier,
        status_updater: PatientStatusUpdater,
        inbound_limiter: RateLimiter,
        outbound_limiter: RateLimiter,
        config: EngineConfig | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.classifier = classifier
        self.notifier = notifier
        self.status_updater = status_updater
        self.inbound_limiter = inbound_limiter
        self.outbound_limiter = outbound_limiter
        self.config = config or EngineConfig.from_settings()
        self.locks = locks if locks is not None else recipient_locks
        self.clock = clock

    async def open_context(
        self,
        patient_id: UUID,
        recipient: str,
        context: ConversationContext,
        related_entity_id: UUID | None = None,
        related_entity_type: RelatedEntityType | None = None,
        subject_name: str | None = None,
        reminder_message: str | None = None,
    ) -> OpenContextResult:
        """
        Open a context for a patient and send its prompt.

        Any context already open for the patient is superseded. The state is
        committed before the prompt goes out; if the send fails the context
        stays open and expires on its normal horizon.

        Args:
            patient_id: The patient the prompt is for
            recipient: WhatsApp address the prompt is sent to
            context: VERIFICATION or REMINDER_CONFIRMATION
            related_entity_id: Reminder ID (required for reminder confirmation)
            related_entity_type: Kind of related entity (derived from context if omitted)
            subject_name: Patient name used in templates
            reminder_message: Reminder text included in a confirmation prompt

        Returns:
            OpenContextResult with the opened state, or error "rate_limited"

        Raises:
            ValueError: If the context cannot be opened with the given arguments
        """
        if context == ConversationContext.VERIFICATION:
            expected = ExpectedResponseType.YES_NO
            entity_type = related_entity_type or RelatedEntityType.VERIFICATION
        elif context == ConversationContext.REMINDER_CONFIRMATION:
            if related_entity_id is None:
                raise ValueError("Reminder confirmation requires a related reminder ID")
            expected = ExpectedResponseType.CONFIRMATION
            entity_type = related_entity_type or RelatedEntityType.REMINDER
        else:
            raise ValueError(f"Cannot open a conversation in context '{context.value}'")

        limit = await self._check_limit(self.outbound_limiter, recipient)
        if not limit.allowed:
            logger.warning(f"Outbound rate limit reached for {recipient}; context not opened")
            return OpenContextResult(state=None, prompt_sent=False, error="rate_limited")

        with tracer.start_as_current_span("conversation.open") as span:
            span.set_attribute("conversation.context", context.value)
            span.set_attribute("conversation.patient_id", str(patient_id))

            async with self.locks.acquire(recipient):
                now = self.clock()
                ttl = self.config.ttl_for(context)
                state_data = {"subject_name": subject_name} if subject_name else {}

                async with self.session_factory() as db:
                    states = ConversationStateRepository(db)
                    state = await states.open_context(
                        patient_id=patient_id,
                        recipient_address=recipient,
                        context=context,
                        expected_response_type=expected,
                        expires_at=now + ttl,
                        now=now,
                        related_entity_id=related_entity_id,
                        related_entity_type=entity_type,
                        state_data=state_data,
                    )
                    db.expunge(state)
                    logger.info(
                        f"Opened {context.value} context {state.id} for patient {patient_id} "
                        f"(expires {state.expires_at.isoformat()})"
                    )

                    body = templates.prompt(
                        context,
                        subject_name,
                        reminder_message,
                        ttl_hours=int(ttl.total_seconds() // 3600),
                    )
                    sent = await self._send(recipient, body)
                    if sent.success:
                        await self._record(db, state.id, MessageDirection.OUTBOUND, MessageKind.PROMPT, body)
                    else:
                        logger.warning(
                            f"Prompt for context {state.id} was not delivered ({sent.error}); "
                            f"context stays open until it expires"
                        )

            span.set_attribute("conversation.prompt_sent", sent.success)

        return OpenContextResult(
            state=state,
            prompt_sent=sent.success,
            message_id=sent.message_id,
            error=sent.error,
        )

    async def handle_inbound_message(self, message: InboundMessage) -> InboundOutcome:
        """
        Process one inbound reply.

        Never raises: unexpected failures are logged and reported as
        ``dropped_error``.
        """
        with tracer.start_as_current_span("conversation.handle_inbound") as span:
            span.set_attribute("conversation.sender", message.sender_address)
            try:
                async with self.locks.acquire(message.sender_address):
                    outcome = await self._handle(message)
            except Exception as e:
                logger.exception(f"Error handling reply from {message.sender_address}: {e}")
                outcome = InboundOutcome(OutcomeKind.DROPPED, "error")

            span.set_attribute("conversation.outcome", outcome.code)
            logger.info(
                f"Reply from {message.sender_address} received {message.received_at.isoformat()}: "
                f"{outcome.code}"
            )
            return outcome

    async def _handle(self, message: InboundMessage) -> InboundOutcome:
        address = message.sender_address
        now = self.clock()

        async with self.session_factory() as db:
            states = ConversationStateRepository(db)
            snapshot = await self._load_active(states, address, now)
            if snapshot is None:
                logger.debug(f"No active context for {address}")
                return InboundOutcome(OutcomeKind.DROPPED, "no_context")

            limit = await self._check_limit(self.inbound_limiter, address)
            if not limit.allowed:
                return InboundOutcome(
                    OutcomeKind.DROPPED,
                    "rate_limited",
                    state_id=snapshot.id,
                    retry_after=limit.retry_after,
                )

            classification = await self.classifier.classify(
                message.text, snapshot.context, snapshot.subject_name
            )
            logger.info(
                f"Reply to {snapshot.context.value} context {snapshot.id} classified as "
                f"{classification.intent.value} via {classification.source.value}"
            )

            if classification.is_terminal:
                return await self._resolve(db, states, snapshot, message, classification, now)
            return await self._request_clarification(
                db, states, snapshot, message, classification, now
            )

    async def _load_active(
        self, states: ConversationStateRepository, address: str, now: datetime
    ) -> StateSnapshot | None:
        state = await states.get_active_for_address(address, now)
        if state is None:
            return None
        snapshot = StateSnapshot.of(state)
        if snapshot.expires_at <= now:
            return None
        return snapshot

    def _clarification_due(self, snapshot: StateSnapshot, now: datetime) -> bool:
        last = snapshot.last_clarification_sent_at
        return last is None or now - last >= self.config.clarification_min_interval

    async def _request_clarification(
        self,
        db: AsyncSession,
        states: ConversationStateRepository,
        snapshot: StateSnapshot,
        message: InboundMessage,
        classification: Classification,
        now: datetime,
    ) -> InboundOutcome:
        address = message.sender_address
        current = snapshot

        for _ in range(2):
            send_clarification = self._clarification_due(current, now)
            values: dict[str, Any] = {
                "attempt_count": current.attempt_count + 1,
                "message_count": current.message_count + 1,
                "last_message": message.text,
                "last_message_at": message.received_at,
            }
            if send_clarification:
                values["last_clarification_sent_at"] = now

            updated = await states.update_state(current.id, current.version, **values)
            if updated is not None:
                break

            current = await self._load_active(states, address, now)
            if current is None or current.id != snapshot.id:
                logger.info(f"Context {snapshot.id} closed while handling reply from {address}")
                return InboundOutcome(OutcomeKind.DROPPED, "no_context", state_id=snapshot.id)
        else:
            raise StateConflictError(snapshot.id)

        attempt_count = updated.attempt_count
        await self._record(
            db, snapshot.id, MessageDirection.INBOUND, MessageKind.REPLY, message.text, classification
        )

        if send_clarification:
            body = templates.clarification(current.context, attempt_count)
            sent = await self._send(address, body)
            if sent.success:
                await self._record(
                    db, snapshot.id, MessageDirection.OUTBOUND, MessageKind.CLARIFICATION, body
                )
            else:
                logger.warning(f"Clarification for context {snapshot.id} not delivered: {sent.error}")
        else:
            logger.info(
                f"Clarification for context {snapshot.id} throttled "
                f"(last sent {current.last_clarification_sent_at.isoformat()})"
            )

        return InboundOutcome(
            OutcomeKind.PENDING,
            "invalid_response",
            state_id=snapshot.id,
            source=classification.source,
            attempt_count=attempt_count,
        )

    async def _resolve(
        self,
        db: AsyncSession,
        states: ConversationStateRepository,
        snapshot: StateSnapshot,
        message: InboundMessage,
        classification: Classification,
        now: datetime,
    ) -> InboundOutcome:
        address = message.sender_address
        intent = classification.intent
        current = snapshot

        # Claim: an inactive, undeleted row is invisible to other deliveries
        for _ in range(2):
            claimed = await states.update_state(
                current.id,
                current.version,
                is_active=False,
                message_count=current.message_count + 1,
                last_message=message.text,
                last_message_at=message.received_at,
            )
            if claimed is not None:
                break

            current = await self._load_active(states, address, now)
            if current is None or current.id != snapshot.id:
                logger.info(
                    f"Context {snapshot.id} already resolved or superseded; "
                    f"dropping reply from {address}"
                )
                return InboundOutcome(OutcomeKind.DROPPED, "no_context", state_id=snapshot.id)
        else:
            raise StateConflictError(snapshot.id)

        claimed_version = claimed.version
        await self._record(
            db, snapshot.id, MessageDirection.INBOUND, MessageKind.REPLY, message.text, classification
        )

        status_outcome = STATUS_OUTCOMES[intent]
        if not await self._apply_status(current, status_outcome):
            await self._release_claim(states, current.id, claimed_version)
            body = templates.retry_request(current.context, current.subject_name)
            sent = await self._send(address, body)
            if sent.success:
                await self._record(
                    db, snapshot.id, MessageDirection.OUTBOUND, MessageKind.CLARIFICATION, body
                )
            else:
                logger.warning(f"Retry request for context {snapshot.id} not delivered: {sent.error}")
            return InboundOutcome(
                OutcomeKind.PENDING,
                "status_update_failed",
                state_id=snapshot.id,
                source=classification.source,
                attempt_count=current.attempt_count,
            )

        resolution = {
            "context": current.context.value,
            "intent": intent.value,
            "source": classification.source.value,
            "confidence": classification.confidence,
            "related_entity_id": str(current.related_entity_id) if current.related_entity_id else None,
            "attempt_count": current.attempt_count,
            "resolved_at": now.isoformat(),
        }
        finalised = await states.update_state(
            current.id,
            claimed_version,
            context=ConversationContext.NONE,
            deleted_at=now,
            attempt_count=0,
            message_count=0,
            related_entity_id=None,
            related_entity_type=None,
            state_data={**current.state_data, "resolution": resolution},
        )
        if finalised is None:
            logger.error(f"Context {current.id} changed after it was claimed; resolution kept")

        logger.info(
            f"Resolved {current.context.value} context {current.id} for patient "
            f"{current.patient_id}: {intent.value}"
        )

        body = templates.acknowledgement(intent, current.subject_name)
        sent = await self._send(address, body)
        if sent.success:
            await self._record(
                db, snapshot.id, MessageDirection.OUTBOUND, MessageKind.ACKNOWLEDGEMENT, body
            )
        else:
            logger.warning(
                f"Acknowledgement for context {current.id} not delivered ({sent.error}); "
                f"resolution stands"
            )

        return InboundOutcome(
            OutcomeKind.RESOLVED,
            intent.value,
            state_id=snapshot.id,
            source=classification.source,
            attempt_count=current.attempt_count,
        )

    async def _apply_status(self, snapshot: StateSnapshot, outcome: StatusOutcome) -> bool:
        try:
            applied = await self.status_updater.apply(
                snapshot.patient_id, outcome, snapshot.related_entity_id
            )
        except Exception as e:
            logger.error(
                f"Status update {outcome.value} for patient {snapshot.patient_id} failed: {e}"
            )
            return False

        if not applied:
            logger.error(
                f"Status update {outcome.value} for patient {snapshot.patient_id} was rejected"
            )
        return applied

    async def _release_claim(
        self, states: ConversationStateRepository, state_id: UUID, claimed_version: int
    ) -> None:
        """Reactivate a claimed row so a redelivered reply can resolve it."""
        try:
            released = await states.update_state(state_id, claimed_version, is_active=True)
        except IntegrityError:
            await states.session.rollback()
            logger.warning(
                f"Claim on context {state_id} not released: a newer context is active"
            )
            return

        if released is None:
            logger.error(f"Claim on context {state_id} could not be released")
        else:
            logger.info(f"Released claim on context {state_id}; reply may be retried")

    async def _check_limit(self, limiter: RateLimiter, key: str) -> RateLimitResult:
        """Consume one unit from a limiter; an unavailable limiter lets the request through."""
        try:
            return await limiter.check_and_consume(key)
        except Exception as e:
            logger.warning(f"Rate limiter unavailable for {key}, allowing request: {e}")
            return RateLimitResult(allowed=True, remaining=0)

    async def _send(self, recipient: str, body: str) -> SendResult:
        try:
            return await asyncio.wait_for(
                self.notifier.send(recipient, body),
                timeout=self.config.notifier_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Send to {recipient} timed out after {self.config.notifier_timeout}s"
            )
            return SendResult(success=False, error="timeout")
        except Exception as e:
            logger.warning(f"Send to {recipient} failed: {e}")
            return SendResult(success=False, error=str(e))

    async def _record(
        self,
        db: AsyncSession,
        state_id: UUID,
        direction: MessageDirection,
        kind: MessageKind,
        body: str,
        classification: Classification | None = None,
    ) -> None:
        """Append to the conversation audit trail. Failures are logged only."""
        try:
            await ConversationMessageRepository(db).add_message(
                conversation_state_id=state_id,
                direction=direction,
                kind=kind,
                body=body,
                intent=classification.intent.value if classification else None,
                confidence=classification.confidence if classification else None,
                classification_source=classification.source.value if classification else None,
            )
        except Exception as e:
            await db.rollback()
            logger.warning(f"Failed to record {kind.value} message for context {state_id}: {e}")
