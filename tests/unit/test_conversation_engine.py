"""Unit tests for ConversationEngine."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from prima.core.clock import ensure_utc, utcnow
from prima.core.locks import KeyedLock
from prima.db.repositories import ConversationMessageRepository, ConversationStateRepository
from prima.models import (
    ConfirmationStatus,
    ConversationContext,
    MessageKind,
    VerificationStatus,
)
from prima.services import (
    ClassificationSource,
    InboundMessage,
    InMemoryRateLimiter,
    ResponseClassifier,
    SendResult,
)
from prima.services import templates
from prima.services.classification import Classification
from prima.services.intent_classifier import ClassifierResult, ConfidenceLevel
from prima.services.keyword_matcher import Intent


class MutableClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


async def open_verification(engine, patient):
    return await engine.open_context(
        patient_id=patient.id,
        recipient=patient.phone_number,
        context=ConversationContext.VERIFICATION,
        subject_name=patient.name,
    )


def reply(patient, text):
    return InboundMessage(sender_address=patient.phone_number, text=text)


def sent_bodies(notifier):
    return [c.args[1] for c in notifier.send.await_args_list]


class TestOpenContext:
    """Tests for ConversationEngine.open_context."""

    @pytest.mark.asyncio
    async def test_open_sends_prompt(self, make_engine, mock_notifier, sample_patient, db_session):
        """Test opening a verification context sends the prompt and records it."""
        engine = make_engine()

        result = await open_verification(engine, sample_patient)

        assert result.prompt_sent is True
        assert result.message_id == "MSG123"
        assert result.state.context == ConversationContext.VERIFICATION
        assert result.state.state_data == {"subject_name": "Siti"}
        mock_notifier.send.assert_awaited_once()
        recipient, body = mock_notifier.send.await_args.args
        assert recipient == sample_patient.phone_number
        assert "Siti" in body

        messages = await ConversationMessageRepository(db_session).list_for_state(result.state.id)
        assert [m.kind for m in messages] == [MessageKind.PROMPT]

    @pytest.mark.asyncio
    async def test_open_supersedes_previous(
        self, make_engine, sample_patient, sample_reminder, db_session
    ):
        """Test a new context replaces the one already open."""
        engine = make_engine()
        first = await open_verification(engine, sample_patient)

        second = await engine.open_context(
            patient_id=sample_patient.id,
            recipient=sample_patient.phone_number,
            context=ConversationContext.REMINDER_CONFIRMATION,
            related_entity_id=sample_reminder.id,
            subject_name=sample_patient.name,
            reminder_message=sample_reminder.message,
        )

        repo = ConversationStateRepository(db_session)
        active = await repo.get_active(sample_patient.id)
        assert active.id == second.state.id
        assert active.related_entity_id == sample_reminder.id
        old = await repo.get_fresh(first.state.id)
        assert old.is_active is False

    @pytest.mark.asyncio
    async def test_reminder_confirmation_requires_reminder(self, make_engine, sample_patient):
        """Test a reminder confirmation without a reminder ID is rejected."""
        engine = make_engine()

        with pytest.raises(ValueError):
            await engine.open_context(
                patient_id=sample_patient.id,
                recipient=sample_patient.phone_number,
                context=ConversationContext.REMINDER_CONFIRMATION,
            )

    @pytest.mark.asyncio
    async def test_cannot_open_none_context(self, make_engine, sample_patient):
        """Test the NONE context cannot be opened."""
        engine = make_engine()

        with pytest.raises(ValueError):
            await engine.open_context(
                patient_id=sample_patient.id,
                recipient=sample_patient.phone_number,
                context=ConversationContext.NONE,
            )

    @pytest.mark.asyncio
    async def test_outbound_rate_limit(self, make_engine, mock_notifier, sample_patient, db_session):
        """Test the outbound limit blocks opening and sending."""
        limiter = InMemoryRateLimiter("whatsapp", max_requests=1, window_seconds=60)
        await limiter.check_and_consume(sample_patient.phone_number)
        engine = make_engine(outbound_limiter=limiter)

        result = await open_verification(engine, sample_patient)

        assert result.state is None
        assert result.error == "rate_limited"
        mock_notifier.send.assert_not_awaited()
        assert await ConversationStateRepository(db_session).get_active(sample_patient.id) is None

    @pytest.mark.asyncio
    async def test_send_failure_keeps_context_open(self, make_engine, sample_patient, db_session):
        """Test a failed prompt send leaves the context open."""
        notifier = AsyncMock()
        notifier.send = AsyncMock(return_value=SendResult(success=False, error="device offline"))
        engine = make_engine(notifier=notifier)

        result = await open_verification(engine, sample_patient)

        assert result.prompt_sent is False
        assert result.error == "device offline"
        active = await ConversationStateRepository(db_session).get_active(sample_patient.id)
        assert active.id == result.state.id

    @pytest.mark.asyncio
    async def test_send_timeout(self, make_engine, sample_patient):
        """Test a hanging notifier is cut off by the notifier timeout."""

        async def hang(recipient, body):
            await asyncio.sleep(5)

        notifier = AsyncMock()
        notifier.send = AsyncMock(side_effect=hang)
        engine = make_engine(notifier=notifier)
        engine.config.notifier_timeout = 0.01

        result = await open_verification(engine, sample_patient)

        assert result.prompt_sent is False
        assert result.error == "timeout"


class TestHandleInboundMessage:
    """Tests for ConversationEngine.handle_inbound_message."""

    @pytest.mark.asyncio
    async def test_accept_resolves_verification(
        self, make_engine, mock_notifier, sample_patient, db_session
    ):
        """Test YA resolves verification, updates the patient and acknowledges."""
        engine = make_engine()
        opened = await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "resolved_accept"
        assert outcome.source == ClassificationSource.KEYWORD

        await db_session.refresh(sample_patient)
        assert sample_patient.verification_status == VerificationStatus.VERIFIED

        repo = ConversationStateRepository(db_session)
        assert await repo.get_active(sample_patient.id) is None
        row = await repo.get_fresh(opened.state.id)
        assert row.context == ConversationContext.NONE
        assert row.deleted_at is not None
        assert row.attempt_count == 0
        assert row.state_data["resolution"]["intent"] == "accept"
        assert row.state_data["resolution"]["source"] == "keyword"

        mock_notifier.send.assert_awaited_once()
        messages = await ConversationMessageRepository(db_session).list_for_state(opened.state.id)
        assert [m.kind for m in messages] == [
            MessageKind.PROMPT,
            MessageKind.REPLY,
            MessageKind.ACKNOWLEDGEMENT,
        ]
        assert messages[1].intent == "accept"

    @pytest.mark.asyncio
    async def test_decline_resolves_verification(self, make_engine, sample_patient, db_session):
        """Test 'tidak mau' resolves verification as declined."""
        engine = make_engine()
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "tidak mau"))

        assert outcome.code == "resolved_decline"
        await db_session.refresh(sample_patient)
        assert sample_patient.verification_status == VerificationStatus.DECLINED

    @pytest.mark.asyncio
    async def test_unclear_reply_requests_clarification(
        self, make_engine, mock_notifier, sample_patient, db_session
    ):
        """Test a long unclear reply keeps the context open and asks again."""
        engine = make_engine()
        opened = await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        outcome = await engine.handle_inbound_message(
            reply(sample_patient, "mungkin nanti ya deh")
        )

        assert outcome.code == "pending_invalid_response"
        assert outcome.attempt_count == 1
        mock_notifier.send.assert_awaited_once()

        state = await ConversationStateRepository(db_session).get_active(sample_patient.id)
        assert state.id == opened.state.id
        assert state.attempt_count == 1
        assert state.message_count == 1
        assert state.last_message == "mungkin nanti ya deh"
        assert state.last_clarification_sent_at is not None

        await db_session.refresh(sample_patient)
        assert sample_patient.verification_status == VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_clarification_is_throttled(self, make_engine, mock_notifier, sample_patient):
        """Test a second unclear reply within the interval is not answered."""
        clock = MutableClock()
        engine = make_engine(clock=clock)
        await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        first = await engine.handle_inbound_message(reply(sample_patient, "hmm"))
        clock.advance(seconds=30)
        second = await engine.handle_inbound_message(reply(sample_patient, "apa ini"))

        assert first.attempt_count == 1
        assert second.code == "pending_invalid_response"
        assert second.attempt_count == 2
        assert mock_notifier.send.await_count == 1

        clock.advance(seconds=31)
        third = await engine.handle_inbound_message(reply(sample_patient, "hmm"))

        assert third.attempt_count == 3
        assert mock_notifier.send.await_count == 2

    @pytest.mark.asyncio
    async def test_clarifications_escalate(self, make_engine, mock_notifier, sample_patient):
        """Test each sent clarification uses the text for its attempt."""
        clock = MutableClock()
        engine = make_engine(clock=clock)
        await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        await engine.handle_inbound_message(reply(sample_patient, "hmm"))
        clock.advance(minutes=2)
        await engine.handle_inbound_message(reply(sample_patient, "hmm"))

        first, second = sent_bodies(mock_notifier)
        assert first != second

    @pytest.mark.asyncio
    async def test_no_context_is_dropped(self, make_engine, mock_notifier, sample_patient):
        """Test a reply without an open context is dropped silently."""
        engine = make_engine()

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "dropped_no_context"
        mock_notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_context_is_dropped(self, make_engine, sample_patient, db_session):
        """Test a reply after expiry is dropped and changes nothing."""
        clock = MutableClock()
        engine = make_engine(clock=clock)
        await open_verification(engine, sample_patient)

        clock.advance(hours=49)
        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "dropped_no_context"
        await db_session.refresh(sample_patient)
        assert sample_patient.verification_status == VerificationStatus.UNVERIFIED

    @pytest.mark.asyncio
    async def test_inbound_rate_limit(self, make_engine, mock_notifier, sample_patient, db_session):
        """Test a rate-limited reply is dropped without touching state."""
        limiter = InMemoryRateLimiter("patient_response", max_requests=1, window_seconds=30)
        await limiter.check_and_consume(sample_patient.phone_number)
        engine = make_engine(inbound_limiter=limiter)
        opened = await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "dropped_rate_limited"
        assert outcome.retry_after is not None
        assert outcome.retry_after <= timedelta(seconds=30)
        mock_notifier.send.assert_not_awaited()

        state = await ConversationStateRepository(db_session).get_active(sample_patient.id)
        assert state.id == opened.state.id
        assert state.version == opened.state.version
        assert state.message_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, make_engine, sample_patient):
        """Test a redelivered reply after resolution applies nothing."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=True)
        engine = make_engine(status_updater=status_updater)
        await open_verification(engine, sample_patient)

        first = await engine.handle_inbound_message(reply(sample_patient, "YA"))
        second = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert first.code == "resolved_accept"
        assert second.code == "dropped_no_context"
        status_updater.apply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_resolve_once(self, make_engine, sample_patient):
        """Test concurrent duplicate replies produce exactly one resolution."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=True)
        engine = make_engine(status_updater=status_updater)
        await open_verification(engine, sample_patient)

        outcomes = await asyncio.gather(
            engine.handle_inbound_message(reply(sample_patient, "YA")),
            engine.handle_inbound_message(reply(sample_patient, "ya")),
        )

        codes = sorted(o.code for o in outcomes)
        assert codes == ["dropped_no_context", "resolved_accept"]
        status_updater.apply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_engines_sharing_locks_resolve_once(
        self, make_engine, sample_patient
    ):
        """Test two engine instances on one lock registry still resolve once."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=True)
        locks = KeyedLock()
        first_engine = make_engine(status_updater=status_updater, locks=locks)
        second_engine = make_engine(status_updater=status_updater, locks=locks)
        await open_verification(first_engine, sample_patient)

        outcomes = await asyncio.gather(
            first_engine.handle_inbound_message(reply(sample_patient, "YA")),
            second_engine.handle_inbound_message(reply(sample_patient, "YA")),
        )

        assert sorted(o.code for o in outcomes) == ["dropped_no_context", "resolved_accept"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_status_update_failure_keeps_context(
        self, make_engine, mock_notifier, sample_patient, db_session
    ):
        """Test a failed status write reopens the context and asks the patient to resend."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=False)
        engine = make_engine(status_updater=status_updater)
        opened = await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "pending_status_update_failed"
        mock_notifier.send.assert_awaited_once()
        assert sent_bodies(mock_notifier) == [
            templates.retry_request(ConversationContext.VERIFICATION, "Siti")
        ]
        state = await ConversationStateRepository(db_session).get_active(sample_patient.id)
        assert state is not None
        assert state.id == opened.state.id
        assert state.context == ConversationContext.VERIFICATION

        status_updater.apply = AsyncMock(return_value=True)
        retried = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert retried.code == "resolved_accept"

    @pytest.mark.asyncio
    async def test_status_update_exception_keeps_context(
        self, make_engine, sample_patient, db_session
    ):
        """Test an exception from the status updater is treated as a failed write."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(side_effect=RuntimeError("db down"))
        engine = make_engine(status_updater=status_updater)
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "pending_status_update_failed"
        assert await ConversationStateRepository(db_session).get_active(sample_patient.id)

    @pytest.mark.asyncio
    async def test_acknowledgement_failure_still_resolves(
        self, make_engine, mock_notifier, sample_patient, db_session
    ):
        """Test a failed acknowledgement does not undo the resolution."""
        engine = make_engine()
        await open_verification(engine, sample_patient)
        mock_notifier.send = AsyncMock(return_value=SendResult(success=False, error="offline"))

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "resolved_accept"
        await db_session.refresh(sample_patient)
        assert sample_patient.verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_reminder_confirmed(
        self, make_engine, sample_patient, sample_reminder, db_session
    ):
        """Test 'sudah' confirms the reminder the context refers to."""
        engine = make_engine()
        await engine.open_context(
            patient_id=sample_patient.id,
            recipient=sample_patient.phone_number,
            context=ConversationContext.REMINDER_CONFIRMATION,
            related_entity_id=sample_reminder.id,
            reminder_message=sample_reminder.message,
        )

        outcome = await engine.handle_inbound_message(reply(sample_patient, "sudah"))

        assert outcome.code == "resolved_done"
        await db_session.refresh(sample_reminder)
        assert sample_reminder.confirmation_status == ConfirmationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_reminder_not_yet(
        self, make_engine, sample_patient, sample_reminder, db_session
    ):
        """Test 'belum' marks the reminder missed."""
        engine = make_engine()
        await engine.open_context(
            patient_id=sample_patient.id,
            recipient=sample_patient.phone_number,
            context=ConversationContext.REMINDER_CONFIRMATION,
            related_entity_id=sample_reminder.id,
        )

        outcome = await engine.handle_inbound_message(reply(sample_patient, "belum"))

        assert outcome.code == "resolved_not_yet"
        await db_session.refresh(sample_reminder)
        assert sample_reminder.confirmation_status == ConfirmationStatus.MISSED

    @pytest.mark.asyncio
    async def test_verification_words_do_not_confirm_reminder(
        self, make_engine, sample_patient, sample_reminder
    ):
        """Test replies are matched against the open context's vocabulary only."""
        engine = make_engine()
        await engine.open_context(
            patient_id=sample_patient.id,
            recipient=sample_patient.phone_number,
            context=ConversationContext.REMINDER_CONFIRMATION,
            related_entity_id=sample_reminder.id,
        )

        outcome = await engine.handle_inbound_message(reply(sample_patient, "tidak"))

        assert outcome.code == "pending_invalid_response"

    @pytest.mark.asyncio
    async def test_ai_classification_is_used(self, make_engine, keyword_matcher, sample_patient):
        """Test a confident AI answer decides the reply."""
        ai = AsyncMock()
        ai.classify = AsyncMock(
            return_value=ClassifierResult(
                intent="verification_accept",
                confidence=0.92,
                confidence_level=ConfidenceLevel.HIGH,
                reasoning="setuju",
            )
        )
        engine = make_engine(classifier=ResponseClassifier(keyword_matcher, ai))
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(
            reply(sample_patient, "iya saya mau ikut programnya")
        )

        assert outcome.code == "resolved_accept"
        assert outcome.source == ClassificationSource.AI
        ai.classify.assert_awaited_once_with("iya saya mau ikut programnya", "verification", "Siti")

    @pytest.mark.asyncio
    async def test_classifier_timeout_falls_back_to_keywords(
        self, make_engine, keyword_matcher, sample_patient
    ):
        """Test a slow AI classifier is abandoned in favour of keywords."""

        async def slow(text, context, subject_hint):
            await asyncio.sleep(5)

        ai = AsyncMock()
        ai.classify = AsyncMock(side_effect=slow)
        engine = make_engine(classifier=ResponseClassifier(keyword_matcher, ai, timeout=0.01))
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "resolved_accept"
        assert outcome.source == ClassificationSource.KEYWORD

    @pytest.mark.asyncio
    async def test_concurrent_write_is_retried(
        self, make_engine, session_factory, sample_patient, db_session
    ):
        """Test a version bump by another writer is retried against the fresh row."""

        class BumpingClassifier:
            async def classify(self, text, context, subject_hint=None):
                async with session_factory() as other:
                    repo = ConversationStateRepository(other)
                    state = await repo.get_active(sample_patient.id)
                    await repo.update_state(state.id, state.version, last_message="other")
                return Classification(source=ClassificationSource.KEYWORD, intent=Intent.INVALID)

        engine = make_engine(classifier=BumpingClassifier())
        opened = await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "hmm"))

        assert outcome.code == "pending_invalid_response"
        state = await ConversationStateRepository(db_session).get_fresh(opened.state.id)
        assert state.attempt_count == 1
        assert state.version == opened.state.version + 2

    @pytest.mark.asyncio
    async def test_context_cleared_mid_reply_is_dropped(
        self, make_engine, session_factory, sample_patient
    ):
        """Test a context closed by another writer mid-reply drops the reply."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=True)

        class ClearingClassifier:
            async def classify(self, text, context, subject_hint=None):
                async with session_factory() as other:
                    await ConversationStateRepository(other).clear(sample_patient.id)
                return Classification(source=ClassificationSource.KEYWORD, intent=Intent.ACCEPT)

        engine = make_engine(classifier=ClearingClassifier(), status_updater=status_updater)
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "dropped_no_context"
        status_updater.apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_dropped(self, make_engine, sample_patient):
        """Test an unexpected failure is reported as dropped_error."""
        classifier = AsyncMock()
        classifier.classify = AsyncMock(side_effect=RuntimeError("boom"))
        engine = make_engine(classifier=classifier)
        await open_verification(engine, sample_patient)

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "dropped_error"

    @pytest.mark.asyncio
    async def test_reply_time_is_recorded(self, make_engine, sample_patient, db_session):
        """Test the time the reply was received is stored as the last message time."""
        engine = make_engine()
        await open_verification(engine, sample_patient)
        received_at = utcnow() - timedelta(minutes=3)

        await engine.handle_inbound_message(
            InboundMessage(
                sender_address=sample_patient.phone_number, text="hmm", received_at=received_at
            )
        )

        state = await ConversationStateRepository(db_session).get_active(sample_patient.id)
        assert ensure_utc(state.last_message_at) == received_at


class TestRateLimiterOutage:
    """Tests for the engine when a rate limiter backend is unavailable."""

    @staticmethod
    def failing_limiter():
        limiter = AsyncMock()
        limiter.check_and_consume = AsyncMock(
            side_effect=RedisConnectionError("Error connecting to redis:6379")
        )
        return limiter

    @pytest.mark.asyncio
    async def test_reply_is_processed_without_inbound_limiter(
        self, make_engine, mock_notifier, sample_patient, db_session
    ):
        """Test a reply still resolves and is acknowledged when the inbound limiter fails."""
        status_updater = AsyncMock()
        status_updater.apply = AsyncMock(return_value=True)
        engine = make_engine(
            inbound_limiter=self.failing_limiter(), status_updater=status_updater
        )
        await open_verification(engine, sample_patient)
        mock_notifier.send.reset_mock()

        outcome = await engine.handle_inbound_message(reply(sample_patient, "YA"))

        assert outcome.code == "resolved_accept"
        status_updater.apply.assert_awaited_once()
        mock_notifier.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_opens_without_outbound_limiter(
        self, make_engine, mock_notifier, sample_patient
    ):
        """Test a prompt is still sent when the outbound limiter fails."""
        engine = make_engine(outbound_limiter=self.failing_limiter())

        result = await open_verification(engine, sample_patient)

        assert result.error is None
        assert result.prompt_sent is True
        mock_notifier.send.assert_awaited_once()
