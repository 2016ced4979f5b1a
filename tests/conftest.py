"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from prima.core.locks import KeyedLock
from prima.db.base import Base
from prima.models import Patient, Reminder
from prima.services import (
    ConversationEngine,
    DatabaseStatusUpdater,
    EngineConfig,
    InMemoryRateLimiter,
    KeywordMatcher,
    KeywordSet,
    ResponseClassifier,
    SendResult,
)
from prima.services.keyword_matcher import Intent


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def async_engine():
    """Create async engine for testing."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sample_patient_data() -> dict[str, Any]:
    """Sample patient data for testing."""
    return {
        "id": uuid4(),
        "name": "Siti",
        "phone_number": "6281234567890",
    }


@pytest.fixture
async def sample_patient(db_session: AsyncSession, sample_patient_data) -> Patient:
    """Create a sample patient in the database."""
    patient = Patient(**sample_patient_data)
    db_session.add(patient)
    await db_session.commit()
    await db_session.refresh(patient)
    return patient


@pytest.fixture
async def sample_reminder(db_session: AsyncSession, sample_patient: Patient) -> Reminder:
    """Create a sample reminder for the sample patient."""
    reminder = Reminder(
        patient_id=sample_patient.id,
        message="Saatnya minum obat pagi",
    )
    db_session.add(reminder)
    await db_session.commit()
    await db_session.refresh(reminder)
    return reminder


@pytest.fixture
def keyword_matcher() -> KeywordMatcher:
    """Keyword matcher with the default Indonesian vocabulary."""
    return KeywordMatcher(
        verification=KeywordSet.build(
            ["ya", "iya", "yes", "setuju", "boleh"],
            ["tidak", "no", "tolak", "gak", "ga", "engga"],
            Intent.ACCEPT,
            Intent.DECLINE,
        ),
        confirmation=KeywordSet.build(
            ["sudah", "selesai", "done", "ok"],
            ["belum"],
            Intent.DONE,
            Intent.NOT_YET,
        ),
    )


@pytest.fixture
def mock_notifier():
    """Mock outbound notifier that always delivers."""
    notifier = AsyncMock()
    notifier.send = AsyncMock(return_value=SendResult(success=True, message_id="MSG123"))
    return notifier


@pytest.fixture
def inbound_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter("patient_response", max_requests=5, window_seconds=30)


@pytest.fixture
def outbound_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter("whatsapp", max_requests=30, window_seconds=60)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        verification_ttl=timedelta(hours=48),
        confirmation_ttl=timedelta(hours=48),
        clarification_min_interval=timedelta(seconds=60),
        notifier_timeout=1.0,
    )


@pytest.fixture
def make_engine(
    session_factory,
    keyword_matcher,
    mock_notifier,
    inbound_limiter,
    outbound_limiter,
    engine_config,
):
    """Factory building a ConversationEngine with test collaborators.

    Keyword arguments override any collaborator.
    """

    def _make(**overrides) -> ConversationEngine:
        kwargs = {
            "session_factory": session_factory,
            "classifier": ResponseClassifier(keyword_matcher),
            "notifier": mock_notifier,
            "status_updater": DatabaseStatusUpdater(session_factory),
            "inbound_limiter": inbound_limiter,
            "outbound_limiter": outbound_limiter,
            "config": engine_config,
            "locks": KeyedLock(),
        }
        kwargs.update(overrides)
        return ConversationEngine(**kwargs)

    return _make


@pytest.fixture
def sample_message_data(sample_patient_data) -> dict[str, Any]:
    """Sample incoming WhatsApp message data."""
    return {
        "id": "ABCD1234567890",
        "from": f"{sample_patient_data['phone_number']}@s.whatsapp.net",
        "to": "6289999999999@s.whatsapp.net",
        "body": "YA",
        "type": "text",
        "isGroup": False,
        "fromMe": False,
        "timestamp": 1706140800,
    }
