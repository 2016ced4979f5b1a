"""Common API dependencies."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from prima.config import settings
from prima.db.session import async_session_maker
from prima.services import (
    ConversationEngine,
    DatabaseStatusUpdater,
    KeywordMatcher,
    ResponseClassifier,
    WhatsAppNotifier,
    build_inbound_limiter,
    build_intent_classifier,
    build_outbound_limiter,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[Redis, None]:
    """Dependency for getting async Redis client."""
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        yield redis
    finally:
        await redis.close()


@lru_cache
def get_response_classifier() -> ResponseClassifier:
    """Build the reply classifier once per process.

    Raises:
        KeywordConfigError: If the configured keyword sets are invalid
    """
    return ResponseClassifier(
        keyword_matcher=KeywordMatcher.from_settings(),
        ai_classifier=build_intent_classifier(),
        timeout=settings.CLASSIFIER_TIMEOUT_SECONDS,
    )


async def get_conversation_engine(
    redis: Annotated[Redis, Depends(get_redis)],
) -> ConversationEngine:
    """Dependency wiring the conversation engine to its collaborators."""
    return ConversationEngine(
        session_factory=async_session_maker,
        classifier=get_response_classifier(),
        notifier=WhatsAppNotifier(),
        status_updater=DatabaseStatusUpdater(async_session_maker, redis),
        inbound_limiter=build_inbound_limiter(redis),
        outbound_limiter=build_outbound_limiter(redis),
    )


# Type aliases for cleaner annotations
DbSession = Annotated[AsyncSession, Depends(get_db)]
RedisClient = Annotated[Redis, Depends(get_redis)]
Engine = Annotated[ConversationEngine, Depends(get_conversation_engine)]
