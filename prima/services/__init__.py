"""Business logic services."""

from prima.services.classification import Classification, ClassificationSource, ResponseClassifier
from prima.services.conversation_engine import (
    ConversationEngine,
    EngineConfig,
    InboundMessage,
    InboundOutcome,
    OpenContextResult,
    OutcomeKind,
)
from prima.services.intent_classifier import (
    ClassifierResult,
    ConfidenceLevel,
    IntentClassifier,
    OpenAIIntentClassifier,
    build_intent_classifier,
)
from prima.services.keyword_matcher import Intent, KeywordMatcher, KeywordSet
from prima.services.notifier import OutboundNotifier, SendResult, WhatsAppNotifier
from prima.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
    build_inbound_limiter,
    build_outbound_limiter,
)
from prima.services.status_updater import DatabaseStatusUpdater, PatientStatusUpdater, StatusOutcome
from prima.services.whatsapp_client import WhatsAppClient

__all__ = [
    "Classification",
    "ClassificationSource",
    "ClassifierResult",
    "ConfidenceLevel",
    "ConversationEngine",
    "DatabaseStatusUpdater",
    "EngineConfig",
    "InMemoryRateLimiter",
    "InboundMessage",
    "InboundOutcome",
    "Intent",
    "IntentClassifier",
    "KeywordMatcher",
    "KeywordSet",
    "OpenAIIntentClassifier",
    "OpenContextResult",
    "OutboundNotifier",
    "OutcomeKind",
    "PatientStatusUpdater",
    "RateLimitResult",
    "RateLimiter",
    "RedisRateLimiter",
    "ResponseClassifier",
    "SendResult",
    "StatusOutcome",
    "WhatsAppClient",
    "WhatsAppNotifier",
    "build_inbound_limiter",
    "build_intent_classifier",
    "build_outbound_limiter",
]
