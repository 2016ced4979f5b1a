"""Dual-path reply classification: AI first, keyword matching as fallback."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from prima.models import ConversationContext
from prima.services.intent_classifier import ConfidenceLevel, IntentClassifier
from prima.services.keyword_matcher import Intent, KeywordMatcher

logger = logging.getLogger(__name__)

# AI labels that may decide a reply, per context
AI_LABELS: dict[ConversationContext, dict[str, Intent]] = {
    ConversationContext.VERIFICATION: {
        "verification_accept": Intent.ACCEPT,
        "verification_decline": Intent.DECLINE,
    },
    ConversationContext.REMINDER_CONFIRMATION: {
        "reminder_confirmed": Intent.DONE,
        "reminder_missed": Intent.NOT_YET,
    },
}


class ClassificationSource(str, Enum):
    AI = "ai"
    KEYWORD = "keyword"


@dataclass
class Classification:
    """Result of classifying one reply, tagged with the path that decided it."""

    source: ClassificationSource
    intent: Intent
    confidence: float | None = None
    reasoning: str = ""
    matched_label: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.intent.is_terminal


class ResponseClassifier:
    """Classify a reply within a context.

    The AI classifier, when configured, is tried first and bounded by
    ``timeout``. Its answer is used only if the confidence is not low and the
    label is one the context accepts. Anything else, including a timeout or
    an error, falls through to the keyword matcher.
    """

    def __init__(
        self,
        keyword_matcher: KeywordMatcher,
        ai_classifier: IntentClassifier | None = None,
        timeout: float = 10.0,
    ):
        self.keyword_matcher = keyword_matcher
        self.ai_classifier = ai_classifier
        self.timeout = timeout

    async def classify(
        self,
        text: str,
        context: ConversationContext,
        subject_hint: str | None = None,
    ) -> Classification:
        if self.ai_classifier is not None:
            result = await self._classify_with_ai(text, context, subject_hint)
            if result is not None:
                return result

        intent = self.keyword_matcher.match(text, context)
        return Classification(source=ClassificationSource.KEYWORD, intent=intent)

    async def _classify_with_ai(
        self,
        text: str,
        context: ConversationContext,
        subject_hint: str | None,
    ) -> Classification | None:
        try:
            result = await asyncio.wait_for(
                self.ai_classifier.classify(text, context.value, subject_hint),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"AI classifier timed out after {self.timeout}s; falling back to keywords"
            )
            return None
        except Exception as e:
            logger.warning(f"AI classifier failed: {e}; falling back to keywords")
            return None

        if result.confidence_level == ConfidenceLevel.LOW:
            logger.info(
                f"AI confidence too low ({result.confidence:.2f}) for '{result.intent}'; "
                f"falling back to keywords"
            )
            return None

        intent = AI_LABELS.get(context, {}).get(result.intent)
        if intent is None:
            logger.info(
                f"AI label '{result.intent}' is not a decision for {context.value}; "
                f"falling back to keywords"
            )
            return None

        return Classification(
            source=ClassificationSource.AI,
            intent=intent,
            confidence=result.confidence,
            reasoning=result.reasoning,
            matched_label=result.intent,
        )
