"""Strict keyword matching for verification and reminder confirmation replies."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from prima.config import settings
from prima.core.exceptions import KeywordConfigError
from prima.models import ConversationContext

logger = logging.getLogger(__name__)

# Replies longer than this are never treated as a deliberate choice
MAX_TOKENS = 3


class Intent(str, Enum):
    """Classification outcome for a reply within an open context."""

    ACCEPT = "accept"
    DECLINE = "decline"
    DONE = "done"
    NOT_YET = "not_yet"
    INVALID = "invalid"

    @property
    def is_terminal(self) -> bool:
        return self is not Intent.INVALID


@dataclass(frozen=True)
class KeywordSet:
    """A positive and a negative keyword set for one response domain.

    The positive set is checked first, so a reply holding tokens from both
    sets resolves to ``positive_intent``.
    """

    positive: frozenset[str]
    negative: frozenset[str]
    positive_intent: Intent
    negative_intent: Intent

    @classmethod
    def build(
        cls,
        positive: Iterable[str],
        negative: Iterable[str],
        positive_intent: Intent,
        negative_intent: Intent,
    ) -> "KeywordSet":
        pos = frozenset(k.strip().lower() for k in positive if k.strip())
        neg = frozenset(k.strip().lower() for k in negative if k.strip())
        if not pos or not neg:
            raise KeywordConfigError(
                f"Keyword sets for {positive_intent.value}/{negative_intent.value} "
                f"must not be empty"
            )
        overlap = pos & neg
        if overlap:
            raise KeywordConfigError(
                f"Keywords {sorted(overlap)} appear in both {positive_intent.value} "
                f"and {negative_intent.value} sets"
            )
        multi_word = [k for k in pos | neg if len(k.split()) > 1]
        if multi_word:
            raise KeywordConfigError(f"Keywords must be single tokens: {sorted(multi_word)}")
        return cls(pos, neg, positive_intent, negative_intent)


def normalize(text: str) -> list[str]:
    """Lowercase, trim and split a reply on whitespace."""
    return text.lower().split()


class KeywordMatcher:
    """Deterministic fallback classifier.

    A reply matches only when one of its tokens equals a configured keyword
    exactly. Substrings never match ("bloke" does not contain the token
    "ok"), and replies of more than ``MAX_TOKENS`` tokens are rejected
    outright so that long free text mentioning a keyword is not read as a
    decision.
    """

    def __init__(self, verification: KeywordSet, confirmation: KeywordSet):
        self.verification = verification
        self.confirmation = confirmation

    @classmethod
    def from_settings(cls) -> "KeywordMatcher":
        """Build the matcher from configured keyword lists.

        Raises:
            KeywordConfigError: If a pair of sets is empty or overlaps
        """
        return cls(
            verification=KeywordSet.build(
                settings.VERIFICATION_ACCEPT_KEYWORDS,
                settings.VERIFICATION_DECLINE_KEYWORDS,
                Intent.ACCEPT,
                Intent.DECLINE,
            ),
            confirmation=KeywordSet.build(
                settings.CONFIRMATION_DONE_KEYWORDS,
                settings.CONFIRMATION_NOT_YET_KEYWORDS,
                Intent.DONE,
                Intent.NOT_YET,
            ),
        )

    def match_verification(self, text: str) -> Intent:
        """Match a verification reply: ACCEPT, DECLINE or INVALID."""
        return self._match(text, self.verification, "verification")

    def match_confirmation(self, text: str) -> Intent:
        """Match a reminder confirmation reply: DONE, NOT_YET or INVALID."""
        return self._match(text, self.confirmation, "confirmation")

    def match(self, text: str, context: ConversationContext) -> Intent:
        """Match a reply against the vocabulary of the given context."""
        if context == ConversationContext.VERIFICATION:
            return self.match_verification(text)
        if context == ConversationContext.REMINDER_CONFIRMATION:
            return self.match_confirmation(text)
        logger.debug(f"No keyword vocabulary for context '{context}'")
        return Intent.INVALID

    def _match(self, text: str, keywords: KeywordSet, domain: str) -> Intent:
        tokens = normalize(text)
        normalized = " ".join(tokens)

        if not tokens:
            logger.debug(f"{domain} match failed: empty reply")
            return Intent.INVALID

        if len(tokens) > MAX_TOKENS:
            logger.debug(
                f"{domain} match failed: {len(tokens)} tokens exceeds "
                f"{MAX_TOKENS} (normalized='{normalized}')"
            )
            return Intent.INVALID

        for keyword_set, intent in (
            (keywords.positive, keywords.positive_intent),
            (keywords.negative, keywords.negative_intent),
        ):
            matched = next((t for t in tokens if t in keyword_set), None)
            if matched is not None:
                logger.info(
                    f"{domain} match: {intent.value.upper()} "
                    f"(normalized='{normalized}', keyword='{matched}')"
                )
                return intent

        logger.debug(f"{domain} match failed: no keyword (normalized='{normalized}')")
        return Intent.INVALID
