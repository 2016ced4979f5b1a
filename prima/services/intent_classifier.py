"""AI intent classification for patient replies."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from prima.config import settings
from prima.services.llm_service import LLMService

logger = logging.getLogger(__name__)

INTENT_LABELS = (
    "reminder_confirmed",
    "reminder_missed",
    "verification_accept",
    "verification_decline",
    "health_question",
    "emergency",
    "unsubscribe_request",
    "unclear",
)

SYSTEM_PROMPT = """Anda adalah asisten AI untuk sistem kesehatan PRIMA di Indonesia.

Klasifikasikan pesan WhatsApp dari pasien ke dalam salah satu intent berikut:

1. reminder_confirmed: Pasien mengkonfirmasi sudah menyelesaikan pengingat
   - Contoh: "sudah", "selesai", "sudah minum", "done"
2. reminder_missed: Pasien belum menyelesaikan atau melewatkan pengingat
   - Contoh: "belum", "lupa", "belum sempat", "not yet"
3. verification_accept: Pasien setuju menerima pengingat via WhatsApp
   - Contoh: "ya", "iya", "setuju", "boleh", "yes"
4. verification_decline: Pasien menolak menerima pengingat via WhatsApp
   - Contoh: "tidak", "tolak", "ga mau", "engga", "no"
5. health_question: Pertanyaan kesehatan umum
6. emergency: Situasi medis darurat
7. unsubscribe_request: Pasien ingin berhenti menerima pesan
8. unclear: Pesan tidak jelas atau ambigu

Jika ragu, pilih "unclear" dengan confidence rendah.

Jawab HANYA dengan JSON:
{"intent": "<intent>", "confidence": <0-100>, "reasoning": "<alasan singkat>"}"""


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, confidence: float) -> "ConfidenceLevel":
        """Map a 0..1 confidence score to a level."""
        if confidence >= 0.8:
            return cls.HIGH
        if confidence >= 0.6:
            return cls.MEDIUM
        return cls.LOW


@dataclass
class ClassifierResult:
    intent: str
    confidence: float
    confidence_level: ConfidenceLevel
    reasoning: str = ""


class IntentClassifier(Protocol):
    """Anything that can label a free-text reply with an intent."""

    async def classify(
        self, text: str, context_label: str, subject_hint: str | None = None
    ) -> ClassifierResult: ...


def build_user_prompt(text: str, context_label: str, subject_hint: str | None) -> str:
    prompt = f'Pesan dari pasien: "{text}"\n\n'
    prompt += f"Konteks: Pasien sedang dalam proses {context_label}.\n"
    if subject_hint:
        prompt += f"Nama pasien: {subject_hint}\n"
    prompt += "\nKlasifikasikan intent pesan ini dan berikan response dalam format JSON."
    return prompt


def parse_result(raw: str) -> ClassifierResult:
    """Parse the model's JSON answer.

    The model is asked for a 0-100 percentage; values above 1 are scaled
    down so the result always carries a 0..1 confidence.

    Raises:
        ValueError: If the answer is not a JSON object with an intent
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Classifier response is not valid JSON: {raw[:100]}") from e

    if not isinstance(data, dict) or not data.get("intent"):
        raise ValueError(f"Classifier response has no intent: {raw[:100]}")

    try:
        confidence = float(data.get("confidence", 0))
    except (TypeError, ValueError):
        confidence = 0.0
    if confidence > 1:
        confidence = confidence / 100
    confidence = max(0.0, min(confidence, 1.0))

    return ClassifierResult(
        intent=str(data["intent"]).strip().lower(),
        confidence=confidence,
        confidence_level=ConfidenceLevel.from_score(confidence),
        reasoning=str(data.get("reasoning", "")),
    )


class OpenAIIntentClassifier:
    """Intent classifier backed by an OpenAI chat completion."""

    def __init__(self, llm: LLMService | None = None, temperature: float = 0.3):
        self.llm = llm or LLMService()
        self.temperature = temperature

    async def classify(
        self, text: str, context_label: str, subject_hint: str | None = None
    ) -> ClassifierResult:
        raw = await self.llm.generate_response(
            system_prompt=SYSTEM_PROMPT,
            user_message=build_user_prompt(text, context_label, subject_hint),
            temperature=self.temperature,
            max_tokens=200,
            json_mode=True,
        )
        result = parse_result(raw)
        logger.info(
            f"AI classification for {context_label}: {result.intent} "
            f"({result.confidence:.2f}, {result.confidence_level.value})"
        )
        return result


def build_intent_classifier() -> IntentClassifier | None:
    """Build the configured AI classifier, or None for keyword-only mode."""
    if not settings.AI_INTENT_CLASSIFICATION_ENABLED:
        logger.info("AI intent classification disabled; using keyword matching only")
        return None
    if not settings.OPENAI_API_KEY:
        logger.warning(
            "AI intent classification enabled but OPENAI_API_KEY is not set; "
            "using keyword matching only"
        )
        return None
    return OpenAIIntentClassifier()
