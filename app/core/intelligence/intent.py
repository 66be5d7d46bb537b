"""
Intent detection for messages received while no flow is active.

Keyword rules decide the clear cases; the language model is only asked
when the text mentions an appointment but no rule matched.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """What a contact wants to do."""

    BOOK = "appointment"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    LIST = "list"
    NONE = "none"


CANCEL_PHRASES = ("cancelar cita", "cancelar la cita")
RESCHEDULE_PHRASES = ("reprogramar cita", "reprogramar la cita")
LIST_PHRASES = ("mis citas", "ver citas", "consultar cita")

BOOK_PATTERN = re.compile(
    r"agend(ar|a)|reservar|quiero.*cita|necesito.*cita|horarios disponibles",
    re.IGNORECASE,
)
APPOINTMENT_WORD = re.compile(r"cita", re.IGNORECASE)

CLASSIFICATION_PROMPT = (
    "Clasifica la intención del usuario sobre citas. "
    'Responde SOLO JSON: {"type":"appointment|cancel|list|none"}'
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class IntentResult:
    """Result of intent detection."""

    intent: Intent
    matched_by: str = "rule"  # "rule", "model" or "none"
    raw_response: Optional[str] = None


def is_list_request(text: str) -> bool:
    """True if the text asks to see the contact's appointments."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in LIST_PHRASES)


class IntentDetector:
    """
    Rule-first intent detector with a language-model fallback.

    Any model failure yields Intent.NONE.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize detector.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def detect(self, message: str) -> IntentResult:
        """
        Detect the intent of an idle-state message.

        Args:
            message: Contact's message

        Returns:
            IntentResult
        """
        text = message.strip()
        if not text:
            return IntentResult(intent=Intent.NONE, matched_by="none")

        lowered = text.lower()

        if any(phrase in lowered for phrase in CANCEL_PHRASES):
            return IntentResult(intent=Intent.CANCEL)
        if any(phrase in lowered for phrase in RESCHEDULE_PHRASES):
            return IntentResult(intent=Intent.RESCHEDULE)
        if is_list_request(lowered):
            return IntentResult(intent=Intent.LIST)
        if BOOK_PATTERN.search(text):
            return IntentResult(intent=Intent.BOOK)

        if APPOINTMENT_WORD.search(text):
            return await self._classify_with_model(text)

        return IntentResult(intent=Intent.NONE, matched_by="none")

    async def _classify_with_model(self, text: str) -> IntentResult:
        """Ask the model about an ambiguous appointment mention."""
        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=text,
                system_prompt=CLASSIFICATION_PROMPT,
                max_tokens=50,
                temperature=0,
            )
        except ClaudeClientError as e:
            logger.warning(f"Intent model unavailable: {e}")
            return IntentResult(intent=Intent.NONE, matched_by="none")

        result = self._parse_response(response.content)
        logger.debug(f"Model intent: {result.intent.value}")
        return result

    def _parse_response(self, response: str) -> IntentResult:
        """Parse {"type": ...} out of the model output."""
        response = response.strip()
        found = _JSON_OBJECT.search(response)
        if not found:
            logger.warning(f"No JSON in intent response: {response!r}")
            return IntentResult(intent=Intent.NONE, matched_by="none", raw_response=response)

        try:
            data = json.loads(found.group(0))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse intent response: {e}")
            return IntentResult(intent=Intent.NONE, matched_by="none", raw_response=response)

        try:
            intent = Intent(str(data.get("type", "none")).lower())
        except ValueError:
            intent = Intent.NONE

        return IntentResult(intent=intent, matched_by="model", raw_response=response)


# Singleton
_detector: Optional[IntentDetector] = None


def get_intent_detector() -> IntentDetector:
    """Get singleton IntentDetector."""
    global _detector
    if _detector is None:
        _detector = IntentDetector()
    return _detector
