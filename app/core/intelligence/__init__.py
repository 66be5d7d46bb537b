"""
Intelligence Layer Module

Intent detection for idle-state messages and free-text replies.

Usage:
    from app.core.intelligence import get_intent_detector, Intent

    result = await get_intent_detector().detect("quiero agendar una cita")
    print(result.intent)  # Intent.BOOK
"""

from app.core.intelligence.intent import (
    Intent,
    IntentDetector,
    IntentResult,
    get_intent_detector,
    is_list_request,
)
from app.core.intelligence.responder import (
    ConversationResponder,
    get_conversation_responder,
)

__all__ = [
    "Intent",
    "IntentDetector",
    "IntentResult",
    "get_intent_detector",
    "is_list_request",
    "ConversationResponder",
    "get_conversation_responder",
]
