"""
Free-text replies for messages outside any booking flow.

The assistant only steers parents towards "agendar cita"; it never
collects personal data in free conversation.
"""

import logging
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """Eres el asistente virtual del {institution}. Tu rol es ayudar a padres de familia de manera amable y conversacional.

REGLAS IMPORTANTES:
1. NUNCA pidas datos personales (nombre, cédula, email) directamente. Los datos se recolectan automáticamente cuando el padre inicia el proceso de agendamiento escribiendo "agendar cita".
2. Si el padre menciona que quiere hablar con un profesor, agendar una cita, o tiene alguna inquietud sobre su hijo, guíalo amablemente a escribir "agendar cita" para iniciar el proceso formal.
3. Sé breve, cálido y profesional. Respuestas de máximo 2-3 oraciones.
4. Si el padre solo saluda ("hola", "buenos días"), responde con un saludo cordial y pregunta en qué puedes ayudarle.
5. Si preguntan por horarios, disponibilidad o información general, responde que pueden agendar una cita directamente escribiendo "agendar cita"."""

FALLBACK_REPLY = (
    "Lo siento, en este momento no puedo responder. "
    "Si deseas agendar una cita, escribe 'agendar cita'."
)


class ConversationResponder:
    """Language-model replies with a fixed fallback."""

    def __init__(
        self,
        claude_client: Optional[ClaudeClient] = None,
        institution_name: Optional[str] = None,
    ):
        """Initialize responder.

        Args:
            claude_client: Claude client (uses singleton if not provided)
            institution_name: Name used in the system prompt
        """
        self._client = claude_client
        self._system_prompt = SYSTEM_PROMPT.format(
            institution=institution_name or settings.institution_name
        )

    async def _get_client(self) -> ClaudeClient:
        """Get Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def reply(self, message: str, history: Optional[list[dict]] = None) -> str:
        """Generate a reply to a free-text message.

        Args:
            message: Contact's message
            history: Recent {"role", "content"} turns, oldest first

        Returns:
            Reply text (never empty)
        """
        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=message,
                system_prompt=self._system_prompt,
                history=history,
                temperature=settings.claude_temperature,
            )
        except ClaudeClientError as e:
            logger.warning(f"Free-text reply failed: {e}")
            return FALLBACK_REPLY

        content = response.content.strip()
        return content or FALLBACK_REPLY


# Singleton
_responder: Optional[ConversationResponder] = None


def get_conversation_responder() -> ConversationResponder:
    """Get singleton ConversationResponder."""
    global _responder
    if _responder is None:
        _responder = ConversationResponder()
    return _responder
