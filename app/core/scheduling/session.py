"""Redis-backed conversation sessions, one per contact."""

import logging
from datetime import datetime, timezone
from typing import Optional

from redis.exceptions import RedisError

from app.config import settings
from app.core.scheduling.models import Session
from app.infra.redis import APP_PREFIX, RedisClient, get_redis

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


SESSION_PREFIX = f"{APP_PREFIX}session:"


class SessionManager:
    """
    Redis-based store for per-contact sessions.

    Key pattern: appointments:v1:session:{contact_id}

    Gracefully handles Redis unavailability with in-memory fallback. The TTL
    only bounds storage; the inactivity timeout is enforced by the engine
    from Session.last_activity.
    """

    def __init__(self, ttl: Optional[int] = None, max_history: Optional[int] = None):
        """Initialize session manager."""
        self._ttl = ttl or settings.redis_session_ttl
        self._max_history = max_history or settings.session_history_limit
        self._in_memory_fallback: dict[str, Session] = {}

    def _key(self, contact_id: str) -> str:
        """Generate Redis key."""
        return f"{SESSION_PREFIX}{contact_id}"

    def _new(self, contact_id: str) -> Session:
        return Session(contact_id=contact_id, max_history=self._max_history)

    async def get(self, contact_id: str) -> Session:
        """
        Load the contact's session, or a fresh idle one if none is stored.

        Args:
            contact_id: Contact identifier (phone number)

        Returns:
            Session (never None)
        """
        redis = await get_redis()

        if redis:
            try:
                data = await redis.get(self._key(contact_id))
            except RedisError as e:
                logger.error(f"Failed to load session {contact_id}: {e}")
                RedisClient.mark_disconnected()
                return self._in_memory_fallback.get(contact_id) or self._new(contact_id)

            if not data:
                return self._new(contact_id)

            try:
                session = Session.from_json(data)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                # Stale or corrupted value; the next save overwrites it
                logger.error(f"Discarding unreadable session {contact_id}: {e}")
                return self._new(contact_id)

            session.max_history = self._max_history
            return session

        return self._in_memory_fallback.get(contact_id) or self._new(contact_id)

    async def save(self, session: Session) -> bool:
        """
        Persist session and refresh its TTL.

        Returns:
            True if stored in Redis, False if kept in memory only
        """
        session.updated_at = _utcnow()

        redis = await get_redis()

        if redis:
            try:
                await redis.setex(self._key(session.contact_id), self._ttl, session.to_json())
                self._in_memory_fallback.pop(session.contact_id, None)
                logger.debug(f"Session saved: {session.contact_id} ({session.state.value})")
                return True
            except RedisError as e:
                logger.error(f"Failed to save session {session.contact_id}: {e}")
                RedisClient.mark_disconnected()

        logger.warning(
            f"Redis unavailable, using in-memory fallback for session {session.contact_id}"
        )
        self._in_memory_fallback[session.contact_id] = session
        return False

    async def reset(self, contact_id: str) -> Session:
        """Return the contact to idle, keeping message history."""
        session = await self.get(contact_id)
        session.reset()
        await self.save(session)
        return session

    async def delete(self, contact_id: str) -> bool:
        """
        Delete a session entirely, history included.

        Returns:
            True if something was deleted
        """
        removed = self._in_memory_fallback.pop(contact_id, None) is not None

        redis = await get_redis()

        if redis:
            try:
                deleted = await redis.delete(self._key(contact_id))
            except RedisError as e:
                logger.error(f"Failed to delete session {contact_id}: {e}")
                RedisClient.mark_disconnected()
                return removed

            if deleted:
                logger.debug(f"Session deleted: {contact_id}")
            return bool(deleted) or removed

        return removed


# Singleton
_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get singleton SessionManager."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager
