"""
Scheduled-message queue.

Operators add rows to the scheduled_messages table; the dispatcher reads the
pending ones that are due and flips each row's status exactly once.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.infra.database import session_scope
from app.models import database as db
from app.models.database import QueueStatus

logger = logging.getLogger(__name__)

# 05/03/2025 14:30 or 5/3/2025 9:05:00
_DAY_FIRST = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$"
)


def parse_scheduled_at(value: Optional[str], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse operator text into an aware datetime.

    Accepts "DD/MM/YYYY HH:MM[:SS]" or ISO 8601. Naive values are taken in
    the configured zone. Anything else returns None.
    """
    if not value or not value.strip():
        return None

    zone = tz or settings.tzinfo
    text = value.strip()

    match = _DAY_FIRST.match(text)
    try:
        if match:
            day, month, year, hour, minute, second = match.groups()
            parsed = datetime(
                int(year), int(month), int(day),
                int(hour), int(minute), int(second or 0),
            )
        else:
            parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


@dataclass
class QueuedMessage:
    """A row of the send queue."""

    id: int
    destination: str
    text: str
    media_url: Optional[str]
    scheduled_at: str
    status: QueueStatus

    @property
    def has_media(self) -> bool:
        return bool(self.media_url and self.media_url.strip())

    def is_due(self, now: datetime) -> bool:
        """Pending and scheduled at or before now."""
        if self.status != QueueStatus.PENDING:
            return False
        when = parse_scheduled_at(self.scheduled_at, now.tzinfo)
        return when is not None and when <= now


def _to_message(row: db.ScheduledMessage) -> QueuedMessage:
    return QueuedMessage(
        id=row.id,
        destination=row.destination or "",
        text=row.text or "",
        media_url=row.media_url,
        scheduled_at=row.scheduled_at or "",
        status=row.status or QueueStatus.PENDING,
    )


class MessageQueue:
    """Async access to the scheduled_messages table."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    def _session(self):
        return session_scope(self._session_factory)

    async def get_queued_messages(self) -> list[QueuedMessage]:
        """All rows with a destination and a text, in queue order."""
        async with self._session() as session:
            result = await session.execute(
                select(db.ScheduledMessage)
                .where(db.ScheduledMessage.destination != "")
                .where(db.ScheduledMessage.text != "")
                .order_by(db.ScheduledMessage.id)
            )
            return [_to_message(row) for row in result.scalars().all()]

    async def get_due(self, now: datetime) -> list[QueuedMessage]:
        """Pending rows whose scheduled time has passed."""
        return [message for message in await self.get_queued_messages() if message.is_due(now)]

    async def set_message_status(self, message_id: int, status: QueueStatus) -> bool:
        """Update the status of exactly one row."""
        async with self._session() as session:
            row = await session.get(db.ScheduledMessage, message_id)
            if row is None:
                logger.warning(f"Scheduled message {message_id} not found")
                return False
            row.status = status
            row.updated_at = func.now()
            if status == QueueStatus.SENT:
                row.sent_at = func.now()
        return True

    async def enqueue(
        self,
        destination: str,
        text: str,
        scheduled_at: str,
        media_url: Optional[str] = None,
    ) -> int:
        """Add a pending row. Returns its id."""
        row = db.ScheduledMessage(
            destination=destination,
            text=text,
            media_url=media_url,
            scheduled_at=scheduled_at,
            status=QueueStatus.PENDING,
        )
        async with self._session() as session:
            session.add(row)
            await session.flush()
            message_id = row.id

        logger.info(f"Scheduled message {message_id} queued for {scheduled_at}")
        return message_id


# Singleton
_queue: Optional[MessageQueue] = None


def get_message_queue() -> MessageQueue:
    """Get singleton MessageQueue."""
    global _queue
    if _queue is None:
        _queue = MessageQueue()
    return _queue
