"""
Scheduled-message dispatcher.

Polls the send queue on a fixed interval and delivers due messages one at a
time, inside an allowed daily window, under a daily quota, with a random
pause between deliveries.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, settings
from app.core.messaging.queue import MessageQueue, QueuedMessage, get_message_queue
from app.core.phone import digits_only
from app.infra.messaging import MessagingError, OutboundMessenger, get_outbound_messenger
from app.models.database import QueueStatus

logger = logging.getLogger(__name__)


@dataclass
class DispatchPolicy:
    """Send window, quota and pacing."""

    start_hour: int = 6
    end_hour: int = 21
    daily_limit: int = 50
    min_delay_seconds: float = 5.0
    max_delay_seconds: float = 15.0
    interval_seconds: int = 60

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "DispatchPolicy":
        config = config or settings
        return cls(
            start_hour=config.dispatcher_start_hour,
            end_hour=config.dispatcher_end_hour,
            daily_limit=config.dispatcher_daily_limit,
            min_delay_seconds=config.dispatcher_min_delay_seconds,
            max_delay_seconds=config.dispatcher_max_delay_seconds,
            interval_seconds=config.dispatcher_interval_seconds,
        )

    def in_window(self, now: datetime) -> bool:
        return self.start_hour <= now.hour < self.end_hour


@dataclass
class SchedulerContext:
    """Mutable dispatcher state, owned by the single scheduling task."""

    in_flight: bool = False
    daily_sent: int = 0
    last_reset: Optional[date] = None


@dataclass
class DispatchResult:
    """What one run did."""

    sent: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    skipped: Optional[str] = None


class ScheduledMessageDispatcher:
    """
    Single-flight delivery of queued messages.

    Args:
        queue: Send queue (uses singleton if not provided)
        messenger: Outbound delivery client (uses singleton if not provided)
        policy: Window, quota and pacing (defaults to settings)
        clock: Returns the current local time
        sleep: Awaitable pause, replaced in tests
        rng: Random source for the delay between deliveries
    """

    def __init__(
        self,
        queue: Optional[MessageQueue] = None,
        messenger: Optional[OutboundMessenger] = None,
        policy: Optional[DispatchPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._queue = queue
        self._messenger = messenger
        self.policy = policy or DispatchPolicy.from_settings()
        self._clock = clock or (lambda: datetime.now(settings.tzinfo))
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self.context = SchedulerContext(last_reset=self._clock().date())

    @property
    def queue(self) -> MessageQueue:
        if self._queue is None:
            self._queue = get_message_queue()
        return self._queue

    @property
    def messenger(self) -> OutboundMessenger:
        if self._messenger is None:
            self._messenger = get_outbound_messenger()
        return self._messenger

    def _random_delay(self) -> float:
        return self._rng.uniform(self.policy.min_delay_seconds, self.policy.max_delay_seconds)

    def _roll_over(self, today: date) -> None:
        if self.context.last_reset != today:
            logger.info(
                f"Daily counter reset ({self.context.daily_sent} sent on {self.context.last_reset})"
            )
            self.context.daily_sent = 0
            self.context.last_reset = today

    def _quota_left(self) -> bool:
        return self.context.daily_sent < self.policy.daily_limit

    async def run_once(self) -> DispatchResult:
        """
        One polling pass.

        Overlapping calls are no-ops while a pass is in flight.
        """
        if self.context.in_flight:
            return DispatchResult(skipped="in_flight")

        self.context.in_flight = True
        try:
            return await self._run()
        finally:
            self.context.in_flight = False

    async def _run(self) -> DispatchResult:
        result = DispatchResult()
        now = self._clock()

        if not self.policy.in_window(now):
            result.skipped = "outside_window"
            return result

        self._roll_over(now.date())

        if not self._quota_left():
            logger.warning(f"Daily limit reached: {self.context.daily_sent}")
            result.skipped = "daily_limit"
            return result

        try:
            due = await self.queue.get_due(now)
        except SQLAlchemyError as e:
            logger.error(f"Could not read send queue: {e}")
            result.skipped = "queue_unavailable"
            return result

        if not due:
            return result

        logger.info(f"{len(due)} scheduled message(s) due")

        for position, message in enumerate(due):
            if not self._quota_left():
                logger.warning("Daily limit reached during dispatch")
                break

            if await self._deliver(message):
                result.sent.append(message.id)
            else:
                result.failed.append(message.id)

            if position < len(due) - 1 and self._quota_left():
                delay = self._random_delay()
                logger.debug(f"Waiting {delay:.1f}s before next delivery")
                await self._sleep(delay)

        return result

    async def _deliver(self, message: QueuedMessage) -> bool:
        destination = digits_only(message.destination)
        media = message.media_url.strip() if message.has_media else None

        try:
            await self.messenger.deliver(destination, message.text, media)
        except MessagingError as e:
            logger.error(f"Delivery of message {message.id} to {destination} failed: {e}")
            await self._mark(message, QueueStatus.ERROR)
            return False

        self.context.daily_sent += 1
        logger.info(
            f"Message {message.id} sent to {destination} "
            f"({self.context.daily_sent}/{self.policy.daily_limit})"
        )
        await self._mark(message, QueueStatus.SENT)
        return True

    async def _mark(self, message: QueuedMessage, status: QueueStatus) -> None:
        try:
            await self.queue.set_message_status(message.id, status)
        except SQLAlchemyError as e:
            logger.error(f"Could not mark message {message.id} as {status.value}: {e}")

    async def run_forever(self) -> None:
        """Poll until cancelled."""
        logger.info(
            f"Dispatcher started: every {self.policy.interval_seconds}s, "
            f"window {self.policy.start_hour}:00-{self.policy.end_hour}:00, "
            f"limit {self.policy.daily_limit}/day"
        )
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dispatcher pass failed: {e}", exc_info=True)
            await self._sleep(self.policy.interval_seconds)


# Singleton
_dispatcher: Optional[ScheduledMessageDispatcher] = None


def get_dispatcher() -> ScheduledMessageDispatcher:
    """Get singleton ScheduledMessageDispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ScheduledMessageDispatcher()
    return _dispatcher
