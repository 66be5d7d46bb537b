"""
Messaging Module

Scheduled outbound messages: the send queue and the dispatcher that drains it.

Usage:
    from app.core.messaging import get_dispatcher

    result = await get_dispatcher().run_once()
    print(result.sent)  # ids delivered in this pass
"""

from app.core.messaging.queue import (
    MessageQueue,
    QueuedMessage,
    get_message_queue,
    parse_scheduled_at,
)
from app.core.messaging.dispatcher import (
    DispatchPolicy,
    DispatchResult,
    ScheduledMessageDispatcher,
    SchedulerContext,
    get_dispatcher,
)

__all__ = [
    "MessageQueue",
    "QueuedMessage",
    "get_message_queue",
    "parse_scheduled_at",
    "DispatchPolicy",
    "DispatchResult",
    "ScheduledMessageDispatcher",
    "SchedulerContext",
    "get_dispatcher",
]
