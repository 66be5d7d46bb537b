"""
Scheduling error taxonomy.

Handlers raise these; the engine decides what each one means for the
conversation (bounded retry, plain re-prompt, abort or generic failure).
"""

from enum import Enum
from typing import Callable, Optional


class SchedulingError(Exception):
    """Base class for dialogue engine errors."""
    pass


class UserInputError(SchedulingError):
    """
    Input could not be parsed or matched against the offered options.

    Counts against the attempt ceiling.

    Args:
        retry_reply: Builds the re-prompt from (attempt, max_attempts)
        ceiling_reply: Final notice once attempts are used up
    """

    def __init__(self, retry_reply: Callable[[int, int], str], ceiling_reply: Callable[[int], str]):
        super().__init__("input did not match any option")
        self.retry_reply = retry_reply
        self.ceiling_reply = ceiling_reply


class LookupMiss(SchedulingError):
    """Input was valid but no matching record exists. Re-prompted, not counted."""

    def __init__(self, reply: str):
        super().__init__(reply)
        self.reply = reply


class ConfigurationError(SchedulingError):
    """A referenced teacher or student lacks required configuration."""

    def __init__(self, reply: str, reason: Optional["ResetReason"] = None):
        super().__init__(reply)
        self.reply = reply
        self.reason = reason or ResetReason.CONFIGURATION


class CollaboratorFailure(SchedulingError):
    """A calendar, directory or store call failed."""
    pass


class ResetReason(str, Enum):
    """Why a conversation was returned to idle."""

    COMPLETED = "completed"
    ABORTED = "aborted"
    TIMEOUT = "timeout"
    RETRY_CEILING = "retry_ceiling"
    CONFIGURATION = "configuration"
    NO_PROVIDERS = "no_providers"
    CANCELLED_APPOINTMENT = "cancelled_appointment"
    ERROR = "error"
