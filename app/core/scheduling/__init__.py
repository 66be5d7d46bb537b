"""
Scheduling Module

Provides the appointment dialogue engine, directory and ledger access,
calendar integration and per-contact session persistence.

Usage:
    from app.core.scheduling import process_message

    # Process a chat message
    response = await process_message(
        contact_id="573001234567",
        message="agendar cita",
    )
    print(response.message)  # Bot's reply
    print(response.state)  # DialogState.COLLECTING_STUDENT_ID
"""

# Calendar Client
from app.core.scheduling.calendar_client import (
    CalendarClient,
    CalendarClientError,
    CalendarEvent,
    get_calendar_client,
)

# Directory and ledger
from app.core.scheduling.directory import (
    Directory,
    get_directory,
)

# Domain model
from app.core.scheduling.models import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    Session,
)
from app.core.scheduling.state import DialogState
from app.core.scheduling.errors import ResetReason

# Session persistence
from app.core.scheduling.session import (
    SessionManager,
    get_session_manager,
)

# Dialogue Engine (main orchestrator)
from app.core.scheduling.engine import (
    DialogueEngine,
    EngineResponse,
    get_dialogue_engine,
    process_message,
)

__all__ = [
    # Calendar Client
    "CalendarClient",
    "CalendarClientError",
    "CalendarEvent",
    "get_calendar_client",
    # Directory
    "Directory",
    "get_directory",
    # Models
    "Appointment",
    "AppointmentDraft",
    "AppointmentStatus",
    "Session",
    "DialogState",
    "ResetReason",
    # Sessions
    "SessionManager",
    "get_session_manager",
    # Dialogue Engine
    "DialogueEngine",
    "EngineResponse",
    "get_dialogue_engine",
    "process_message",
]
