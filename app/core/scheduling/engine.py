"""
Dialogue Engine - Main Orchestrator.

Drives one contact's booking or cancellation conversation, one inbound
message per call: load the session, run the global checks, dispatch to the
handler of the current state, persist the session, return the reply.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from app.config import settings
from app.core.intelligence import (
    ConversationResponder,
    Intent,
    IntentDetector,
    get_conversation_responder,
    get_intent_detector,
    is_list_request,
)
from app.core.scheduling import messages
from app.core.scheduling.calendar_client import (
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from app.core.scheduling.choices import find_date, resolve_choice
from app.core.scheduling.directory import Directory, get_directory
from app.core.scheduling.errors import (
    CollaboratorFailure,
    ConfigurationError,
    LookupMiss,
    ResetReason,
    UserInputError,
)
from app.core.scheduling.models import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    CancellationDraft,
    Session,
)
from app.core.scheduling.session import SessionManager, get_session_manager
from app.core.scheduling.state import DialogState, can_transition
from app.core.scheduling.timeutils import (
    combine_local,
    match_time_to_slots,
    normalize,
    resolve_date,
)

logger = logging.getLogger(__name__)

ABORT_KEYWORDS = {"cancelar", "salir", "desistir", "cancel", "exit", "quit"}
CANCEL_ALL_KEYWORDS = {"todas", "todos", "all"}
SKIP_KEYWORDS = {"omitir", "-"}
EMAIL_FIELD_ID = "email"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_CANCEL_ID_LENGTH = 3

_NUMBER = re.compile(r"\d+")


@dataclass
class Turn:
    """Outcome of one handler call."""

    reply: str
    appointment_id: Optional[int] = None
    reset_reason: Optional[ResetReason] = None


@dataclass
class EngineResponse:
    """Response from the dialogue engine."""

    message: str
    contact_id: str
    state: DialogState
    appointment_id: Optional[int] = None
    reset_reason: Optional[ResetReason] = None
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "message": self.message,
            "contact_id": self.contact_id,
            "state": self.state.value,
        }

        if self.appointment_id is not None:
            result["appointment_id"] = self.appointment_id
        if self.reset_reason:
            result["reset_reason"] = self.reset_reason.value
        if self.processing_time_ms is not None:
            result["processing_time_ms"] = self.processing_time_ms

        return result


Handler = Callable[[Session, str, datetime], Awaitable[Turn]]


class DialogueEngine:
    """
    Finite-state appointment conversation.

    Coordinates:
    - Session load/save
    - Global timeout and abort checks
    - Per-state handlers (table keyed by DialogState)
    - Booking completion, cancellation, rescheduling and listing
    """

    def __init__(
        self,
        directory: Optional[Directory] = None,
        calendar: Optional[CalendarClient] = None,
        sessions: Optional[SessionManager] = None,
        intents: Optional[IntentDetector] = None,
        responder: Optional[ConversationResponder] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: Optional[int] = None,
        session_timeout: Optional[timedelta] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            directory: Directory and ledger gateway
            calendar: Calendar client
            sessions: Session store
            intents: Intent detector for idle messages
            responder: Free-text responder for idle messages
            clock: Returns the current local time
            max_attempts: Invalid answers allowed per question
            session_timeout: Inactivity ceiling
        """
        self._directory = directory
        self._calendar = calendar
        self._sessions = sessions
        self._intents = intents
        self._responder = responder
        self._clock = clock or (lambda: datetime.now(settings.tzinfo))
        self._max_attempts = max_attempts or settings.max_attempts
        self._session_timeout = session_timeout or timedelta(
            minutes=settings.session_timeout_minutes
        )

        self._handlers: dict[DialogState, Handler] = {
            DialogState.IDLE: self._handle_idle,
            DialogState.COLLECTING_STUDENT_ID: self._handle_student_id,
            DialogState.COLLECTING_TEACHER: self._handle_teacher,
            DialogState.COLLECTING_MODALITY: self._handle_modality,
            DialogState.COLLECTING_DATE: self._handle_date,
            DialogState.COLLECTING_TIME: self._handle_time,
            DialogState.COLLECTING_FORM_FIELD: self._handle_form_field,
            DialogState.AWAITING_CANCEL_ID: self._handle_cancel_id,
            DialogState.SELECTING_APPOINTMENT_TO_CANCEL: self._handle_cancel_selection,
        }

    @property
    def directory(self) -> Directory:
        if self._directory is None:
            self._directory = get_directory()
        return self._directory

    @property
    def calendar(self) -> CalendarClient:
        if self._calendar is None:
            self._calendar = get_calendar_client()
        return self._calendar

    @property
    def sessions(self) -> SessionManager:
        if self._sessions is None:
            self._sessions = get_session_manager()
        return self._sessions

    @property
    def intents(self) -> IntentDetector:
        if self._intents is None:
            self._intents = get_intent_detector()
        return self._intents

    @property
    def responder(self) -> ConversationResponder:
        if self._responder is None:
            self._responder = get_conversation_responder()
        return self._responder

    async def process(self, contact_id: str, message: str) -> EngineResponse:
        """Process one inbound message.

        Args:
            contact_id: Contact identifier (phone number)
            message: Message text

        Returns:
            EngineResponse with the reply and the resulting state
        """
        start_time = time.time()
        text = message.strip()
        now = self._clock()

        session = await self.sessions.get(contact_id)

        try:
            turn = await self._dispatch(session, text, now)
        except ConfigurationError as e:
            logger.warning(f"Configuration problem for {contact_id}: {e}")
            turn = self._reset(session, e.reason, e.reply)
        except Exception as e:
            logger.error(f"Error processing message for {contact_id}: {e}", exc_info=True)
            turn = self._reset(session, ResetReason.ERROR, messages.generic_error())

        if not session.is_idle:
            session.touch(now)

        session.add_message("user", text)
        session.add_message("assistant", turn.reply)
        await self.sessions.save(session)

        return EngineResponse(
            message=turn.reply,
            contact_id=contact_id,
            state=session.state,
            appointment_id=turn.appointment_id,
            reset_reason=turn.reset_reason,
            processing_time_ms=(time.time() - start_time) * 1000,
        )

    async def _dispatch(self, session: Session, text: str, now: datetime) -> Turn:
        """Global checks, then the current state's handler."""
        if not session.is_idle:
            if self._is_expired(session, now):
                logger.info(f"Session {session.contact_id} expired in {session.state.value}")
                return self._reset(session, ResetReason.TIMEOUT, messages.timed_out())

            if text.lower() in ABORT_KEYWORDS:
                return self._reset(session, ResetReason.ABORTED, messages.aborted())

        handler = self._handlers[session.state]
        try:
            return await handler(session, text, now)
        except UserInputError as e:
            return self._count_attempt(session, e)
        except LookupMiss as e:
            return Turn(reply=e.reply)

    def _is_expired(self, session: Session, now: datetime) -> bool:
        if session.last_activity is None:
            return False
        return now - session.last_activity > self._session_timeout

    def _count_attempt(self, session: Session, error: UserInputError) -> Turn:
        """Bounded retry: reset exactly when attempts reach the ceiling."""
        session.draft.attempts += 1
        attempt = session.draft.attempts

        if attempt >= self._max_attempts:
            logger.info(
                f"Retry ceiling reached for {session.contact_id} in {session.state.value}"
            )
            return self._reset(
                session, ResetReason.RETRY_CEILING, error.ceiling_reply(self._max_attempts)
            )

        return Turn(reply=error.retry_reply(attempt, self._max_attempts))

    def _transition(self, session: Session, new_state: DialogState) -> None:
        if not can_transition(session.state, new_state):
            logger.warning(
                f"Unexpected transition: {session.state.value} -> {new_state.value}"
            )
        if new_state != session.state:
            session.draft.attempts = 0
        logger.debug(f"{session.contact_id}: {session.state.value} -> {new_state.value}")
        session.state = new_state

    def _reset(
        self,
        session: Session,
        reason: ResetReason,
        reply: str,
        appointment_id: Optional[int] = None,
    ) -> Turn:
        """Single path back to idle with empty drafts."""
        logger.info(f"Session {session.contact_id} reset ({reason.value})")
        session.reset()
        return Turn(reply=reply, appointment_id=appointment_id, reset_reason=reason)

    # === Idle ===

    async def _handle_idle(self, session: Session, text: str, now: datetime) -> Turn:
        result = await self.intents.detect(text)

        if result.intent == Intent.BOOK:
            session.draft = AppointmentDraft()
            self._transition(session, DialogState.COLLECTING_STUDENT_ID)
            return Turn(reply=messages.start_booking())

        if result.intent == Intent.CANCEL:
            session.cancellation = CancellationDraft()
            self._transition(session, DialogState.AWAITING_CANCEL_ID)
            return Turn(reply=messages.cancel_prompt())

        if result.intent == Intent.LIST:
            return await self._list_appointments(session.contact_id)

        if result.intent == Intent.RESCHEDULE:
            return await self._reschedule(session.contact_id, text)

        reply = await self.responder.reply(text, history=session.history)
        return Turn(reply=reply)

    # === Booking ===

    async def _handle_student_id(self, session: Session, text: str, now: datetime) -> Turn:
        subject = await self.directory.get_subject_by_id(text)
        if subject is None:
            raise UserInputError(
                retry_reply=lambda n, m: messages.student_not_found(text, n, m),
                ceiling_reply=messages.student_retry_ceiling,
            )

        providers = await self.directory.get_providers_for_subject(subject.id)
        if not providers:
            raise ConfigurationError(
                messages.student_without_teachers(subject.name),
                reason=ResetReason.NO_PROVIDERS,
            )

        draft = session.draft
        draft.student_id = subject.id
        draft.student_name = subject.name
        draft.grade = subject.grade
        draft.course = subject.course
        draft.providers = list(providers)

        self._transition(session, DialogState.COLLECTING_TEACHER)
        return Turn(reply=messages.teacher_list(subject, providers))

    async def _handle_teacher(self, session: Session, text: str, now: datetime) -> Turn:
        draft = session.draft
        index = resolve_choice([ref.name for ref in draft.providers], text)
        if index is None:
            providers = list(draft.providers)
            raise UserInputError(
                retry_reply=lambda n, m: messages.teacher_not_found(providers, n, m),
                ceiling_reply=lambda m: messages.retry_ceiling("el docente", m),
            )

        ref = draft.providers[index]
        provider = await self.directory.get_provider_by_name(ref.name)
        if provider is None:
            raise ConfigurationError(messages.teacher_not_configured(ref.name))

        modalities = await self.directory.get_modalities(provider.name)
        if not modalities:
            raise ConfigurationError(messages.teacher_without_modalities(provider.name))

        draft.teacher_name = provider.name
        draft.subject = ref.subject or provider.subject
        draft.calendar_id = provider.calendar_id
        draft.meeting_link = provider.meeting_link
        draft.modalities = modalities

        if len(modalities) == 1:
            draft.modality = modalities[0]
            return await self._offer_dates(session)

        self._transition(session, DialogState.COLLECTING_MODALITY)
        return Turn(reply=messages.modality_list(provider.name, modalities))

    async def _handle_modality(self, session: Session, text: str, now: datetime) -> Turn:
        draft = session.draft
        index = resolve_choice(draft.modalities, text)
        if index is None:
            modalities = list(draft.modalities)
            raise UserInputError(
                retry_reply=lambda n, m: messages.modality_invalid(modalities, n, m),
                ceiling_reply=lambda m: messages.retry_ceiling("la modalidad", m),
            )

        draft.modality = draft.modalities[index]
        return await self._offer_dates(session)

    async def _offer_dates(self, session: Session) -> Turn:
        draft = session.draft
        dates = await self.directory.get_available_dates(
            draft.teacher_name, settings.booking_weeks_ahead
        )
        if not dates:
            raise ConfigurationError(messages.teacher_without_dates(draft.teacher_name))

        draft.available_dates = dates
        self._transition(session, DialogState.COLLECTING_DATE)
        return Turn(reply=messages.date_list(draft.modality, draft.teacher_name, dates))

    async def _handle_date(self, session: Session, text: str, now: datetime) -> Turn:
        draft = session.draft
        index = find_date(draft.available_dates, text)
        if index is None:
            dates = list(draft.available_dates)
            raise UserInputError(
                retry_reply=lambda n, m: messages.date_invalid(dates, n, m),
                ceiling_reply=lambda m: messages.retry_ceiling("la fecha", m),
            )

        chosen = draft.available_dates[index]
        availability = await self.directory.get_available_slots(draft.teacher_name, chosen.date)
        if not availability.slots:
            raise LookupMiss(messages.no_slots(chosen.display))

        draft.selected_date = chosen.date
        draft.selected_display_label = chosen.display
        draft.available_slots = availability.slots
        draft.duration_minutes = availability.duration_minutes

        self._transition(session, DialogState.COLLECTING_TIME)
        return Turn(
            reply=messages.slot_list(chosen.display, availability.duration_minutes, availability.slots)
        )

    async def _handle_time(self, session: Session, text: str, now: datetime) -> Turn:
        draft = session.draft
        slot = match_time_to_slots(text, draft.available_slots)
        if slot is None:
            slots = list(draft.available_slots)
            raise UserInputError(
                retry_reply=lambda n, m: messages.time_unavailable(slots, n, m),
                ceiling_reply=lambda m: messages.retry_ceiling("la hora", m),
            )

        draft.time = slot

        fields = await self.directory.get_form_fields()
        if not fields:
            return await self._complete(session, now)

        draft.form_fields = fields
        draft.current_field_index = 0
        draft.collected_fields = {}
        self._transition(session, DialogState.COLLECTING_FORM_FIELD)
        return Turn(reply=messages.field_question(fields[0]))

    async def _handle_form_field(self, session: Session, text: str, now: datetime) -> Turn:
        draft = session.draft
        field = draft.form_fields[draft.current_field_index]

        answer = text
        if not field.required and normalize(answer) in SKIP_KEYWORDS:
            answer = ""
        elif not answer:
            return Turn(reply=messages.empty_answer(field))

        if field.id == EMAIL_FIELD_ID and answer and not EMAIL_PATTERN.match(answer):
            return Turn(reply=messages.invalid_email())

        draft.collected_fields[field.id] = answer
        draft.current_field_index += 1

        if draft.current_field_index < len(draft.form_fields):
            next_field = draft.form_fields[draft.current_field_index]
            return Turn(reply=messages.field_question(next_field))

        return await self._complete(session, now)

    async def _complete(self, session: Session, now: datetime) -> Turn:
        """
        Create the calendar event and the ledger row, then reset.

        Calendar and ledger writes are attempted independently; the
        booking only fails when both do.
        """
        contact_id = session.contact_id
        draft = session.draft

        day = draft.selected_date or resolve_date(draft.selected_display_label or "", now.date())
        if day is None:
            raise CollaboratorFailure(f"Cannot resolve booking date for {contact_id}")

        duration = draft.duration_minutes or settings.default_slot_minutes
        start = combine_local(day, draft.time, settings.tzinfo)
        end = start + timedelta(minutes=duration)
        collected = dict(draft.collected_fields)

        event_id: Optional[str] = None
        try:
            event = await self.calendar.create_event(
                contact_id=contact_id,
                calendar_id=draft.calendar_id or settings.default_calendar_id,
                start=start,
                end=end,
                summary=messages.event_summary(collected, draft.student_name),
                description=messages.event_description(
                    student_name=draft.student_name,
                    student_id=draft.student_id,
                    grade=draft.grade,
                    course=draft.course,
                    teacher_name=draft.teacher_name,
                    subject=draft.subject,
                    modality=draft.modality,
                    collected=collected,
                ),
            )
            event_id = event.id
        except CalendarClientError as e:
            logger.error(f"Calendar event not created for {contact_id}: {e}")

        provider_label = (
            f"{draft.teacher_name} ({draft.subject})" if draft.subject else draft.teacher_name
        )
        record = Appointment(
            id=0,
            contact_id=contact_id,
            student_name=draft.student_name,
            student_id=draft.student_id,
            provider_label=provider_label,
            date=day.isoformat(),
            time=draft.time,
            status=AppointmentStatus.CONFIRMED,
            calendar_event_id=event_id,
            fields=collected,
        )

        appointment_id: Optional[int] = None
        try:
            appointment_id = await self.directory.append_appointment(record)
        except CollaboratorFailure as e:
            logger.error(f"Ledger row not written for {contact_id}: {e}")

        if event_id is None and appointment_id is None:
            raise CollaboratorFailure(f"Booking for {contact_id} failed on calendar and ledger")

        footer = await self.directory.get_confirmation_footer()
        reply = messages.confirmation(
            appointment_id=appointment_id,
            student_name=draft.student_name,
            grade=draft.grade,
            course=draft.course,
            fields=draft.form_fields,
            collected=collected,
            teacher_name=draft.teacher_name,
            subject=draft.subject,
            modality=draft.modality,
            day_label=draft.selected_display_label or day.isoformat(),
            day=day,
            time=draft.time,
            meeting_link=draft.meeting_link,
            footer=footer,
        )

        logger.info(
            f"Booked {provider_label} on {day} {draft.time} for {contact_id} "
            f"(appointment={appointment_id}, event={event_id})"
        )
        return self._reset(session, ResetReason.COMPLETED, reply, appointment_id)

    # === Cancellation ===

    async def _handle_cancel_id(self, session: Session, text: str, now: datetime) -> Turn:
        if is_list_request(text):
            return await self._list_appointments(session.contact_id)

        student_id = text.strip()
        if len(student_id) < MIN_CANCEL_ID_LENGTH:
            raise LookupMiss(messages.cancel_id_too_short())

        appointments = [
            appointment
            for appointment in await self.directory.get_appointments_by_contact(session.contact_id)
            if appointment.student_id == student_id
        ]
        if not appointments:
            raise LookupMiss(messages.no_appointments_for_student(student_id))

        if len(appointments) == 1:
            await self._release(appointments, AppointmentStatus.CANCELLED)
            return self._reset(
                session, ResetReason.CANCELLED_APPOINTMENT, messages.cancelled_one(appointments[0])
            )

        session.cancellation = CancellationDraft(student_id=student_id, appointments=appointments)
        self._transition(session, DialogState.SELECTING_APPOINTMENT_TO_CANCEL)
        return Turn(reply=messages.appointment_choice(appointments))

    async def _handle_cancel_selection(self, session: Session, text: str, now: datetime) -> Turn:
        appointments = session.cancellation.appointments

        if normalize(text) in CANCEL_ALL_KEYWORDS:
            await self._release(appointments, AppointmentStatus.CANCELLED)
            return self._reset(
                session, ResetReason.CANCELLED_APPOINTMENT, messages.cancelled_many(appointments)
            )

        if text.isdigit() and 1 <= int(text) <= len(appointments):
            chosen = appointments[int(text) - 1]
            await self._release([chosen], AppointmentStatus.CANCELLED)
            return self._reset(
                session, ResetReason.CANCELLED_APPOINTMENT, messages.cancelled_one(chosen)
            )

        raise LookupMiss(messages.selection_out_of_range(len(appointments)))

    async def _release(self, appointments: list[Appointment], status: AppointmentStatus) -> None:
        """Delete each appointment's calendar event (best-effort), then set its status."""
        for appointment in appointments:
            await self._delete_calendar_event(appointment)
            updated = await self.directory.set_appointment_status(appointment.id, status)
            if not updated:
                logger.warning(f"Appointment {appointment.id} missing from ledger")

    async def _delete_calendar_event(self, appointment: Appointment) -> None:
        if not appointment.calendar_event_id:
            return

        provider = await self.directory.get_provider_by_name(appointment.provider_name)
        if provider is None or not provider.calendar_id:
            logger.warning(
                f"No calendar for '{appointment.provider_label}', "
                f"event {appointment.calendar_event_id} left in place"
            )
            return

        deleted = await self.calendar.delete_event(appointment.calendar_event_id, provider.calendar_id)
        if not deleted:
            logger.warning(f"Event {appointment.calendar_event_id} could not be deleted")

    # === Listing / rescheduling ===

    async def _list_appointments(self, contact_id: str) -> Turn:
        appointments = await self.directory.get_appointments_by_contact(contact_id)
        if not appointments:
            return Turn(reply=messages.no_appointments())
        return Turn(reply=messages.appointment_list(appointments))

    async def _reschedule(self, contact_id: str, text: str) -> Turn:
        found = _NUMBER.search(text)
        if not found:
            return Turn(reply=messages.reschedule_missing_id())

        appointment_id = int(found.group(0))
        appointment = await self.directory.get_appointment(contact_id, appointment_id)
        if appointment is None:
            return Turn(reply=messages.reschedule_not_found(appointment_id))

        await self._release([appointment], AppointmentStatus.RESCHEDULED)
        return Turn(reply=messages.rescheduled(appointment))

    # === Session access ===

    async def get_session(self, contact_id: str) -> Session:
        """Current session of a contact."""
        return await self.sessions.get(contact_id)

    async def reset_session(self, contact_id: str) -> Session:
        """Force a contact back to idle."""
        logger.info(f"Session {contact_id} reset by operator")
        return await self.sessions.reset(contact_id)


# Singleton
_engine: Optional[DialogueEngine] = None


def get_dialogue_engine() -> DialogueEngine:
    """Get singleton DialogueEngine."""
    global _engine
    if _engine is None:
        _engine = DialogueEngine()
    return _engine


async def process_message(contact_id: str, message: str) -> EngineResponse:
    """Convenience function to process a message.

    Args:
        contact_id: Contact identifier
        message: Message text

    Returns:
        EngineResponse
    """
    engine = get_dialogue_engine()
    return await engine.process(contact_id, message)
