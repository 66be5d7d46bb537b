"""Shared fixtures: in-memory directory, calendar and session store."""

from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Optional
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from app.core.intelligence import IntentDetector
from app.core.scheduling.calendar_client import CalendarClientError, CalendarEvent
from app.core.scheduling.directory import DEFAULT_CONFIRMATION_FOOTER
from app.core.scheduling.engine import DialogueEngine
from app.core.scheduling.errors import CollaboratorFailure
from app.core.scheduling.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AvailableDate,
    FormFieldSpec,
    Provider,
    ProviderRef,
    Session,
    SlotAvailability,
    Subject,
)
from app.core.scheduling.timeutils import expand_availability, upcoming_dates

BOGOTA = ZoneInfo("America/Bogota")

# Monday
MONDAY_9AM = datetime(2026, 10, 19, 9, 0, tzinfo=BOGOTA)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeDirectory:
    """In-memory directory and ledger."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.students: dict[str, Subject] = {}
        self.providers: dict[str, Provider] = {}
        self.slot_overrides: dict[date, SlotAvailability] = {}
        self.form_fields: list[FormFieldSpec] = []
        self.footer = DEFAULT_CONFIRMATION_FOOTER
        self.appointments: list[Appointment] = []
        self.status_changes: list[tuple[int, AppointmentStatus]] = []
        self.fail_append = False
        self._next_id = 1

    def add_student(self, subject: Subject) -> None:
        self.students[subject.id] = subject

    def add_provider(self, provider: Provider) -> None:
        self.providers[provider.name.lower()] = provider

    def add_appointment(self, **kwargs) -> Appointment:
        appointment = Appointment(id=self._next_id, **kwargs)
        self._next_id += 1
        self.appointments.append(appointment)
        return appointment

    async def get_subject_by_id(self, student_id: str) -> Optional[Subject]:
        return self.students.get(student_id.strip())

    async def get_providers_for_subject(self, student_id: str) -> list[ProviderRef]:
        subject = self.students.get(student_id)
        return list(subject.assigned_providers) if subject else []

    async def get_provider_by_name(self, name: str) -> Optional[Provider]:
        return self.providers.get(name.strip().lower())

    async def get_modalities(self, name: str) -> list[str]:
        provider = await self.get_provider_by_name(name)
        return list(provider.modalities) if provider else []

    async def get_available_dates(self, name: str, weeks_ahead: Optional[int] = None) -> list[AvailableDate]:
        provider = await self.get_provider_by_name(name)
        if provider is None:
            return []
        return upcoming_dates(provider.available_weekdays, self._clock(), weeks_ahead or 4)

    async def get_available_slots(self, name: str, day: date) -> SlotAvailability:
        if day in self.slot_overrides:
            return self.slot_overrides[day]
        provider = await self.get_provider_by_name(name)
        return SlotAvailability(
            slots=expand_availability(provider.availability, provider.slot_duration_minutes),
            duration_minutes=provider.slot_duration_minutes,
        )

    async def get_form_fields(self) -> list[FormFieldSpec]:
        return list(self.form_fields)

    async def get_confirmation_footer(self) -> str:
        return self.footer

    async def get_appointments_by_contact(self, contact_id: str) -> list[Appointment]:
        return [
            a for a in self.appointments
            if a.contact_id == contact_id and a.status in ACTIVE_STATUSES
        ]

    async def get_appointment(self, contact_id: str, appointment_id: int) -> Optional[Appointment]:
        for appointment in await self.get_appointments_by_contact(contact_id):
            if appointment.id == appointment_id:
                return appointment
        return None

    async def append_appointment(self, record: Appointment) -> int:
        if self.fail_append:
            raise CollaboratorFailure("ledger down")
        stored = replace(record, id=self._next_id)
        self._next_id += 1
        self.appointments.append(stored)
        return stored.id

    async def set_appointment_status(self, appointment_id: int, status: AppointmentStatus) -> bool:
        for appointment in self.appointments:
            if appointment.id == appointment_id:
                appointment.status = status
                self.status_changes.append((appointment_id, status))
                return True
        return False


class FakeCalendar:
    """Records created and deleted events."""

    def __init__(self):
        self.created: list[dict] = []
        self.deleted: list[tuple[str, str]] = []
        self.fail_create = False
        self.fail_delete = False

    async def create_event(self, contact_id, calendar_id, start, end, summary, description) -> CalendarEvent:
        if self.fail_create:
            raise CalendarClientError("calendar down")
        self.created.append({
            "contact_id": contact_id,
            "calendar_id": calendar_id,
            "start": start,
            "end": end,
            "summary": summary,
            "description": description,
        })
        return CalendarEvent(id=f"evt-{len(self.created)}")

    async def delete_event(self, event_id: str, calendar_id: str) -> bool:
        self.deleted.append((event_id, calendar_id))
        return not self.fail_delete


class FakeSessionStore:
    """Dict-backed session store."""

    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.saves = 0

    async def get(self, contact_id: str) -> Session:
        return self.sessions.get(contact_id) or Session(contact_id=contact_id)

    async def save(self, session: Session) -> bool:
        self.sessions[session.contact_id] = session
        self.saves += 1
        return True

    async def reset(self, contact_id: str) -> Session:
        session = await self.get(contact_id)
        session.reset()
        await self.save(session)
        return session


CONTACT = "573001112233"

CARLOS = Provider(
    name="Carlos Ruiz",
    calendar_id="carlos@school.edu",
    subject="Matemáticas",
    modalities=["Presencial"],
    available_weekdays=["lunes", "miércoles"],
    availability=["14:00-16:00"],
    slot_duration_minutes=30,
)

LAURA = Provider(
    name="Laura Gómez",
    calendar_id="laura@school.edu",
    subject="Ciencias",
    modalities=["Presencial", "Virtual"],
    available_weekdays=["martes"],
    availability=["08:00-09:00"],
    slot_duration_minutes=20,
    meeting_link="https://meet.example.com/laura",
)


@pytest.fixture
def clock():
    return FakeClock(MONDAY_9AM)


@pytest.fixture
def directory(clock):
    directory = FakeDirectory(clock)
    directory.add_provider(CARLOS)
    directory.add_provider(LAURA)
    directory.add_student(Subject(
        id="1001",
        name="Ana Pérez",
        grade="5",
        course="5A",
        shift="Mañana",
        assigned_providers=[ProviderRef("Carlos Ruiz", "Matemáticas")],
    ))
    directory.add_student(Subject(
        id="2002",
        name="Luis Torres",
        grade="8",
        course="8B",
        shift="Tarde",
        assigned_providers=[
            ProviderRef("Carlos Ruiz", "Matemáticas"),
            ProviderRef("Laura Gómez", "Ciencias"),
        ],
    ))
    directory.add_student(Subject(id="3003", name="Sin Docentes", assigned_providers=[]))
    return directory


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def sessions():
    return FakeSessionStore()


@pytest.fixture
def responder():
    mock = AsyncMock()
    mock.reply = AsyncMock(return_value="¡Hola! Escribe 'agendar cita' para comenzar.")
    return mock


@pytest.fixture
def claude():
    mock = AsyncMock()
    mock.generate = AsyncMock()
    return mock


@pytest.fixture
def engine(directory, calendar, sessions, responder, claude, clock):
    return DialogueEngine(
        directory=directory,
        calendar=calendar,
        sessions=sessions,
        intents=IntentDetector(claude_client=claude),
        responder=responder,
        clock=clock,
        max_attempts=3,
        session_timeout=timedelta(minutes=30),
    )


@pytest.fixture
def talk(engine):
    """Send several messages in order, returning the last response."""

    async def _talk(*messages: str, contact_id: str = CONTACT):
        response = None
        for message in messages:
            response = await engine.process(contact_id, message)
        return response

    return _talk
