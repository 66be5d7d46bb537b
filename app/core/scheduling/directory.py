"""
Directory gateway.

Reads the operator-maintained directory (students, teachers, intake
questions, settings) and reads/writes the appointment ledger. Availability
combines a teacher's configured days and hours with calendar busy time.
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.phone import digits_only, same_contact
from app.core.scheduling.calendar_client import (
    CalendarClient,
    CalendarClientError,
    get_calendar_client,
)
from app.core.scheduling.errors import CollaboratorFailure
from app.core.scheduling.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    AvailableDate,
    FormFieldSpec,
    Provider,
    ProviderRef,
    SlotAvailability,
    Subject,
)
from app.core.scheduling.timeutils import (
    day_bounds,
    expand_availability,
    filter_busy_slots,
    upcoming_dates,
)
from app.infra.database import session_scope
from app.models import database as db

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_FOOTER = (
    "⏱️ Recuerda disponer de tiempo aproximado de 1 hora.\n\n"
    "Recibirás recordatorios en este WhatsApp. ¡Nos vemos!"
)

FOOTER_SETTING_KEY = "confirmation_footer"


def split_list(value: Optional[str]) -> list[str]:
    """Comma-separated operator text -> trimmed non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_assigned_teachers(value: Optional[str]) -> list[ProviderRef]:
    """Parse "Name-Subject, Name-Subject" into provider references."""
    refs = []
    for entry in split_list(value):
        name, _, subject = entry.partition("-")
        name = name.strip()
        if name:
            refs.append(ProviderRef(name=name, subject=subject.strip()))
    return refs


def _to_subject(row: db.Student) -> Subject:
    return Subject(
        id=row.id,
        name=row.name,
        grade=row.grade or "",
        course=row.course or "",
        shift=row.shift or "",
        assigned_providers=parse_assigned_teachers(row.assigned_teachers),
    )


def _to_provider(row: db.Teacher) -> Provider:
    return Provider(
        name=row.name,
        calendar_id=row.calendar_id or settings.default_calendar_id,
        subject=row.subject or "",
        modalities=split_list(row.modalities),
        available_weekdays=split_list(row.available_days),
        availability=split_list(row.available_hours),
        slot_duration_minutes=row.slot_duration_minutes or settings.default_slot_minutes,
        meeting_link=row.meeting_link or "",
    )


def _to_appointment(row: db.Appointment) -> Appointment:
    return Appointment(
        id=row.id,
        contact_id=row.contact_id,
        student_name=row.student_name or "",
        student_id=row.student_id or "",
        provider_label=row.provider_label or "",
        date=row.date,
        time=row.time,
        status=AppointmentStatus(row.status.value),
        calendar_event_id=row.calendar_event_id,
        created_at=row.created_at,
        fields=dict(row.fields or {}),
    )


class Directory:
    """
    Async gateway over the directory and ledger tables.

    Args:
        session_factory: SQLAlchemy session factory (defaults to the app's)
        calendar: Calendar client used for busy-time filtering
        clock: Returns the current local time
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        calendar: Optional[CalendarClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session_factory = session_factory
        self._calendar = calendar or get_calendar_client()
        self._clock = clock or (lambda: datetime.now(settings.tzinfo))

    def _session(self):
        return session_scope(self._session_factory)

    # === Students ===

    async def get_subject_by_id(self, student_id: str) -> Optional[Subject]:
        """Look up a student by enrollment id."""
        student_id = student_id.strip()
        if not student_id:
            return None

        async with self._session() as session:
            row = await session.get(db.Student, student_id)
            return _to_subject(row) if row else None

    async def get_providers_for_subject(self, student_id: str) -> list[ProviderRef]:
        """Teachers assigned to a student, in listed order."""
        subject = await self.get_subject_by_id(student_id)
        if subject is None:
            return []
        return subject.assigned_providers

    # === Teachers ===

    async def get_provider_by_name(self, name: str) -> Optional[Provider]:
        """Teacher record by case-insensitive exact name."""
        needle = name.strip().lower()
        if not needle:
            return None

        async with self._session() as session:
            result = await session.execute(
                select(db.Teacher).where(func.lower(db.Teacher.name) == needle)
            )
            row = result.scalars().first()
            return _to_provider(row) if row else None

    async def get_modalities(self, name: str) -> list[str]:
        """Configured appointment modalities of a teacher."""
        provider = await self.get_provider_by_name(name)
        return provider.modalities if provider else []

    async def get_available_dates(
        self,
        name: str,
        weeks_ahead: Optional[int] = None,
    ) -> list[AvailableDate]:
        """Concrete upcoming dates on the teacher's configured weekdays."""
        provider = await self.get_provider_by_name(name)
        if provider is None or not provider.available_weekdays:
            return []

        return upcoming_dates(
            provider.available_weekdays,
            now=self._clock(),
            weeks_ahead=weeks_ahead or settings.booking_weeks_ahead,
            cutoff_hour=settings.same_day_cutoff_hour,
            limit=settings.max_listed_dates,
        )

    async def get_available_slots(self, name: str, day: date) -> SlotAvailability:
        """
        Free slot start times for a teacher on a date.

        Slots overlapping calendar busy time are dropped. If the busy-time
        query fails, or nothing would be left, all generated slots are
        returned.
        """
        provider = await self.get_provider_by_name(name)
        if provider is None:
            return SlotAvailability(slots=[], duration_minutes=settings.default_slot_minutes)

        duration = provider.slot_duration_minutes
        slots = expand_availability(provider.availability, duration)
        if not slots or not provider.calendar_id:
            return SlotAvailability(slots=slots, duration_minutes=duration)

        tz = settings.tzinfo
        time_min, time_max = day_bounds(day, tz)
        try:
            busy = await self._calendar.get_busy_intervals(provider.calendar_id, time_min, time_max)
        except CalendarClientError as e:
            logger.warning(f"Busy-time check failed for {provider.name}, serving all slots: {e}")
            return SlotAvailability(slots=slots, duration_minutes=duration)

        free = filter_busy_slots(slots, busy, day, duration, tz)
        logger.debug(f"{provider.name} {day}: {len(free)}/{len(slots)} slots free")
        return SlotAvailability(slots=free, duration_minutes=duration)

    # === Form configuration ===

    async def get_form_fields(self) -> list[FormFieldSpec]:
        """Active intake questions, ordered."""
        async with self._session() as session:
            result = await session.execute(
                select(db.FormField)
                .where(db.FormField.active.is_(True))
                .order_by(db.FormField.order, db.FormField.id)
            )
            return [
                FormFieldSpec(
                    id=row.id,
                    question=row.question,
                    required=row.required,
                    order=row.order,
                )
                for row in result.scalars().all()
                if row.id and row.question
            ]

    async def get_confirmation_footer(self) -> str:
        """Closing text of the booking confirmation."""
        async with self._session() as session:
            row = await session.get(db.AppSetting, FOOTER_SETTING_KEY)
            if row and row.value:
                return row.value
        return DEFAULT_CONFIRMATION_FOOTER

    # === Ledger ===

    async def get_appointments_by_contact(self, contact_id: str) -> list[Appointment]:
        """Confirmed and rescheduled appointments booked from this number."""
        active = [db.LedgerStatus(status.value) for status in ACTIVE_STATUSES]

        async with self._session() as session:
            result = await session.execute(
                select(db.Appointment)
                .where(db.Appointment.status.in_(active))
                .order_by(db.Appointment.id)
            )
            rows = result.scalars().all()

        return [_to_appointment(row) for row in rows if same_contact(row.contact_id, contact_id)]

    async def get_appointment(self, contact_id: str, appointment_id: int) -> Optional[Appointment]:
        """One of the contact's active appointments by id."""
        for appointment in await self.get_appointments_by_contact(contact_id):
            if appointment.id == appointment_id:
                return appointment
        return None

    async def append_appointment(self, record: Appointment) -> int:
        """
        Append a ledger row.

        Returns:
            The id assigned by the database

        Raises:
            CollaboratorFailure: If the row could not be written
        """
        row = db.Appointment(
            contact_id=record.contact_id,
            student_name=record.student_name,
            student_id=record.student_id,
            provider_label=record.provider_label,
            date=record.date,
            time=record.time,
            status=db.LedgerStatus(record.status.value),
            calendar_event_id=record.calendar_event_id,
            fields=dict(record.fields),
        )

        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                appointment_id = row.id
        except SQLAlchemyError as e:
            raise CollaboratorFailure(f"Ledger append failed: {e}") from e

        logger.info(f"Appointment {appointment_id} recorded for {record.contact_id}")
        return appointment_id

    async def set_appointment_status(self, appointment_id: int, status: AppointmentStatus) -> bool:
        """Change the status of exactly one ledger row."""
        async with self._session() as session:
            row = await session.get(db.Appointment, appointment_id)
            if row is None:
                logger.warning(f"Appointment {appointment_id} not found")
                return False
            row.status = db.LedgerStatus(status.value)
            row.updated_at = func.now()

        logger.info(f"Appointment {appointment_id} -> {status.value}")
        return True

    # === Blacklist ===

    async def is_blacklisted(self, contact_id: str) -> bool:
        """True if the number is on the blacklist."""
        async with self._session() as session:
            result = await session.execute(select(db.BlacklistEntry.number))
            numbers = result.scalars().all()
        return any(same_contact(number, contact_id) for number in numbers)

    async def add_to_blacklist(self, contact_id: str, reason: Optional[str] = None) -> bool:
        """Blacklist a number. False if it was already listed."""
        if await self.is_blacklisted(contact_id):
            return False

        async with self._session() as session:
            session.add(db.BlacklistEntry(number=digits_only(contact_id), reason=reason))

        logger.info(f"Blacklisted {contact_id}")
        return True

    async def remove_from_blacklist(self, contact_id: str) -> int:
        """Remove every entry matching the number. Returns how many were removed."""
        removed = 0
        async with self._session() as session:
            result = await session.execute(select(db.BlacklistEntry))
            for entry in result.scalars().all():
                if same_contact(entry.number, contact_id):
                    await session.delete(entry)
                    removed += 1

        if removed:
            logger.info(f"Removed {contact_id} from blacklist")
        return removed


# Singleton
_directory: Optional[Directory] = None


def get_directory() -> Directory:
    """Get singleton Directory."""
    global _directory
    if _directory is None:
        _directory = Directory()
    return _directory
