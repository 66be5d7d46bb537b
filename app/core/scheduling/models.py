"""
Scheduling domain models.

Directory records (students, teachers, form fields), ledger appointments and
the per-contact conversation session with its typed draft. Everything that is
stored in Redis round-trips through to_dict()/from_dict().
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from app.core.scheduling.state import DialogState


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class AppointmentStatus(str, Enum):
    """Ledger status of a booking (values are what operators see)."""

    CONFIRMED = "Confirmada"
    CANCELLED = "Cancelada"
    RESCHEDULED = "Reprogramada"


ACTIVE_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.RESCHEDULED)


# === Directory ===


@dataclass
class ProviderRef:
    """A teacher assigned to a student, as listed on the student record."""

    name: str
    subject: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "subject": self.subject}

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderRef":
        return cls(name=data.get("name", ""), subject=data.get("subject", ""))


@dataclass
class Subject:
    """A student."""

    id: str
    name: str
    grade: str = ""
    course: str = ""
    shift: str = ""
    assigned_providers: list[ProviderRef] = field(default_factory=list)


@dataclass
class Provider:
    """A teacher offering bookable time on a calendar."""

    name: str
    calendar_id: str
    subject: str = ""
    modalities: list[str] = field(default_factory=list)
    available_weekdays: list[str] = field(default_factory=list)
    availability: list[str] = field(default_factory=list)  # "08:00-12:00" or "14:00"
    slot_duration_minutes: int = 30
    meeting_link: str = ""

    @property
    def label(self) -> str:
        """Ledger label, e.g. "Ana Ruiz (Matemáticas)"."""
        return f"{self.name} ({self.subject})" if self.subject else self.name


@dataclass
class FormFieldSpec:
    """One externally configured intake question."""

    id: str
    question: str
    required: bool = True
    order: int = 999

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "required": self.required,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FormFieldSpec":
        return cls(
            id=data["id"],
            question=data["question"],
            required=data.get("required", True),
            order=data.get("order", 999),
        )


@dataclass
class AvailableDate:
    """A concrete candidate date offered for a teacher."""

    date: date
    display: str  # "lunes 20 Oct"
    weekday: str  # weekday name as configured on the teacher

    @property
    def day(self) -> int:
        return self.date.day

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "display": self.display,
            "weekday": self.weekday,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AvailableDate":
        return cls(
            date=date.fromisoformat(data["date"]),
            display=data["display"],
            weekday=data["weekday"],
        )


@dataclass
class SlotAvailability:
    """Free start times ("HH:MM") for one teacher and date."""

    slots: list[str]
    duration_minutes: int


# === Ledger ===


@dataclass
class Appointment:
    """A persisted booking."""

    id: int
    contact_id: str
    student_name: str
    student_id: str
    provider_label: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    calendar_event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def provider_name(self) -> str:
        """Leading name segment of the provider label.

        Two teachers whose names only differ inside the parenthesis cannot be
        told apart here.
        """
        return self.provider_label.split("(", 1)[0].strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "student_name": self.student_name,
            "student_id": self.student_id,
            "provider_label": self.provider_label,
            "date": self.date,
            "time": self.time,
            "status": self.status.value,
            "calendar_event_id": self.calendar_event_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "fields": dict(self.fields),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Appointment":
        return cls(
            id=int(data["id"]),
            contact_id=data.get("contact_id", ""),
            student_name=data.get("student_name", ""),
            student_id=data.get("student_id", ""),
            provider_label=data.get("provider_label", ""),
            date=data.get("date", ""),
            time=data.get("time", ""),
            status=AppointmentStatus(data.get("status", AppointmentStatus.CONFIRMED.value)),
            calendar_event_id=data.get("calendar_event_id"),
            created_at=_parse_datetime(data.get("created_at")),
            fields=data.get("fields") or {},
        )


# === Session ===


@dataclass
class AppointmentDraft:
    """
    In-progress booking accumulated across the booking states.

    Each phase fills its own fields; nothing here is persisted to the ledger
    until the completion step.
    """

    # Student phase
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    grade: str = ""
    course: str = ""
    providers: list[ProviderRef] = field(default_factory=list)

    # Teacher / modality phase
    teacher_name: Optional[str] = None
    subject: str = ""
    calendar_id: Optional[str] = None
    modalities: list[str] = field(default_factory=list)
    modality: Optional[str] = None
    meeting_link: str = ""

    # Date / time phase
    available_dates: list[AvailableDate] = field(default_factory=list)
    selected_date: Optional[date] = None
    selected_display_label: Optional[str] = None
    available_slots: list[str] = field(default_factory=list)
    time: Optional[str] = None
    duration_minutes: Optional[int] = None

    # Intake phase
    form_fields: list[FormFieldSpec] = field(default_factory=list)
    current_field_index: int = 0
    collected_fields: dict[str, str] = field(default_factory=dict)

    # Retries for the current question
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "grade": self.grade,
            "course": self.course,
            "providers": [p.to_dict() for p in self.providers],
            "teacher_name": self.teacher_name,
            "subject": self.subject,
            "calendar_id": self.calendar_id,
            "modalities": list(self.modalities),
            "modality": self.modality,
            "meeting_link": self.meeting_link,
            "available_dates": [d.to_dict() for d in self.available_dates],
            "selected_date": self.selected_date.isoformat() if self.selected_date else None,
            "selected_display_label": self.selected_display_label,
            "available_slots": list(self.available_slots),
            "time": self.time,
            "duration_minutes": self.duration_minutes,
            "form_fields": [f.to_dict() for f in self.form_fields],
            "current_field_index": self.current_field_index,
            "collected_fields": dict(self.collected_fields),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppointmentDraft":
        selected = data.get("selected_date")
        return cls(
            student_id=data.get("student_id"),
            student_name=data.get("student_name"),
            grade=data.get("grade", ""),
            course=data.get("course", ""),
            providers=[ProviderRef.from_dict(p) for p in data.get("providers", [])],
            teacher_name=data.get("teacher_name"),
            subject=data.get("subject", ""),
            calendar_id=data.get("calendar_id"),
            modalities=data.get("modalities", []),
            modality=data.get("modality"),
            meeting_link=data.get("meeting_link", ""),
            available_dates=[AvailableDate.from_dict(d) for d in data.get("available_dates", [])],
            selected_date=date.fromisoformat(selected) if selected else None,
            selected_display_label=data.get("selected_display_label"),
            available_slots=data.get("available_slots", []),
            time=data.get("time"),
            duration_minutes=data.get("duration_minutes"),
            form_fields=[FormFieldSpec.from_dict(f) for f in data.get("form_fields", [])],
            current_field_index=data.get("current_field_index", 0),
            collected_fields=data.get("collected_fields", {}),
            attempts=data.get("attempts", 0),
        )


@dataclass
class CancellationDraft:
    """State of the cancellation branch."""

    student_id: Optional[str] = None
    appointments: list[Appointment] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "appointments": [a.to_dict() for a in self.appointments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CancellationDraft":
        return cls(
            student_id=data.get("student_id"),
            appointments=[Appointment.from_dict(a) for a in data.get("appointments", [])],
        )


@dataclass
class Session:
    """
    Conversation session for one contact, stored in Redis.

    Exactly one state at a time. Message history survives resets; the drafts
    do not.
    """

    contact_id: str
    state: DialogState = DialogState.IDLE
    draft: AppointmentDraft = field(default_factory=AppointmentDraft)
    cancellation: CancellationDraft = field(default_factory=CancellationDraft)
    last_activity: Optional[datetime] = None

    history: list[dict] = field(default_factory=list)
    max_history: int = 20

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_idle(self) -> bool:
        return self.state == DialogState.IDLE

    def reset(self) -> None:
        """Return to idle with empty drafts."""
        self.state = DialogState.IDLE
        self.draft = AppointmentDraft()
        self.cancellation = CancellationDraft()
        self.last_activity = None

    def touch(self, now: datetime) -> None:
        """Record activity for the inactivity timeout."""
        self.last_activity = now

    def add_message(self, role: str, content: str) -> None:
        """Append to history, keeping the most recent max_history entries."""
        self.history.append({"role": role, "content": content})
        if len(self.history) > self.max_history:
            self.history = self.history[-self.max_history:]

    def to_json(self) -> str:
        """Convert to JSON string for Redis storage."""
        data: dict[str, Any] = {
            "contact_id": self.contact_id,
            "state": self.state.value,
            "draft": self.draft.to_dict(),
            "cancellation": self.cancellation.to_dict(),
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "history": self.history,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, json_str: str) -> "Session":
        """Create from JSON string."""
        data = json.loads(json_str)
        return cls(
            contact_id=data["contact_id"],
            state=DialogState(data.get("state", DialogState.IDLE.value)),
            draft=AppointmentDraft.from_dict(data.get("draft") or {}),
            cancellation=CancellationDraft.from_dict(data.get("cancellation") or {}),
            last_activity=_parse_datetime(data.get("last_activity")),
            history=data.get("history", []),
            created_at=_parse_datetime(data.get("created_at")) or _utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or _utcnow(),
        )
