"""
Database Models

SQLAlchemy ORM models for the school appointment assistant: the directory
operators maintain by hand (students, teachers, intake questions, settings),
the appointment ledger, the scheduled-message queue and the blacklist.

Multi-valued directory columns are kept as the comma-separated text
operators type in; parsing lives in the directory gateway.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Index, Integer, String, Text,
    Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class LedgerStatus(str, Enum):
    """Appointment ledger status (operator-facing values)."""
    CONFIRMED = "Confirmada"
    CANCELLED = "Cancelada"
    RESCHEDULED = "Reprogramada"


class QueueStatus(str, Enum):
    """Scheduled message status (operator-facing values)."""
    PENDING = "Pendiente"
    SENT = "Enviado"
    ERROR = "Error"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Student(Base, TimestampMixin):
    """
    Student record.

    assigned_teachers holds "Name-Subject, Name-Subject".
    """

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    grade: Mapped[str] = mapped_column(String(50), default="")
    course: Mapped[str] = mapped_column(String(50), default="")
    shift: Mapped[str] = mapped_column(String(50), default="")
    assigned_teachers: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<Student(id='{self.id}', name='{self.name}')>"


class Teacher(Base, TimestampMixin):
    """
    Teacher record with bookable availability.

    modalities: "Presencial, Virtual"
    available_days: "lunes, miércoles"
    available_hours: "08:00-12:00, 14:00"
    """

    __tablename__ = "teachers"
    __table_args__ = (
        Index("idx_teacher_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(String(255), default="")
    modalities: Mapped[str] = mapped_column(Text, default="")
    available_days: Mapped[str] = mapped_column(Text, default="")
    available_hours: Mapped[str] = mapped_column(Text, default="")
    slot_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    meeting_link: Mapped[str] = mapped_column(String(500), default="")

    def __repr__(self) -> str:
        return f"<Teacher(id={self.id}, name='{self.name}', subject='{self.subject}')>"


class FormField(Base):
    """Intake question asked after the time is chosen."""

    __tablename__ = "form_fields"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, default=True)
    order: Mapped[int] = mapped_column(Integer, default=999)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<FormField(id='{self.id}', order={self.order})>"


class AppSetting(Base):
    """Key/value operator settings (e.g. confirmation_footer)."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")


class Appointment(Base, TimestampMixin):
    """
    Appointment ledger row.

    Created once per completed booking; afterwards only status changes.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_contact", "contact_id"),
        Index("idx_appointment_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[str] = mapped_column(String(50), nullable=False)
    student_name: Mapped[str] = mapped_column(String(255), default="")
    student_id: Mapped[str] = mapped_column(String(50), default="")
    provider_label: Mapped[str] = mapped_column(String(255), default="")
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[LedgerStatus] = mapped_column(
        SQLEnum(LedgerStatus, values_callable=_values, native_enum=False),
        default=LedgerStatus.CONFIRMED
    )
    calendar_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    fields: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, contact_id='{self.contact_id}', "
            f"date={self.date} {self.time}, status={self.status.value})>"
        )


class ScheduledMessage(Base, TimestampMixin):
    """
    Outbound message queued by operators.

    scheduled_at is operator text ("DD/MM/YYYY HH:MM[:SS]"), parsed in the
    configured zone when the queue is read.
    """

    __tablename__ = "scheduled_messages"
    __table_args__ = (
        Index("idx_scheduled_message_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    destination: Mapped[str] = mapped_column(String(50), default="")
    text: Mapped[str] = mapped_column(Text, default="")
    media_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    scheduled_at: Mapped[str] = mapped_column(String(50), default="")
    status: Mapped[QueueStatus] = mapped_column(
        SQLEnum(QueueStatus, values_callable=_values, native_enum=False),
        default=QueueStatus.PENDING
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ScheduledMessage(id={self.id}, status={self.status.value})>"


class BlacklistEntry(Base, TimestampMixin):
    """Contact number the assistant never answers."""

    __tablename__ = "blacklist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
