"""
Reply templates for the booking and cancellation flows.

All contact-facing text lives here; times are always shown in 12-hour
format.
"""

from datetime import date
from typing import Optional, Sequence

from app.core.scheduling.models import (
    Appointment,
    AvailableDate,
    FormFieldSpec,
    ProviderRef,
    Subject,
)
from app.core.scheduling.timeutils import format_12h

RESTART_HINT = "Escribe 'agendar cita' para intentar nuevamente."

FIELD_ICONS = {"nombre": "👤", "documento": "📄", "email": "📧", "objetivo": "🎯"}


def _numbered(options: Sequence[str]) -> str:
    return "\n".join(f"{i}. {option}" for i, option in enumerate(options, 1))


def _attempt_line(attempt: int, max_attempts: int) -> str:
    return f"⚠️ Intento {attempt} de {max_attempts}."


# === Flow control ===


def start_booking() -> str:
    return (
        "📚 *Sistema de Agendamiento de Citas*\n\n"
        "Indícame el número de matricula del estudiante para proceder a agendar "
        "tu cita con un docente.\n\n"
        "_Escribe 'cancelar' en cualquier momento para salir del proceso._"
    )


def timed_out() -> str:
    return (
        "⏱️ Tu proceso de agendamiento fue cancelado por inactividad.\n\n"
        "Para iniciar nuevamente, escribe 'agendar cita'."
    )


def aborted() -> str:
    return (
        "❌ Proceso cancelado.\n\n"
        "Si deseas agendar una cita, escribe 'agendar cita'. ¡Estamos para ayudarte!"
    )


def retry_ceiling(what: str, max_attempts: int) -> str:
    """Final notice when the attempts for one question are used up."""
    return (
        f"❌ No pude validar {what} después de {max_attempts} intentos.\n\n"
        f"El proceso ha sido cancelado. {RESTART_HINT}"
    )


def generic_error() -> str:
    return (
        "Ocurrió un problema al procesar tu solicitud. "
        "Por favor intenta de nuevo escribiendo \"agendar cita\"."
    )


# === Student / teacher / modality ===


def student_not_found(student_id: str, attempt: int, max_attempts: int) -> str:
    return (
        f"❌ No encontré un estudiante con ID: {student_id}\n\n"
        f"{_attempt_line(attempt, max_attempts)} Por favor verifica el número de matrícula."
    )


def student_retry_ceiling(max_attempts: int) -> str:
    return (
        retry_ceiling("el ID del estudiante", max_attempts)
        + "\n\nSi necesitas ayuda, contacta al colegio."
    )


def student_without_teachers(student_name: str) -> str:
    return (
        f"❌ El estudiante {student_name} no tiene docentes asignados.\n\n"
        "Contacta a la institución para más información."
    )


def teacher_list(subject: Subject, providers: Sequence[ProviderRef]) -> str:
    lines = [
        f"👨‍🎓 El estudiante *{subject.name}* pertenece a:",
        "",
        f"🎓 Grado: {subject.grade}",
        f"🏫 Curso: {subject.course}",
        f"🕰️ Jornada: {subject.shift}",
        "",
        "👨‍🏫 *Docentes asignados:*",
    ]
    for i, ref in enumerate(providers, 1):
        suffix = f" - {ref.subject}" if ref.subject else ""
        lines.append(f"{i}. {ref.name}{suffix}")
    lines.append("")
    lines.append("❓ ¿Con cuál docente desea agendar una cita?")
    return "\n".join(lines)


def teacher_not_found(providers: Sequence[ProviderRef], attempt: int, max_attempts: int) -> str:
    return (
        "❌ No encontré ese docente.\n\n"
        f"{_attempt_line(attempt, max_attempts)}\n\n"
        f"Docentes disponibles:\n{_numbered([p.name for p in providers])}"
    )


def teacher_not_configured(teacher_name: str) -> str:
    return f"❌ El docente {teacher_name} no está configurado en el sistema. Contacta al colegio."


def teacher_without_modalities(teacher_name: str) -> str:
    return f"❌ El docente {teacher_name} no tiene modalidades de cita configuradas. Contacta al colegio."


def teacher_without_dates(teacher_name: str) -> str:
    return f"❌ El docente {teacher_name} no tiene fechas disponibles configuradas. Contacta al colegio."


def modality_list(teacher_name: str, modalities: Sequence[str]) -> str:
    return (
        f"👨‍🏫 El docente {teacher_name} tiene disponibilidad:\n\n"
        f"{_numbered(modalities)}\n\n"
        "❓ ¿Cuál modalidad de cita prefieres?"
    )


def modality_invalid(modalities: Sequence[str], attempt: int, max_attempts: int) -> str:
    return (
        "❌ Modalidad no válida.\n\n"
        f"{_attempt_line(attempt, max_attempts)}\n\n"
        f"Opciones: {', '.join(modalities)}"
    )


# === Date / time ===


def date_list(modality: str, teacher_name: str, dates: Sequence[AvailableDate]) -> str:
    return (
        f"✅ Cita *{modality}* con {teacher_name}\n\n"
        f"📅 Fechas disponibles:\n{_numbered([d.display for d in dates])}\n\n"
        "☀️ ¿Qué fecha prefieres?"
    )


def date_invalid(dates: Sequence[AvailableDate], attempt: int, max_attempts: int) -> str:
    return (
        "❌ Fecha no válida.\n\n"
        f"{_attempt_line(attempt, max_attempts)}\n\n"
        f"Fechas disponibles:\n{_numbered([d.display for d in dates])}"
    )


def no_slots(display: str) -> str:
    return f"❌ No hay horarios disponibles para {display}.\n\n📅 Por favor elige otra fecha."


def slot_list(display: str, duration_minutes: int, slots: Sequence[str]) -> str:
    listed = "\n".join(f"• {format_12h(slot)}" for slot in slots)
    return (
        f"⏰ Horarios disponibles para *{display}* (citas de {duration_minutes} min):\n\n"
        f"{listed}\n\n"
        "❓ ¿Qué hora prefieres?"
    )


def time_unavailable(slots: Sequence[str], attempt: int, max_attempts: int) -> str:
    return (
        "❌ Esa hora no está disponible. Indica una hora como 10:00 AM o 02:00 PM.\n\n"
        f"{_attempt_line(attempt, max_attempts)}\n\n"
        f"Opciones: {', '.join(format_12h(slot) for slot in slots)}"
    )


# === Intake ===


def field_question(field: FormFieldSpec) -> str:
    if field.required:
        return field.question
    return f"{field.question}\n\n_(Opcional: escribe 'omitir' para saltar)_"


def invalid_email() -> str:
    return "❌ Por favor proporciona un email válido (ejemplo: usuario@ejemplo.com)"


def empty_answer(field: FormFieldSpec) -> str:
    return f"❌ Esta respuesta es obligatoria.\n\n{field.question}"


# === Completion ===


def confirmation(
    appointment_id: Optional[int],
    student_name: str,
    grade: str,
    course: str,
    fields: Sequence[FormFieldSpec],
    collected: dict[str, str],
    teacher_name: str,
    subject: str,
    modality: str,
    day_label: str,
    day: date,
    time: str,
    meeting_link: str,
    footer: str,
) -> str:
    """Booking confirmation with every collected answer."""
    lines = ["✅ *¡Cita confirmada!*", ""]
    if appointment_id is not None:
        lines.append(f"📋 ID de Cita: {appointment_id}")
    else:
        lines.append(
            "⚠️ No pudimos registrar el número de tu cita. "
            "Si necesitas modificarla, contacta al colegio."
        )
    lines.append("")
    lines.append(f"👨‍🎓 Estudiante: {student_name}")
    lines.append(f"🎓 Grado {grade} - Curso {course}")
    lines.append("")

    for field in fields:
        icon = FIELD_ICONS.get(field.id, "•")
        lines.append(f"{icon} {field.id}: {collected.get(field.id, '')}")

    lines.append("")
    lines.append(f"👨‍🏫 Docente: {teacher_name}")
    lines.append(f"📚 Materia: {subject}")
    lines.append(f"💻 Modalidad: {modality}")
    lines.append("")
    lines.append(f"📅 Fecha: {day_label} ({day.isoformat()})")
    lines.append(f"⏰ Hora: {format_12h(time)}")

    if "virtual" in (modality or "").lower():
        lines.append("")
        if meeting_link:
            lines.append("📹 *Reunión Virtual:*")
            lines.append(meeting_link)
        else:
            lines.append(
                "⚠️ El docente no tiene link de reunión configurado. "
                "Contacta directamente al docente."
            )

    lines.append("")
    lines.append(footer)
    return "\n".join(lines)


def event_summary(collected: dict[str, str], student_name: str) -> str:
    return f"Cita: {collected.get('nombre') or 'Padre'} - Estudiante: {student_name}"


def event_description(
    student_name: str,
    student_id: str,
    grade: str,
    course: str,
    teacher_name: str,
    subject: str,
    modality: str,
    collected: dict[str, str],
) -> str:
    lines = [
        f"Estudiante: {student_name} (ID: {student_id})",
        f"Grado: {grade} - Curso: {course}",
        f"Docente: {teacher_name} ({subject})",
        f"Modalidad: {modality}",
    ]
    lines.extend(f"{key}: {value}" for key, value in collected.items())
    return "\n".join(lines) + "\n"


# === Cancellation / listing / rescheduling ===

NEW_BOOKING_HINT = "¿Deseas agendar otra cita? Escribe \"agendar cita\""


def _appointment_when(appointment: Appointment) -> str:
    return f"{appointment.date} a las {format_12h(appointment.time)}"


def cancel_prompt() -> str:
    return (
        "Indica el número de matricula del estudiante cuya cita deseas cancelar.\n\n"
        "_Escribe el ID del estudiante o \"salir\" para cancelar._"
    )


def cancel_id_too_short() -> str:
    return (
        "Por favor indica el número de matricula del estudiante.\n\n"
        "_Escribe el ID o \"salir\" para cancelar._"
    )


def no_appointments_for_student(student_id: str) -> str:
    return (
        f"No encontré citas para el estudiante con ID {student_id}.\n\n"
        "Verifica el número e intenta de nuevo.\n\n"
        "_Escribe otro ID o \"salir\" para cancelar._"
    )


def appointment_choice(appointments: Sequence[Appointment]) -> str:
    lines = [
        f"📅 El estudiante {appointments[0].student_name} tiene {len(appointments)} citas:",
        "",
    ]
    for i, appointment in enumerate(appointments, 1):
        lines.append(f"{i}. {_appointment_when(appointment)}")
        lines.append(f"   👨‍🏫 {appointment.provider_label}")
        lines.append("")
    lines.append(
        "¿Cuál deseas cancelar? Escribe el número (1, 2, etc.) o \"todas\" para cancelar todas."
    )
    return "\n".join(lines)


def selection_out_of_range(count: int) -> str:
    return (
        f"Por favor escribe un número del 1 al {count}, o \"todas\" para cancelar todas.\n\n"
        "_O \"salir\" para cancelar._"
    )


def cancelled_one(appointment: Appointment) -> str:
    return (
        "❌ Cita cancelada exitosamente.\n\n"
        f"👨‍🎓 Estudiante: {appointment.student_name} (ID: {appointment.student_id})\n"
        f"📅 Era el {_appointment_when(appointment)}\n"
        f"👨‍🏫 {appointment.provider_label}\n\n"
        f"{NEW_BOOKING_HINT}"
    )


def cancelled_many(appointments: Sequence[Appointment]) -> str:
    return (
        f"❌ Se cancelaron {len(appointments)} citas del estudiante "
        f"{appointments[0].student_name}.\n\n{NEW_BOOKING_HINT}"
    )


def no_appointments() -> str:
    return "No tienes citas programadas próximamente."


def appointment_list(appointments: Sequence[Appointment]) -> str:
    lines = ["📅 Tus Citas Confirmadas:", ""]
    for i, appointment in enumerate(appointments, 1):
        lines.append(f"{i}. 👨‍🎓 {appointment.student_name} (ID: {appointment.student_id})")
        lines.append(f"   📅 {_appointment_when(appointment)}")
        lines.append(f"   👨‍🏫 {appointment.provider_label}")
        lines.append("")
    lines.append("Para cancelar, escribe: \"cancelar cita\" y luego el ID del estudiante.")
    return "\n".join(lines)


def reschedule_missing_id() -> str:
    return "Indica el ID de la cita a reprogramar. Usa \"mis citas\" para ver tus citas."


def reschedule_not_found(appointment_id: int) -> str:
    return f"No encontré la cita {appointment_id}. Verifica el ID con \"mis citas\"."


def rescheduled(appointment: Appointment) -> str:
    return (
        f"🔄 Cita {appointment.id} marcada para reprogramar.\n\n"
        f"📅 Era el {_appointment_when(appointment)}\n"
        f"👨‍🏫 {appointment.provider_label}\n"
        f"👨‍🎓 Estudiante: {appointment.student_name}\n\n"
        "Para agendar la nueva fecha, escribe \"agendar cita\" y sigue el proceso."
    )
