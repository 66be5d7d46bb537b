"""Dialogue state machine."""

from enum import Enum
from typing import Set


class DialogState(str, Enum):
    """States of a contact's appointment conversation."""

    # Initial, and target of every reset
    IDLE = "idle"

    # Booking branch
    COLLECTING_STUDENT_ID = "collecting_student_id"
    COLLECTING_TEACHER = "collecting_teacher"
    COLLECTING_MODALITY = "collecting_modality"
    COLLECTING_DATE = "collecting_date"
    COLLECTING_TIME = "collecting_time"
    COLLECTING_FORM_FIELD = "collecting_form_field"

    # Cancellation branch
    AWAITING_CANCEL_ID = "awaiting_cancel_id"
    SELECTING_APPOINTMENT_TO_CANCEL = "selecting_appointment_to_cancel"


# Valid state transitions (IDLE is always reachable through a reset)
VALID_TRANSITIONS: dict[DialogState, Set[DialogState]] = {
    DialogState.IDLE: {
        DialogState.COLLECTING_STUDENT_ID,
        DialogState.AWAITING_CANCEL_ID,
    },
    DialogState.COLLECTING_STUDENT_ID: {
        DialogState.COLLECTING_STUDENT_ID,
        DialogState.COLLECTING_TEACHER,
    },
    DialogState.COLLECTING_TEACHER: {
        DialogState.COLLECTING_TEACHER,
        DialogState.COLLECTING_MODALITY,
        DialogState.COLLECTING_DATE,
    },
    DialogState.COLLECTING_MODALITY: {
        DialogState.COLLECTING_MODALITY,
        DialogState.COLLECTING_DATE,
    },
    DialogState.COLLECTING_DATE: {
        DialogState.COLLECTING_DATE,
        DialogState.COLLECTING_TIME,
    },
    DialogState.COLLECTING_TIME: {
        DialogState.COLLECTING_TIME,
        DialogState.COLLECTING_FORM_FIELD,
    },
    DialogState.COLLECTING_FORM_FIELD: {
        DialogState.COLLECTING_FORM_FIELD,
    },
    DialogState.AWAITING_CANCEL_ID: {
        DialogState.AWAITING_CANCEL_ID,
        DialogState.SELECTING_APPOINTMENT_TO_CANCEL,
    },
    DialogState.SELECTING_APPOINTMENT_TO_CANCEL: {
        DialogState.SELECTING_APPOINTMENT_TO_CANCEL,
    },
}


def can_transition(from_state: DialogState, to_state: DialogState) -> bool:
    """Check if a state transition is valid."""
    if to_state == DialogState.IDLE:
        return True
    return to_state in VALID_TRANSITIONS.get(from_state, set())

