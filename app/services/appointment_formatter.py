"""Shape stored appointments and slots into response-ready views."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from app.schemas.appointments import AppointmentView, ParticipantView, TimeSlotView

# Label prefixes used by the joined read queries
PATIENT_PREFIX = "patient__"
DOCTOR_PREFIX = "doctor__"
PATIENT_USER_PREFIX = "patient_user__"
DOCTOR_USER_PREFIX = "doctor_user__"


@dataclass
class PopulatedAppointment:
    """An appointment row with its related rows resolved.

    Every relationship is optional: a join may find nothing when the related
    record was removed.
    """

    appointment: dict[str, Any]
    patient: dict[str, Any] | None = None
    doctor: dict[str, Any] | None = None
    patient_user: dict[str, Any] | None = None
    doctor_user: dict[str, Any] | None = None


def format_date(value: Any) -> str:
    """
    Normalize a stored date to ``YYYY-MM-DD``.

    Returns an empty string for missing or unparseable values instead of raising.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value).date().isoformat()
        except ValueError:
            pass
        try:
            return date.fromisoformat(value[:10]).isoformat()
        except ValueError:
            return ""
    return ""


def full_name(user: Mapping[str, Any] | None) -> str:
    """Join first and last name of a user row."""
    if not user:
        return ""
    parts = [user.get("first_name") or "", user.get("last_name") or ""]
    return " ".join(part for part in parts if part).strip()


def _id(value: Any) -> str | None:
    return str(value) if value is not None else None


def _extract(row: Mapping[str, Any], prefix: str) -> dict[str, Any] | None:
    related = {key[len(prefix) :]: value for key, value in row.items() if key.startswith(prefix)}
    if related.get("id") is None:
        return None
    return related


def split_populated_row(row: Mapping[str, Any]) -> PopulatedAppointment:
    """Split a joined, label-prefixed row into the appointment and its relations."""
    prefixes = (PATIENT_USER_PREFIX, DOCTOR_USER_PREFIX, PATIENT_PREFIX, DOCTOR_PREFIX)
    appointment = {key: value for key, value in row.items() if not key.startswith(prefixes)}
    return PopulatedAppointment(
        appointment=appointment,
        patient=_extract(row, PATIENT_PREFIX),
        doctor=_extract(row, DOCTOR_PREFIX),
        patient_user=_extract(row, PATIENT_USER_PREFIX),
        doctor_user=_extract(row, DOCTOR_USER_PREFIX),
    )


def _participant(
    profile: Mapping[str, Any] | None,
    user: Mapping[str, Any] | None,
) -> ParticipantView | None:
    if not profile:
        return None
    return ParticipantView(
        id=str(profile["id"]),
        user_id=_id(profile.get("user_id")),
        name=full_name(user),
        email=user.get("email") if user else None,
        phone_number=user.get("phone_number") if user else None,
    )


def format_appointment(populated: PopulatedAppointment) -> AppointmentView:
    """Build the response view for an appointment and its participants."""
    appointment = populated.appointment
    reminders = appointment.get("reminders_sent")

    return AppointmentView(
        id=str(appointment["id"]),
        patient_id=_id(appointment.get("patient_id")),
        doctor_id=_id(appointment.get("doctor_id")),
        clinic_id=_id(appointment.get("clinic_id")),
        time_slot_id=_id(appointment.get("time_slot_id")),
        date=format_date(appointment.get("date")),
        start_time=appointment.get("start_time"),
        end_time=appointment.get("end_time"),
        type=appointment.get("type"),
        status=appointment.get("status"),
        reason_for_visit=appointment.get("reason_for_visit"),
        notes=appointment.get("notes"),
        is_virtual=bool(appointment.get("is_virtual", True)),
        video_conference_link=appointment.get("video_conference_link"),
        calendar_event_id=appointment.get("calendar_event_id"),
        reminders_sent=list(reminders) if isinstance(reminders, list) else [],
        created_by=_id(appointment.get("created_by")),
        updated_by=_id(appointment.get("updated_by")),
        created_at=appointment.get("created_at"),
        updated_at=appointment.get("updated_at"),
        cancelled_at=appointment.get("cancelled_at"),
        cancel_reason=appointment.get("cancel_reason"),
        patient_name=full_name(populated.patient_user),
        doctor_name=full_name(populated.doctor_user),
        patient=_participant(populated.patient, populated.patient_user),
        doctor=_participant(populated.doctor, populated.doctor_user),
    )


def format_time_slot(slot: Mapping[str, Any]) -> TimeSlotView:
    """Build the response view for a time slot."""
    return TimeSlotView(
        id=str(slot["id"]),
        doctor_id=_id(slot.get("doctor_id")),
        date=format_date(slot.get("date")),
        start_time=slot.get("start_time"),
        end_time=slot.get("end_time"),
        status=slot.get("status"),
        booked_by_appointment_id=_id(slot.get("booked_by_appointment_id")),
    )
