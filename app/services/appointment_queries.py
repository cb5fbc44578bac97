"""Joined read queries for appointments and their participants."""

from sqlalchemy import Select, select
from sqlalchemy.sql import FromClause

from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.patients import patients
from app.models.users import users
from app.services.appointment_formatter import (
    DOCTOR_PREFIX,
    DOCTOR_USER_PREFIX,
    PATIENT_PREFIX,
    PATIENT_USER_PREFIX,
)

patient_user = users.alias("patient_user")
doctor_user = users.alias("doctor_user")

_PARTICIPANT_USER_COLUMNS = ("id", "email", "first_name", "last_name", "phone_number")


def _prefixed(table: FromClause, prefix: str, names: tuple[str, ...] | None = None) -> list:
    columns = table.c if names is None else [table.c[name] for name in names]
    return [column.label(f"{prefix}{column.name}") for column in columns]


def populated_appointment_query() -> Select:
    """
    Select appointments outer-joined with patient, doctor and their user accounts.

    Related columns are labelled with the formatter's prefixes so a row can be
    passed straight to ``split_populated_row``.
    """
    joined = (
        appointments.outerjoin(patients, appointments.c.patient_id == patients.c.id)
        .outerjoin(doctors, appointments.c.doctor_id == doctors.c.id)
        .outerjoin(patient_user, patients.c.user_id == patient_user.c.id)
        .outerjoin(doctor_user, doctors.c.user_id == doctor_user.c.id)
    )
    return select(
        appointments,
        *_prefixed(patients, PATIENT_PREFIX, ("id", "user_id", "clinic_id")),
        *_prefixed(doctors, DOCTOR_PREFIX, ("id", "user_id", "clinic_id", "specialization")),
        *_prefixed(patient_user, PATIENT_USER_PREFIX, _PARTICIPANT_USER_COLUMNS),
        *_prefixed(doctor_user, DOCTOR_USER_PREFIX, _PARTICIPANT_USER_COLUMNS),
    ).select_from(joined)
