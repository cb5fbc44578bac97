"""Database models."""

from app.models.appointments import appointments
from app.models.audit_logs import audit_logs
from app.models.base import metadata
from app.models.calendar_integrations import calendar_integrations
from app.models.clinics import clinics
from app.models.doctors import doctors
from app.models.notifications import notifications
from app.models.patients import patients
from app.models.push_tokens import push_tokens
from app.models.time_slots import time_slots
from app.models.users import users

__all__ = [
    "appointments",
    "audit_logs",
    "calendar_integrations",
    "clinics",
    "doctors",
    "metadata",
    "notifications",
    "patients",
    "push_tokens",
    "time_slots",
    "users",
]
