"""Appointment schemas for request/response validation."""

import datetime as dt
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CHECKED_IN = "checked-in"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentType(str, Enum):
    """Appointment visit type enumeration."""

    INITIAL = "initial"
    FOLLOW_UP = "follow-up"
    VIRTUAL = "virtual"
    IN_PERSON = "in-person"


class TimeSlotStatus(str, Enum):
    """Time slot lifecycle enumeration."""

    AVAILABLE = "available"
    BOOKED = "booked"
    CANCELLED = "cancelled"


class AppointmentSortField(str, Enum):
    """Columns the appointment list can be ordered by."""

    DATE = "date"
    START_TIME = "start_time"
    STATUS = "status"
    TYPE = "type"
    CREATED_AT = "created_at"


class AppointmentCreate(BaseModel):
    """Schema for creating a new appointment.

    Either ``time_slot_id`` or the ``date``/``start_time``/``end_time`` triple
    must be supplied; the latter lets the service create the slot itself.
    """

    patient_id: UUID | None = None
    doctor_id: UUID
    time_slot_id: UUID | None = None
    date: dt.date | None = None
    start_time: str | None = Field(None, pattern=TIME_PATTERN)
    end_time: str | None = Field(None, pattern=TIME_PATTERN)
    type: AppointmentType = AppointmentType.VIRTUAL
    reason_for_visit: str = Field(..., min_length=1, max_length=1000)
    notes: str | None = Field(None, max_length=2000)
    is_virtual: bool = True

    @model_validator(mode="after")
    def validate_slot_reference(self) -> "AppointmentCreate":
        """Require a slot id or a complete window, and a window that moves forward."""
        if self.time_slot_id is None and not (self.date and self.start_time and self.end_time):
            raise ValueError("Either time_slot_id or date, start_time and end_time are required")
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment."""

    status: AppointmentStatus | None = None
    type: AppointmentType | None = None
    notes: str | None = Field(None, max_length=2000)
    reason_for_visit: str | None = Field(None, min_length=1, max_length=1000)
    is_virtual: bool | None = None
    time_slot_id: UUID | None = None
    cancel_reason: str | None = Field(None, max_length=500)


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering, sorting and pagination."""

    status: AppointmentStatus | None = None
    type: AppointmentType | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    clinic_id: UUID | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    search: str | None = Field(None, max_length=200)
    sort: AppointmentSortField = AppointmentSortField.DATE
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class ParticipantView(BaseModel):
    """Flattened patient or doctor profile joined with its user account."""

    id: str
    user_id: str | None = None
    name: str = ""
    email: str | None = None
    phone_number: str | None = None


class AppointmentView(BaseModel):
    """Response-ready appointment with denormalized participant names."""

    id: str
    patient_id: str | None = None
    doctor_id: str | None = None
    clinic_id: str | None = None
    time_slot_id: str | None = None
    date: str = ""
    start_time: str | None = None
    end_time: str | None = None
    type: str | None = None
    status: str | None = None
    reason_for_visit: str | None = None
    notes: str | None = None
    is_virtual: bool = True
    video_conference_link: str | None = None
    calendar_event_id: str | None = None
    reminders_sent: list[dict[str, Any]] = Field(default_factory=list)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    cancelled_at: dt.datetime | None = None
    cancel_reason: str | None = None
    patient_name: str = ""
    doctor_name: str = ""
    patient: ParticipantView | None = None
    doctor: ParticipantView | None = None


class TimeSlotView(BaseModel):
    """Response-ready time slot."""

    id: str
    doctor_id: str | None = None
    date: str = ""
    start_time: str | None = None
    end_time: str | None = None
    status: str | None = None
    booked_by_appointment_id: str | None = None


class AppointmentPage(BaseModel):
    """One page of formatted appointments plus pagination metadata."""

    appointments: list[AppointmentView]
    total: int
    total_pages: int
    current_page: int


class AppointmentOutcome(BaseModel):
    """Result of a mutating operation.

    ``warnings`` collects failures from best-effort steps that ran after the
    transaction committed (calendar link creation, notifications).
    """

    appointment: AppointmentView
    warnings: list[str] = Field(default_factory=list)
