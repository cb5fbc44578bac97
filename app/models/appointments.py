"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utcnow

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("clinic_id", Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), index=True),
    Column("time_slot_id", Uuid, ForeignKey("time_slots.id"), nullable=False),
    # Appointment window (copied from the slot)
    Column("date", Date, nullable=False, index=True),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    # Visit details
    Column("type", String(20), nullable=False, default="virtual"),
    Column("status", String(20), nullable=False, default="scheduled", index=True),
    Column("reason_for_visit", Text, nullable=False),
    Column("notes", Text),
    # Virtual visit
    Column("is_virtual", Boolean, nullable=False, default=True),
    Column("video_conference_link", Text),
    Column("calendar_event_id", Text),
    # Reminder markers: [{"type": "push", "sent_at": "...", "status": "sent"}]
    Column("reminders_sent", JSON, nullable=False, default=list),
    # Audit fields
    Column("created_by", Uuid),
    Column("updated_by", Uuid),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    Column("cancelled_at", DateTime(timezone=True)),
    Column("cancel_reason", Text),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'checked-in', 'in-progress', 'completed', 'cancelled', 'no-show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "type IN ('initial', 'follow-up', 'virtual', 'in-person')",
        name="appointments_type_check",
    ),
    Index("idx_appointments_date_status", "date", "status"),
)
