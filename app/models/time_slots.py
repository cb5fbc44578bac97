"""Time slot model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    UniqueConstraint,
    Uuid,
)

from app.models.base import metadata, utcnow

time_slots = Table(
    "time_slots",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    # Slot window (HH:MM strings on a calendar date)
    Column("date", Date, nullable=False, index=True),
    Column("start_time", String(5), nullable=False),
    Column("end_time", String(5), nullable=False),
    # Lifecycle
    Column("status", String(20), nullable=False, default="available", index=True),
    # Appointment currently holding the slot; no FK to avoid a cycle with appointments
    Column("booked_by_appointment_id", Uuid, nullable=True),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint(
        "status IN ('available', 'booked', 'cancelled')",
        name="time_slots_status_check",
    ),
    CheckConstraint("end_time > start_time", name="time_slots_window_check"),
    UniqueConstraint("doctor_id", "date", "start_time", name="unique_doctor_slot_start"),
    Index("idx_time_slots_doctor_date_status", "doctor_id", "date", "status"),
)
