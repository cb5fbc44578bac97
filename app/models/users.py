"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utcnow

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Profile info
    Column("email", Text, nullable=False, unique=True, index=True),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("phone_number", String(20)),
    # Access control
    Column("role", String(20), nullable=False, default="patient"),
    # Tenant the account belongs to (null for platform admins)
    Column("clinic_id", Uuid, index=True),
    # Account state
    Column("is_active", Boolean, nullable=False, default=True),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint(
        "role IN ('admin', 'staff', 'doctor', 'patient')",
        name="users_role_check",
    ),
)
