"""Calendar integration model: a user's Google Calendar identity."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utcnow

calendar_integrations = Table(
    "calendar_integrations",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    ),
    # OAuth refresh token granted with the calendar.events scope
    Column("refresh_token", Text, nullable=False),
    Column("calendar_id", String(255), nullable=False, default="primary"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
)
