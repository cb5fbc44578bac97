"""Notification model for in-app notifications about scheduling events."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utcnow

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("title", Text, nullable=False),
    Column("message", Text, nullable=False),
    # Related resource, e.g. ("Appointment", <id>)
    Column("related_model", String(50)),
    Column("related_id", Uuid),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("delivery_channels", JSON, nullable=False, default=list),
    # [{"channel": "push", "status": "sent", "sent_at": "...", "error_message": null}]
    Column("delivery_status", JSON, nullable=False, default=list),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint(
        "type IN ('appointment', 'reminder', 'system')",
        name="notifications_type_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_user_read", "user_id", "is_read"),
)
