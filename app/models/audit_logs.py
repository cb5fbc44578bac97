"""Audit log model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import metadata, utcnow

# Append-only; rows are never updated or deleted by the application
audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Null for system actors (scheduled jobs)
    Column("user_id", Uuid, index=True),
    Column("clinic_id", Uuid, index=True),
    Column("action", String(50), nullable=False, index=True),
    Column("resource", String(50), nullable=False),
    Column("resource_id", Uuid),
    Column("details", JSON),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("timestamp", DateTime(timezone=True), nullable=False, default=utcnow, index=True),
    Index("idx_audit_logs_user_action_ts", "user_id", "action", "timestamp"),
    Index("idx_audit_logs_resource", "resource", "resource_id"),
)
