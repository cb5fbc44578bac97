"""Audit log schemas."""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VIEW = "view"
    LOGIN = "login"
    LOGOUT = "logout"


class AuditLogCreate(BaseModel):
    """One audit entry to append."""

    user_id: UUID | None = None
    clinic_id: UUID | None = None
    action: AuditAction
    resource: str = Field(..., min_length=1, max_length=50)
    resource_id: UUID | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
