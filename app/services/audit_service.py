"""Append-only audit trail."""

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_logs import audit_logs
from app.schemas.audit import AuditLogCreate

logger = structlog.get_logger(__name__)


class AuditLogService:
    """Writes audit entries through the caller's session.

    Entries share the caller's transaction: if it rolls back, so do they.
    """

    async def record(self, session: AsyncSession, entries: list[AuditLogCreate]) -> None:
        """
        Append audit entries.

        Args:
            session: Session of the enclosing transaction
            entries: Entries to append
        """
        if not entries:
            return

        rows = [
            {
                "user_id": entry.user_id,
                "clinic_id": entry.clinic_id,
                "action": entry.action.value,
                "resource": entry.resource,
                "resource_id": entry.resource_id,
                "details": to_jsonable_python(entry.details),
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
            }
            for entry in entries
        ]
        await session.execute(insert(audit_logs), rows)

        logger.debug(
            "audit_entries_recorded",
            count=len(rows),
            resources=[f"{entry.resource}:{entry.resource_id}" for entry in entries],
        )
