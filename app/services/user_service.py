"""User lookups for authentication and authorization."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.doctors import doctors
from app.models.patients import patients
from app.models.users import users


class UserService:
    """Service for user operations."""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> dict | None:
        """
        Get a user together with the patient or doctor profile they own.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            User data with ``patient_id`` and ``doctor_id`` keys (None when the
            user has no such profile), or None if the user does not exist
        """
        query = (
            select(
                users,
                patients.c.id.label("patient_id"),
                doctors.c.id.label("doctor_id"),
            )
            .select_from(
                users.outerjoin(patients, patients.c.user_id == users.c.id).outerjoin(
                    doctors, doctors.c.user_id == users.c.id
                )
            )
            .where(users.c.id == user_id)
        )
        result = await db.execute(query)
        user = result.mappings().first()
        return dict(user) if user else None
