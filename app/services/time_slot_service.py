"""Time slot lifecycle helpers used by the scheduling service."""

from datetime import date
from uuid import UUID

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.models.time_slots import time_slots
from app.schemas.appointments import TimeSlotStatus

logger = structlog.get_logger(__name__)


class TimeSlotService:
    """Reads and transitions slots inside the caller's transaction.

    Every method takes the session of the enclosing transaction; slot reads
    that precede a reservation lock the row so two bookings cannot both see
    the slot as available.
    """

    async def get_time_slot(self, session: AsyncSession, slot_id: UUID) -> dict | None:
        """Get a slot by ID without locking."""
        result = await session.execute(select(time_slots).where(time_slots.c.id == slot_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def lock_available_slot(
        self,
        session: AsyncSession,
        slot_id: UUID,
        doctor_id: UUID | None = None,
    ) -> dict:
        """
        Lock a slot and check it can be booked.

        Args:
            session: Session of the enclosing transaction
            slot_id: Slot to reserve
            doctor_id: If given, the slot must belong to this doctor

        Returns:
            The locked slot row

        Raises:
            NotFoundException: If the slot does not exist
            ConflictException: If the slot is not available
            BadRequestException: If the slot belongs to another doctor
        """
        query = select(time_slots).where(time_slots.c.id == slot_id).with_for_update()
        result = await session.execute(query)
        row = result.mappings().first()

        if not row:
            raise NotFoundException("Selected time slot not found")

        slot = dict(row)
        self._ensure_bookable(slot, doctor_id)
        return slot

    async def resolve_or_create_slot(
        self,
        session: AsyncSession,
        doctor_id: UUID,
        slot_date: date,
        start_time: str,
        end_time: str,
    ) -> dict:
        """
        Find the doctor's slot starting at the given time, creating it if absent.

        Raises:
            ConflictException: If the slot exists and is not available, or a
                concurrent request created it first
        """
        query = (
            select(time_slots)
            .where(
                time_slots.c.doctor_id == doctor_id,
                time_slots.c.date == slot_date,
                time_slots.c.start_time == start_time,
            )
            .with_for_update()
        )
        result = await session.execute(query)
        row = result.mappings().first()

        if row:
            slot = dict(row)
            self._ensure_bookable(slot, doctor_id)
            return slot

        try:
            result = await session.execute(
                insert(time_slots)
                .values(
                    doctor_id=doctor_id,
                    date=slot_date,
                    start_time=start_time,
                    end_time=end_time,
                    status=TimeSlotStatus.AVAILABLE.value,
                )
                .returning(time_slots)
            )
        except IntegrityError as e:
            raise ConflictException("Selected time slot is already booked") from e

        slot = dict(result.mappings().one())
        logger.info(
            "time_slot_created",
            slot_id=str(slot["id"]),
            doctor_id=str(doctor_id),
            date=slot_date.isoformat(),
            start_time=start_time,
        )
        return slot

    async def book_slot(self, session: AsyncSession, slot_id: UUID, appointment_id: UUID) -> None:
        """Mark a slot booked by an appointment."""
        await session.execute(
            update(time_slots)
            .where(time_slots.c.id == slot_id)
            .values(
                status=TimeSlotStatus.BOOKED.value,
                booked_by_appointment_id=appointment_id,
            )
        )

    async def release_slot(
        self,
        session: AsyncSession,
        slot_id: UUID,
        appointment_id: UUID,
    ) -> bool:
        """
        Make a slot available again.

        Only releases the slot if it is still held by the given appointment, so
        a slot re-booked after a cancellation is left alone.

        Returns:
            True if the slot was released
        """
        result = await session.execute(
            update(time_slots)
            .where(
                time_slots.c.id == slot_id,
                time_slots.c.booked_by_appointment_id == appointment_id,
            )
            .values(
                status=TimeSlotStatus.AVAILABLE.value,
                booked_by_appointment_id=None,
            )
        )
        released = result.rowcount > 0
        if not released:
            logger.info(
                "time_slot_not_held",
                slot_id=str(slot_id),
                appointment_id=str(appointment_id),
            )
        return released

    @staticmethod
    def _ensure_bookable(slot: dict, doctor_id: UUID | None) -> None:
        if doctor_id is not None and slot["doctor_id"] != doctor_id:
            raise BadRequestException("Selected time slot does not belong to this doctor")
        if slot["status"] != TimeSlotStatus.AVAILABLE.value:
            raise ConflictException("Selected time slot is already booked")
