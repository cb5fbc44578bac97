"""Appointment scheduling service."""

import math
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, settings
from app.core.exceptions import BadRequestException, NotFoundException
from app.core.redis_client import CacheManager
from app.core.side_effects import AdvisoryPhase
from app.database import unit_of_work
from app.models.appointments import appointments
from app.models.clinics import clinics
from app.models.doctors import doctors
from app.models.patients import patients
from app.models.users import users
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentOutcome,
    AppointmentPage,
    AppointmentStatus,
    AppointmentUpdate,
    AppointmentView,
    TimeSlotView,
)
from app.schemas.audit import AuditAction, AuditLogCreate
from app.services.appointment_formatter import (
    PopulatedAppointment,
    format_appointment,
    format_date,
    format_time_slot,
    split_populated_row,
)
from app.services.appointment_queries import (
    doctor_user,
    patient_user,
    populated_appointment_query,
)
from app.services.audit_service import AuditLogService
from app.services.calendar_service import GoogleCalendarGateway
from app.services.notification_service import NotificationService
from app.services.time_slot_service import TimeSlotService

logger = structlog.get_logger(__name__)

AUDIT_RESOURCE = "appointment"
DEFAULT_CANCEL_REASON = "No reason provided"

ALLOWED_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    AppointmentStatus.SCHEDULED.value: frozenset(
        {
            AppointmentStatus.CHECKED_IN.value,
            AppointmentStatus.CANCELLED.value,
            AppointmentStatus.NO_SHOW.value,
        }
    ),
    AppointmentStatus.CHECKED_IN.value: frozenset(
        {AppointmentStatus.IN_PROGRESS.value, AppointmentStatus.CANCELLED.value}
    ),
    AppointmentStatus.IN_PROGRESS.value: frozenset(
        {AppointmentStatus.COMPLETED.value, AppointmentStatus.CANCELLED.value}
    ),
    AppointmentStatus.COMPLETED.value: frozenset(),
    AppointmentStatus.CANCELLED.value: frozenset(),
    AppointmentStatus.NO_SHOW.value: frozenset(),
}

UPCOMING_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CHECKED_IN.value)
TODAY_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CHECKED_IN.value,
    AppointmentStatus.IN_PROGRESS.value,
)


def ensure_status_transition(current: str, target: str) -> None:
    """
    Check that an appointment may move from one status to another.

    Raises:
        BadRequestException: If the transition is not allowed
    """
    if target not in ALLOWED_STATUS_TRANSITIONS.get(current, frozenset()):
        raise BadRequestException(f"Cannot change appointment status from {current} to {target}")


def _starts_at(day: date, hhmm: str) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=UTC)


class AppointmentService:
    """Transactional scheduling of appointments against doctor time slots."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        slot_service: TimeSlotService,
        audit_service: AuditLogService,
        notification_service: NotificationService,
        calendar_gateway: GoogleCalendarGateway,
        cache_manager: CacheManager | None = None,
        config: Settings = settings,
    ):
        """Initialize service with its collaborators."""
        self.session_factory = session_factory
        self.slots = slot_service
        self.audit = audit_service
        self.notifications = notification_service
        self.calendar = calendar_gateway
        self.cache = cache_manager
        self.config = config

    @staticmethod
    def _cache_key(appointment_id: UUID) -> str:
        return f"appointment:{appointment_id}"

    def _invalidate(self, appointment_id: UUID) -> None:
        if self.cache:
            self.cache.delete(self._cache_key(appointment_id))

    async def create_appointment(
        self,
        appointment_data: AppointmentCreate,
        created_by_user_id: UUID | None,
    ) -> AppointmentOutcome:
        """
        Book an appointment on a doctor's time slot.

        The slot check, the appointment insert, the slot reservation and the
        audit entry commit together or not at all. The meeting link and the
        notifications run afterwards and only produce warnings when they fail.

        Args:
            appointment_data: Appointment creation data
            created_by_user_id: User performing the booking

        Returns:
            The formatted appointment and any best-effort warnings

        Raises:
            NotFoundException: If the patient, doctor, clinic or slot is missing
            ConflictException: If the slot is already booked
            PersistenceException: If the database write fails
        """
        if appointment_data.patient_id is None:
            raise BadRequestException("Patient is required")

        async with unit_of_work(self.session_factory, "create appointment") as session:
            doctor = await self._get_row(session, doctors, appointment_data.doctor_id, "Doctor")
            await self._get_row(session, patients, appointment_data.patient_id, "Patient")
            clinic_id = await self._resolve_clinic_id(session, doctor, created_by_user_id)

            if appointment_data.time_slot_id is not None:
                slot = await self.slots.lock_available_slot(
                    session, appointment_data.time_slot_id, doctor_id=doctor["id"]
                )
            else:
                slot = await self.slots.resolve_or_create_slot(
                    session,
                    doctor_id=doctor["id"],
                    slot_date=appointment_data.date,
                    start_time=appointment_data.start_time,
                    end_time=appointment_data.end_time,
                )

            result = await session.execute(
                insert(appointments)
                .values(
                    patient_id=appointment_data.patient_id,
                    doctor_id=doctor["id"],
                    clinic_id=clinic_id,
                    time_slot_id=slot["id"],
                    date=slot["date"],
                    start_time=slot["start_time"],
                    end_time=slot["end_time"],
                    type=appointment_data.type.value,
                    status=AppointmentStatus.SCHEDULED.value,
                    reason_for_visit=appointment_data.reason_for_visit,
                    notes=appointment_data.notes,
                    is_virtual=appointment_data.is_virtual,
                    reminders_sent=[],
                    created_by=created_by_user_id,
                    updated_by=created_by_user_id,
                )
                .returning(appointments)
            )
            created = dict(result.mappings().one())

            await self.slots.book_slot(session, slot["id"], created["id"])
            await self.audit.record(
                session,
                [
                    AuditLogCreate(
                        user_id=created_by_user_id,
                        clinic_id=clinic_id,
                        action=AuditAction.CREATE,
                        resource=AUDIT_RESOURCE,
                        resource_id=created["id"],
                        details={
                            "patient_id": str(created["patient_id"]),
                            "doctor_id": str(created["doctor_id"]),
                            "time_slot_id": str(slot["id"]),
                            "date": format_date(created["date"]),
                            "start_time": created["start_time"],
                        },
                    )
                ],
            )

        appointment_id = created["id"]
        logger.info(
            "appointment_created",
            appointment_id=str(appointment_id),
            doctor_id=str(created["doctor_id"]),
            time_slot_id=str(created["time_slot_id"]),
        )

        warnings = await self._run_advisory_phase(
            "create appointment",
            appointment_id,
            event_type="created",
            attach_meeting=created["is_virtual"],
        )
        return AppointmentOutcome(
            appointment=await self._reload_view(appointment_id),
            warnings=warnings,
        )

    async def update_appointment(
        self,
        appointment_id: UUID,
        update_data: AppointmentUpdate,
        acting_user_id: UUID | None,
    ) -> AppointmentOutcome:
        """
        Update an appointment, applying status rules and slot changes.

        Args:
            appointment_id: Appointment to update
            update_data: Fields to change; unset fields are left alone
            acting_user_id: User performing the change, None for system jobs

        Returns:
            The formatted appointment and any best-effort warnings

        Raises:
            NotFoundException: If the appointment or new slot does not exist
            BadRequestException: If the status transition is not allowed
            ConflictException: If the new slot is already booked
        """
        fields = update_data.model_dump(exclude_unset=True)

        async with unit_of_work(self.session_factory, "update appointment") as session:
            current = await self._lock_appointment(session, appointment_id)
            if current is None:
                raise NotFoundException("Appointment not found")

            previous_status = current["status"]
            new_status = previous_status
            values: dict[str, Any] = {}
            slot_changed = False

            target_status = fields.get("status")
            if target_status is not None and target_status.value != previous_status:
                ensure_status_transition(previous_status, target_status.value)
                new_status = target_status.value
                values["status"] = new_status

                if new_status == AppointmentStatus.CANCELLED.value:
                    values["cancelled_at"] = datetime.now(UTC)
                    values["cancel_reason"] = fields.get("cancel_reason") or DEFAULT_CANCEL_REASON
                    await self.slots.release_slot(session, current["time_slot_id"], appointment_id)

            if fields.get("type") is not None:
                values["type"] = fields["type"].value
            if "notes" in fields:
                values["notes"] = fields["notes"]
            if fields.get("reason_for_visit") is not None:
                values["reason_for_visit"] = fields["reason_for_visit"]

            if fields.get("is_virtual") is not None:
                values["is_virtual"] = fields["is_virtual"]
                if not fields["is_virtual"]:
                    values["video_conference_link"] = None
                    values["calendar_event_id"] = None

            new_slot_id = fields.get("time_slot_id")
            if new_slot_id is not None and new_slot_id != current["time_slot_id"]:
                if not ALLOWED_STATUS_TRANSITIONS[new_status]:
                    raise BadRequestException(f"Cannot reschedule a {new_status} appointment")

                slot = await self.slots.lock_available_slot(
                    session, new_slot_id, doctor_id=current["doctor_id"]
                )
                await self.slots.release_slot(session, current["time_slot_id"], appointment_id)
                await self.slots.book_slot(session, slot["id"], appointment_id)
                values.update(
                    time_slot_id=slot["id"],
                    date=slot["date"],
                    start_time=slot["start_time"],
                    end_time=slot["end_time"],
                )
                slot_changed = True

            values["updated_by"] = acting_user_id
            result = await session.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(**values)
                .returning(appointments)
            )
            updated = dict(result.mappings().one())

            await self.audit.record(
                session,
                [
                    AuditLogCreate(
                        user_id=acting_user_id,
                        clinic_id=updated["clinic_id"],
                        action=AuditAction.UPDATE,
                        resource=AUDIT_RESOURCE,
                        resource_id=appointment_id,
                        details={
                            "updated_fields": sorted(fields),
                            "previous_status": previous_status,
                            "new_status": new_status,
                        },
                    )
                ],
            )

        self._invalidate(appointment_id)
        status_changed = new_status != previous_status
        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            previous_status=previous_status,
            new_status=new_status,
            slot_changed=slot_changed,
        )

        if status_changed:
            event_type = new_status
        elif slot_changed:
            event_type = "updated"
        else:
            event_type = None

        attach_meeting = (
            updated["is_virtual"]
            and new_status != AppointmentStatus.CANCELLED.value
            and (slot_changed or (fields.get("is_virtual") and not current["is_virtual"]))
        )
        warnings = await self._run_advisory_phase(
            "update appointment",
            appointment_id,
            event_type=event_type,
            attach_meeting=bool(attach_meeting),
        )
        return AppointmentOutcome(
            appointment=await self._reload_view(appointment_id),
            warnings=warnings,
        )

    async def delete_appointment(self, appointment_id: UUID, acting_user_id: UUID | None) -> bool:
        """
        Delete an appointment and free its slot.

        Returns:
            True if the appointment was deleted, False if it did not exist
        """
        async with unit_of_work(self.session_factory, "delete appointment") as session:
            current = await self._lock_appointment(session, appointment_id)
            if current is None:
                return False

            await self.slots.release_slot(session, current["time_slot_id"], appointment_id)
            await session.execute(delete(appointments).where(appointments.c.id == appointment_id))
            await self.audit.record(
                session,
                [
                    AuditLogCreate(
                        user_id=acting_user_id,
                        clinic_id=current["clinic_id"],
                        action=AuditAction.DELETE,
                        resource=AUDIT_RESOURCE,
                        resource_id=appointment_id,
                        details={
                            "patient_id": str(current["patient_id"]),
                            "doctor_id": str(current["doctor_id"]),
                            "date": format_date(current["date"]),
                            "status": current["status"],
                        },
                    )
                ],
            )

        self._invalidate(appointment_id)
        logger.info("appointment_deleted", appointment_id=str(appointment_id))
        return True

    async def get_all_appointments(self, filters: AppointmentFilters) -> AppointmentPage:
        """
        Get one page of appointments with participants resolved.

        Args:
            filters: Filtering, sorting and pagination options

        Returns:
            Formatted appointments and pagination metadata
        """
        limit = min(filters.limit, self.config.max_page_size)
        conditions = self._filter_conditions(filters)

        base = populated_appointment_query().where(*conditions)
        sort_column = appointments.c[filters.sort.value]
        if filters.order == "asc":
            ordering = (sort_column.asc(), appointments.c.start_time.asc())
        else:
            ordering = (sort_column.desc(), appointments.c.start_time.desc())

        query = base.order_by(*ordering).limit(limit).offset((filters.page - 1) * limit)
        count_query = select(func.count()).select_from(base.subquery())

        async with self.session_factory() as session:
            total = (await session.execute(count_query)).scalar_one()
            rows = (await session.execute(query)).mappings().all()

        return AppointmentPage(
            appointments=[format_appointment(split_populated_row(row)) for row in rows],
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
            current_page=filters.page,
        )

    async def get_appointment_by_id(self, appointment_id: UUID) -> AppointmentView | None:
        """Get a formatted appointment, served from cache when possible."""
        if self.cache:
            cached = self.cache.get_json(self._cache_key(appointment_id))
            if cached:
                return AppointmentView.model_validate(cached)

        async with self.session_factory() as session:
            populated = await self._fetch_populated(session, appointment_id)

        if populated is None:
            return None

        view = format_appointment(populated)
        if self.cache:
            self.cache.set_json(
                self._cache_key(appointment_id),
                view.model_dump(mode="json"),
                ttl=self.config.appointment_cache_ttl,
            )
        return view

    async def get_time_slot(self, slot_id: UUID) -> TimeSlotView | None:
        """Get a formatted time slot."""
        async with self.session_factory() as session:
            slot = await self.slots.get_time_slot(session, slot_id)
        return format_time_slot(slot) if slot else None

    async def get_patient_upcoming_appointments(self, patient_id: UUID) -> list[AppointmentView]:
        """Get a patient's scheduled or checked-in appointments from today on."""
        return await self._list_upcoming(appointments.c.patient_id == patient_id)

    async def get_doctor_upcoming_appointments(self, doctor_id: UUID) -> list[AppointmentView]:
        """Get a doctor's scheduled or checked-in appointments from today on."""
        return await self._list_upcoming(appointments.c.doctor_id == doctor_id)

    async def get_clinic_today_appointments(self, clinic_id: UUID) -> list[AppointmentView]:
        """Get a clinic's active appointments for today, earliest first."""
        query = (
            populated_appointment_query()
            .where(
                appointments.c.clinic_id == clinic_id,
                appointments.c.date == datetime.now(UTC).date(),
                appointments.c.status.in_(TODAY_STATUSES),
            )
            .order_by(appointments.c.start_time.asc())
        )
        return await self._list(query)

    async def schedule_appointment_reminders(self) -> int:
        """
        Remind patients of scheduled appointments starting within the reminder window.

        Appointments that already carry a reminder marker are skipped. A failure
        for one appointment is logged and does not stop the others.

        Returns:
            Number of reminders sent
        """
        now = datetime.now(UTC)
        window_end = now + timedelta(hours=self.config.reminder_window_hours)
        query = populated_appointment_query().where(
            appointments.c.status == AppointmentStatus.SCHEDULED.value,
            appointments.c.date >= now.date(),
            appointments.c.date <= window_end.date(),
        )

        async with self.session_factory() as session:
            rows = (await session.execute(query)).mappings().all()

        due = [
            populated
            for populated in (split_populated_row(row) for row in rows)
            if not populated.appointment.get("reminders_sent")
            and now
            <= _starts_at(populated.appointment["date"], populated.appointment["start_time"])
            <= window_end
        ]

        sent = 0
        for populated in due:
            appointment_id = populated.appointment["id"]
            try:
                async with unit_of_work(self.session_factory, "send reminder") as session:
                    notification_id = await self.notifications.send_appointment_reminder(
                        session, populated
                    )
                    if notification_id is None:
                        continue
                    marker = {
                        "type": "push",
                        "sent_at": datetime.now(UTC).isoformat(),
                        "status": "sent",
                    }
                    await session.execute(
                        update(appointments)
                        .where(appointments.c.id == appointment_id)
                        .values(reminders_sent=[marker])
                    )
            except Exception as e:
                logger.error(
                    "appointment_reminder_failed",
                    appointment_id=str(appointment_id),
                    error=str(e),
                )
                continue

            self._invalidate(appointment_id)
            sent += 1

        logger.info("appointment_reminders_sent", count=sent, candidates=len(due))
        return sent

    async def handle_no_show_appointments(self) -> int:
        """
        Mark today's scheduled appointments as no-show once the grace period has passed.

        Returns:
            Number of appointments marked as no-show
        """
        now = datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.config.no_show_grace_minutes)

        async with self.session_factory() as session:
            result = await session.execute(
                select(appointments.c.id, appointments.c.date, appointments.c.start_time).where(
                    appointments.c.date == now.date(),
                    appointments.c.status == AppointmentStatus.SCHEDULED.value,
                )
            )
            candidates = result.mappings().all()

        marked = 0
        for row in candidates:
            if _starts_at(row["date"], row["start_time"]) >= cutoff:
                continue
            try:
                await self.update_appointment(
                    row["id"],
                    AppointmentUpdate(status=AppointmentStatus.NO_SHOW),
                    acting_user_id=None,
                )
            except Exception as e:
                logger.error("no_show_update_failed", appointment_id=str(row["id"]), error=str(e))
                continue
            marked += 1

        logger.info("no_show_appointments_marked", count=marked)
        return marked

    async def _run_advisory_phase(
        self,
        operation: str,
        appointment_id: UUID,
        event_type: str | None,
        attach_meeting: bool,
    ) -> list[str]:
        phase = AdvisoryPhase(operation, str(appointment_id))

        if attach_meeting:
            await phase.run("Video conference link", lambda: self._attach_meeting(appointment_id))
        if event_type:
            await phase.run(
                "Notifications", lambda: self._send_notifications(appointment_id, event_type)
            )
        return phase.warnings

    async def _attach_meeting(self, appointment_id: UUID) -> None:
        async with unit_of_work(self.session_factory, "attach meeting link") as session:
            result = await session.execute(
                select(appointments.c.calendar_event_id, doctors.c.user_id)
                .select_from(appointments.join(doctors, appointments.c.doctor_id == doctors.c.id))
                .where(appointments.c.id == appointment_id)
            )
            row = result.mappings().first()
            if row is None:
                raise NotFoundException("Appointment not found")

            event = await self.calendar.create_meeting_for_appointment(
                doctor_user_id=row["user_id"],
                appointment_id=appointment_id,
                existing_event_id=row["calendar_event_id"],
                session=session,
            )
            await session.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(
                    video_conference_link=event.meeting_link,
                    calendar_event_id=event.event_id,
                )
            )
        self._invalidate(appointment_id)

    async def _send_notifications(self, appointment_id: UUID, event_type: str) -> None:
        async with unit_of_work(self.session_factory, "send appointment notifications") as session:
            populated = await self._fetch_populated(session, appointment_id)
            if populated is None:
                raise NotFoundException("Appointment not found")
            await self.notifications.send_appointment_notifications(session, populated, event_type)

    async def _reload_view(self, appointment_id: UUID) -> AppointmentView:
        self._invalidate(appointment_id)
        view = await self.get_appointment_by_id(appointment_id)
        if view is None:
            raise NotFoundException("Appointment not found")
        return view

    async def _list_upcoming(self, condition: Any) -> list[AppointmentView]:
        query = (
            populated_appointment_query()
            .where(
                condition,
                appointments.c.date >= datetime.now(UTC).date(),
                appointments.c.status.in_(UPCOMING_STATUSES),
            )
            .order_by(appointments.c.date.asc(), appointments.c.start_time.asc())
        )
        return await self._list(query)

    async def _list(self, query: Any) -> list[AppointmentView]:
        async with self.session_factory() as session:
            rows = (await session.execute(query)).mappings().all()
        return [format_appointment(split_populated_row(row)) for row in rows]

    @staticmethod
    async def _fetch_populated(
        session: AsyncSession, appointment_id: UUID
    ) -> PopulatedAppointment | None:
        result = await session.execute(
            populated_appointment_query().where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return split_populated_row(row) if row else None

    @staticmethod
    async def _lock_appointment(session: AsyncSession, appointment_id: UUID) -> dict | None:
        result = await session.execute(
            select(appointments).where(appointments.c.id == appointment_id).with_for_update()
        )
        row = result.mappings().first()
        return dict(row) if row else None

    @staticmethod
    async def _get_row(session: AsyncSession, table: Any, row_id: UUID, label: str) -> dict:
        result = await session.execute(select(table).where(table.c.id == row_id))
        row = result.mappings().first()
        if not row:
            raise NotFoundException(f"{label} not found")
        return dict(row)

    @staticmethod
    async def _resolve_clinic_id(
        session: AsyncSession,
        doctor: dict,
        user_id: UUID | None,
    ) -> UUID:
        """Use the doctor's clinic, falling back to the booking user's clinic."""
        clinic_id = doctor.get("clinic_id")
        if clinic_id is None and user_id is not None:
            result = await session.execute(select(users.c.clinic_id).where(users.c.id == user_id))
            clinic_id = result.scalar_one_or_none()

        if clinic_id is None:
            raise NotFoundException("Clinic not found")

        result = await session.execute(select(clinics.c.id).where(clinics.c.id == clinic_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundException("Clinic not found")
        return clinic_id

    @staticmethod
    def _filter_conditions(filters: AppointmentFilters) -> list:
        conditions = []
        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.type:
            conditions.append(appointments.c.type == filters.type.value)
        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)
        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)
        if filters.clinic_id:
            conditions.append(appointments.c.clinic_id == filters.clinic_id)
        if filters.start_date:
            conditions.append(appointments.c.date >= filters.start_date)
        if filters.end_date:
            conditions.append(appointments.c.date <= filters.end_date)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    patient_user.c.first_name.ilike(pattern),
                    patient_user.c.last_name.ilike(pattern),
                    doctor_user.c.first_name.ilike(pattern),
                    doctor_user.c.last_name.ilike(pattern),
                    appointments.c.reason_for_visit.ilike(pattern),
                )
            )
        return conditions
