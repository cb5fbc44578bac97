"""Tests for the transactional appointment service."""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, insert, select

from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    NotFoundException,
    PersistenceException,
)
from app.models import appointments, audit_logs, doctors, time_slots, users
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStatus,
    AppointmentUpdate,
)
from app.services.appointment_service import (
    ALLOWED_STATUS_TRANSITIONS,
    AppointmentService,
    ensure_status_transition,
)
from app.services.audit_service import AuditLogService
from app.services.calendar_service import CalendarIntegrationError
from app.services.time_slot_service import TimeSlotService

MEETING_LINK = "https://meet.google.com/abc-defg-hij"


def uuid_of(value) -> UUID:
    return UUID(str(value))


def booking(seed, slot_index: int = 0, **overrides) -> AppointmentCreate:
    data = {
        "patient_id": seed["patient_id"],
        "doctor_id": seed["doctor_id"],
        "time_slot_id": seed["slot_ids"][slot_index],
        "reason_for_visit": "Persistent cough",
        "is_virtual": False,
        "type": "in-person",
    }
    data.update(overrides)
    return AppointmentCreate(**data)


async def get_slot(session_factory, slot_id) -> dict:
    async with session_factory() as session:
        result = await session.execute(select(time_slots).where(time_slots.c.id == slot_id))
        return dict(result.mappings().one())


async def audit_entries(session_factory, appointment_id) -> list[dict]:
    async with session_factory() as session:
        result = await session.execute(
            select(audit_logs)
            .where(
                audit_logs.c.resource == "appointment",
                audit_logs.c.resource_id == appointment_id,
            )
            .order_by(audit_logs.c.timestamp.asc())
        )
        return [dict(row) for row in result.mappings().all()]


async def count_rows(session_factory, table) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar_one()


def test_status_transitions():
    """Terminal statuses allow nothing; scheduled can be checked in."""
    ensure_status_transition("scheduled", "checked-in")
    ensure_status_transition("in-progress", "completed")

    for terminal in ("completed", "cancelled", "no-show"):
        assert ALLOWED_STATUS_TRANSITIONS[terminal] == frozenset()

    with pytest.raises(BadRequestException) as exc_info:
        ensure_status_transition("completed", "scheduled")
    assert exc_info.value.message == "Cannot change appointment status from completed to scheduled"


@pytest.mark.asyncio
async def test_create_appointment_books_slot(appointment_service, session_factory, seed):
    """Creating an appointment reserves the slot and writes an audit entry."""
    outcome = await appointment_service.create_appointment(
        booking(seed), created_by_user_id=seed["staff"]["id"]
    )
    appointment = outcome.appointment

    assert outcome.warnings == []
    assert appointment.status == "scheduled"
    assert appointment.clinic_id == str(seed["clinic_id"])
    assert appointment.date == seed["slot_date"].isoformat()
    assert appointment.start_time == "09:00"
    assert appointment.patient_name == "Jane Doe"
    assert appointment.doctor_name == "Gregory House"
    assert appointment.doctor.user_id == str(seed["doctor_user"]["id"])

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert slot["status"] == "booked"
    assert str(slot["booked_by_appointment_id"]) == appointment.id

    entries = await audit_entries(session_factory, slot["booked_by_appointment_id"])
    assert len(entries) == 1
    assert entries[0]["action"] == "create"
    assert entries[0]["user_id"] == seed["staff"]["id"]
    assert entries[0]["details"]["start_time"] == "09:00"


@pytest.mark.asyncio
async def test_create_appointment_sends_notifications(
    appointment_service, notification_service, calendar_gateway, seed
):
    """In-person bookings notify participants but never touch the calendar."""
    await appointment_service.create_appointment(booking(seed), created_by_user_id=None)

    notification_service.send_appointment_notifications.assert_awaited_once()
    assert notification_service.send_appointment_notifications.await_args.args[2] == "created"
    calendar_gateway.create_meeting_for_appointment.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_virtual_appointment_attaches_meeting(
    appointment_service, calendar_gateway, seed
):
    """Virtual bookings receive a meeting link after commit."""
    outcome = await appointment_service.create_appointment(
        booking(seed, is_virtual=True, type="virtual"), created_by_user_id=None
    )

    calendar_gateway.create_meeting_for_appointment.assert_awaited_once()
    kwargs = calendar_gateway.create_meeting_for_appointment.await_args.kwargs
    assert kwargs["doctor_user_id"] == seed["doctor_user"]["id"]
    assert kwargs["existing_event_id"] is None
    assert outcome.appointment.video_conference_link == MEETING_LINK
    assert outcome.appointment.calendar_event_id == "evt-123"


@pytest.mark.asyncio
async def test_calendar_failure_is_a_warning(appointment_service, calendar_gateway, seed):
    """A failing calendar keeps the committed appointment and reports a warning."""
    calendar_gateway.create_meeting_for_appointment.side_effect = CalendarIntegrationError(
        "No calendar connected for this doctor"
    )

    outcome = await appointment_service.create_appointment(
        booking(seed, is_virtual=True), created_by_user_id=None
    )

    assert outcome.warnings == ["Video conference link could not be completed"]
    assert outcome.appointment.status == "scheduled"
    assert outcome.appointment.video_conference_link is None


@pytest.mark.asyncio
async def test_notification_failure_is_a_warning(appointment_service, notification_service, seed):
    notification_service.send_appointment_notifications.side_effect = RuntimeError("fcm down")

    outcome = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)

    assert outcome.warnings == ["Notifications could not be completed"]
    assert outcome.appointment.id


@pytest.mark.asyncio
async def test_double_booking_conflicts(appointment_service, session_factory, seed):
    """The second booking of the same slot fails and leaves the first intact."""
    first = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)

    with pytest.raises(ConflictException):
        await appointment_service.create_appointment(
            booking(seed, patient_id=seed["other_patient_id"]), created_by_user_id=None
        )

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert str(slot["booked_by_appointment_id"]) == first.appointment.id
    assert await count_rows(session_factory, appointments) == 1


@pytest.mark.asyncio
async def test_create_requires_existing_references(appointment_service, seed):
    with pytest.raises(NotFoundException, match="Doctor not found"):
        await appointment_service.create_appointment(
            booking(seed, doctor_id=uuid4()), created_by_user_id=None
        )

    with pytest.raises(NotFoundException, match="Patient not found"):
        await appointment_service.create_appointment(
            booking(seed, patient_id=uuid4()), created_by_user_id=None
        )

    with pytest.raises(NotFoundException, match="Selected time slot not found"):
        await appointment_service.create_appointment(
            booking(seed, time_slot_id=uuid4()), created_by_user_id=None
        )


@pytest.mark.asyncio
async def test_create_requires_patient(appointment_service, seed):
    with pytest.raises(BadRequestException, match="Patient is required"):
        await appointment_service.create_appointment(
            booking(seed, patient_id=None), created_by_user_id=None
        )


@pytest.mark.asyncio
async def test_clinic_falls_back_to_booking_user(appointment_service, session_factory, seed):
    """A doctor without a clinic books into the acting user's clinic, or fails without one."""
    user_id = uuid4()
    doctor_id = uuid4()
    async with session_factory() as session:
        await session.execute(
            insert(users).values(
                id=user_id,
                email="freelance@example.com",
                first_name="Fran",
                last_name="Lance",
                role="doctor",
            )
        )
        await session.execute(insert(doctors).values(id=doctor_id, user_id=user_id))
        await session.commit()

    window = {
        "doctor_id": doctor_id,
        "time_slot_id": None,
        "date": seed["slot_date"],
        "start_time": "14:00",
        "end_time": "14:30",
    }

    with pytest.raises(NotFoundException, match="Clinic not found"):
        await appointment_service.create_appointment(
            booking(seed, **window), created_by_user_id=seed["admin"]["id"]
        )

    outcome = await appointment_service.create_appointment(
        booking(seed, **window), created_by_user_id=seed["staff"]["id"]
    )
    assert outcome.appointment.clinic_id == str(seed["clinic_id"])


@pytest.mark.asyncio
async def test_create_with_window_creates_slot(appointment_service, session_factory, seed):
    """Booking by date and time creates the slot when the doctor has none there."""
    outcome = await appointment_service.create_appointment(
        booking(
            seed,
            time_slot_id=None,
            date=seed["slot_date"],
            start_time="15:00",
            end_time="15:45",
        ),
        created_by_user_id=None,
    )

    slot = await get_slot(session_factory, uuid_of(outcome.appointment.time_slot_id))
    assert slot["status"] == "booked"
    assert slot["end_time"] == "15:45"
    assert slot["booked_by_appointment_id"] == uuid_of(outcome.appointment.id)
    assert await count_rows(session_factory, time_slots) == 4


@pytest.mark.asyncio
async def test_create_is_atomic(
    session_factory, notification_service, calendar_gateway, cache_manager, seed
):
    """A failure after the insert rolls back the appointment and the reservation."""

    class FailingAuditLogService(AuditLogService):
        async def record(self, session, entries):
            raise RuntimeError("audit store unavailable")

    service = AppointmentService(
        session_factory=session_factory,
        slot_service=TimeSlotService(),
        audit_service=FailingAuditLogService(),
        notification_service=notification_service,
        calendar_gateway=calendar_gateway,
        cache_manager=cache_manager,
    )

    with pytest.raises(PersistenceException, match="Failed to create appointment"):
        await service.create_appointment(booking(seed), created_by_user_id=None)

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert slot["status"] == "available"
    assert slot["booked_by_appointment_id"] is None
    assert await count_rows(session_factory, appointments) == 0
    notification_service.send_appointment_notifications.assert_not_awaited()


@pytest.mark.asyncio
async def test_check_in_records_status_change(appointment_service, session_factory, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    appointment_id = created.appointment.id

    outcome = await appointment_service.update_appointment(
        uuid_of(appointment_id),
        AppointmentUpdate(status=AppointmentStatus.CHECKED_IN),
        acting_user_id=seed["staff"]["id"],
    )

    assert outcome.appointment.status == "checked-in"
    assert outcome.appointment.updated_by == str(seed["staff"]["id"])

    entries = await audit_entries(session_factory, uuid_of(appointment_id))
    assert [entry["action"] for entry in entries] == ["create", "update"]
    assert entries[1]["details"] == {
        "updated_fields": ["status"],
        "previous_status": "scheduled",
        "new_status": "checked-in",
    }


@pytest.mark.asyncio
async def test_invalid_transition_rolls_back(appointment_service, session_factory, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    appointment_id = uuid_of(created.appointment.id)

    with pytest.raises(BadRequestException, match="from scheduled to completed"):
        await appointment_service.update_appointment(
            appointment_id,
            AppointmentUpdate(status=AppointmentStatus.COMPLETED, notes="skipped ahead"),
            acting_user_id=None,
        )

    view = await appointment_service.get_appointment_by_id(appointment_id)
    assert view.status == "scheduled"
    assert view.notes is None
    assert len(await audit_entries(session_factory, appointment_id)) == 1


@pytest.mark.asyncio
async def test_cancel_releases_slot(
    appointment_service, notification_service, session_factory, seed
):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    appointment_id = uuid_of(created.appointment.id)

    outcome = await appointment_service.update_appointment(
        appointment_id,
        AppointmentUpdate(status=AppointmentStatus.CANCELLED),
        acting_user_id=seed["patient_user"]["id"],
    )

    assert outcome.appointment.status == "cancelled"
    assert outcome.appointment.cancel_reason == "No reason provided"
    assert outcome.appointment.cancelled_at is not None

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert slot["status"] == "available"
    assert slot["booked_by_appointment_id"] is None
    assert notification_service.send_appointment_notifications.await_args.args[2] == "cancelled"

    # The freed slot can be booked again
    rebooked = await appointment_service.create_appointment(
        booking(seed, patient_id=seed["other_patient_id"]), created_by_user_id=None
    )
    assert rebooked.appointment.time_slot_id == str(seed["slot_ids"][0])


@pytest.mark.asyncio
async def test_cancelled_appointment_cannot_release_rebooked_slot(
    appointment_service, session_factory, seed
):
    """Deleting a cancelled appointment leaves the slot with its new holder."""
    first = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    first_id = uuid_of(first.appointment.id)
    await appointment_service.update_appointment(
        first_id, AppointmentUpdate(status=AppointmentStatus.CANCELLED), acting_user_id=None
    )
    second = await appointment_service.create_appointment(
        booking(seed, patient_id=seed["other_patient_id"]), created_by_user_id=None
    )

    assert await appointment_service.delete_appointment(first_id, acting_user_id=None) is True

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert slot["status"] == "booked"
    assert str(slot["booked_by_appointment_id"]) == second.appointment.id


@pytest.mark.asyncio
async def test_reschedule_moves_reservation(
    appointment_service, calendar_gateway, session_factory, seed
):
    created = await appointment_service.create_appointment(
        booking(seed, is_virtual=True), created_by_user_id=None
    )
    appointment_id = uuid_of(created.appointment.id)

    outcome = await appointment_service.update_appointment(
        appointment_id,
        AppointmentUpdate(time_slot_id=seed["slot_ids"][1]),
        acting_user_id=None,
    )

    assert outcome.appointment.start_time == "10:00"
    assert outcome.appointment.time_slot_id == str(seed["slot_ids"][1])
    assert (await get_slot(session_factory, seed["slot_ids"][0]))["status"] == "available"
    assert (await get_slot(session_factory, seed["slot_ids"][1]))["status"] == "booked"

    # The existing calendar event is updated instead of creating a new one
    assert calendar_gateway.create_meeting_for_appointment.await_count == 2
    assert calendar_gateway.create_meeting_for_appointment.await_args.kwargs[
        "existing_event_id"
    ] == "evt-123"


@pytest.mark.asyncio
async def test_reschedule_onto_booked_slot_conflicts(appointment_service, session_factory, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    await appointment_service.create_appointment(
        booking(seed, slot_index=1, patient_id=seed["other_patient_id"]), created_by_user_id=None
    )

    with pytest.raises(ConflictException):
        await appointment_service.update_appointment(
            uuid_of(created.appointment.id),
            AppointmentUpdate(time_slot_id=seed["slot_ids"][1]),
            acting_user_id=None,
        )

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert str(slot["booked_by_appointment_id"]) == created.appointment.id


@pytest.mark.asyncio
async def test_reschedule_terminal_appointment_rejected(appointment_service, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    appointment_id = uuid_of(created.appointment.id)
    await appointment_service.update_appointment(
        appointment_id, AppointmentUpdate(status=AppointmentStatus.CANCELLED), acting_user_id=None
    )

    with pytest.raises(BadRequestException, match="Cannot reschedule a cancelled appointment"):
        await appointment_service.update_appointment(
            appointment_id,
            AppointmentUpdate(time_slot_id=seed["slot_ids"][2]),
            acting_user_id=None,
        )


@pytest.mark.asyncio
async def test_turning_off_virtual_clears_link(appointment_service, seed):
    created = await appointment_service.create_appointment(
        booking(seed, is_virtual=True), created_by_user_id=None
    )

    outcome = await appointment_service.update_appointment(
        uuid_of(created.appointment.id),
        AppointmentUpdate(is_virtual=False),
        acting_user_id=None,
    )

    assert outcome.appointment.is_virtual is False
    assert outcome.appointment.video_conference_link is None
    assert outcome.appointment.calendar_event_id is None


@pytest.mark.asyncio
async def test_update_missing_appointment(appointment_service, seed):
    with pytest.raises(NotFoundException, match="Appointment not found"):
        await appointment_service.update_appointment(
            uuid4(), AppointmentUpdate(notes="x"), acting_user_id=None
        )


@pytest.mark.asyncio
async def test_delete_releases_slot_and_is_idempotent(appointment_service, session_factory, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    appointment_id = uuid_of(created.appointment.id)

    assert await appointment_service.delete_appointment(appointment_id, None) is True
    assert await appointment_service.delete_appointment(appointment_id, None) is False

    slot = await get_slot(session_factory, seed["slot_ids"][0])
    assert slot["status"] == "available"
    assert await appointment_service.get_appointment_by_id(appointment_id) is None

    entries = await audit_entries(session_factory, appointment_id)
    assert [entry["action"] for entry in entries] == ["create", "delete"]
    assert entries[1]["details"]["status"] == "scheduled"


@pytest.mark.asyncio
async def test_pagination(appointment_service, seed):
    for index in range(3):
        await appointment_service.create_appointment(
            booking(seed, slot_index=index), created_by_user_id=None
        )

    page = await appointment_service.get_all_appointments(
        AppointmentFilters(limit=2, page=2, sort="start_time", order="asc")
    )
    assert page.total == 3
    assert page.total_pages == 2
    assert page.current_page == 2
    assert [view.start_time for view in page.appointments] == ["11:00"]

    beyond = await appointment_service.get_all_appointments(AppointmentFilters(limit=2, page=5))
    assert beyond.appointments == []
    assert beyond.total == 3


@pytest.mark.asyncio
async def test_empty_listing_has_no_pages(appointment_service, seed):
    page = await appointment_service.get_all_appointments(AppointmentFilters())
    assert page.total == 0
    assert page.total_pages == 0
    assert page.appointments == []


@pytest.mark.asyncio
async def test_filters_and_search(appointment_service, seed):
    await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    await appointment_service.create_appointment(
        booking(
            seed,
            slot_index=1,
            patient_id=seed["other_patient_id"],
            reason_for_visit="Sprained ankle",
        ),
        created_by_user_id=None,
    )

    by_name = await appointment_service.get_all_appointments(AppointmentFilters(search="roe"))
    assert [view.patient_name for view in by_name.appointments] == ["John Roe"]

    by_reason = await appointment_service.get_all_appointments(AppointmentFilters(search="COUGH"))
    assert [view.patient_name for view in by_reason.appointments] == ["Jane Doe"]

    by_patient = await appointment_service.get_all_appointments(
        AppointmentFilters(patient_id=seed["other_patient_id"])
    )
    assert by_patient.total == 1

    by_status = await appointment_service.get_all_appointments(
        AppointmentFilters(status=AppointmentStatus.CANCELLED)
    )
    assert by_status.total == 0


@pytest.mark.asyncio
async def test_upcoming_lists(appointment_service, seed):
    created = await appointment_service.create_appointment(booking(seed), created_by_user_id=None)
    cancelled = await appointment_service.create_appointment(
        booking(seed, slot_index=1), created_by_user_id=None
    )
    await appointment_service.update_appointment(
        uuid_of(cancelled.appointment.id),
        AppointmentUpdate(status=AppointmentStatus.CANCELLED),
        acting_user_id=None,
    )

    patient_upcoming = await appointment_service.get_patient_upcoming_appointments(
        seed["patient_id"]
    )
    doctor_upcoming = await appointment_service.get_doctor_upcoming_appointments(seed["doctor_id"])
    clinic_today = await appointment_service.get_clinic_today_appointments(seed["clinic_id"])

    assert [view.id for view in patient_upcoming] == [created.appointment.id]
    assert [view.id for view in doctor_upcoming] == [created.appointment.id]
    # Seeded slots are tomorrow
    assert clinic_today == []


@pytest.mark.asyncio
async def test_get_time_slot(appointment_service, seed):
    view = await appointment_service.get_time_slot(seed["slot_ids"][0])
    assert view.status == "available"
    assert view.date == seed["slot_date"].isoformat()
    assert await appointment_service.get_time_slot(uuid4()) is None


def future_window(hours: int) -> tuple:
    """Date and HH:MM window starting roughly ``hours`` from now without crossing midnight."""
    start = (datetime.now(UTC) + timedelta(hours=hours)).replace(second=0, microsecond=0)
    if start.hour == 23:
        start = (start + timedelta(days=1)).replace(hour=0, minute=30)
    end = start + timedelta(minutes=30)
    return start.date(), start.strftime("%H:%M"), end.strftime("%H:%M")


@pytest.mark.asyncio
async def test_reminders_sent_once(
    appointment_service, notification_service, session_factory, seed
):
    day, start, end = future_window(2)
    created = await appointment_service.create_appointment(
        booking(seed, time_slot_id=None, date=day, start_time=start, end_time=end),
        created_by_user_id=None,
    )

    assert await appointment_service.schedule_appointment_reminders() == 1
    assert await appointment_service.schedule_appointment_reminders() == 0
    notification_service.send_appointment_reminder.assert_awaited_once()

    view = await appointment_service.get_appointment_by_id(uuid_of(created.appointment.id))
    assert view.reminders_sent[0]["type"] == "push"
    assert view.reminders_sent[0]["status"] == "sent"


@pytest.mark.asyncio
async def test_reminder_failure_does_not_stop_job(
    appointment_service, notification_service, seed
):
    day, start, end = future_window(3)
    await appointment_service.create_appointment(
        booking(seed, time_slot_id=None, date=day, start_time=start, end_time=end),
        created_by_user_id=None,
    )
    notification_service.send_appointment_reminder.side_effect = RuntimeError("fcm down")

    assert await appointment_service.schedule_appointment_reminders() == 0


@pytest.mark.asyncio
async def test_no_show_marks_past_appointments(appointment_service, session_factory, seed):
    now = datetime.now(UTC)
    if now.hour == 0 and now.minute <= 31:
        pytest.skip("No window today ends before the grace period")

    created = await appointment_service.create_appointment(
        booking(seed, time_slot_id=None, date=now.date(), start_time="00:00", end_time="00:15"),
        created_by_user_id=None,
    )
    # Tomorrow's appointment is not due yet
    await appointment_service.create_appointment(
        booking(seed, slot_index=1, patient_id=seed["other_patient_id"]), created_by_user_id=None
    )

    assert await appointment_service.handle_no_show_appointments() == 1

    view = await appointment_service.get_appointment_by_id(uuid_of(created.appointment.id))
    assert view.status == "no-show"
    entries = await audit_entries(session_factory, uuid_of(created.appointment.id))
    assert entries[-1]["user_id"] is None
    assert entries[-1]["details"]["new_status"] == "no-show"
