"""Appointment endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.core.exceptions import BadRequestException, ForbiddenException, NotFoundException
from app.dependencies import AdminUser, AppointmentServiceDep, CurrentUser
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentPage,
    AppointmentStatus,
    AppointmentUpdate,
    AppointmentView,
    TimeSlotView,
)
from app.schemas.common import ApiResponse

router = APIRouter()

STAFF_ROLES = ("admin", "staff")
LIST_ROLES = ("admin", "staff", "doctor", "patient")
PATIENT_UPDATABLE_FIELDS = {"status", "cancel_reason"}
PATIENT_ALLOWED_STATUSES = {AppointmentStatus.CANCELLED, AppointmentStatus.CHECKED_IN}


def _own_profile_id(current_user: dict, key: str, label: str) -> UUID:
    profile_id = current_user.get(key)
    if profile_id is None:
        raise NotFoundException(f"{label} record not found")
    return profile_id


def _ensure_participant(current_user: dict, appointment: AppointmentView) -> None:
    """Admins and staff see every appointment; doctors and patients only their own."""
    role = current_user.get("role")
    if role in STAFF_ROLES:
        return
    if role == "doctor" and appointment.doctor_id == str(current_user.get("doctor_id")):
        return
    if role == "patient" and appointment.patient_id == str(current_user.get("patient_id")):
        return
    raise ForbiddenException("Not authorized to access this appointment")


def _page_response(page: AppointmentPage) -> ApiResponse[list[AppointmentView]]:
    return ApiResponse(
        data=page.appointments,
        count=len(page.appointments),
        total=page.total,
        total_pages=page.total_pages,
        current_page=page.current_page,
    )


@router.post(
    "",
    response_model=ApiResponse[AppointmentView],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[AppointmentView]:
    """
    Book an appointment on a doctor's time slot.

    Patients always book for their own patient record.
    """
    if current_user.get("role") == "patient":
        patient_id = _own_profile_id(current_user, "patient_id", "Patient")
        data = data.model_copy(update={"patient_id": patient_id})

    outcome = await service.create_appointment(data, created_by_user_id=current_user["id"])
    return ApiResponse(
        data=outcome.appointment,
        message="Appointment created successfully",
        warnings=outcome.warnings or None,
    )


@router.get(
    "",
    response_model=ApiResponse[list[AppointmentView]],
    response_model_exclude_none=True,
    summary="List appointments",
)
async def list_appointments(
    filters: Annotated[AppointmentFilters, Depends()],
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[list[AppointmentView]]:
    """
    List appointments with filtering, sorting and pagination.

    Patients only see their own appointments and non-admin users only see
    appointments of their own clinic.
    """
    role = current_user.get("role")
    if role not in LIST_ROLES:
        raise ForbiddenException("Not authorized to list appointments")

    overrides: dict = {}
    if role == "patient":
        overrides["patient_id"] = _own_profile_id(current_user, "patient_id", "Patient")
    if role != "admin" and current_user.get("clinic_id") is not None:
        overrides["clinic_id"] = current_user["clinic_id"]
    if overrides:
        filters = filters.model_copy(update=overrides)

    return _page_response(await service.get_all_appointments(filters))


@router.get(
    "/upcoming",
    response_model=ApiResponse[list[AppointmentView]],
    response_model_exclude_none=True,
    summary="Upcoming appointments of the current user",
)
async def list_upcoming_appointments(
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[list[AppointmentView]]:
    """
    Patients and doctors get their upcoming appointments; admins and staff get
    today's appointments of their clinic.
    """
    role = current_user.get("role")
    if role == "patient":
        patient_id = _own_profile_id(current_user, "patient_id", "Patient")
        appointments = await service.get_patient_upcoming_appointments(patient_id)
    elif role == "doctor":
        doctor_id = _own_profile_id(current_user, "doctor_id", "Doctor")
        appointments = await service.get_doctor_upcoming_appointments(doctor_id)
    elif current_user.get("clinic_id") is not None:
        appointments = await service.get_clinic_today_appointments(current_user["clinic_id"])
    else:
        raise BadRequestException("Clinic ID is required for staff and admin users")

    return ApiResponse(data=appointments, count=len(appointments))


@router.get(
    "/patient/{patient_id}",
    response_model=ApiResponse[list[AppointmentView]],
    response_model_exclude_none=True,
    summary="Appointments of a patient",
)
async def list_patient_appointments(
    patient_id: UUID,
    filters: Annotated[AppointmentFilters, Depends()],
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[list[AppointmentView]]:
    """List one patient's appointments; patients may only list their own."""
    if current_user.get("role") == "patient" and current_user.get("patient_id") != patient_id:
        raise ForbiddenException("You can only view your own appointments")

    filters = filters.model_copy(update={"patient_id": patient_id})
    return _page_response(await service.get_all_appointments(filters))


@router.get(
    "/doctor/{doctor_id}",
    response_model=ApiResponse[list[AppointmentView]],
    response_model_exclude_none=True,
    summary="Appointments of a doctor",
)
async def list_doctor_appointments(
    doctor_id: UUID,
    filters: Annotated[AppointmentFilters, Depends()],
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[list[AppointmentView]]:
    """List one doctor's appointments; patients may not, doctors only their own."""
    role = current_user.get("role")
    if role == "patient":
        raise ForbiddenException("Not authorized to view this doctor's appointments")
    if role == "doctor" and current_user.get("doctor_id") != doctor_id:
        raise ForbiddenException("You can only view your own appointments")

    filters = filters.model_copy(update={"doctor_id": doctor_id})
    return _page_response(await service.get_all_appointments(filters))


@router.get(
    "/timeslot/{slot_id}",
    response_model=ApiResponse[TimeSlotView],
    response_model_exclude_none=True,
    summary="Get a time slot",
)
async def get_time_slot(
    slot_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[TimeSlotView]:
    """Get a formatted time slot."""
    slot = await service.get_time_slot(slot_id)
    if slot is None:
        raise NotFoundException("Time slot not found")
    return ApiResponse(data=slot)


@router.get(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentView],
    response_model_exclude_none=True,
    summary="Get an appointment",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[AppointmentView]:
    """Get a formatted appointment."""
    appointment = await service.get_appointment_by_id(appointment_id)
    if appointment is None:
        raise NotFoundException("Appointment not found")

    _ensure_participant(current_user, appointment)
    return ApiResponse(data=appointment)


@router.put(
    "/{appointment_id}",
    response_model=ApiResponse[AppointmentView],
    response_model_exclude_none=True,
    summary="Update an appointment",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> ApiResponse[AppointmentView]:
    """
    Update an appointment.

    Patients may only change the status, and only to cancelled or checked-in.
    """
    existing = await service.get_appointment_by_id(appointment_id)
    if existing is None:
        raise NotFoundException("Appointment not found")

    _ensure_participant(current_user, existing)

    if current_user.get("role") == "patient":
        if data.model_fields_set - PATIENT_UPDATABLE_FIELDS:
            raise ForbiddenException("Patients can only update the appointment status")
        if data.status is not None and data.status not in PATIENT_ALLOWED_STATUSES:
            raise ForbiddenException("Patients can only cancel or check in to appointments")

    outcome = await service.update_appointment(
        appointment_id, data, acting_user_id=current_user["id"]
    )
    return ApiResponse(
        data=outcome.appointment,
        message="Appointment updated successfully",
        warnings=outcome.warnings or None,
    )


@router.delete(
    "/{appointment_id}",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Delete an appointment (admin only)",
)
async def delete_appointment(
    appointment_id: UUID,
    admin_user: AdminUser,
    service: AppointmentServiceDep,
) -> ApiResponse[None]:
    """Delete an appointment and release its time slot."""
    deleted = await service.delete_appointment(appointment_id, acting_user_id=admin_user["id"])
    if not deleted:
        raise NotFoundException("Appointment not found")
    return ApiResponse(message="Appointment deleted successfully")
