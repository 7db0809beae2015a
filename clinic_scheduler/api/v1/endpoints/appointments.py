"""Appointment endpoints."""

from fastapi import APIRouter, Query, status

from clinic_scheduler.core.exceptions import ConflictException
from clinic_scheduler.dependencies import AppointmentServiceDep
from clinic_scheduler.schemas.appointments import (
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
    CancelRequest,
    CompleteRequest,
    ConfirmRequest,
    NoShowRequest,
    RescheduleRequest,
    TransitionResult,
)

router = APIRouter()


def _unwrap(result: TransitionResult) -> Appointment:
    """Return the written appointment or raise the rejection as a 409."""
    if not result.success or result.data is None:
        raise ConflictException(result.error or "Appointment transition rejected")
    return result.data


@router.post(
    "/",
    response_model=Appointment,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book new appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    service: AppointmentServiceDep,
) -> Appointment:
    """
    Book an appointment in a free slot.

    Returns:
        Created appointment

    Raises:
        ConflictException: If the slot is already taken
    """
    return _unwrap(await service.book_appointment(data))


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    service: AppointmentServiceDep,
    user_id: str | None = Query(None),
    doctor_id: str | None = Query(None),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    date: str | None = Query(None, description="Date label, e.g. 'Monday, 15 Jan 2025'"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """List appointments newest first with optional filters."""
    filters = AppointmentFilters(
        user_id=user_id,
        doctor_id=doctor_id,
        status=status_filter,
        date=date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=Appointment,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: str,
    service: AppointmentServiceDep,
) -> Appointment:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
    """
    return await service.get_appointment(appointment_id)


@router.post(
    "/{appointment_id}/confirm",
    response_model=Appointment,
    tags=["Appointments"],
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: str,
    data: ConfirmRequest,
    service: AppointmentServiceDep,
) -> Appointment:
    """Confirm an appointment."""
    return _unwrap(await service.confirm_appointment(appointment_id, data.confirmed_by))


@router.post(
    "/{appointment_id}/cancel",
    response_model=Appointment,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: str,
    data: CancelRequest,
    service: AppointmentServiceDep,
) -> Appointment:
    """
    Cancel an appointment and release its slot.

    Raises:
        ConflictException: If already cancelled, completed or inside the cutoff
    """
    result = await service.cancel_appointment(
        appointment_id,
        reason=data.reason,
        cancelled_by=data.cancelled_by,
        enforce_cutoff=data.enforce_cutoff,
    )
    return _unwrap(result)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=Appointment,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    service: AppointmentServiceDep,
) -> Appointment:
    """
    Move an appointment to another slot with the same doctor.

    Raises:
        ConflictException: If the appointment is terminal or the slot is taken
    """
    result = await service.reschedule_appointment(
        appointment_id,
        data.new_date,
        data.new_time_slot,
        reason=data.reason,
    )
    return _unwrap(result)


@router.post(
    "/{appointment_id}/complete",
    response_model=Appointment,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: str,
    data: CompleteRequest,
    service: AppointmentServiceDep,
) -> Appointment:
    """Mark an appointment as completed."""
    result = await service.complete_appointment(
        appointment_id,
        notes=data.notes,
        has_prescription=data.has_prescription,
    )
    return _unwrap(result)


@router.post(
    "/{appointment_id}/no-show",
    response_model=Appointment,
    tags=["Appointments"],
    summary="Mark appointment as no-show",
)
async def mark_no_show(
    appointment_id: str,
    data: NoShowRequest,
    service: AppointmentServiceDep,
) -> Appointment:
    """Mark an appointment as a no-show."""
    return _unwrap(await service.mark_no_show(appointment_id, reason=data.reason))
