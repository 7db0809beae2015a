"""Slot availability endpoints."""

from fastapi import APIRouter, Query, status

from clinic_scheduler.dependencies import SlotServiceDep
from clinic_scheduler.schemas.appointments import (
    AvailableSlotsResponse,
    BookedSlotsResponse,
    SlotAvailabilityResponse,
)
from clinic_scheduler.services.datetime_utils import format_date_for_query, normalize_time_slot

router = APIRouter()

DATE_DESCRIPTION = "Date label, e.g. 'Monday, 15 Jan 2025'"


@router.get(
    "/booked",
    response_model=BookedSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="List booked slots",
)
async def get_booked_slots(
    service: SlotServiceDep,
    doctor_id: str = Query(..., min_length=1),
    date: str = Query(..., min_length=1, description=DATE_DESCRIPTION),
    exclude_appointment_id: str | None = Query(None),
) -> BookedSlotsResponse:
    """Time slots held by non-cancelled appointments of a doctor on a day."""
    booked = await service.get_booked_slots(doctor_id, date, exclude_appointment_id)
    return BookedSlotsResponse(
        doctor_id=doctor_id,
        date=format_date_for_query(date),
        booked_slots=booked,
    )


@router.get(
    "/availability",
    response_model=SlotAvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Check a single slot",
)
async def check_slot_availability(
    service: SlotServiceDep,
    doctor_id: str = Query(..., min_length=1),
    date: str = Query(..., min_length=1, description=DATE_DESCRIPTION),
    time_slot: str = Query(..., min_length=1),
    exclude_appointment_id: str | None = Query(None),
) -> SlotAvailabilityResponse:
    """Whether a doctor/date/time slot is free."""
    available = await service.check_slot_availability(
        doctor_id,
        date,
        time_slot,
        exclude_appointment_id,
    )
    return SlotAvailabilityResponse(
        doctor_id=doctor_id,
        date=format_date_for_query(date),
        time_slot=normalize_time_slot(time_slot),
        available=available,
    )


@router.get(
    "/available",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="List free slots",
)
async def get_available_slots(
    service: SlotServiceDep,
    doctor_id: str = Query(..., min_length=1),
    date: str = Query(..., min_length=1, description=DATE_DESCRIPTION),
    exclude_appointment_id: str | None = Query(None),
) -> AvailableSlotsResponse:
    """Configured bookable slots that are still free."""
    available = await service.get_available_slots(
        doctor_id,
        date,
        exclude_appointment_id=exclude_appointment_id,
    )
    return AvailableSlotsResponse(
        doctor_id=doctor_id,
        date=format_date_for_query(date),
        available_slots=available,
    )
