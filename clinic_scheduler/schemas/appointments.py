"""Appointment schemas for request/response validation."""

import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinic_scheduler.services.datetime_utils import (
    format_date_for_query,
    normalize_time_slot,
    parse_date_label,
    parse_time_slot,
)


class AppointmentStatus(str, Enum):
    """Appointment status enumeration. Values are the stored literals."""

    BOOKED = "Booked"
    CONFIRMED = "Confirmed"
    RESCHEDULED = "Rescheduled"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    NO_SHOW = "No Show"


TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})


class Transition(str, Enum):
    """Lifecycle operations that move an appointment between statuses."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    NO_SHOW = "no_show"


_ALL_TRANSITIONS = frozenset(Transition)

# Every status must be listed; terminal statuses allow nothing
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[Transition]] = {
    AppointmentStatus.BOOKED: _ALL_TRANSITIONS,
    AppointmentStatus.CONFIRMED: _ALL_TRANSITIONS,
    AppointmentStatus.RESCHEDULED: _ALL_TRANSITIONS,
    AppointmentStatus.NO_SHOW: _ALL_TRANSITIONS,
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


class UpdateType(str, Enum):
    """Semantic classification of an appointment update."""

    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    GENERAL_UPDATE = "general_update"


# Tag written with each transition so listeners need not infer it
TRANSITION_UPDATE_TYPES: dict[Transition, UpdateType] = {
    Transition.CONFIRM: UpdateType.CONFIRMED,
    Transition.CANCEL: UpdateType.CANCELLED,
    Transition.RESCHEDULE: UpdateType.RESCHEDULED,
    Transition.COMPLETE: UpdateType.COMPLETED,
    Transition.NO_SHOW: UpdateType.NO_SHOW,
}


def _validate_date_label(value: dt.date | str) -> str:
    if isinstance(value, str) and parse_date_label(value) is None:
        raise ValueError("Date must look like 'Monday, 15 Jan 2025'")
    return format_date_for_query(value)


def _validate_time_slot(value: str) -> str:
    if parse_time_slot(value) is None:
        raise ValueError("Time slot must look like '9:30 AM'")
    return normalize_time_slot(value)


class AppointmentBase(BaseModel):
    """Base appointment schema with common fields."""

    user_id: str = Field(..., min_length=1, max_length=64)
    doctor_id: str = Field(..., min_length=1, max_length=64)
    doctor_name: str | None = Field(None, max_length=200)
    branch_id: str | None = Field(None, max_length=64)
    branch_name: str | None = Field(None, max_length=200)
    service_id: str | None = Field(None, max_length=64)
    service_name: str | None = Field(None, max_length=200)
    patient_name: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=1000)


class AppointmentCreate(AppointmentBase):
    """Schema for booking a new appointment."""

    date: dt.date | str
    time_slot: str = Field(..., min_length=1, max_length=16)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: dt.date | str) -> str:
        """Validate date label format."""
        return _validate_date_label(v)

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, v: str) -> str:
        """Validate time slot label format."""
        return _validate_time_slot(v)


class Appointment(BaseModel):
    """Appointment document as stored. Only id and status are guaranteed."""

    id: str
    user_id: str | None = None
    patient_name: str | None = None
    doctor_id: str | None = None
    doctor_name: str | None = None
    branch_id: str | None = None
    branch_name: str | None = None
    service_id: str | None = None
    service_name: str | None = None
    notes: str | None = None
    date: str | None = None
    time_slot: str | None = None
    status: AppointmentStatus
    last_transition: UpdateType | None = None

    confirmed_at: dt.datetime | None = None
    confirmed_by: str | None = None

    cancelled_at: dt.datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None

    rescheduled_at: dt.datetime | None = None
    reschedule_reason: str | None = None
    reschedule_count: int | None = None
    original_date: str | None = None
    original_time_slot: str | None = None
    original_status: AppointmentStatus | None = None

    completed_at: dt.datetime | None = None
    completion_notes: str | None = None
    has_prescription: bool | None = None

    no_show_at: dt.datetime | None = None
    no_show_reason: str | None = None

    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    model_config = {"from_attributes": True, "extra": "ignore"}


class TransitionResult(BaseModel):
    """Uniform outcome of a lifecycle operation."""

    success: bool
    data: Appointment | None = None
    error: str | None = None

    @classmethod
    def ok(cls, document: dict[str, Any]) -> "TransitionResult":
        """Successful result carrying the written document."""
        return cls(success=True, data=Appointment.model_validate(document))

    @classmethod
    def fail(cls, error: str) -> "TransitionResult":
        """Rejected operation with a human-readable reason."""
        return cls(success=False, error=error)


class ConfirmRequest(BaseModel):
    """Schema for confirming an appointment."""

    confirmed_by: str = Field(..., min_length=1, max_length=100)


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field("", max_length=500)
    cancelled_by: str = Field("patient", min_length=1, max_length=100)
    enforce_cutoff: bool | None = None


class RescheduleRequest(BaseModel):
    """Schema for rescheduling an appointment."""

    new_date: dt.date | str
    new_time_slot: str = Field(..., min_length=1, max_length=16)
    reason: str = Field("", max_length=500)

    @field_validator("new_date")
    @classmethod
    def validate_new_date(cls, v: dt.date | str) -> str:
        """Validate date label format."""
        return _validate_date_label(v)

    @field_validator("new_time_slot")
    @classmethod
    def validate_new_time_slot(cls, v: str) -> str:
        """Validate time slot label format."""
        return _validate_time_slot(v)


class CompleteRequest(BaseModel):
    """Schema for completing an appointment."""

    notes: str = Field("", max_length=2000)
    has_prescription: bool = False


class NoShowRequest(BaseModel):
    """Schema for marking an appointment as no-show."""

    reason: str = Field("", max_length=500)


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    user_id: str | None = None
    doctor_id: str | None = None
    status: AppointmentStatus | None = None
    date: str | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[Appointment]


class BookedSlotsResponse(BaseModel):
    """Slots taken for a doctor on a day."""

    doctor_id: str
    date: str
    booked_slots: list[str]


class AvailableSlotsResponse(BaseModel):
    """Candidate slots still free for a doctor on a day."""

    doctor_id: str
    date: str
    available_slots: list[str]


class SlotAvailabilityResponse(BaseModel):
    """Availability of a single slot."""

    doctor_id: str
    date: str
    time_slot: str
    available: bool
