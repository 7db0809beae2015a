"""Appointment lifecycle management."""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

import structlog

from clinic_scheduler.schemas.appointments import (
    ALLOWED_TRANSITIONS,
    TRANSITION_UPDATE_TYPES,
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
    Transition,
    TransitionResult,
)
from clinic_scheduler.services.datetime_utils import (
    format_date_for_query,
    normalize_time_slot,
    parse_appointment_date,
)
from clinic_scheduler.services.slot_service import SlotAvailabilityService
from clinic_scheduler.store.base import DocumentStore, Query

logger = structlog.get_logger(__name__)

_TRANSITION_VERBS = {
    Transition.CONFIRM: "confirm",
    Transition.CANCEL: "cancel",
    Transition.RESCHEDULE: "reschedule",
    Transition.COMPLETE: "complete",
    Transition.NO_SHOW: "mark as no-show",
}

SLOT_UNAVAILABLE = "Selected time slot is not available"
INVALID_SLOT_LABELS = "Invalid date or time slot"


class AppointmentService:
    """
    Service driving the appointment state machine.

    Every transition re-reads the appointment, validates the move against
    ``ALLOWED_TRANSITIONS`` and applies a single ``update_document`` call.
    Rule violations come back as ``TransitionResult(success=False)``; store
    errors, including a missing appointment, propagate to the caller.

    The slot check and the write are separate round-trips, so two callers
    racing for the same slot can both succeed.
    """

    def __init__(
        self,
        store: DocumentStore,
        slots: SlotAvailabilityService,
        collection: str = "appointments",
        cancellation_cutoff_hours: int = 2,
        enforce_cancellation_cutoff: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize service.

        Args:
            store: Document store holding appointments
            slots: Slot availability service over the same store
            collection: Appointments collection name
            cancellation_cutoff_hours: Minimum notice required to cancel
            enforce_cancellation_cutoff: Default for the cutoff rule
            clock: Local wall-clock time, compared against appointment labels
        """
        self.store = store
        self.slots = slots
        self.collection = collection
        self.cancellation_cutoff = timedelta(hours=cancellation_cutoff_hours)
        self.enforce_cancellation_cutoff = enforce_cancellation_cutoff
        self.clock = clock

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _check_transition(current: dict[str, Any], transition: Transition) -> str | None:
        """Return an error message if the transition is not allowed."""
        try:
            status = AppointmentStatus(current.get("status"))
        except ValueError:
            return f"Unknown appointment status: {current.get('status')}"

        if transition in ALLOWED_TRANSITIONS[status]:
            return None

        if transition is Transition.CANCEL and status is AppointmentStatus.CANCELLED:
            return "Appointment is already cancelled"

        return f"Cannot {_TRANSITION_VERBS[transition]} a {status.value.lower()} appointment"

    def _check_cancellation_cutoff(self, current: dict[str, Any]) -> str | None:
        starts_at = parse_appointment_date(current.get("date"), current.get("time_slot"))
        if starts_at is None:
            logger.warning(
                "cancellation_cutoff_skipped",
                appointment_id=current.get("id"),
                date=current.get("date"),
                time_slot=current.get("time_slot"),
            )
            return None

        if starts_at - self.clock() < self.cancellation_cutoff:
            hours = int(self.cancellation_cutoff.total_seconds() // 3600)
            return f"Appointments can only be cancelled at least {hours} hours in advance"
        return None

    def _transition_values(self, transition: Transition, **values: Any) -> dict[str, Any]:
        now = self._now()
        values["last_transition"] = TRANSITION_UPDATE_TYPES[transition].value
        values["updated_at"] = now
        return values

    async def _apply(
        self,
        appointment_id: str,
        transition: Transition,
        update_values: dict[str, Any],
    ) -> TransitionResult:
        document = await self.store.update_document(self.collection, appointment_id, update_values)
        logger.info(
            "appointment_transitioned",
            appointment_id=appointment_id,
            transition=transition.value,
            status=document.get("status"),
        )
        return TransitionResult.ok(document)

    def _reject(self, appointment_id: str, transition: Transition, error: str) -> TransitionResult:
        logger.info(
            "appointment_transition_rejected",
            appointment_id=appointment_id,
            transition=transition.value,
            error=error,
        )
        return TransitionResult.fail(error)

    async def book_appointment(self, data: AppointmentCreate) -> TransitionResult:
        """
        Book a new appointment in a free slot.

        Args:
            data: Appointment creation data

        Returns:
            Result carrying the created appointment with status ``Booked``
        """
        formatted_date = format_date_for_query(data.date)
        time_slot = normalize_time_slot(data.time_slot)

        available = await self.slots.check_slot_availability(
            data.doctor_id,
            formatted_date,
            time_slot,
        )
        if not available:
            logger.info(
                "appointment_booking_rejected",
                doctor_id=data.doctor_id,
                date=formatted_date,
                time_slot=time_slot,
            )
            return TransitionResult.fail(SLOT_UNAVAILABLE)

        now = self._now()
        values = data.model_dump(exclude={"date"})
        values.update(
            date=formatted_date,
            time_slot=time_slot,
            status=AppointmentStatus.BOOKED.value,
            created_at=now,
            updated_at=now,
        )

        document = await self.store.create_document(self.collection, values)
        logger.info(
            "appointment_booked",
            appointment_id=document["id"],
            doctor_id=data.doctor_id,
            date=formatted_date,
            time_slot=time_slot,
        )
        return TransitionResult.ok(document)

    async def get_appointment(self, appointment_id: str) -> Appointment:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        document = await self.store.get_document(self.collection, appointment_id)
        return Appointment.model_validate(document)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination, newest first.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        queries: list[Query] = []

        if filters.user_id:
            queries.append(Query.equal("user_id", filters.user_id))

        if filters.doctor_id:
            queries.append(Query.equal("doctor_id", filters.doctor_id))

        if filters.status:
            queries.append(Query.equal("status", filters.status.value))

        if filters.date:
            queries.append(Query.equal("date", filters.date))

        queries.append(Query.order_desc("created_at"))
        queries.append(Query.limit(filters.page_size))
        queries.append(Query.offset((filters.page - 1) * filters.page_size))

        response = await self.store.list_documents(self.collection, queries)

        return AppointmentListResponse(
            total=response.total,
            page=filters.page,
            page_size=filters.page_size,
            items=[Appointment.model_validate(document) for document in response.documents],
        )

    async def confirm_appointment(self, appointment_id: str, confirmed_by: str) -> TransitionResult:
        """
        Confirm an appointment.

        Args:
            appointment_id: Appointment ID
            confirmed_by: Who confirmed it (doctor, staff member)

        Returns:
            Transition result
        """
        if not appointment_id:
            return TransitionResult.fail("Appointment ID is required")

        current = await self.store.get_document(self.collection, appointment_id)
        error = self._check_transition(current, Transition.CONFIRM)
        if error:
            return self._reject(appointment_id, Transition.CONFIRM, error)

        values = self._transition_values(
            Transition.CONFIRM,
            status=AppointmentStatus.CONFIRMED.value,
            confirmed_at=self._now(),
            confirmed_by=confirmed_by,
        )
        return await self._apply(appointment_id, Transition.CONFIRM, values)

    async def cancel_appointment(
        self,
        appointment_id: str,
        reason: str = "",
        cancelled_by: str = "patient",
        enforce_cutoff: bool | None = None,
    ) -> TransitionResult:
        """
        Cancel an appointment, releasing its slot.

        Args:
            appointment_id: Appointment ID
            reason: Cancellation reason
            cancelled_by: Who cancelled (patient, doctor, ...)
            enforce_cutoff: Require the minimum notice; service default when None

        Returns:
            Transition result
        """
        if not appointment_id:
            return TransitionResult.fail("Appointment ID is required")

        current = await self.store.get_document(self.collection, appointment_id)
        error = self._check_transition(current, Transition.CANCEL)

        if error is None:
            if enforce_cutoff is None:
                enforce_cutoff = self.enforce_cancellation_cutoff
            if enforce_cutoff:
                error = self._check_cancellation_cutoff(current)

        if error:
            return self._reject(appointment_id, Transition.CANCEL, error)

        values = self._transition_values(
            Transition.CANCEL,
            status=AppointmentStatus.CANCELLED.value,
            cancelled_at=self._now(),
            cancellation_reason=reason,
            cancelled_by=cancelled_by,
        )
        # Reschedule provenance takes precedence
        if not current.get("original_status"):
            values["original_status"] = current["status"]

        return await self._apply(appointment_id, Transition.CANCEL, values)

    async def reschedule_appointment(
        self,
        appointment_id: str,
        new_date: date | str,
        new_time_slot: str,
        reason: str = "",
    ) -> TransitionResult:
        """
        Move an appointment to a new slot with the same doctor.

        The first reschedule records ``original_date``, ``original_time_slot``
        and ``original_status``; later ones leave them untouched.
        The new labels are stored in display form.

        Args:
            appointment_id: Appointment ID
            new_date: New calendar day or its label
            new_time_slot: New time slot label
            reason: Reschedule reason

        Returns:
            Transition result
        """
        if not appointment_id or not new_date or not new_time_slot:
            return TransitionResult.fail("Missing required parameters")

        new_date = format_date_for_query(new_date)
        if parse_appointment_date(new_date, new_time_slot) is None:
            return TransitionResult.fail(INVALID_SLOT_LABELS)
        new_time_slot = normalize_time_slot(new_time_slot)

        current = await self.store.get_document(self.collection, appointment_id)
        error = self._check_transition(current, Transition.RESCHEDULE)
        if error:
            return self._reject(appointment_id, Transition.RESCHEDULE, error)

        available = await self.slots.check_slot_availability(
            current["doctor_id"],
            new_date,
            new_time_slot,
            exclude_appointment_id=appointment_id,
        )
        if not available:
            return self._reject(appointment_id, Transition.RESCHEDULE, SLOT_UNAVAILABLE)

        values = self._transition_values(
            Transition.RESCHEDULE,
            date=new_date,
            time_slot=new_time_slot,
            status=AppointmentStatus.RESCHEDULED.value,
            rescheduled_at=self._now(),
            reschedule_reason=reason,
            reschedule_count=(current.get("reschedule_count") or 0) + 1,
        )
        for field, source in (
            ("original_date", "date"),
            ("original_time_slot", "time_slot"),
            ("original_status", "status"),
        ):
            if not current.get(field):
                values[field] = current.get(source)

        return await self._apply(appointment_id, Transition.RESCHEDULE, values)

    async def complete_appointment(
        self,
        appointment_id: str,
        notes: str = "",
        has_prescription: bool = False,
    ) -> TransitionResult:
        """
        Mark an appointment as completed.

        Args:
            appointment_id: Appointment ID
            notes: Completion notes
            has_prescription: Whether a prescription was issued

        Returns:
            Transition result
        """
        if not appointment_id:
            return TransitionResult.fail("Appointment ID is required")

        current = await self.store.get_document(self.collection, appointment_id)
        error = self._check_transition(current, Transition.COMPLETE)
        if error:
            return self._reject(appointment_id, Transition.COMPLETE, error)

        values = self._transition_values(
            Transition.COMPLETE,
            status=AppointmentStatus.COMPLETED.value,
            completed_at=self._now(),
            completion_notes=notes,
            has_prescription=has_prescription,
        )
        return await self._apply(appointment_id, Transition.COMPLETE, values)

    async def mark_no_show(self, appointment_id: str, reason: str = "") -> TransitionResult:
        """
        Mark an appointment as a no-show. The slot stays occupied.

        Args:
            appointment_id: Appointment ID
            reason: Optional note

        Returns:
            Transition result
        """
        if not appointment_id:
            return TransitionResult.fail("Appointment ID is required")

        current = await self.store.get_document(self.collection, appointment_id)
        error = self._check_transition(current, Transition.NO_SHOW)
        if error:
            return self._reject(appointment_id, Transition.NO_SHOW, error)

        values = self._transition_values(
            Transition.NO_SHOW,
            status=AppointmentStatus.NO_SHOW.value,
            no_show_at=self._now(),
            no_show_reason=reason,
        )
        return await self._apply(appointment_id, Transition.NO_SHOW, values)
