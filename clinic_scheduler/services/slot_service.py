"""Slot availability lookups against the live appointment store."""

from datetime import date

import structlog

from clinic_scheduler.schemas.appointments import AppointmentStatus
from clinic_scheduler.services.datetime_utils import format_date_for_query, normalize_time_slot
from clinic_scheduler.store.base import ID_ATTRIBUTE, DocumentStore, Query

logger = structlog.get_logger(__name__)

# Upper bound on appointments a doctor can hold on one day
MAX_SLOTS_PER_DAY = 500


class SlotAvailabilityService:
    """
    Answer which (doctor, date, time slot) combinations are taken.

    Only ``Cancelled`` appointments release their slot. ``Rescheduled``,
    ``Completed`` and ``No Show`` appointments keep occupying the slot they
    currently hold.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "appointments",
        default_slots: list[str] | None = None,
    ):
        """
        Initialize service.

        Args:
            store: Document store holding appointments
            collection: Appointments collection name
            default_slots: Bookable slots used when no candidates are given
        """
        self.store = store
        self.collection = collection
        self.default_slots = [normalize_time_slot(slot) for slot in default_slots or []]

    def _slot_queries(
        self,
        doctor_id: str,
        formatted_date: str,
        exclude_appointment_id: str | None,
    ) -> list[Query]:
        queries = [
            Query.equal("doctor_id", doctor_id),
            Query.equal("date", formatted_date),
            Query.not_equal("status", AppointmentStatus.CANCELLED.value),
        ]
        if exclude_appointment_id:
            queries.append(Query.not_equal(ID_ATTRIBUTE, exclude_appointment_id))
        return queries

    async def get_booked_slots(
        self,
        doctor_id: str,
        date_value: date | str,
        exclude_appointment_id: str | None = None,
    ) -> list[str]:
        """
        Get time slots held by non-cancelled appointments.

        Args:
            doctor_id: Doctor ID
            date_value: Calendar day or its label
            exclude_appointment_id: Appointment to ignore, e.g. the one being rescheduled

        Returns:
            Time slot labels; order is not significant
        """
        if not doctor_id or not date_value:
            logger.warning("booked_slots_missing_parameters", doctor_id=doctor_id)
            return []

        formatted_date = format_date_for_query(date_value)
        queries = self._slot_queries(doctor_id, formatted_date, exclude_appointment_id)

        response = await self.store.list_documents(self.collection, queries, limit=MAX_SLOTS_PER_DAY)
        booked = [document["time_slot"] for document in response.documents]

        logger.debug(
            "booked_slots_fetched",
            doctor_id=doctor_id,
            date=formatted_date,
            count=len(booked),
        )
        return booked

    async def check_slot_availability(
        self,
        doctor_id: str,
        date_value: date | str,
        time_slot: str,
        exclude_appointment_id: str | None = None,
    ) -> bool:
        """
        Check whether a single slot is free.

        Equivalent to ``time_slot not in get_booked_slots(...)`` but issued as
        an existence query.

        Returns:
            True if no other non-cancelled appointment holds the slot
        """
        if not doctor_id or not date_value or not time_slot:
            logger.warning("slot_check_missing_parameters", doctor_id=doctor_id, time_slot=time_slot)
            return False

        formatted_date = format_date_for_query(date_value)
        queries = self._slot_queries(doctor_id, formatted_date, exclude_appointment_id)
        time_slot = normalize_time_slot(time_slot)
        queries.insert(2, Query.equal("time_slot", time_slot))

        response = await self.store.list_documents(self.collection, queries, limit=1)
        available = response.total == 0

        logger.debug(
            "slot_availability_checked",
            doctor_id=doctor_id,
            date=formatted_date,
            time_slot=time_slot,
            available=available,
        )
        return available

    async def get_available_slots(
        self,
        doctor_id: str,
        date_value: date | str,
        candidate_slots: list[str] | None = None,
        exclude_appointment_id: str | None = None,
    ) -> list[str]:
        """
        Filter candidate slots down to the free ones.

        Args:
            candidate_slots: Slots to consider; the configured defaults when None

        Returns:
            Free slots in candidate order, in display form
        """
        if candidate_slots is None:
            candidate_slots = self.default_slots

        booked = {
            normalize_time_slot(slot)
            for slot in await self.get_booked_slots(doctor_id, date_value, exclude_appointment_id)
        }
        candidates = [normalize_time_slot(slot) for slot in candidate_slots]
        return [slot for slot in candidates if slot not in booked]
