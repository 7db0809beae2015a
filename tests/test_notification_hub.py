"""Tests for change classification and the notification hub."""

import pytest

from clinic_scheduler.schemas.appointments import UpdateType
from clinic_scheduler.schemas.events import ChangeType
from clinic_scheduler.services.notification_hub import (
    classify_event,
    detect_change_type,
    detect_update_type,
    get_update_message,
)
from clinic_scheduler.store.feed import RawChangeEvent

COLLECTION = "appointments"


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        # Cancelled wins over every other signal
        (
            {"status": "Cancelled", "rescheduled_at": "2025-01-10", "last_transition": "rescheduled"},
            UpdateType.CANCELLED,
        ),
        ({"status": "Confirmed", "last_transition": "confirmed", "rescheduled_at": "2025-01-10"}, UpdateType.CONFIRMED),
        ({"status": "No Show", "last_transition": "no_show"}, UpdateType.NO_SHOW),
        ({"status": "Confirmed", "rescheduled_at": "2025-01-10"}, UpdateType.RESCHEDULED),
        ({"status": "Confirmed"}, UpdateType.CONFIRMED),
        ({"status": "Completed"}, UpdateType.COMPLETED),
        ({"status": "Booked", "notes": "edited"}, UpdateType.GENERAL_UPDATE),
        ({"status": "Booked", "last_transition": "teleported"}, UpdateType.GENERAL_UPDATE),
        ({}, UpdateType.GENERAL_UPDATE),
        (None, UpdateType.GENERAL_UPDATE),
    ],
)
def test_detect_update_type(payload, expected):
    """Test update classification priority."""
    assert detect_update_type(payload) == expected


def test_get_update_message():
    """Test message templates and fallbacks."""
    appointment = {"date": "Monday, 13 Jan 2025", "time_slot": "9:30 AM"}

    assert (
        get_update_message(UpdateType.CANCELLED, appointment)
        == "Appointment cancelled: Monday, 13 Jan 2025 at 9:30 AM"
    )
    assert (
        get_update_message(UpdateType.RESCHEDULED, appointment)
        == "Appointment rescheduled to: Monday, 13 Jan 2025 at 9:30 AM"
    )
    assert (
        get_update_message(UpdateType.NO_SHOW, appointment)
        == "Appointment marked as no-show: Monday, 13 Jan 2025 at 9:30 AM"
    )
    assert get_update_message(UpdateType.CONFIRMED, {}) == "Appointment updated"
    assert get_update_message(UpdateType.GENERAL_UPDATE, appointment) == "Appointment updated"
    assert (
        get_update_message(UpdateType.COMPLETED, {"status": "Completed"})
        == "Appointment completed: Unknown date at Unknown time"
    )


def test_detect_change_type():
    """Test change type comes from the event name suffix."""
    assert detect_change_type(["collections.appointments.documents.a1.create"]) == ChangeType.CREATED
    assert detect_change_type(["collections.appointments.documents.*.update"]) == ChangeType.UPDATED
    assert detect_change_type(["collections.appointments.documents.a1.delete"]) == ChangeType.DELETED
    assert detect_change_type(["collections.appointments.documents"]) is None
    assert detect_change_type([]) is None


def test_classify_event():
    """Test raw events become classified change events."""
    created = classify_event(
        RawChangeEvent(events=["collections.appointments.documents.a1.create"], payload={"status": "Booked"})
    )
    assert created.type == ChangeType.CREATED
    assert created.update_type is None
    assert created.message == "New appointment created: Booked"

    updated = classify_event(
        RawChangeEvent(
            events=["collections.appointments.documents.a1.update"],
            payload={"status": "Cancelled", "date": "Monday, 13 Jan 2025", "time_slot": "9:30 AM"},
        )
    )
    assert updated.type == ChangeType.UPDATED
    assert updated.update_type == UpdateType.CANCELLED
    assert updated.message == "Appointment cancelled: Monday, 13 Jan 2025 at 9:30 AM"

    deleted = classify_event(
        RawChangeEvent(events=["collections.appointments.documents.a1.delete"], payload={"id": "a1"})
    )
    assert deleted.type == ChangeType.DELETED
    assert deleted.message == "Appointment deleted"

    assert classify_event(RawChangeEvent(events=["something.else"], payload={})) is None


@pytest.mark.asyncio
async def test_listener_receives_lifecycle_events(hub, appointment_service, seed_appointment):
    """Test transitions reach listeners with their update type."""
    received = []
    hub.subscribe_to_appointments(received.append)

    seeded = await seed_appointment()
    await appointment_service.confirm_appointment(seeded["id"], "doctor")
    await appointment_service.reschedule_appointment(seeded["id"], "Tuesday, 14 Jan 2025", "2:00 PM")
    await appointment_service.cancel_appointment(seeded["id"])

    assert [event.type for event in received] == [
        ChangeType.CREATED,
        ChangeType.UPDATED,
        ChangeType.UPDATED,
        ChangeType.UPDATED,
    ]
    assert [event.update_type for event in received[1:]] == [
        UpdateType.CONFIRMED,
        UpdateType.RESCHEDULED,
        UpdateType.CANCELLED,
    ]
    assert received[2].message == "Appointment rescheduled to: Tuesday, 14 Jan 2025 at 2:00 PM"


@pytest.mark.asyncio
async def test_confirm_after_reschedule_is_classified_as_confirmed(hub, appointment_service, seed_appointment):
    """Test a later confirmation is not mistaken for a reschedule."""
    received = []
    seeded = await seed_appointment()
    await appointment_service.reschedule_appointment(seeded["id"], "Tuesday, 14 Jan 2025", "2:00 PM")
    hub.subscribe_to_appointments(received.append)

    await appointment_service.confirm_appointment(seeded["id"], "staff")

    assert [event.update_type for event in received] == [UpdateType.CONFIRMED]


@pytest.mark.asyncio
async def test_same_options_share_one_subscription(hub, store):
    """Test listeners with equal filters share a store subscription."""
    first = hub.subscribe_to_appointments(lambda event: None, {"doctor_id": "D1", "user_id": "u1"})
    second = hub.subscribe_to_appointments(lambda event: None, {"user_id": "u1", "doctor_id": "D1"})
    hub.subscribe_to_appointments(lambda event: None)

    assert hub.active_subscription_count == 2
    assert hub.listener_count == 3
    assert store.feed.subscriber_count(COLLECTION) == 2

    assert hub.unsubscribe(first) is True
    assert hub.active_subscription_count == 2

    assert hub.unsubscribe(second) is True
    assert hub.active_subscription_count == 1
    assert store.feed.subscriber_count(COLLECTION) == 1


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(hub):
    """Test repeated or unknown unsubscribes are harmless."""
    handle = hub.subscribe_to_appointments(lambda event: None)

    assert hub.unsubscribe(handle) is True
    assert hub.unsubscribe(handle) is False
    assert hub.unsubscribe("unknown") is False
    assert hub.active_subscription_count == 0


@pytest.mark.asyncio
async def test_unsubscribed_listener_stops_receiving(hub, seed_appointment):
    """Test no events arrive after unsubscribing."""
    received = []
    handle = hub.subscribe_to_appointments(received.append)
    await seed_appointment()
    hub.unsubscribe(handle)
    await seed_appointment(time_slot="10:00 AM")

    assert len(received) == 1


@pytest.mark.asyncio
async def test_options_filter_payloads(hub, seed_appointment):
    """Test listeners only see matching appointments."""
    doctor_events = []
    hub.subscribe_to_appointments(doctor_events.append, {"doctor_id": "D2"})

    await seed_appointment(doctor_id="D1")
    await seed_appointment(doctor_id="D2")

    assert len(doctor_events) == 1
    assert doctor_events[0].appointment["doctor_id"] == "D2"


@pytest.mark.asyncio
async def test_subscribe_to_single_appointment(hub, appointment_service, seed_appointment):
    """Test per-appointment subscriptions."""
    target = await seed_appointment()
    other = await seed_appointment(time_slot="10:00 AM")
    received = []
    hub.subscribe_to_appointment(target["id"], received.append)

    await appointment_service.confirm_appointment(other["id"], "doctor")
    await appointment_service.complete_appointment(target["id"])

    assert [event.update_type for event in received] == [UpdateType.COMPLETED]


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(hub, seed_appointment):
    """Test coroutine callbacks run to completion."""
    received = []

    async def callback(event):
        received.append(event.type)

    hub.subscribe_to_appointments(callback)
    await seed_appointment()

    assert received == [ChangeType.CREATED]


@pytest.mark.asyncio
async def test_failing_listener_does_not_affect_others(hub, seed_appointment):
    """Test listener exceptions are isolated."""
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    hub.subscribe_to_appointments(broken)
    hub.subscribe_to_appointments(received.append)

    await seed_appointment()

    assert len(received) == 1


@pytest.mark.asyncio
async def test_close_tears_down_everything(hub, store, seed_appointment):
    """Test closing the hub releases subscriptions and rejects new ones."""
    received = []
    hub.subscribe_to_appointments(received.append)
    hub.subscribe_to_appointments(received.append, {"doctor_id": "D1"})

    hub.close()

    assert hub.closed is True
    assert hub.active_subscription_count == 0
    assert store.feed.subscriber_count(COLLECTION) == 0

    await seed_appointment()
    assert received == []

    with pytest.raises(RuntimeError):
        hub.subscribe_to_appointments(received.append)
